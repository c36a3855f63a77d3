from __future__ import annotations

import os

import httpx
import pytest
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.fsm.storage.memory import MemoryStorage

# Handlers read settings lazily; give them something valid
os.environ.setdefault("BOT_TOKEN", "123456:TEST")
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")

from app.core import Settings  # noqa: E402
from app.db.models import Box  # noqa: E402
from app.db.supabase import SupabaseClient  # noqa: E402
from tests.helpers import FakeApi  # noqa: E402


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        bot_token="123456:TEST",
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        environment="local",
    )


@pytest.fixture()
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture()
async def supabase(settings: Settings, api: FakeApi):
    client = SupabaseClient(settings, transport=httpx.MockTransport(api))
    yield client
    await client.close()


@pytest.fixture()
def state() -> FSMContext:
    return FSMContext(storage=MemoryStorage(), key=StorageKey(bot_id=1, chat_id=1, user_id=1))


@pytest.fixture()
def box() -> Box:
    return Box(id="box-1", name="CrossFit Porto")
