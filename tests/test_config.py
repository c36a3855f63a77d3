import logging

import pytest

from app.core import logging as logging_module
from app.core.config import _build_settings


@pytest.fixture()
def env(monkeypatch):
    monkeypatch.setenv("BOT_TOKEN", "123456:TEST")
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")
    for key in ("ENVIRONMENT", "PAGE_SIZE", "DIGEST_HOUR", "EXPIRY_WINDOW_DAYS", "ADMIN_TELEGRAM_IDS"):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(env):
    settings = _build_settings()
    assert settings.environment == "local"
    assert settings.is_debug
    assert settings.page_size == 8
    assert settings.digest_hour == 9
    assert settings.expiry_window_days == 7
    assert settings.admin_telegram_ids == frozenset()


def test_missing_required_variable(env):
    env.delenv("SUPABASE_SERVICE_KEY")
    with pytest.raises(RuntimeError, match="SUPABASE_SERVICE_KEY"):
        _build_settings()


def test_invalid_page_size(env):
    env.setenv("PAGE_SIZE", "0")
    with pytest.raises(RuntimeError, match="Invalid settings"):
        _build_settings()


def test_admin_allowlist(env):
    env.setenv("ADMIN_TELEGRAM_IDS", "111, 222,")
    settings = _build_settings()
    assert settings.admin_telegram_ids == frozenset({111, 222})
    assert settings.may_link(111)
    assert not settings.may_link(333)


def test_empty_allowlist_lets_anyone_link(env):
    assert _build_settings().may_link(999)


def test_bad_allowlist(env):
    env.setenv("ADMIN_TELEGRAM_IDS", "111,abc")
    with pytest.raises(RuntimeError, match="ADMIN_TELEGRAM_IDS"):
        _build_settings()


def test_logging_sections_and_quiet_libraries(monkeypatch, settings):
    production = settings.model_copy(update={"environment": "production"})
    monkeypatch.setattr(logging_module, "get_settings", lambda: production)

    logger = logging_module.configure_logging("members")

    assert logger.name == "box_admin_bot.members"
    assert logging_module.configure_logging().name == "box_admin_bot"
    assert logging.getLogger("aiogram.event").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING
