from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from app.bot.callbacks import MenuCallback
from app.bot.handlers.common import NO_BOX_TEXT, error_text
from app.bot.scheduler import get_digest_scheduler
from app.core.logging import configure_logging
from app.db.models import Box

router = Router(name="digest")
logger = configure_logging("digest")


async def _send_digest(message: Message, chat_id: int, box: Box | None) -> None:
    if box is None:
        await message.answer(NO_BOX_TEXT)
        return

    try:
        await get_digest_scheduler().send_digest(box_id=box.id, chat_id=chat_id)
    except Exception as exc:
        logger.exception("Error sending digest: %s", exc)
        await message.answer(error_text("não foi possível gerar o resumo.", exc))


@router.message(Command("digest"))
async def cmd_digest(message: Message, box: Box | None = None) -> None:
    """
    Send the expiry digest of the selected box now.
    """

    await _send_digest(message, message.chat.id, box)


@router.callback_query(MenuCallback.filter(F.section == "digest"))
async def menu_digest(callback: CallbackQuery, box: Box | None = None) -> None:
    await callback.answer()
    if callback.message is not None:
        await _send_digest(callback.message, callback.message.chat.id, box)
