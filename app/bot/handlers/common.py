"""
Pieces shared by the entity screens: replying to messages or callbacks,
error texts, and the per-entity search dialog.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from aiogram import F, Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message
from aiogram.utils.text_decorations import html_decoration

from app.bot.callbacks import SearchCallback
from app.bot.keyboards import MessageTemplates
from app.core import get_settings
from app.core.logging import configure_logging
from app.db.models import Box
from app.db.supabase import SupabaseError

router = Router(name="common")
logger = configure_logging("screens")

NO_BOX_TEXT = (
    "Ainda não tens uma box selecionada. "
    "Envia /start para ligar a tua conta ou /box para escolher a box."
)

ListRenderer = Callable[[Box, FSMContext, int, str, str], Awaitable[tuple[str, InlineKeyboardMarkup]]]

# entity -> function rendering one page of its list
LIST_RENDERERS: dict[str, ListRenderer] = {}


def register_list(entity: str) -> Callable[[ListRenderer], ListRenderer]:
    def decorator(func: ListRenderer) -> ListRenderer:
        LIST_RENDERERS[entity] = func
        return func

    return decorator


class SearchStates(StatesGroup):
    waiting_for_query = State()


def esc(value: Any) -> str:
    """Escape user data for HTML parse mode."""
    if value is None:
        return "—"
    return html_decoration.quote(str(value))


def error_text(action: str, exc: Exception) -> str:
    """
    User-facing error. In local mode Supabase details are appended.
    """

    text = MessageTemplates.error(action)
    if isinstance(exc, SupabaseError) and get_settings().is_debug:
        detail = (exc.detail or str(exc)).strip()
        if len(detail) > 300:
            detail = detail[:300] + "..."
        text += f"\n<code>status={exc.status_code}</code>\n<code>{esc(detail)}</code>"
    return text


async def show(
    target: Message | CallbackQuery,
    text: str,
    reply_markup: InlineKeyboardMarkup | None = None,
    *,
    answered: bool = False,
) -> None:
    """
    Answer a command with a new message, or redraw the message a button
    belongs to.

    answered is True when the callback already got a toast.
    """

    if isinstance(target, Message):
        await target.answer(text, reply_markup=reply_markup)
        return

    if not answered:
        await target.answer()
    if target.message is None:
        return
    try:
        await target.message.edit_text(text, reply_markup=reply_markup)
    except TelegramBadRequest as exc:
        if "message is not modified" not in str(exc):
            raise


async def toast(callback: CallbackQuery, text: str, *, alert: bool = False) -> None:
    await callback.answer(text, show_alert=alert)


def query_key(entity: str) -> str:
    return f"query_{entity}"


async def get_query(state: FSMContext, entity: str) -> str:
    data = await state.get_data()
    return data.get(query_key(entity), "")


async def render_list(
    target: Message | CallbackQuery,
    state: FSMContext,
    box: Box | None,
    entity: str,
    *,
    page: int = 1,
    status: str = "all",
    sort: str = "default",
    answered: bool = False,
) -> None:
    if box is None:
        await show(target, NO_BOX_TEXT, answered=answered)
        return

    # Leaving a list always ends any half-finished dialog
    await state.set_state(None)
    try:
        text, markup = await LIST_RENDERERS[entity](box, state, page, status, sort)
    except Exception as exc:
        logger.exception("Failed to load %s list: %s", entity, exc)
        await show(target, error_text("não foi possível carregar a lista.", exc), answered=answered)
        return
    await show(target, text, markup, answered=answered)


@router.callback_query(SearchCallback.filter(F.clear))
async def clear_search(
    callback: CallbackQuery,
    callback_data: SearchCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await state.update_data({query_key(callback_data.entity): ""})
    await render_list(callback, state, box, callback_data.entity)


@router.callback_query(SearchCallback.filter(~F.clear))
async def start_search(callback: CallbackQuery, callback_data: SearchCallback, state: FSMContext) -> None:
    await state.set_state(SearchStates.waiting_for_query)
    await state.update_data(search_entity=callback_data.entity)
    await callback.answer()
    if callback.message is not None:
        await callback.message.answer("🔍 Escreve o texto a pesquisar.\n\nPara cancelar escreve /cancel.")


@router.message(SearchStates.waiting_for_query, F.text, ~F.text.startswith("/"))
async def search_query(message: Message, state: FSMContext, box: Box | None = None) -> None:
    data = await state.get_data()
    entity = data.get("search_entity")
    if entity not in LIST_RENDERERS:
        await state.set_state(None)
        await message.answer("Pesquisa expirada. Abre a lista outra vez.")
        return

    await state.update_data({query_key(entity): message.text.strip()})
    await render_list(message, state, box, entity)
