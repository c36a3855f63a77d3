from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, Message

from app.bot.callbacks import BoxCallback, MenuCallback
from app.bot.handlers.common import error_text, esc, show, toast
from app.bot.keyboards import Keyboards, MessageTemplates
from app.core import get_settings
from app.core.logging import configure_logging
from app.core.validation import normalize_email
from app.db import get_supabase_client
from app.db.models import AdminLink, Box, StaffBox
from app.db.supabase import SupabaseError

router = Router(name="start")
logger = configure_logging("start")

HELP_TEXT = """
<b>📋 Comandos disponíveis</b>

<b>👥 Membros</b>
/members — lista de membros
/add_member — adicionar membro

<b>🧑‍🏫 Staff</b>
/staff — lista de staff
/add_staff — adicionar staff

<b>💳 Planos e pacotes</b>
/plans — planos de subscrição
/add_plan — criar plano
/packs — pacotes de sessões
/add_pack — criar pacote

<b>🏷 Aulas</b>
/classes — tipos de aula
/add_class — criar tipo de aula

<b>🛡 Seguros</b>
/insurances — seguros da box
/add_insurance — criar seguro

<b>⏰ Validades</b>
/digest — membros com plano ou seguro a expirar

<b>⚙️ Geral</b>
/box — escolher a box
/menu — menu principal
/cancel — cancelar a operação atual
/help — esta ajuda
""".strip()


class LinkStates(StatesGroup):
    waiting_for_email = State()


def menu_text(box: Box | None) -> str:
    if box is None:
        return "🏋️ <b>Menu principal</b>\n\nAinda sem box selecionada. Usa /box."
    return f"🏋️ <b>Menu principal</b>\n\nBox: <b>{esc(box.name)}</b>\n\nEscolhe o que queres fazer:"


@router.message(CommandStart())
async def cmd_start(
    message: Message,
    state: FSMContext,
    admin: AdminLink | None = None,
    box: Box | None = None,
) -> None:
    """
    /start for box admins.

    Linked accounts get the main menu. Otherwise the bot asks for the
    email of the admin's profile and links this Telegram account to it.
    """

    await state.clear()
    if admin is not None:
        await message.answer(
            "👋 Bem-vindo de volta!\n\n" + menu_text(box),
            reply_markup=Keyboards.main_menu(),
        )
        return

    if message.from_user is None or not get_settings().may_link(message.from_user.id):
        await message.answer("⛔️ Esta conta do Telegram não tem acesso a este bot.")
        return

    await state.set_state(LinkStates.waiting_for_email)
    await message.answer(
        "👋 Olá! Este bot serve para gerir a tua box.\n\n"
        "Para ligar a tua conta envia o <b>email</b> com que entras na plataforma.\n\n"
        "Para cancelar escreve /cancel."
    )


@router.message(LinkStates.waiting_for_email, F.text)
async def link_email(message: Message, state: FSMContext) -> None:
    email = normalize_email(message.text)
    if email is None:
        await message.answer("Email inválido. Tenta outra vez.")
        return

    supabase = get_supabase_client()
    try:
        user = await supabase.get_user_detail_by_email(email)
        boxes: list[StaffBox] = []
        if user is not None:
            boxes = [item for item in await supabase.list_staff_boxes(user.id) if item.can_manage]
        if user is None or not boxes:
            await message.answer(
                "Não encontrei nenhum administrador de box com esse email.\n"
                "Confirma o email ou pede acesso ao dono da box."
            )
            return

        selected = boxes[0].box_id if len(boxes) == 1 else None
        await supabase.create_admin_link(
            telegram_user_id=message.from_user.id,
            user_detail_id=user.id,
            selected_box_id=selected,
        )
    except SupabaseError as exc:
        logger.exception("Supabase error while linking account: %s", exc)
        await message.answer(error_text("não foi possível ligar a conta. Tenta mais tarde.", exc))
        return

    await state.clear()
    logger.info("Linked telegram user %s to user_detail %s", message.from_user.id, user.id)
    await message.answer(MessageTemplates.success(f"Conta ligada a <b>{esc(user.name)}</b>."))

    if selected is None:
        await message.answer("Escolhe a box que queres gerir:", reply_markup=Keyboards.boxes(boxes))
        return
    await message.answer("Usa o menu abaixo ou /help.", reply_markup=Keyboards.main_menu())


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext) -> None:
    """
    Cancel any active dialog.
    """

    if await state.get_state() is None:
        await message.answer("Não há nada para cancelar.")
        return
    # Drop the dialog but keep the saved searches
    await state.set_state(None)
    await message.answer("❌ Operação cancelada.", reply_markup=Keyboards.main_menu())


@router.message(Command("menu"))
async def cmd_menu(message: Message, box: Box | None = None) -> None:
    await message.answer(menu_text(box), reply_markup=Keyboards.main_menu())


@router.callback_query(MenuCallback.filter(F.section == "main"))
async def menu_main(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await state.set_state(None)
    await show(callback, menu_text(box), Keyboards.main_menu())


@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    await message.answer(HELP_TEXT)


@router.callback_query(MenuCallback.filter(F.section == "help"))
async def menu_help(callback: CallbackQuery) -> None:
    await show(callback, HELP_TEXT, Keyboards.back_button())


def boxes_text(boxes: list[StaffBox], box: Box | None) -> str:
    if not boxes:
        return "Não és administrador de nenhuma box. Envia /start para ligar a conta."
    current = f"Atual: <b>{esc(box.name)}</b>\n\n" if box is not None else ""
    return f"🏠 <b>As tuas boxes</b>\n\n{current}Escolhe a box a gerir:"


@router.message(Command("box"))
async def cmd_box(message: Message, boxes: list[StaffBox] | None = None, box: Box | None = None) -> None:
    boxes = boxes or []
    await message.answer(
        boxes_text(boxes, box),
        reply_markup=Keyboards.boxes(boxes, box.id if box else None) if boxes else None,
    )


@router.callback_query(MenuCallback.filter(F.section == "boxes"))
async def menu_boxes(callback: CallbackQuery, boxes: list[StaffBox] | None = None, box: Box | None = None) -> None:
    boxes = boxes or []
    await show(
        callback,
        boxes_text(boxes, box),
        Keyboards.boxes(boxes, box.id if box else None) if boxes else Keyboards.back_button(),
    )


@router.callback_query(BoxCallback.filter())
async def select_box(
    callback: CallbackQuery,
    callback_data: BoxCallback,
    state: FSMContext,
    boxes: list[StaffBox] | None = None,
) -> None:
    if callback_data.box_id not in {item.box_id for item in boxes or []}:
        await toast(callback, "⛔️ Não tens acesso a essa box.", alert=True)
        return

    supabase = get_supabase_client()
    try:
        await supabase.set_selected_box(callback.from_user.id, callback_data.box_id)
        selected = await supabase.get_box(callback_data.box_id)
    except Exception as exc:
        logger.exception("Failed to select box %s: %s", callback_data.box_id, exc)
        await toast(callback, "❌ Erro ao mudar de box.", alert=True)
        return

    # Searches belong to the previous box
    await state.clear()
    await toast(callback, f"✅ Box: {selected.name}")
    if callback.message is not None:
        await callback.message.edit_text(menu_text(selected), reply_markup=Keyboards.main_menu())
