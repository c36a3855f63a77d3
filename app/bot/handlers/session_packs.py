from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message

from app.bot.callbacks import PACK, FieldCallback, ItemCallback, ListCallback, MenuCallback, ToggleCallback
from app.bot.handlers.common import (
    NO_BOX_TEXT,
    error_text,
    esc,
    get_query,
    register_list,
    render_list,
    show,
    toast,
)
from app.bot.handlers.staff import toggle_value
from app.bot.keyboards import Keyboards, MessageTemplates
from app.core import get_settings
from app.core.listing import filter_items, paginate, sort_items
from app.core.logging import configure_logging
from app.core.validation import is_skip, parse_positive_int, parse_price
from app.db import get_supabase_client
from app.db.models import Box, ClassType, SessionPack

router = Router(name="session_packs")
logger = configure_logging("session_packs")

SORT_LABELS = {"default": "Mais recentes", "name": "Nome", "price": "Preço"}
SORT_CYCLE = list(SORT_LABELS)

EDITABLE_FIELDS = [
    ("name", "Nome"),
    ("desc", "Descrição"),
    ("price", "Preço"),
    ("sessions", "Número de sessões"),
    ("validity", "Validade (dias)"),
    ("classes", "Aulas permitidas"),
    ("active", "Ativar / desativar"),
    ("public", "Público / privado"),
]

# field code -> column
NUMBER_COLUMNS = {"sessions": "session_count", "validity": "validity_days"}


class PackFormStates(StatesGroup):
    waiting_for_name = State()
    waiting_for_description = State()
    waiting_for_price = State()
    waiting_for_sessions = State()
    waiting_for_validity = State()
    waiting_for_class_types = State()


class PackEditStates(StatesGroup):
    waiting_for_value = State()
    waiting_for_class_types = State()


def select_packs(packs: list[SessionPack], *, query: str = "", sort: str = "default") -> list[SessionPack]:
    selected = filter_items(packs, query, [lambda p: p.name, lambda p: p.description])
    if sort == "name":
        return sort_items(selected, lambda p: p.name)
    if sort == "price":
        return sort_items(selected, lambda p: p.price)
    return sort_items(selected, lambda p: p.created_at, descending=True)


@register_list(PACK)
async def render_packs(
    box: Box,
    state: FSMContext,
    page: int,
    status: str,
    sort: str,
) -> tuple[str, InlineKeyboardMarkup]:
    supabase = get_supabase_client()
    packs = await supabase.list_session_packs(box.id)
    query = await get_query(state, PACK)

    selected = select_packs(packs, query=query, sort=sort)
    current = paginate(selected, page, get_settings().page_size)

    active = sum(1 for p in packs if p.is_active)
    lines = [
        MessageTemplates.header(f"Pacotes de sessões · {esc(box.name)}", "🎟"),
        f"Ativos: {active} | Inativos: {len(packs) - active}",
        "",
    ]
    if query:
        lines.append(f"🔍 Pesquisa: <b>{esc(query)}</b>")
    if not current.items:
        lines.append("Nenhum pacote encontrado.")
    for idx, pack in enumerate(current.items, start=current.offset + 1):
        icon = "🟢" if pack.is_active else "⚪️"
        lines.append(
            f"{idx}. {icon} {esc(pack.name)} — {pack.session_count} sessões, "
            f"{pack.price} {box.currency}"
        )

    next_sort = SORT_CYCLE[(SORT_CYCLE.index(sort) + 1) % len(SORT_CYCLE)] if sort in SORT_CYCLE else "default"
    markup = Keyboards.entity_list(
        PACK,
        current,
        [(p.id, p.name) for p in current.items],
        sort=sort,
        sort_label=SORT_LABELS[next_sort],
        next_sort=next_sort,
        has_query=bool(query),
    )
    return "\n".join(lines), markup


def pack_card(pack: SessionPack, class_types: list[ClassType], currency: str = "EUR") -> str:
    names = {ct.id: ct.name for ct in class_types}
    lines = [
        f"<b>🎟 {esc(pack.name)}</b>",
        f"💶 Preço: <b>{pack.price} {currency}</b>",
        f"Sessões: <b>{pack.session_count}</b> | Validade: <b>{pack.validity_days} dias</b>",
        f"Ativo: <b>{MessageTemplates.yes_no(pack.is_active)}</b> | "
        f"Público: <b>{MessageTemplates.yes_no(pack.pack_public)}</b>",
    ]
    if pack.description:
        lines.extend(["", esc(pack.description)])

    lines.extend(["", "<b>Aulas permitidas</b>"])
    if not pack.allowed_class_types:
        lines.append("  nenhuma")
    for class_type_id in pack.allowed_class_types:
        lines.append(MessageTemplates.item(esc(names.get(class_type_id, class_type_id[:8]))))
    return "\n".join(lines)


@router.message(Command("packs"))
async def cmd_packs(message: Message, state: FSMContext, box: Box | None = None) -> None:
    """
    List the session packs of the selected box.
    """

    await render_list(message, state, box, PACK)


@router.callback_query(MenuCallback.filter(F.section == "packs"))
async def menu_packs(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await render_list(callback, state, box, PACK)


@router.callback_query(ListCallback.filter(F.entity == PACK))
async def packs_page(
    callback: CallbackQuery,
    callback_data: ListCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await render_list(callback, state, box, PACK, page=callback_data.page, sort=callback_data.sort)


async def _show_pack(
    target: Message | CallbackQuery,
    box: Box | None,
    pack_id: str,
    *,
    answered: bool = False,
) -> None:
    if box is None:
        await show(target, NO_BOX_TEXT, answered=answered)
        return
    supabase = get_supabase_client()
    try:
        pack = await supabase.get_session_pack(box.id, pack_id)
        class_types = await supabase.list_class_types(box.id, active_only=False)
    except Exception as exc:
        logger.exception("Error loading session pack %s: %s", pack_id, exc)
        await show(target, error_text("não foi possível carregar o pacote.", exc), answered=answered)
        return
    await show(
        target,
        pack_card(pack, class_types, box.currency),
        Keyboards.entity_actions(PACK, pack.id),
        answered=answered,
    )


@router.callback_query(ItemCallback.filter((F.entity == PACK) & (F.action == "view")))
async def view_pack(
    callback: CallbackQuery,
    callback_data: ItemCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await state.set_state(None)
    await _show_pack(callback, box, callback_data.item_id)


@router.callback_query(ItemCallback.filter((F.entity == PACK) & (F.action == "del")))
async def ask_delete_pack(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        MessageTemplates.warning("apagar este pacote de sessões?"),
        Keyboards.confirm_delete(PACK, callback_data.item_id),
    )


@router.callback_query(ItemCallback.filter((F.entity == PACK) & (F.action == "del_ok")))
async def delete_pack(
    callback: CallbackQuery,
    callback_data: ItemCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    if box is None:
        await show(callback, NO_BOX_TEXT)
        return
    supabase = get_supabase_client()
    try:
        await supabase.delete_session_pack(box.id, callback_data.item_id)
    except Exception as exc:
        logger.exception("Failed to delete session pack %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao apagar o pacote.", alert=True)
        return

    await toast(callback, "✅ Pacote apagado.")
    await render_list(callback, state, box, PACK, answered=True)


# ----------------------------------------------------------------------
# Create dialog
# ----------------------------------------------------------------------


def _class_type_options(class_types: list[ClassType]) -> list[tuple[str, str]]:
    return [(ct.id, ct.name) for ct in class_types]


async def _start_create(message: Message, state: FSMContext) -> None:
    await state.set_state(PackFormStates.waiting_for_name)
    await message.answer(
        "Vamos criar um pacote de sessões.\n"
        "Envia o <b>nome</b> (ex.: 10 Aulas).\n\n"
        "Para cancelar escreve /cancel."
    )


@router.message(Command("add_pack"))
async def cmd_add_pack(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await message.answer(NO_BOX_TEXT)
        return
    await _start_create(message, state)


@router.callback_query(ItemCallback.filter((F.entity == PACK) & (F.action == "new")))
async def new_pack(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await callback.answer()
    if callback.message is None:
        return
    if box is None:
        await callback.message.answer(NO_BOX_TEXT)
        return
    await _start_create(callback.message, state)


@router.message(PackFormStates.waiting_for_name, F.text)
async def pack_name(message: Message, state: FSMContext) -> None:
    name = message.text.strip()
    if not name:
        await message.answer("O nome não pode ficar vazio.")
        return
    await state.update_data(name=name)
    await state.set_state(PackFormStates.waiting_for_description)
    await message.answer("Envia uma <b>descrição</b>, ou - para deixar em branco.")


@router.message(PackFormStates.waiting_for_description, F.text)
async def pack_description(message: Message, state: FSMContext) -> None:
    await state.update_data(description=None if is_skip(message.text) else message.text.strip())
    await state.set_state(PackFormStates.waiting_for_price)
    await message.answer("Qual é o <b>preço</b>? (ex.: 80 ou 79,90)")


@router.message(PackFormStates.waiting_for_price, F.text)
async def pack_price(message: Message, state: FSMContext) -> None:
    price = parse_price(message.text)
    if price is None:
        await message.answer("Preço inválido. Envia um número, por exemplo 79,90.")
        return
    await state.update_data(price=price)
    await state.set_state(PackFormStates.waiting_for_sessions)
    await message.answer("Quantas <b>sessões</b> inclui o pacote?")


@router.message(PackFormStates.waiting_for_sessions, F.text)
async def pack_sessions(message: Message, state: FSMContext) -> None:
    sessions = parse_positive_int(message.text)
    if sessions is None:
        await message.answer("Envia um número inteiro maior que zero.")
        return
    await state.update_data(session_count=sessions)
    await state.set_state(PackFormStates.waiting_for_validity)
    await message.answer("Durante quantos <b>dias</b> é válido o pacote?")


@router.message(PackFormStates.waiting_for_validity, F.text)
async def pack_validity(message: Message, state: FSMContext, box: Box | None = None) -> None:
    days = parse_positive_int(message.text)
    if days is None:
        await message.answer("Envia um número inteiro de dias maior que zero.")
        return
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return

    supabase = get_supabase_client()
    try:
        class_types = await supabase.list_class_types(box.id)
    except Exception as exc:
        logger.exception("Failed to load class types: %s", exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível carregar os tipos de aula.", exc))
        return

    await state.update_data(validity_days=days, class_types=class_types, allowed=[])
    await state.set_state(PackFormStates.waiting_for_class_types)
    await message.answer(
        "Escolhe as <b>aulas</b> em que o pacote pode ser usado e carrega em Concluído.",
        reply_markup=Keyboards.toggles(_class_type_options(class_types), []),
    )


async def _redraw_toggles(callback: CallbackQuery, state: FSMContext, value: str) -> None:
    data = await state.get_data()
    allowed = toggle_value(data.get("allowed", []), value)
    await state.update_data(allowed=allowed)
    await callback.answer()
    if callback.message is not None:
        await callback.message.edit_reply_markup(
            reply_markup=Keyboards.toggles(_class_type_options(data.get("class_types", [])), allowed)
        )


@router.callback_query(PackFormStates.waiting_for_class_types, ToggleCallback.filter(F.value != "done"))
@router.callback_query(PackEditStates.waiting_for_class_types, ToggleCallback.filter(F.value != "done"))
async def toggle_pack_class_type(callback: CallbackQuery, callback_data: ToggleCallback, state: FSMContext) -> None:
    await _redraw_toggles(callback, state, callback_data.value)


@router.callback_query(PackFormStates.waiting_for_class_types, ToggleCallback.filter(F.value == "done"))
async def finish_create_pack(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await show(callback, NO_BOX_TEXT)
        return

    data = await state.get_data()
    supabase = get_supabase_client()
    try:
        pack = await supabase.create_session_pack(
            box_id=box.id,
            name=data["name"],
            description=data.get("description"),
            price=data["price"],
            session_count=data["session_count"],
            validity_days=data["validity_days"],
            allowed_class_types=data.get("allowed", []),
        )
    except Exception as exc:
        logger.exception("Failed to create session pack: %s", exc)
        await state.set_state(None)
        await show(callback, error_text("não foi possível criar o pacote.", exc))
        return

    await state.set_state(None)
    await toast(callback, "✅ Pacote criado.")
    if callback.message is not None:
        await callback.message.edit_text(
            pack_card(pack, data.get("class_types", []), box.currency),
            reply_markup=Keyboards.entity_actions(PACK, pack.id),
        )


# ----------------------------------------------------------------------
# Edit dialog
# ----------------------------------------------------------------------


@router.callback_query(ItemCallback.filter((F.entity == PACK) & (F.action == "edit")))
async def edit_pack(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        "✏️ O que queres alterar?",
        Keyboards.field_menu(PACK, callback_data.item_id, EDITABLE_FIELDS),
    )


@router.callback_query(FieldCallback.filter((F.entity == PACK) & F.field.in_({"active", "public"})))
async def toggle_pack_flag(callback: CallbackQuery, callback_data: FieldCallback, box: Box | None = None) -> None:
    if box is None:
        await show(callback, NO_BOX_TEXT)
        return

    column = "is_active" if callback_data.field == "active" else "pack_public"
    supabase = get_supabase_client()
    try:
        pack = await supabase.get_session_pack(box.id, callback_data.item_id)
        await supabase.update_session_pack(box.id, pack.id, **{column: not getattr(pack, column)})
    except Exception as exc:
        logger.exception("Failed to toggle %s on session pack %s: %s", column, callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao atualizar o pacote.", alert=True)
        return

    await toast(callback, "✅ Pacote atualizado.")
    await _show_pack(callback, box, callback_data.item_id, answered=True)


@router.callback_query(FieldCallback.filter((F.entity == PACK) & (F.field == "classes")))
async def edit_pack_classes(
    callback: CallbackQuery,
    callback_data: FieldCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    if box is None:
        await show(callback, NO_BOX_TEXT)
        return

    supabase = get_supabase_client()
    try:
        pack = await supabase.get_session_pack(box.id, callback_data.item_id)
        class_types = await supabase.list_class_types(box.id)
    except Exception as exc:
        logger.exception("Failed to load session pack %s: %s", callback_data.item_id, exc)
        await show(callback, error_text("não foi possível carregar o pacote.", exc))
        return

    await state.set_state(PackEditStates.waiting_for_class_types)
    await state.update_data(edit_id=pack.id, class_types=class_types, allowed=list(pack.allowed_class_types))
    await show(
        callback,
        "Escolhe as <b>aulas permitidas</b> e carrega em Concluído.",
        Keyboards.toggles(_class_type_options(class_types), pack.allowed_class_types),
    )


@router.callback_query(PackEditStates.waiting_for_class_types, ToggleCallback.filter(F.value == "done"))
async def finish_edit_classes(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await show(callback, NO_BOX_TEXT)
        return
    data = await state.get_data()
    supabase = get_supabase_client()
    try:
        await supabase.update_session_pack(box.id, data["edit_id"], allowed_class_types=data.get("allowed", []))
    except Exception as exc:
        logger.exception("Failed to update session pack %s: %s", data.get("edit_id"), exc)
        await state.set_state(None)
        await show(callback, error_text("não foi possível atualizar o pacote.", exc))
        return

    await state.set_state(None)
    await toast(callback, "✅ Pacote atualizado.")
    await _show_pack(callback, box, data["edit_id"], answered=True)


@router.callback_query(
    FieldCallback.filter((F.entity == PACK) & F.field.in_({"name", "desc", "price", "sessions", "validity"}))
)
async def edit_pack_field(callback: CallbackQuery, callback_data: FieldCallback, state: FSMContext) -> None:
    await state.set_state(PackEditStates.waiting_for_value)
    await state.update_data(edit_id=callback_data.item_id, edit_field=callback_data.field)
    label = dict(EDITABLE_FIELDS)[callback_data.field]
    await callback.answer()
    if callback.message is not None:
        await callback.message.answer(f"Envia o novo valor para <b>{label}</b>.\n\nPara cancelar escreve /cancel.")


def parse_pack_field(field: str, raw: str) -> tuple[str, object] | str:
    """
    Validate an edited value.

    Returns (column, value) or an error message.
    """

    if field in NUMBER_COLUMNS:
        number = parse_positive_int(raw)
        if number is None:
            return "Envia um número inteiro maior que zero."
        return NUMBER_COLUMNS[field], number
    if field == "price":
        price = parse_price(raw)
        if price is None:
            return "Preço inválido. Envia um número, por exemplo 79,90."
        return "price", price
    if field == "desc":
        return "description", None if is_skip(raw) else raw.strip()
    if not raw.strip():
        return "O nome não pode ficar vazio."
    return "name", raw.strip()


@router.message(PackEditStates.waiting_for_value, F.text)
async def pack_field_value(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return
    data = await state.get_data()
    parsed = parse_pack_field(data.get("edit_field", "name"), message.text)
    if isinstance(parsed, str):
        await message.answer(parsed)
        return

    column, value = parsed
    supabase = get_supabase_client()
    try:
        await supabase.update_session_pack(box.id, data["edit_id"], **{column: value})
    except Exception as exc:
        logger.exception("Failed to update session pack %s: %s", data.get("edit_id"), exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível atualizar o pacote.", exc))
        return

    await state.set_state(None)
    await message.answer(MessageTemplates.success("Pacote atualizado."))
    await _show_pack(message, box, data["edit_id"])
