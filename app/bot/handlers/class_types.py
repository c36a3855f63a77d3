from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message

from app.bot.callbacks import CLASS_TYPE, FieldCallback, ItemCallback, ListCallback, MenuCallback
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
from app.bot.keyboards import Keyboards, MessageTemplates
from app.core import get_settings
from app.core.listing import filter_items, paginate, sort_items
from app.core.logging import configure_logging
from app.core.validation import is_skip, parse_color, parse_optional_int, parse_positive_int
from app.db import get_supabase_client
from app.db.models import Box, ClassType

router = Router(name="class_types")
logger = configure_logging("class_types")

SORT_LABELS = {"default": "Mais recentes", "name": "Nome", "duration": "Duração"}
SORT_CYCLE = list(SORT_LABELS)

EDITABLE_FIELDS = [
    ("name", "Nome"),
    ("desc", "Descrição"),
    ("duration", "Duração (min)"),
    ("capacity", "Capacidade"),
    ("waitlist", "Lista de espera"),
    ("color", "Cor"),
    ("active", "Ativar / desativar"),
]

# field code -> column; '-' clears these
OPTIONAL_NUMBER_COLUMNS = {"capacity": "capacity_default", "waitlist": "waitlist_default"}


class ClassTypeFormStates(StatesGroup):
    waiting_for_name = State()
    waiting_for_description = State()
    waiting_for_duration = State()
    waiting_for_capacity = State()
    waiting_for_waitlist = State()


class ClassTypeEditStates(StatesGroup):
    waiting_for_value = State()


def select_class_types(
    class_types: list[ClassType],
    *,
    query: str = "",
    sort: str = "default",
) -> list[ClassType]:
    selected = filter_items(class_types, query, [lambda c: c.name, lambda c: c.description])
    if sort == "name":
        return sort_items(selected, lambda c: c.name)
    if sort == "duration":
        return sort_items(selected, lambda c: c.duration_default)
    return sort_items(selected, lambda c: c.created_at, descending=True)


def _minutes(value: int | None) -> str:
    return f"{value} min" if value else "—"


@register_list(CLASS_TYPE)
async def render_class_types(
    box: Box,
    state: FSMContext,
    page: int,
    status: str,
    sort: str,
) -> tuple[str, InlineKeyboardMarkup]:
    supabase = get_supabase_client()
    class_types = await supabase.list_class_types(box.id, active_only=False)
    query = await get_query(state, CLASS_TYPE)

    selected = select_class_types(class_types, query=query, sort=sort)
    current = paginate(selected, page, get_settings().page_size)

    active = sum(1 for c in class_types if c.active)
    lines = [
        MessageTemplates.header(f"Tipos de aula · {esc(box.name)}", "🏷"),
        f"Ativos: {active} | Inativos: {len(class_types) - active}",
        "",
    ]
    if query:
        lines.append(f"🔍 Pesquisa: <b>{esc(query)}</b>")
    if not current.items:
        lines.append("Nenhum tipo de aula encontrado.")
    for idx, class_type in enumerate(current.items, start=current.offset + 1):
        icon = "🟢" if class_type.active else "⚪️"
        lines.append(f"{idx}. {icon} {esc(class_type.name)} — {_minutes(class_type.duration_default)}")

    next_sort = SORT_CYCLE[(SORT_CYCLE.index(sort) + 1) % len(SORT_CYCLE)] if sort in SORT_CYCLE else "default"
    markup = Keyboards.entity_list(
        CLASS_TYPE,
        current,
        [(c.id, c.name) for c in current.items],
        sort=sort,
        sort_label=SORT_LABELS[next_sort],
        next_sort=next_sort,
        has_query=bool(query),
    )
    return "\n".join(lines), markup


def class_type_card(class_type: ClassType) -> str:
    lines = [
        f"<b>🏷 {esc(class_type.name)}</b>",
        f"⏱ Duração: <b>{_minutes(class_type.duration_default)}</b>",
        f"👥 Capacidade: <b>{esc(class_type.capacity_default)}</b> | "
        f"Lista de espera: <b>{esc(class_type.waitlist_default)}</b>",
        f"🎨 Cor: <code>{esc(class_type.color)}</code>",
        f"Ativo: <b>{MessageTemplates.yes_no(class_type.active)}</b>",
    ]
    if class_type.description:
        lines.extend(["", esc(class_type.description)])
    return "\n".join(lines)


@router.message(Command("classes"))
async def cmd_classes(message: Message, state: FSMContext, box: Box | None = None) -> None:
    """
    List the class types of the selected box, inactive ones included.
    """

    await render_list(message, state, box, CLASS_TYPE)


@router.callback_query(MenuCallback.filter(F.section == "classes"))
async def menu_classes(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await render_list(callback, state, box, CLASS_TYPE)


@router.callback_query(ListCallback.filter(F.entity == CLASS_TYPE))
async def class_types_page(
    callback: CallbackQuery,
    callback_data: ListCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await render_list(callback, state, box, CLASS_TYPE, page=callback_data.page, sort=callback_data.sort)


async def _show_class_type(
    target: Message | CallbackQuery,
    box: Box | None,
    class_type_id: str,
    *,
    answered: bool = False,
) -> None:
    if box is None:
        await show(target, NO_BOX_TEXT, answered=answered)
        return
    supabase = get_supabase_client()
    try:
        class_type = await supabase.get_class_type(box.id, class_type_id)
    except Exception as exc:
        logger.exception("Error loading class type %s: %s", class_type_id, exc)
        await show(target, error_text("não foi possível carregar o tipo de aula.", exc), answered=answered)
        return
    await show(
        target,
        class_type_card(class_type),
        Keyboards.entity_actions(CLASS_TYPE, class_type.id),
        answered=answered,
    )


@router.callback_query(ItemCallback.filter((F.entity == CLASS_TYPE) & (F.action == "view")))
async def view_class_type(
    callback: CallbackQuery,
    callback_data: ItemCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await state.set_state(None)
    await _show_class_type(callback, box, callback_data.item_id)


@router.callback_query(ItemCallback.filter((F.entity == CLASS_TYPE) & (F.action == "del")))
async def ask_delete_class_type(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        MessageTemplates.warning(
            "apagar este tipo de aula? Se estiver em planos ou pacotes, desativa-o em vez de apagar."
        ),
        Keyboards.confirm_delete(CLASS_TYPE, callback_data.item_id),
    )


@router.callback_query(ItemCallback.filter((F.entity == CLASS_TYPE) & (F.action == "del_ok")))
async def delete_class_type(
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
        await supabase.delete_class_type(box.id, callback_data.item_id)
    except Exception as exc:
        logger.exception("Failed to delete class type %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao apagar. O tipo de aula pode estar em uso.", alert=True)
        return

    await toast(callback, "✅ Tipo de aula apagado.")
    await render_list(callback, state, box, CLASS_TYPE, answered=True)


# ----------------------------------------------------------------------
# Create dialog
# ----------------------------------------------------------------------


async def _start_create(message: Message, state: FSMContext) -> None:
    await state.set_state(ClassTypeFormStates.waiting_for_name)
    await message.answer(
        "Vamos criar um tipo de aula.\n"
        "Envia o <b>nome</b> (ex.: WOD, Olympic, Mobility).\n\n"
        "Para cancelar escreve /cancel."
    )


@router.message(Command("add_class"))
async def cmd_add_class(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await message.answer(NO_BOX_TEXT)
        return
    await _start_create(message, state)


@router.callback_query(ItemCallback.filter((F.entity == CLASS_TYPE) & (F.action == "new")))
async def new_class_type(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await callback.answer()
    if callback.message is None:
        return
    if box is None:
        await callback.message.answer(NO_BOX_TEXT)
        return
    await _start_create(callback.message, state)


@router.message(ClassTypeFormStates.waiting_for_name, F.text)
async def class_type_name(message: Message, state: FSMContext) -> None:
    name = message.text.strip()
    if not name:
        await message.answer("O nome não pode ficar vazio.")
        return
    await state.update_data(name=name)
    await state.set_state(ClassTypeFormStates.waiting_for_description)
    await message.answer("Envia uma <b>descrição</b>, ou - para deixar em branco.")


@router.message(ClassTypeFormStates.waiting_for_description, F.text)
async def class_type_description(message: Message, state: FSMContext) -> None:
    await state.update_data(description=None if is_skip(message.text) else message.text.strip())
    await state.set_state(ClassTypeFormStates.waiting_for_duration)
    await message.answer("Qual é a <b>duração</b> habitual, em minutos? (ex.: 60)")


@router.message(ClassTypeFormStates.waiting_for_duration, F.text)
async def class_type_duration(message: Message, state: FSMContext) -> None:
    minutes = parse_positive_int(message.text)
    if minutes is None:
        await message.answer("Envia um número inteiro de minutos maior que zero.")
        return
    await state.update_data(duration_default=minutes)
    await state.set_state(ClassTypeFormStates.waiting_for_capacity)
    await message.answer("Quantos atletas cabem numa aula? Envia um número, ou - para não definir.")


@router.message(ClassTypeFormStates.waiting_for_capacity, F.text)
async def class_type_capacity(message: Message, state: FSMContext) -> None:
    ok, capacity = parse_optional_int(message.text)
    if not ok:
        await message.answer("Envia um número inteiro, ou - para não definir.")
        return
    await state.update_data(capacity_default=capacity)
    await state.set_state(ClassTypeFormStates.waiting_for_waitlist)
    await message.answer("Quantos lugares na <b>lista de espera</b>? Envia um número, ou - para não definir.")


@router.message(ClassTypeFormStates.waiting_for_waitlist, F.text)
async def class_type_waitlist(message: Message, state: FSMContext, box: Box | None = None) -> None:
    ok, waitlist = parse_optional_int(message.text)
    if not ok:
        await message.answer("Envia um número inteiro, ou - para não definir.")
        return
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return

    data = await state.get_data()
    supabase = get_supabase_client()
    try:
        class_type = await supabase.create_class_type(
            box_id=box.id,
            name=data["name"],
            description=data.get("description"),
            duration_default=data["duration_default"],
            capacity_default=data.get("capacity_default"),
            waitlist_default=waitlist,
        )
    except Exception as exc:
        logger.exception("Failed to create class type: %s", exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível criar o tipo de aula.", exc))
        return

    await state.set_state(None)
    await message.answer(MessageTemplates.success(f"Tipo de aula {esc(class_type.name)} criado."))
    await message.answer(
        class_type_card(class_type),
        reply_markup=Keyboards.entity_actions(CLASS_TYPE, class_type.id),
    )


# ----------------------------------------------------------------------
# Edit dialog
# ----------------------------------------------------------------------


@router.callback_query(ItemCallback.filter((F.entity == CLASS_TYPE) & (F.action == "edit")))
async def edit_class_type(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        "✏️ O que queres alterar?",
        Keyboards.field_menu(CLASS_TYPE, callback_data.item_id, EDITABLE_FIELDS),
    )


@router.callback_query(FieldCallback.filter((F.entity == CLASS_TYPE) & (F.field == "active")))
async def toggle_class_type_active(
    callback: CallbackQuery,
    callback_data: FieldCallback,
    box: Box | None = None,
) -> None:
    if box is None:
        await show(callback, NO_BOX_TEXT)
        return

    supabase = get_supabase_client()
    try:
        class_type = await supabase.get_class_type(box.id, callback_data.item_id)
        await supabase.update_class_type(box.id, class_type.id, active=not class_type.active)
    except Exception as exc:
        logger.exception("Failed to toggle class type %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao atualizar o tipo de aula.", alert=True)
        return

    await toast(callback, "✅ Tipo de aula atualizado.")
    await _show_class_type(callback, box, callback_data.item_id, answered=True)


@router.callback_query(FieldCallback.filter((F.entity == CLASS_TYPE) & (F.field != "active")))
async def edit_class_type_field(callback: CallbackQuery, callback_data: FieldCallback, state: FSMContext) -> None:
    await state.set_state(ClassTypeEditStates.waiting_for_value)
    await state.update_data(edit_id=callback_data.item_id, edit_field=callback_data.field)
    label = dict(EDITABLE_FIELDS)[callback_data.field]
    hint = "\nEnvia - para limpar." if callback_data.field in OPTIONAL_NUMBER_COLUMNS else ""
    if callback_data.field == "color":
        hint = "\nEnvia a cor em hexadecimal, por exemplo #1e90ff."
    await callback.answer()
    if callback.message is not None:
        await callback.message.answer(
            f"Envia o novo valor para <b>{label}</b>.{hint}\n\nPara cancelar escreve /cancel."
        )


def parse_class_type_field(field: str, raw: str) -> tuple[str, object] | str:
    """
    Validate an edited value.

    Returns (column, value) or an error message.
    """

    if field in OPTIONAL_NUMBER_COLUMNS:
        ok, number = parse_optional_int(raw)
        if not ok:
            return "Envia um número inteiro, ou - para limpar."
        return OPTIONAL_NUMBER_COLUMNS[field], number
    if field == "duration":
        minutes = parse_positive_int(raw)
        if minutes is None:
            return "Envia um número inteiro de minutos maior que zero."
        return "duration_default", minutes
    if field == "color":
        color = parse_color(raw)
        return ("color", color) if color else "Cor inválida. Usa o formato #1e90ff."
    if field == "desc":
        return "description", None if is_skip(raw) else raw.strip()
    if not raw.strip():
        return "O nome não pode ficar vazio."
    return "name", raw.strip()


@router.message(ClassTypeEditStates.waiting_for_value, F.text)
async def class_type_field_value(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return
    data = await state.get_data()
    parsed = parse_class_type_field(data.get("edit_field", "name"), message.text)
    if isinstance(parsed, str):
        await message.answer(parsed)
        return

    column, value = parsed
    supabase = get_supabase_client()
    try:
        class_type = await supabase.update_class_type(box.id, data["edit_id"], **{column: value})
    except Exception as exc:
        logger.exception("Failed to update class type %s: %s", data.get("edit_id"), exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível atualizar o tipo de aula.", exc))
        return

    await state.set_state(None)
    await message.answer(MessageTemplates.success("Tipo de aula atualizado."))
    await message.answer(
        class_type_card(class_type),
        reply_markup=Keyboards.entity_actions(CLASS_TYPE, class_type.id),
    )
