from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message

from app.bot.callbacks import STAFF, FieldCallback, ItemCallback, ListCallback, MenuCallback, ToggleCallback
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
from app.core.validation import is_skip, normalize_email, normalize_phone
from app.db import get_supabase_client
from app.db.models import Box, Staff, StaffRole

router = Router(name="staff")
logger = configure_logging("staff")

ROLE_LABELS = {
    StaffRole.SUPER_ADMIN: "Super admin",
    StaffRole.ADMIN: "Administrador",
    StaffRole.COACH: "Treinador",
    StaffRole.RECEPTIONIST: "Rececionista",
}
# super_admin is granted outside the bot
ASSIGNABLE_ROLES = [StaffRole.ADMIN, StaffRole.COACH, StaffRole.RECEPTIONIST]

SORT_LABELS = {"default": "Nome", "recent": "Mais recentes"}

EDITABLE_FIELDS = [
    ("name", "Nome"),
    ("email", "Email"),
    ("phone", "Telemóvel"),
    ("roles", "Funções"),
    ("active", "Ativar / desativar"),
]


class StaffFormStates(StatesGroup):
    waiting_for_name = State()
    waiting_for_email = State()
    waiting_for_phone = State()
    waiting_for_roles = State()


class StaffEditStates(StatesGroup):
    waiting_for_value = State()
    waiting_for_roles = State()


def _roles_text(roles: list[StaffRole]) -> str:
    return ", ".join(ROLE_LABELS[role] for role in roles) or "—"


def _role_options() -> list[tuple[str, str]]:
    return [(role.value, ROLE_LABELS[role]) for role in ASSIGNABLE_ROLES]


def select_staff(staff: list[Staff], *, query: str = "", sort: str = "default") -> list[Staff]:
    selected = filter_items(
        staff,
        query,
        [
            lambda s: s.name,
            lambda s: s.email,
            lambda s: [role.value for role in s.roles] + [ROLE_LABELS[role] for role in s.roles],
        ],
    )
    if sort == "recent":
        return sort_items(selected, lambda s: s.start_date, descending=True)
    return sort_items(selected, lambda s: s.name)


@register_list(STAFF)
async def render_staff(
    box: Box,
    state: FSMContext,
    page: int,
    status: str,
    sort: str,
) -> tuple[str, InlineKeyboardMarkup]:
    supabase = get_supabase_client()
    staff = await supabase.list_staff(box.id)
    query = await get_query(state, STAFF)

    selected = select_staff(staff, query=query, sort=sort)
    current = paginate(selected, page, get_settings().page_size)

    def count(role: StaffRole) -> int:
        return sum(1 for s in staff if role in s.roles)

    lines = [
        MessageTemplates.header(f"Staff · {esc(box.name)}", "🧑‍🏫"),
        f"Treinadores: {count(StaffRole.COACH)} | Administradores: {count(StaffRole.ADMIN)} | "
        f"Rececionistas: {count(StaffRole.RECEPTIONIST)}",
        "",
    ]
    if query:
        lines.append(f"🔍 Pesquisa: <b>{esc(query)}</b>")
    if not current.items:
        lines.append("Nenhum elemento do staff encontrado.")
    for idx, person in enumerate(current.items, start=current.offset + 1):
        icon = "🟢" if person.is_active() else "⚪️"
        lines.append(f"{idx}. {icon} {esc(person.name)} — {_roles_text(person.roles)}")

    next_sort = "recent" if sort == "default" else "default"
    markup = Keyboards.entity_list(
        STAFF,
        current,
        [(s.user_id, s.name) for s in current.items],
        sort=sort,
        sort_label=SORT_LABELS[next_sort],
        next_sort=next_sort,
        has_query=bool(query),
    )
    return "\n".join(lines), markup


def staff_card(person: Staff) -> str:
    lines = [
        f"<b>🧑‍🏫 {esc(person.name)}</b>",
        f"📧 {esc(person.email)}",
        f"📞 {esc(person.phone)}",
        f"🎽 Funções: {_roles_text(person.roles)}",
        f"📅 Desde: {MessageTemplates.format_date(person.start_date)}",
        f"Ativo: <b>{MessageTemplates.yes_no(person.is_active())}</b>",
    ]
    if person.end_date is not None:
        lines.append(f"🏁 Até: {MessageTemplates.format_date(person.end_date)}")
    return "\n".join(lines)


@router.message(Command("staff"))
async def cmd_staff(message: Message, state: FSMContext, box: Box | None = None) -> None:
    """
    List the staff of the selected box.
    """

    await render_list(message, state, box, STAFF)


@router.callback_query(MenuCallback.filter(F.section == "staff"))
async def menu_staff(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await render_list(callback, state, box, STAFF)


@router.callback_query(ListCallback.filter(F.entity == STAFF))
async def staff_page(
    callback: CallbackQuery,
    callback_data: ListCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await render_list(callback, state, box, STAFF, page=callback_data.page, sort=callback_data.sort)


async def _show_staff(target: Message | CallbackQuery, box: Box | None, user_id: str) -> None:
    if box is None:
        await show(target, NO_BOX_TEXT)
        return
    supabase = get_supabase_client()
    try:
        person = await supabase.get_staff(box.id, user_id)
    except Exception as exc:
        logger.exception("Error loading staff %s: %s", user_id, exc)
        await show(target, error_text("não foi possível carregar o staff.", exc))
        return
    await show(target, staff_card(person), Keyboards.entity_actions(STAFF, person.user_id))


@router.callback_query(ItemCallback.filter((F.entity == STAFF) & (F.action == "view")))
async def view_staff(
    callback: CallbackQuery,
    callback_data: ItemCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await state.set_state(None)
    await _show_staff(callback, box, callback_data.item_id)


@router.callback_query(ItemCallback.filter((F.entity == STAFF) & (F.action == "del")))
async def ask_delete_staff(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        MessageTemplates.warning("remover esta pessoa do staff da box? Todas as funções são apagadas."),
        Keyboards.confirm_delete(STAFF, callback_data.item_id),
    )


@router.callback_query(ItemCallback.filter((F.entity == STAFF) & (F.action == "del_ok")))
async def delete_staff(
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
        await supabase.delete_staff(box.id, callback_data.item_id)
    except Exception as exc:
        logger.exception("Failed to delete staff %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao remover do staff.", alert=True)
        return

    await toast(callback, "✅ Removido do staff.")
    await render_list(callback, state, box, STAFF, answered=True)


# ----------------------------------------------------------------------
# Create dialog
# ----------------------------------------------------------------------


async def _start_create(message: Message, state: FSMContext) -> None:
    await state.set_state(StaffFormStates.waiting_for_name)
    await message.answer(
        "Vamos adicionar alguém ao staff.\n"
        "Envia o <b>nome completo</b>.\n\n"
        "Para cancelar escreve /cancel."
    )


@router.message(Command("add_staff"))
async def cmd_add_staff(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await message.answer(NO_BOX_TEXT)
        return
    await _start_create(message, state)


@router.callback_query(ItemCallback.filter((F.entity == STAFF) & (F.action == "new")))
async def new_staff(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await callback.answer()
    if callback.message is None:
        return
    if box is None:
        await callback.message.answer(NO_BOX_TEXT)
        return
    await _start_create(callback.message, state)


@router.message(StaffFormStates.waiting_for_name, F.text)
async def staff_name(message: Message, state: FSMContext) -> None:
    name = message.text.strip()
    if not name:
        await message.answer("O nome não pode ficar vazio.")
        return
    await state.update_data(name=name)
    await state.set_state(StaffFormStates.waiting_for_email)
    await message.answer("Agora envia o <b>email</b>.")


@router.message(StaffFormStates.waiting_for_email, F.text)
async def staff_email(message: Message, state: FSMContext) -> None:
    email = normalize_email(message.text)
    if email is None:
        await message.answer("O email não é válido. Tenta outra vez.")
        return

    await state.update_data(email=email)
    await state.set_state(StaffFormStates.waiting_for_phone)
    await message.answer("Envia o <b>telemóvel</b>, ou - para deixar em branco.")


@router.message(StaffFormStates.waiting_for_phone, F.text)
async def staff_phone(message: Message, state: FSMContext) -> None:
    phone = None
    if not is_skip(message.text):
        phone = normalize_phone(message.text)
        if phone is None:
            await message.answer("O número parece inválido. Tenta no formato +351912345678.")
            return

    # New staff start as coaches
    roles = [StaffRole.COACH.value]
    await state.update_data(phone=phone, roles=roles)
    await state.set_state(StaffFormStates.waiting_for_roles)
    await message.answer(
        "Escolhe as <b>funções</b> e carrega em Concluído.",
        reply_markup=Keyboards.toggles(_role_options(), roles),
    )


def toggle_value(selected: list[str], value: str) -> list[str]:
    if value in selected:
        return [item for item in selected if item != value]
    return [*selected, value]


@router.callback_query(StaffFormStates.waiting_for_roles, ToggleCallback.filter(F.value != "done"))
@router.callback_query(StaffEditStates.waiting_for_roles, ToggleCallback.filter(F.value != "done"))
async def toggle_role(callback: CallbackQuery, callback_data: ToggleCallback, state: FSMContext) -> None:
    data = await state.get_data()
    roles = toggle_value(data.get("roles", []), callback_data.value)
    await state.update_data(roles=roles)
    await callback.answer()
    if callback.message is not None:
        await callback.message.edit_reply_markup(reply_markup=Keyboards.toggles(_role_options(), roles))


@router.callback_query(StaffFormStates.waiting_for_roles, ToggleCallback.filter(F.value == "done"))
async def finish_create_staff(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    data = await state.get_data()
    roles = [StaffRole(value) for value in data.get("roles", [])]
    if not roles:
        await toast(callback, "Escolhe pelo menos uma função.", alert=True)
        return
    if box is None:
        await state.set_state(None)
        await show(callback, NO_BOX_TEXT)
        return

    supabase = get_supabase_client()
    try:
        person = await supabase.create_staff(
            box_id=box.id,
            name=data["name"],
            email=data["email"],
            phone=data.get("phone"),
            roles=roles,
        )
    except Exception as exc:
        logger.exception("Failed to create staff: %s", exc)
        await state.set_state(None)
        await show(callback, error_text("não foi possível guardar o staff.", exc))
        return

    await state.set_state(None)
    await toast(callback, "✅ Staff adicionado.")
    if callback.message is not None:
        await callback.message.edit_text(
            staff_card(person),
            reply_markup=Keyboards.entity_actions(STAFF, person.user_id),
        )


# ----------------------------------------------------------------------
# Edit dialog
# ----------------------------------------------------------------------


@router.callback_query(ItemCallback.filter((F.entity == STAFF) & (F.action == "edit")))
async def edit_staff(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        "✏️ O que queres alterar?",
        Keyboards.field_menu(STAFF, callback_data.item_id, EDITABLE_FIELDS),
    )


@router.callback_query(FieldCallback.filter((F.entity == STAFF) & (F.field == "active")))
async def toggle_staff_active(
    callback: CallbackQuery,
    callback_data: FieldCallback,
    box: Box | None = None,
) -> None:
    if box is None:
        await show(callback, NO_BOX_TEXT)
        return

    supabase = get_supabase_client()
    try:
        person = await supabase.get_staff(box.id, callback_data.item_id)
        person = await supabase.update_staff(box.id, person.user_id, active=not person.is_active())
    except Exception as exc:
        logger.exception("Failed to toggle staff %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao atualizar o staff.", alert=True)
        return

    await toast(callback, "✅ Ativado." if person.is_active() else "✅ Desativado.")
    if callback.message is not None:
        await callback.message.edit_text(
            staff_card(person),
            reply_markup=Keyboards.entity_actions(STAFF, person.user_id),
        )


@router.callback_query(FieldCallback.filter((F.entity == STAFF) & (F.field == "roles")))
async def edit_staff_roles(
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
        person = await supabase.get_staff(box.id, callback_data.item_id)
    except Exception as exc:
        logger.exception("Error loading staff %s: %s", callback_data.item_id, exc)
        await show(callback, error_text("não foi possível carregar o staff.", exc))
        return

    roles = [role.value for role in person.roles]
    await state.set_state(StaffEditStates.waiting_for_roles)
    await state.update_data(edit_id=person.user_id, roles=roles)
    await show(
        callback,
        f"Funções de <b>{esc(person.name)}</b>:",
        Keyboards.toggles(_role_options(), roles),
    )


@router.callback_query(StaffEditStates.waiting_for_roles, ToggleCallback.filter(F.value == "done"))
async def finish_edit_roles(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    data = await state.get_data()
    roles = [StaffRole(value) for value in data.get("roles", [])]
    if not roles:
        await toast(callback, "Escolhe pelo menos uma função.", alert=True)
        return
    if box is None:
        await state.set_state(None)
        await show(callback, NO_BOX_TEXT)
        return

    supabase = get_supabase_client()
    try:
        person = await supabase.update_staff(box.id, data["edit_id"], roles=roles)
    except Exception as exc:
        logger.exception("Failed to update roles for %s: %s", data.get("edit_id"), exc)
        await state.set_state(None)
        await show(callback, error_text("não foi possível atualizar as funções.", exc))
        return

    await state.set_state(None)
    await toast(callback, "✅ Funções atualizadas.")
    if callback.message is not None:
        await callback.message.edit_text(
            staff_card(person),
            reply_markup=Keyboards.entity_actions(STAFF, person.user_id),
        )


@router.callback_query(FieldCallback.filter((F.entity == STAFF) & F.field.in_({"name", "email", "phone"})))
async def edit_staff_field(callback: CallbackQuery, callback_data: FieldCallback, state: FSMContext) -> None:
    await state.set_state(StaffEditStates.waiting_for_value)
    await state.update_data(edit_id=callback_data.item_id, edit_field=callback_data.field)
    label = dict(EDITABLE_FIELDS)[callback_data.field]
    await callback.answer()
    if callback.message is not None:
        await callback.message.answer(f"Envia o novo valor para <b>{label}</b>.\n\nPara cancelar escreve /cancel.")


@router.message(StaffEditStates.waiting_for_value, F.text)
async def staff_field_value(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return

    data = await state.get_data()
    field = data.get("edit_field")
    raw = message.text

    if field == "name":
        value = raw.strip() or None
        problem = "O nome não pode ficar vazio."
    elif field == "email":
        value = normalize_email(raw)
        problem = "O email não é válido."
    else:
        value = None if is_skip(raw) else normalize_phone(raw)
        problem = "O número parece inválido."
        if is_skip(raw):
            problem = ""

    if value is None and problem:
        await message.answer(problem)
        return

    supabase = get_supabase_client()
    try:
        person = await supabase.update_staff(box.id, data["edit_id"], **{field: value})
    except Exception as exc:
        logger.exception("Failed to update staff %s: %s", data.get("edit_id"), exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível atualizar o staff.", exc))
        return

    await state.set_state(None)
    await message.answer(MessageTemplates.success("Staff atualizado."))
    await message.answer(staff_card(person), reply_markup=Keyboards.entity_actions(STAFF, person.user_id))
