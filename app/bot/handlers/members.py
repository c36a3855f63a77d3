from __future__ import annotations

from datetime import date

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message

from app.bot.callbacks import MEMBER, FieldCallback, ItemCallback, ListCallback, MenuCallback
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
from app.core.validation import is_skip, normalize_email, normalize_phone, parse_date
from app.db import get_supabase_client
from app.db.models import Box, InsuranceState, Member, MembershipStatus

router = Router(name="members")
logger = configure_logging("members")

STATUS_LABELS = {
    "all": "Todos",
    MembershipStatus.ACTIVE.value: "Ativos",
    MembershipStatus.EXPIRED.value: "Expirados",
    MembershipStatus.INACTIVE.value: "Inativos",
}
STATUS_CYCLE = list(STATUS_LABELS)

SORT_LABELS = {"default": "Mais recentes", "name": "Nome"}

INSURANCE_LABELS = {
    InsuranceState.VALID: "válido",
    InsuranceState.EXPIRING_SOON: "a expirar",
    InsuranceState.EXPIRED: "expirado",
}

EDITABLE_FIELDS = [
    ("name", "Nome"),
    ("email", "Email"),
    ("phone", "Telemóvel"),
    ("insur", "Validade do seguro"),
    ("notes", "Notas"),
]


class MemberFormStates(StatesGroup):
    waiting_for_name = State()
    waiting_for_email = State()
    waiting_for_phone = State()
    waiting_for_insurance = State()
    waiting_for_emergency_contact = State()
    waiting_for_emergency_phone = State()
    waiting_for_notes = State()


class MemberEditStates(StatesGroup):
    waiting_for_value = State()


def _status_icon(status: MembershipStatus) -> str:
    return {
        MembershipStatus.ACTIVE: "🟢",
        MembershipStatus.EXPIRED: "🔴",
        MembershipStatus.INACTIVE: "🟡",
    }[status]


def select_members(
    members: list[Member],
    *,
    query: str = "",
    status: str = "all",
    sort: str = "default",
    today: date | None = None,
) -> list[Member]:
    """
    Search, status filter and sort, in that order.
    """

    selected = filter_items(members, query, [lambda m: m.name, lambda m: m.email, lambda m: m.phone])
    if status != "all":
        selected = [m for m in selected if m.membership_status(today).value == status]
    if sort == "name":
        return sort_items(selected, lambda m: m.name)
    return sort_items(selected, lambda m: m.joined_at, descending=True)


@register_list(MEMBER)
async def render_members(
    box: Box,
    state: FSMContext,
    page: int,
    status: str,
    sort: str,
) -> tuple[str, InlineKeyboardMarkup]:
    supabase = get_supabase_client()
    members = await supabase.list_members(box.id)
    stats = supabase.member_stats(members)
    query = await get_query(state, MEMBER)

    selected = select_members(members, query=query, status=status, sort=sort)
    current = paginate(selected, page, get_settings().page_size)

    lines = [
        MessageTemplates.header(f"Membros · {esc(box.name)}", "👥"),
        f"Total: {stats.total} | Ativos: {stats.active} | "
        f"Expirados: {stats.expired} | Inativos: {stats.inactive}",
        "",
    ]
    if query:
        lines.append(f"🔍 Pesquisa: <b>{esc(query)}</b>")
    if status != "all":
        lines.append(f"🔎 Estado: <b>{STATUS_LABELS.get(status, status)}</b>")

    if not current.items:
        lines.append("Nenhum membro encontrado.")
    for idx, member in enumerate(current.items, start=current.offset + 1):
        lines.append(f"{idx}. {_status_icon(member.membership_status())} {esc(member.name)} — {esc(member.email)}")

    next_status = STATUS_CYCLE[(STATUS_CYCLE.index(status) + 1) % len(STATUS_CYCLE)] if status in STATUS_CYCLE else "all"
    next_sort = "name" if sort == "default" else "default"
    markup = Keyboards.entity_list(
        MEMBER,
        current,
        [(m.id, f"{m.name}") for m in current.items],
        status=status,
        sort=sort,
        sort_label=SORT_LABELS[next_sort],
        next_sort=next_sort,
        status_label=STATUS_LABELS.get(status, status),
        next_status=next_status,
        has_query=bool(query),
    )
    return "\n".join(lines), markup


def member_card(member: Member) -> str:
    status = member.membership_status()
    lines = [
        f"<b>👤 {esc(member.name)}</b>",
        f"📧 {esc(member.email)}",
        f"📞 {esc(member.phone)}",
        f"📅 Inscrito: {MessageTemplates.format_date(member.joined_at)}",
        f"{_status_icon(status)} Estado: <b>{STATUS_LABELS[status.value]}</b>",
    ]

    current = member.active_membership
    if current is not None:
        lines.append(
            f"💳 Plano: {esc(current.plan_name or current.plan_id)} "
            f"({MessageTemplates.format_date(current.start_date)} → {MessageTemplates.format_date(current.end_date)})"
        )
        lines.append(f"💶 Pagamento: {current.payment_status.value}")

    insurance = member.insurance_state()
    if insurance is None:
        lines.append("🛡 Seguro: sem registo")
    else:
        lines.append(
            f"🛡 Seguro: {INSURANCE_LABELS[insurance]} até {MessageTemplates.format_date(member.insurance_until)}"
        )

    if member.notes:
        lines.extend(["", f"📝 {esc(member.notes)}"])
    return "\n".join(lines)


@router.message(Command("members"))
async def cmd_members(message: Message, state: FSMContext, box: Box | None = None) -> None:
    """
    List the members of the selected box.
    """

    await render_list(message, state, box, MEMBER)


@router.callback_query(MenuCallback.filter(F.section == "members"))
async def menu_members(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await render_list(callback, state, box, MEMBER)


@router.callback_query(ListCallback.filter(F.entity == MEMBER))
async def members_page(
    callback: CallbackQuery,
    callback_data: ListCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await render_list(
        callback,
        state,
        box,
        MEMBER,
        page=callback_data.page,
        status=callback_data.status,
        sort=callback_data.sort,
    )


async def _show_member(target: Message | CallbackQuery, box: Box | None, member_id: str) -> None:
    if box is None:
        await show(target, NO_BOX_TEXT)
        return
    supabase = get_supabase_client()
    try:
        member = await supabase.get_member(box.id, member_id)
    except Exception as exc:
        logger.exception("Error loading member %s: %s", member_id, exc)
        await show(target, error_text("não foi possível carregar o membro.", exc))
        return
    await show(target, member_card(member), Keyboards.entity_actions(MEMBER, member.id))


@router.callback_query(ItemCallback.filter((F.entity == MEMBER) & (F.action == "view")))
async def view_member(
    callback: CallbackQuery,
    callback_data: ItemCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await state.set_state(None)
    await _show_member(callback, box, callback_data.item_id)


@router.callback_query(ItemCallback.filter((F.entity == MEMBER) & (F.action == "del")))
async def ask_delete_member(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        MessageTemplates.warning("apagar este membro? Deixa de aparecer na lista da box."),
        Keyboards.confirm_delete(MEMBER, callback_data.item_id),
    )


@router.callback_query(ItemCallback.filter((F.entity == MEMBER) & (F.action == "del_ok")))
async def delete_member(
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
        await supabase.delete_member(box.id, callback_data.item_id)
    except Exception as exc:
        logger.exception("Failed to delete member %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao apagar o membro.", alert=True)
        return

    await toast(callback, "✅ Membro apagado.")
    await render_list(callback, state, box, MEMBER, answered=True)


# ----------------------------------------------------------------------
# Create dialog
# ----------------------------------------------------------------------


async def _start_create(message: Message, state: FSMContext) -> None:
    await state.set_state(MemberFormStates.waiting_for_name)
    await message.answer(
        "Vamos adicionar um membro.\n"
        "Envia o <b>nome completo</b>.\n\n"
        "Para cancelar escreve /cancel."
    )


@router.message(Command("add_member"))
async def cmd_add_member(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await message.answer(NO_BOX_TEXT)
        return
    await _start_create(message, state)


@router.callback_query(ItemCallback.filter((F.entity == MEMBER) & (F.action == "new")))
async def new_member(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await callback.answer()
    if callback.message is None:
        return
    if box is None:
        await callback.message.answer(NO_BOX_TEXT)
        return
    await _start_create(callback.message, state)


@router.message(MemberFormStates.waiting_for_name, F.text)
async def member_name(message: Message, state: FSMContext) -> None:
    name = message.text.strip()
    if not name:
        await message.answer("O nome não pode ficar vazio.")
        return
    await state.update_data(name=name)
    await state.set_state(MemberFormStates.waiting_for_email)
    await message.answer("Agora envia o <b>email</b>.")


@router.message(MemberFormStates.waiting_for_email, F.text)
async def member_email(message: Message, state: FSMContext) -> None:
    email = normalize_email(message.text)
    if email is None:
        await message.answer("O email não é válido. Tenta outra vez.")
        return

    await state.update_data(email=email)
    await state.set_state(MemberFormStates.waiting_for_phone)
    await message.answer(
        "Envia o <b>telemóvel</b> (ex.: +351 912 345 678).\n"
        "Envia - para deixar em branco."
    )


@router.message(MemberFormStates.waiting_for_phone, F.text)
async def member_phone(message: Message, state: FSMContext) -> None:
    phone = None
    if not is_skip(message.text):
        phone = normalize_phone(message.text)
        if phone is None:
            await message.answer("O número parece inválido. Tenta no formato +351912345678.")
            return

    await state.update_data(phone=phone)
    await state.set_state(MemberFormStates.waiting_for_insurance)
    await message.answer(
        "Até quando é válido o <b>seguro</b>? (AAAA-MM-DD ou DD/MM/AAAA)\n"
        "Envia - se não tiver seguro."
    )


@router.message(MemberFormStates.waiting_for_insurance, F.text)
async def member_insurance(message: Message, state: FSMContext) -> None:
    insurance_until = None
    if not is_skip(message.text):
        insurance_until = parse_date(message.text)
        if insurance_until is None:
            await message.answer("Data inválida. Usa AAAA-MM-DD ou DD/MM/AAAA.")
            return

    await state.update_data(insurance_until=insurance_until)
    await state.set_state(MemberFormStates.waiting_for_emergency_contact)
    await message.answer("Nome do <b>contacto de emergência</b>? Envia - para saltar.")


@router.message(MemberFormStates.waiting_for_emergency_contact, F.text)
async def member_emergency_contact(message: Message, state: FSMContext) -> None:
    await state.update_data(emergency_contact=None if is_skip(message.text) else message.text.strip())
    await state.set_state(MemberFormStates.waiting_for_emergency_phone)
    await message.answer("Telefone de emergência? Envia - para saltar.")


@router.message(MemberFormStates.waiting_for_emergency_phone, F.text)
async def member_emergency_phone(message: Message, state: FSMContext) -> None:
    phone = None
    if not is_skip(message.text):
        phone = normalize_phone(message.text)
        if phone is None:
            await message.answer("O número parece inválido. Tenta no formato +351912345678.")
            return

    await state.update_data(emergency_phone=phone)
    await state.set_state(MemberFormStates.waiting_for_notes)
    await message.answer("Alguma <b>nota</b>? Envia - para terminar sem notas.")


@router.message(MemberFormStates.waiting_for_notes, F.text)
async def member_notes(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return

    data = await state.get_data()
    notes = None if is_skip(message.text) else message.text.strip()

    supabase = get_supabase_client()
    try:
        member = await supabase.create_member(
            box_id=box.id,
            name=data["name"],
            email=data["email"],
            phone=data.get("phone"),
            insurance_until=data.get("insurance_until"),
            notes=notes,
            emergency_contact=data.get("emergency_contact"),
            emergency_phone=data.get("emergency_phone"),
        )
    except Exception as exc:
        logger.exception("Failed to create member: %s", exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível guardar o membro.", exc))
        return

    await state.set_state(None)
    await message.answer(MessageTemplates.success(f"Membro {esc(member.name)} adicionado."))
    await message.answer(member_card(member), reply_markup=Keyboards.entity_actions(MEMBER, member.id))


# ----------------------------------------------------------------------
# Edit dialog
# ----------------------------------------------------------------------


@router.callback_query(ItemCallback.filter((F.entity == MEMBER) & (F.action == "edit")))
async def edit_member(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        "✏️ O que queres alterar?",
        Keyboards.field_menu(MEMBER, callback_data.item_id, EDITABLE_FIELDS),
    )


@router.callback_query(FieldCallback.filter(F.entity == MEMBER))
async def edit_member_field(callback: CallbackQuery, callback_data: FieldCallback, state: FSMContext) -> None:
    await state.set_state(MemberEditStates.waiting_for_value)
    await state.update_data(edit_id=callback_data.item_id, edit_field=callback_data.field)
    label = dict(EDITABLE_FIELDS).get(callback_data.field, callback_data.field)
    await callback.answer()
    if callback.message is not None:
        hint = " Envia - para apagar." if callback_data.field in {"phone", "insur", "notes"} else ""
        await callback.message.answer(f"Envia o novo valor para <b>{label}</b>.{hint}\n\nPara cancelar escreve /cancel.")


def parse_member_field(field: str, raw: str) -> tuple[str, object] | str:
    """
    Turn user input into a (column, value) change, or return an error text.
    """

    if field == "name":
        value = raw.strip()
        return ("name", value) if value else "O nome não pode ficar vazio."
    if field == "email":
        email = normalize_email(raw)
        return ("email", email) if email else "O email não é válido."
    if field == "phone":
        if is_skip(raw):
            return ("phone", None)
        phone = normalize_phone(raw)
        return ("phone", phone) if phone else "O número parece inválido."
    if field == "insur":
        if is_skip(raw):
            return ("insurance_until", None)
        parsed = parse_date(raw)
        return ("insurance_until", parsed) if parsed else "Data inválida. Usa AAAA-MM-DD ou DD/MM/AAAA."
    if field == "notes":
        return ("notes", None if is_skip(raw) else raw.strip())
    return "Campo desconhecido."


@router.message(MemberEditStates.waiting_for_value, F.text)
async def member_field_value(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return
    data = await state.get_data()
    member_id = data.get("edit_id")
    parsed = parse_member_field(data.get("edit_field", ""), message.text)
    if isinstance(parsed, str):
        await message.answer(parsed)
        return

    column, value = parsed
    supabase = get_supabase_client()
    try:
        member = await supabase.update_member(box.id, member_id, **{column: value})
    except Exception as exc:
        logger.exception("Failed to update member %s: %s", member_id, exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível atualizar o membro.", exc))
        return

    await state.set_state(None)
    await message.answer(MessageTemplates.success("Membro atualizado."))
    await message.answer(member_card(member), reply_markup=Keyboards.entity_actions(MEMBER, member.id))
