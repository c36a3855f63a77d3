from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message

from app.bot.callbacks import INSURANCE, FieldCallback, ItemCallback, ListCallback, MenuCallback, ToggleCallback
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
from app.db import get_supabase_client
from app.db.models import Box, Insurance, InsurancePeriod

router = Router(name="insurances")
logger = configure_logging("insurances")

PERIOD_LABELS = {
    InsurancePeriod.MONTHLY: "Mensal",
    InsurancePeriod.QUARTERLY: "Trimestral",
    InsurancePeriod.SEMESTER: "Semestral",
    InsurancePeriod.ANNUAL: "Anual",
}
# Shortest period first
PERIOD_ORDER = list(PERIOD_LABELS)

STATUS_LABELS = {"all": "Todos", "active": "Ativos", "inactive": "Inativos"}
STATUS_CYCLE = list(STATUS_LABELS)

SORT_LABELS = {"default": "Nome", "period": "Período"}
SORT_CYCLE = list(SORT_LABELS)

# The period cannot change once the product exists
EDITABLE_FIELDS = [
    ("name", "Nome"),
    ("active", "Ativar / desativar"),
]


class InsuranceFormStates(StatesGroup):
    waiting_for_name = State()
    waiting_for_period = State()


class InsuranceEditStates(StatesGroup):
    waiting_for_value = State()


def select_insurances(
    insurances: list[Insurance],
    *,
    query: str = "",
    status: str = "all",
    sort: str = "default",
) -> list[Insurance]:
    selected = filter_items(insurances, query, [lambda i: i.name])
    if status != "all":
        selected = [i for i in selected if i.is_active == (status == "active")]
    if sort == "period":
        return sort_items(selected, lambda i: PERIOD_ORDER.index(i.period))
    return sort_items(selected, lambda i: i.name)


@register_list(INSURANCE)
async def render_insurances(
    box: Box,
    state: FSMContext,
    page: int,
    status: str,
    sort: str,
) -> tuple[str, InlineKeyboardMarkup]:
    supabase = get_supabase_client()
    insurances = await supabase.list_insurances(box.id)
    query = await get_query(state, INSURANCE)

    selected = select_insurances(insurances, query=query, status=status, sort=sort)
    current = paginate(selected, page, get_settings().page_size)

    active = sum(1 for i in insurances if i.is_active)
    lines = [
        MessageTemplates.header(f"Seguros · {esc(box.name)}", "🛡"),
        f"Ativos: {active} | Inativos: {len(insurances) - active}",
        "",
    ]
    if query:
        lines.append(f"🔍 Pesquisa: <b>{esc(query)}</b>")
    if status != "all":
        lines.append(f"🔎 Estado: <b>{STATUS_LABELS.get(status, status)}</b>")
    if not current.items:
        lines.append("Nenhum seguro encontrado.")
    for idx, insurance in enumerate(current.items, start=current.offset + 1):
        icon = "🟢" if insurance.is_active else "⚪️"
        lines.append(f"{idx}. {icon} {esc(insurance.name)} — {PERIOD_LABELS[insurance.period]}")

    next_sort = SORT_CYCLE[(SORT_CYCLE.index(sort) + 1) % len(SORT_CYCLE)] if sort in SORT_CYCLE else "default"
    next_status = STATUS_CYCLE[(STATUS_CYCLE.index(status) + 1) % len(STATUS_CYCLE)] if status in STATUS_CYCLE else "all"
    markup = Keyboards.entity_list(
        INSURANCE,
        current,
        [(i.id, i.name) for i in current.items],
        status=status,
        sort=sort,
        sort_label=SORT_LABELS[next_sort],
        next_sort=next_sort,
        status_label=STATUS_LABELS.get(status, status),
        next_status=next_status,
        has_query=bool(query),
    )
    return "\n".join(lines), markup


def insurance_card(insurance: Insurance) -> str:
    return "\n".join(
        [
            f"<b>🛡 {esc(insurance.name)}</b>",
            f"📅 Período: <b>{PERIOD_LABELS[insurance.period]}</b>",
            f"Ativo: <b>{MessageTemplates.yes_no(insurance.is_active)}</b>",
        ]
    )


@router.message(Command("insurances"))
async def cmd_insurances(message: Message, state: FSMContext, box: Box | None = None) -> None:
    await render_list(message, state, box, INSURANCE)


@router.callback_query(MenuCallback.filter(F.section == "insurances"))
async def menu_insurances(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await render_list(callback, state, box, INSURANCE)


@router.callback_query(ListCallback.filter(F.entity == INSURANCE))
async def insurances_page(
    callback: CallbackQuery,
    callback_data: ListCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await render_list(
        callback,
        state,
        box,
        INSURANCE,
        page=callback_data.page,
        status=callback_data.status,
        sort=callback_data.sort,
    )


async def _show_insurance(
    target: Message | CallbackQuery,
    box: Box | None,
    insurance_id: str,
    *,
    answered: bool = False,
) -> None:
    if box is None:
        await show(target, NO_BOX_TEXT, answered=answered)
        return
    supabase = get_supabase_client()
    try:
        insurance = await supabase.get_insurance(box.id, insurance_id)
    except Exception as exc:
        logger.exception("Error loading insurance %s: %s", insurance_id, exc)
        await show(target, error_text("não foi possível carregar o seguro.", exc), answered=answered)
        return
    await show(
        target,
        insurance_card(insurance),
        Keyboards.entity_actions(INSURANCE, insurance.id),
        answered=answered,
    )


@router.callback_query(ItemCallback.filter((F.entity == INSURANCE) & (F.action == "view")))
async def view_insurance(
    callback: CallbackQuery,
    callback_data: ItemCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await state.set_state(None)
    await _show_insurance(callback, box, callback_data.item_id)


@router.callback_query(ItemCallback.filter((F.entity == INSURANCE) & (F.action == "del")))
async def ask_delete_insurance(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        MessageTemplates.warning("apagar este seguro?"),
        Keyboards.confirm_delete(INSURANCE, callback_data.item_id),
    )


@router.callback_query(ItemCallback.filter((F.entity == INSURANCE) & (F.action == "del_ok")))
async def delete_insurance(
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
        await supabase.delete_insurance(box.id, callback_data.item_id)
    except Exception as exc:
        logger.exception("Failed to delete insurance %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao apagar o seguro.", alert=True)
        return

    await toast(callback, "✅ Seguro apagado.")
    await render_list(callback, state, box, INSURANCE, answered=True)


# ----------------------------------------------------------------------
# Create dialog
# ----------------------------------------------------------------------


async def _start_create(message: Message, state: FSMContext) -> None:
    await state.set_state(InsuranceFormStates.waiting_for_name)
    await message.answer(
        "Vamos criar um seguro.\n"
        "Envia o <b>nome</b>.\n\n"
        "Para cancelar escreve /cancel."
    )


@router.message(Command("add_insurance"))
async def cmd_add_insurance(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await message.answer(NO_BOX_TEXT)
        return
    await _start_create(message, state)


@router.callback_query(ItemCallback.filter((F.entity == INSURANCE) & (F.action == "new")))
async def new_insurance(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await callback.answer()
    if callback.message is None:
        return
    if box is None:
        await callback.message.answer(NO_BOX_TEXT)
        return
    await _start_create(callback.message, state)


@router.message(InsuranceFormStates.waiting_for_name, F.text)
async def insurance_name(message: Message, state: FSMContext) -> None:
    name = message.text.strip()
    if not name:
        await message.answer("O nome não pode ficar vazio.")
        return
    await state.update_data(name=name)
    await state.set_state(InsuranceFormStates.waiting_for_period)
    await message.answer(
        "Escolhe o <b>período</b>. Não pode ser alterado depois.",
        reply_markup=Keyboards.choices([(p.value, label) for p, label in PERIOD_LABELS.items()]),
    )


@router.callback_query(InsuranceFormStates.waiting_for_period, ToggleCallback.filter())
async def insurance_period(
    callback: CallbackQuery,
    callback_data: ToggleCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    if box is None:
        await state.set_state(None)
        await show(callback, NO_BOX_TEXT)
        return

    data = await state.get_data()
    supabase = get_supabase_client()
    try:
        insurance = await supabase.create_insurance(
            box_id=box.id,
            name=data["name"],
            period=InsurancePeriod(callback_data.value),
        )
    except Exception as exc:
        logger.exception("Failed to create insurance: %s", exc)
        await state.set_state(None)
        await show(callback, error_text("não foi possível criar o seguro.", exc))
        return

    await state.set_state(None)
    await toast(callback, "✅ Seguro criado.")
    await show(callback, insurance_card(insurance), Keyboards.entity_actions(INSURANCE, insurance.id), answered=True)


# ----------------------------------------------------------------------
# Edit dialog
# ----------------------------------------------------------------------


@router.callback_query(ItemCallback.filter((F.entity == INSURANCE) & (F.action == "edit")))
async def edit_insurance(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        "✏️ O que queres alterar?",
        Keyboards.field_menu(INSURANCE, callback_data.item_id, EDITABLE_FIELDS),
    )


@router.callback_query(FieldCallback.filter((F.entity == INSURANCE) & (F.field == "active")))
async def toggle_insurance_active(
    callback: CallbackQuery,
    callback_data: FieldCallback,
    box: Box | None = None,
) -> None:
    if box is None:
        await show(callback, NO_BOX_TEXT)
        return

    supabase = get_supabase_client()
    try:
        insurance = await supabase.get_insurance(box.id, callback_data.item_id)
        await supabase.update_insurance(box.id, insurance.id, is_active=not insurance.is_active)
    except Exception as exc:
        logger.exception("Failed to toggle insurance %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao atualizar o seguro.", alert=True)
        return

    await toast(callback, "✅ Seguro atualizado.")
    await _show_insurance(callback, box, callback_data.item_id, answered=True)


@router.callback_query(FieldCallback.filter((F.entity == INSURANCE) & (F.field == "name")))
async def edit_insurance_name(callback: CallbackQuery, callback_data: FieldCallback, state: FSMContext) -> None:
    await state.set_state(InsuranceEditStates.waiting_for_value)
    await state.update_data(edit_id=callback_data.item_id)
    await callback.answer()
    if callback.message is not None:
        await callback.message.answer("Envia o novo <b>nome</b>.\n\nPara cancelar escreve /cancel.")


@router.message(InsuranceEditStates.waiting_for_value, F.text)
async def insurance_name_value(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return
    name = message.text.strip()
    if not name:
        await message.answer("O nome não pode ficar vazio.")
        return

    data = await state.get_data()
    supabase = get_supabase_client()
    try:
        insurance = await supabase.update_insurance(box.id, data["edit_id"], name=name)
    except Exception as exc:
        logger.exception("Failed to update insurance %s: %s", data.get("edit_id"), exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível atualizar o seguro.", exc))
        return

    await state.set_state(None)
    await message.answer(MessageTemplates.success("Seguro atualizado."))
    await message.answer(
        insurance_card(insurance),
        reply_markup=Keyboards.entity_actions(INSURANCE, insurance.id),
    )
