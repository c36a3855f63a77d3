from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message

from app.bot.callbacks import PLAN, FieldCallback, ItemCallback, ListCallback, MenuCallback, ToggleCallback
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
from app.core.validation import is_skip, parse_optional_int, parse_price
from app.db import get_supabase_client
from app.db.models import Box, ClassLimit, ClassType, Plan

router = Router(name="plans")
logger = configure_logging("plans")

SORT_LABELS = {"default": "Mais recentes", "name": "Nome", "price": "Preço"}
SORT_CYCLE = list(SORT_LABELS)

EDITABLE_FIELDS = [
    ("name", "Nome"),
    ("desc", "Descrição"),
    ("price", "Preço"),
    ("limits", "Aulas incluídas e limites"),
    ("active", "Ativar / desativar"),
    ("public", "Público / privado"),
]


class PlanFormStates(StatesGroup):
    waiting_for_name = State()
    waiting_for_description = State()
    waiting_for_price = State()


class PlanLimitStates(StatesGroup):
    waiting_for_class_types = State()
    waiting_for_limit = State()


class PlanEditStates(StatesGroup):
    waiting_for_value = State()


def select_plans(plans: list[Plan], *, query: str = "", sort: str = "default") -> list[Plan]:
    selected = filter_items(plans, query, [lambda p: p.name, lambda p: p.description])
    if sort == "name":
        return sort_items(selected, lambda p: p.name)
    if sort == "price":
        return sort_items(selected, lambda p: p.price)
    return sort_items(selected, lambda p: p.created_at, descending=True)


def _limit_text(limit: ClassLimit) -> str:
    if limit.limit is None:
        return "ilimitado"
    return f"{limit.limit}x / {'semana' if limit.period_type == 'week' else limit.period_type}"


@register_list(PLAN)
async def render_plans(
    box: Box,
    state: FSMContext,
    page: int,
    status: str,
    sort: str,
) -> tuple[str, InlineKeyboardMarkup]:
    supabase = get_supabase_client()
    plans = await supabase.list_plans(box.id)
    query = await get_query(state, PLAN)

    selected = select_plans(plans, query=query, sort=sort)
    current = paginate(selected, page, get_settings().page_size)

    active = sum(1 for p in plans if p.is_active)
    lines = [
        MessageTemplates.header(f"Planos · {esc(box.name)}", "💳"),
        f"Ativos: {active} | Inativos: {len(plans) - active}",
        "",
    ]
    if query:
        lines.append(f"🔍 Pesquisa: <b>{esc(query)}</b>")
    if not current.items:
        lines.append("Nenhum plano encontrado.")
    for idx, plan in enumerate(current.items, start=current.offset + 1):
        icon = "🟢" if plan.is_active else "⚪️"
        lines.append(f"{idx}. {icon} {esc(plan.name)} — {plan.price} {box.currency}")

    next_sort = SORT_CYCLE[(SORT_CYCLE.index(sort) + 1) % len(SORT_CYCLE)] if sort in SORT_CYCLE else "default"
    markup = Keyboards.entity_list(
        PLAN,
        current,
        [(p.id, p.name) for p in current.items],
        sort=sort,
        sort_label=SORT_LABELS[next_sort],
        next_sort=next_sort,
        has_query=bool(query),
    )
    return "\n".join(lines), markup


def plan_card(plan: Plan, limits: list[ClassLimit], currency: str = "EUR") -> str:
    lines = [
        f"<b>💳 {esc(plan.name)}</b>",
        f"💶 Preço: <b>{plan.price} {currency}</b>",
        f"Ativo: <b>{MessageTemplates.yes_no(plan.is_active)}</b> | "
        f"Público: <b>{MessageTemplates.yes_no(plan.plans_public)}</b>",
    ]
    if plan.description:
        lines.extend(["", esc(plan.description)])

    included = [item for item in limits if item.included]
    lines.extend(["", "<b>Aulas incluídas</b>"])
    if not included:
        lines.append("  nenhuma")
    for item in included:
        lines.append(MessageTemplates.item(f"{esc(item.class_type.name)}: {_limit_text(item)}"))
    return "\n".join(lines)


@router.message(Command("plans"))
async def cmd_plans(message: Message, state: FSMContext, box: Box | None = None) -> None:
    """
    List the subscription plans of the selected box.
    """

    await render_list(message, state, box, PLAN)


@router.callback_query(MenuCallback.filter(F.section == "plans"))
async def menu_plans(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await render_list(callback, state, box, PLAN)


@router.callback_query(ListCallback.filter(F.entity == PLAN))
async def plans_page(
    callback: CallbackQuery,
    callback_data: ListCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await render_list(callback, state, box, PLAN, page=callback_data.page, sort=callback_data.sort)


async def _show_plan(
    target: Message | CallbackQuery,
    box: Box | None,
    plan_id: str,
    *,
    answered: bool = False,
) -> None:
    if box is None:
        await show(target, NO_BOX_TEXT, answered=answered)
        return
    supabase = get_supabase_client()
    try:
        plan, limits = await supabase.get_plan_with_limits(box.id, plan_id)
    except Exception as exc:
        logger.exception("Error loading plan %s: %s", plan_id, exc)
        await show(target, error_text("não foi possível carregar o plano.", exc), answered=answered)
        return
    await show(
        target,
        plan_card(plan, limits, box.currency),
        Keyboards.entity_actions(PLAN, plan.id),
        answered=answered,
    )


@router.callback_query(ItemCallback.filter((F.entity == PLAN) & (F.action == "view")))
async def view_plan(
    callback: CallbackQuery,
    callback_data: ItemCallback,
    state: FSMContext,
    box: Box | None = None,
) -> None:
    await state.set_state(None)
    await _show_plan(callback, box, callback_data.item_id)


@router.callback_query(ItemCallback.filter((F.entity == PLAN) & (F.action == "del")))
async def ask_delete_plan(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        MessageTemplates.warning("apagar este plano e os seus limites de aulas?"),
        Keyboards.confirm_delete(PLAN, callback_data.item_id),
    )


@router.callback_query(ItemCallback.filter((F.entity == PLAN) & (F.action == "del_ok")))
async def delete_plan(
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
        await supabase.delete_plan(box.id, callback_data.item_id)
    except Exception as exc:
        logger.exception("Failed to delete plan %s: %s", callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao apagar o plano. Pode ter membros associados.", alert=True)
        return

    await toast(callback, "✅ Plano apagado.")
    await render_list(callback, state, box, PLAN, answered=True)


# ----------------------------------------------------------------------
# Class types and weekly limits (shared by create and edit)
# ----------------------------------------------------------------------


def _class_type_options(class_types: list[ClassType]) -> list[tuple[str, str]]:
    return [(ct.id, ct.name) for ct in class_types]


def build_class_limits(
    class_types: list[ClassType],
    included: list[str],
    limits: dict[str, int | None],
) -> list[ClassLimit]:
    return [
        ClassLimit(
            class_type=ct,
            included=ct.id in included,
            limit=limits.get(ct.id),
        )
        for ct in class_types
    ]


async def _ask_class_types(target: Message | CallbackQuery, state: FSMContext, box: Box, included: list[str]) -> None:
    supabase = get_supabase_client()
    class_types = await supabase.list_class_types(box.id)
    await state.update_data(class_types=class_types, included=included, limits={})
    await state.set_state(PlanLimitStates.waiting_for_class_types)
    text = "Escolhe as <b>aulas incluídas</b> no plano e carrega em Concluído."
    if not class_types:
        text = "A box ainda não tem tipos de aula ativos. Carrega em Concluído para continuar."
    markup = Keyboards.toggles(_class_type_options(class_types), included)
    if isinstance(target, Message):
        await target.answer(text, reply_markup=markup)
    else:
        await show(target, text, markup)


async def _ask_next_limit(message: Message, state: FSMContext) -> bool:
    """Ask for the next pending limit; False when none is left."""
    data = await state.get_data()
    pending: list[str] = data.get("pending", [])
    if not pending:
        return False
    names = {ct.id: ct.name for ct in data.get("class_types", [])}
    await state.set_state(PlanLimitStates.waiting_for_limit)
    await message.answer(
        f"Quantas aulas de <b>{esc(names.get(pending[0], pending[0]))}</b> por semana?\n"
        "Envia um número, ou - para ilimitado."
    )
    return True


@router.callback_query(PlanLimitStates.waiting_for_class_types, ToggleCallback.filter(F.value != "done"))
async def toggle_class_type(callback: CallbackQuery, callback_data: ToggleCallback, state: FSMContext) -> None:
    data = await state.get_data()
    included = toggle_value(data.get("included", []), callback_data.value)
    await state.update_data(included=included)
    await callback.answer()
    if callback.message is not None:
        await callback.message.edit_reply_markup(
            reply_markup=Keyboards.toggles(_class_type_options(data.get("class_types", [])), included)
        )


@router.callback_query(PlanLimitStates.waiting_for_class_types, ToggleCallback.filter(F.value == "done"))
async def class_types_done(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    data = await state.get_data()
    await state.update_data(pending=list(data.get("included", [])))
    await callback.answer()
    if callback.message is None:
        return
    if not await _ask_next_limit(callback.message, state):
        await _save_plan(callback.message, state, box)


@router.message(PlanLimitStates.waiting_for_limit, F.text)
async def class_limit_value(message: Message, state: FSMContext, box: Box | None = None) -> None:
    ok, limit = parse_optional_int(message.text)
    if not ok:
        await message.answer("Envia um número inteiro, ou - para ilimitado.")
        return

    data = await state.get_data()
    pending = list(data.get("pending", []))
    limits = dict(data.get("limits", {}))
    limits[pending.pop(0)] = limit
    await state.update_data(pending=pending, limits=limits)

    if not await _ask_next_limit(message, state):
        await _save_plan(message, state, box)


async def _save_plan(message: Message, state: FSMContext, box: Box | None) -> None:
    """Final step of both dialogs: create the plan or replace its limits."""
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return

    data = await state.get_data()
    class_limits = build_class_limits(data.get("class_types", []), data.get("included", []), data.get("limits", {}))
    supabase = get_supabase_client()
    try:
        if data.get("edit_id"):
            plan = await supabase.update_plan(box.id, data["edit_id"], class_limits=class_limits)
            done = "Limites do plano atualizados."
        else:
            plan = await supabase.create_plan(
                box_id=box.id,
                name=data["name"],
                description=data.get("description"),
                price=data["price"],
                class_limits=class_limits,
            )
            done = f"Plano {esc(plan.name)} criado."
        plan, limits = await supabase.get_plan_with_limits(box.id, plan.id)
    except Exception as exc:
        logger.exception("Failed to save plan: %s", exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível guardar o plano.", exc))
        return

    await state.set_state(None)
    await state.update_data(edit_id=None)
    await message.answer(MessageTemplates.success(done))
    await message.answer(plan_card(plan, limits, box.currency), reply_markup=Keyboards.entity_actions(PLAN, plan.id))


# ----------------------------------------------------------------------
# Create dialog
# ----------------------------------------------------------------------


async def _start_create(message: Message, state: FSMContext) -> None:
    await state.update_data(edit_id=None)
    await state.set_state(PlanFormStates.waiting_for_name)
    await message.answer(
        "Vamos criar um plano.\n"
        "Envia o <b>nome</b> (ex.: 3 Aulas / Semana).\n\n"
        "Para cancelar escreve /cancel."
    )


@router.message(Command("add_plan"))
async def cmd_add_plan(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await message.answer(NO_BOX_TEXT)
        return
    await _start_create(message, state)


@router.callback_query(ItemCallback.filter((F.entity == PLAN) & (F.action == "new")))
async def new_plan(callback: CallbackQuery, state: FSMContext, box: Box | None = None) -> None:
    await callback.answer()
    if callback.message is None:
        return
    if box is None:
        await callback.message.answer(NO_BOX_TEXT)
        return
    await _start_create(callback.message, state)


@router.message(PlanFormStates.waiting_for_name, F.text)
async def plan_name(message: Message, state: FSMContext) -> None:
    name = message.text.strip()
    if not name:
        await message.answer("O nome não pode ficar vazio.")
        return
    await state.update_data(name=name)
    await state.set_state(PlanFormStates.waiting_for_description)
    await message.answer("Envia uma <b>descrição</b>, ou - para deixar em branco.")


@router.message(PlanFormStates.waiting_for_description, F.text)
async def plan_description(message: Message, state: FSMContext) -> None:
    await state.update_data(description=None if is_skip(message.text) else message.text.strip())
    await state.set_state(PlanFormStates.waiting_for_price)
    await message.answer("Qual é o <b>preço</b> mensal? (ex.: 69 ou 69,50)")


@router.message(PlanFormStates.waiting_for_price, F.text)
async def plan_price(message: Message, state: FSMContext, box: Box | None = None) -> None:
    price = parse_price(message.text)
    if price is None:
        await message.answer("Preço inválido. Envia um número, por exemplo 69,50.")
        return
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return

    await state.update_data(price=price)
    try:
        await _ask_class_types(message, state, box, [])
    except Exception as exc:
        logger.exception("Failed to load class types: %s", exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível carregar os tipos de aula.", exc))


# ----------------------------------------------------------------------
# Edit dialog
# ----------------------------------------------------------------------


@router.callback_query(ItemCallback.filter((F.entity == PLAN) & (F.action == "edit")))
async def edit_plan(callback: CallbackQuery, callback_data: ItemCallback) -> None:
    await show(
        callback,
        "✏️ O que queres alterar?",
        Keyboards.field_menu(PLAN, callback_data.item_id, EDITABLE_FIELDS),
    )


@router.callback_query(FieldCallback.filter((F.entity == PLAN) & F.field.in_({"active", "public"})))
async def toggle_plan_flag(callback: CallbackQuery, callback_data: FieldCallback, box: Box | None = None) -> None:
    if box is None:
        await show(callback, NO_BOX_TEXT)
        return

    column = "is_active" if callback_data.field == "active" else "plans_public"
    supabase = get_supabase_client()
    try:
        plan = await supabase.get_plan(box.id, callback_data.item_id)
        await supabase.update_plan(box.id, plan.id, **{column: not getattr(plan, column)})
    except Exception as exc:
        logger.exception("Failed to toggle %s on plan %s: %s", column, callback_data.item_id, exc)
        await toast(callback, "❌ Erro ao atualizar o plano.", alert=True)
        return

    await toast(callback, "✅ Plano atualizado.")
    await _show_plan(callback, box, callback_data.item_id, answered=True)


@router.callback_query(FieldCallback.filter((F.entity == PLAN) & (F.field == "limits")))
async def edit_plan_limits(
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
        _, limits = await supabase.get_plan_with_limits(box.id, callback_data.item_id)
        await state.update_data(edit_id=callback_data.item_id)
        await _ask_class_types(callback, state, box, [item.class_type.id for item in limits if item.included])
    except Exception as exc:
        logger.exception("Failed to load plan limits %s: %s", callback_data.item_id, exc)
        await state.set_state(None)
        await show(callback, error_text("não foi possível carregar os limites.", exc))


@router.callback_query(FieldCallback.filter((F.entity == PLAN) & F.field.in_({"name", "desc", "price"})))
async def edit_plan_field(callback: CallbackQuery, callback_data: FieldCallback, state: FSMContext) -> None:
    await state.set_state(PlanEditStates.waiting_for_value)
    await state.update_data(edit_id=callback_data.item_id, edit_field=callback_data.field)
    label = dict(EDITABLE_FIELDS)[callback_data.field]
    await callback.answer()
    if callback.message is not None:
        await callback.message.answer(f"Envia o novo valor para <b>{label}</b>.\n\nPara cancelar escreve /cancel.")


@router.message(PlanEditStates.waiting_for_value, F.text)
async def plan_field_value(message: Message, state: FSMContext, box: Box | None = None) -> None:
    if box is None:
        await state.set_state(None)
        await message.answer(NO_BOX_TEXT)
        return
    data = await state.get_data()
    field = data.get("edit_field")
    raw = message.text

    if field == "price":
        price = parse_price(raw)
        if price is None:
            await message.answer("Preço inválido. Envia um número, por exemplo 69,50.")
            return
        change = {"price": price}
    elif field == "desc":
        change = {"description": None if is_skip(raw) else raw.strip()}
    else:
        if not raw.strip():
            await message.answer("O nome não pode ficar vazio.")
            return
        change = {"name": raw.strip()}

    supabase = get_supabase_client()
    try:
        await supabase.update_plan(box.id, data["edit_id"], **change)
    except Exception as exc:
        logger.exception("Failed to update plan %s: %s", data.get("edit_id"), exc)
        await state.set_state(None)
        await message.answer(error_text("não foi possível atualizar o plano.", exc))
        return

    await state.set_state(None)
    await state.update_data(edit_id=None)
    await message.answer(MessageTemplates.success("Plano atualizado."))
    await _show_plan(message, box, data["edit_id"])
