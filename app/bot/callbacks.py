from __future__ import annotations

from aiogram.filters.callback_data import CallbackData

MEMBER = "member"
STAFF = "staff"
PLAN = "plan"
PACK = "pack"
CLASS_TYPE = "ctype"
INSURANCE = "ins"


class MenuCallback(CallbackData, prefix="menu"):
    section: str


class ListCallback(CallbackData, prefix="ls"):
    """One page of an entity list; the search query lives in FSM data."""

    entity: str
    page: int = 1
    status: str = "all"
    sort: str = "default"


class ItemCallback(CallbackData, prefix="it"):
    """Card actions: view, edit, del (ask) and del_ok (confirmed)."""

    entity: str
    action: str
    item_id: str


class FieldCallback(CallbackData, prefix="fd"):
    entity: str
    field: str
    item_id: str


class ToggleCallback(CallbackData, prefix="tg"):
    """Checkbox-style selection inside a dialog; value 'done' finishes it."""

    value: str


class SearchCallback(CallbackData, prefix="sr"):
    entity: str
    clear: bool = False


class BoxCallback(CallbackData, prefix="box"):
    box_id: str
