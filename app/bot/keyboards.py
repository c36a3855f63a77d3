from __future__ import annotations

from datetime import date
from typing import Iterable, Sequence

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from app.bot.callbacks import (
    BoxCallback,
    FieldCallback,
    ItemCallback,
    ListCallback,
    MenuCallback,
    SearchCallback,
    ToggleCallback,
)
from app.core.listing import Page
from app.db.models import StaffBox


class Keyboards:
    """
    Centralized keyboard/button builder for consistent UI.
    """

    @staticmethod
    def main_menu() -> InlineKeyboardMarkup:
        """Main menu buttons."""
        buttons = [
            [
                InlineKeyboardButton(text="👥 Membros", callback_data=MenuCallback(section="members").pack()),
                InlineKeyboardButton(text="🧑‍🏫 Staff", callback_data=MenuCallback(section="staff").pack()),
            ],
            [
                InlineKeyboardButton(text="💳 Planos", callback_data=MenuCallback(section="plans").pack()),
                InlineKeyboardButton(text="🎟 Senhas", callback_data=MenuCallback(section="packs").pack()),
            ],
            [
                InlineKeyboardButton(text="🏷 Tipos de aula", callback_data=MenuCallback(section="classes").pack()),
                InlineKeyboardButton(text="🛡 Seguros", callback_data=MenuCallback(section="insurances").pack()),
            ],
            [
                InlineKeyboardButton(text="⏰ Resumo de validades", callback_data=MenuCallback(section="digest").pack()),
            ],
            [
                InlineKeyboardButton(text="🏠 Mudar de box", callback_data=MenuCallback(section="boxes").pack()),
                InlineKeyboardButton(text="❓ Ajuda", callback_data=MenuCallback(section="help").pack()),
            ],
        ]
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def boxes(boxes: Iterable[StaffBox], selected_id: str | None = None) -> InlineKeyboardMarkup:
        """One button per box the admin manages."""
        buttons = []
        for staff_box in boxes:
            mark = "✅ " if staff_box.box_id == selected_id else ""
            buttons.append(
                [
                    InlineKeyboardButton(
                        text=f"{mark}{staff_box.box_name or staff_box.box_id[:8]}",
                        callback_data=BoxCallback(box_id=staff_box.box_id).pack(),
                    )
                ]
            )
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def entity_list(
        entity: str,
        page: Page,
        labels: Sequence[tuple[str, str]],
        *,
        status: str = "all",
        sort: str = "default",
        sort_label: str | None = None,
        next_sort: str | None = None,
        status_label: str | None = None,
        next_status: str | None = None,
        has_query: bool = False,
    ) -> InlineKeyboardMarkup:
        """
        Keyboard for a list page.

        labels are (item_id, text) pairs for the rows of the current page.
        """

        buttons: list[list[InlineKeyboardButton]] = [
            [
                InlineKeyboardButton(
                    text=text,
                    callback_data=ItemCallback(entity=entity, action="view", item_id=item_id).pack(),
                )
            ]
            for item_id, text in labels
        ]

        if page.total_pages > 1:
            nav: list[InlineKeyboardButton] = []
            if page.has_previous:
                nav.append(
                    InlineKeyboardButton(
                        text="‹",
                        callback_data=ListCallback(entity=entity, page=page.page - 1, status=status, sort=sort).pack(),
                    )
                )
            nav.append(
                InlineKeyboardButton(
                    text=f"{page.page}/{page.total_pages}",
                    callback_data=ListCallback(entity=entity, page=page.page, status=status, sort=sort).pack(),
                )
            )
            if page.has_next:
                nav.append(
                    InlineKeyboardButton(
                        text="›",
                        callback_data=ListCallback(entity=entity, page=page.page + 1, status=status, sort=sort).pack(),
                    )
                )
            buttons.append(nav)

        tools: list[InlineKeyboardButton] = [
            InlineKeyboardButton(text="🔍 Pesquisar", callback_data=SearchCallback(entity=entity).pack()),
        ]
        if sort_label and next_sort:
            tools.append(
                InlineKeyboardButton(
                    text=f"↕️ {sort_label}",
                    callback_data=ListCallback(entity=entity, page=1, status=status, sort=next_sort).pack(),
                )
            )
        buttons.append(tools)

        if status_label and next_status:
            buttons.append(
                [
                    InlineKeyboardButton(
                        text=f"🔎 Estado: {status_label}",
                        callback_data=ListCallback(entity=entity, page=1, status=next_status, sort=sort).pack(),
                    )
                ]
            )
        if has_query:
            buttons.append(
                [
                    InlineKeyboardButton(
                        text="✖️ Limpar pesquisa",
                        callback_data=SearchCallback(entity=entity, clear=True).pack(),
                    )
                ]
            )

        buttons.append(
            [
                InlineKeyboardButton(
                    text="➕ Adicionar",
                    callback_data=ItemCallback(entity=entity, action="new", item_id="-").pack(),
                ),
                InlineKeyboardButton(text="⬅️ Menu", callback_data=MenuCallback(section="main").pack()),
            ]
        )
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def entity_actions(entity: str, item_id: str) -> InlineKeyboardMarkup:
        """Edit / delete actions for one item (the row dropdown)."""
        buttons = [
            [
                InlineKeyboardButton(
                    text="✏️ Editar",
                    callback_data=ItemCallback(entity=entity, action="edit", item_id=item_id).pack(),
                ),
                InlineKeyboardButton(
                    text="🗑 Apagar",
                    callback_data=ItemCallback(entity=entity, action="del", item_id=item_id).pack(),
                ),
            ],
            [InlineKeyboardButton(text="⬅️ Voltar à lista", callback_data=ListCallback(entity=entity).pack())],
        ]
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def confirm_delete(entity: str, item_id: str) -> InlineKeyboardMarkup:
        """Confirmation buttons."""
        buttons = [
            [
                InlineKeyboardButton(
                    text="✅ Sim, apagar",
                    callback_data=ItemCallback(entity=entity, action="del_ok", item_id=item_id).pack(),
                ),
                InlineKeyboardButton(
                    text="❌ Cancelar",
                    callback_data=ItemCallback(entity=entity, action="view", item_id=item_id).pack(),
                ),
            ],
        ]
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def field_menu(entity: str, item_id: str, fields: Sequence[tuple[str, str]]) -> InlineKeyboardMarkup:
        """Pick which field to edit; fields are (code, label) pairs."""
        buttons = [
            [
                InlineKeyboardButton(
                    text=label,
                    callback_data=FieldCallback(entity=entity, field=code, item_id=item_id).pack(),
                )
            ]
            for code, label in fields
        ]
        buttons.append(
            [
                InlineKeyboardButton(
                    text="⬅️ Voltar",
                    callback_data=ItemCallback(entity=entity, action="view", item_id=item_id).pack(),
                )
            ]
        )
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def toggles(options: Sequence[tuple[str, str]], selected: Iterable[str]) -> InlineKeyboardMarkup:
        """Checkbox list; options are (value, label) pairs."""
        chosen = set(selected)
        buttons = [
            [
                InlineKeyboardButton(
                    text=f"{'☑️' if value in chosen else '⬜️'} {label}",
                    callback_data=ToggleCallback(value=value).pack(),
                )
            ]
            for value, label in options
        ]
        buttons.append([InlineKeyboardButton(text="✅ Concluído", callback_data=ToggleCallback(value="done").pack())])
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def choices(options: Sequence[tuple[str, str]]) -> InlineKeyboardMarkup:
        """Pick exactly one option; options are (value, label) pairs."""
        buttons = [
            [InlineKeyboardButton(text=label, callback_data=ToggleCallback(value=value).pack())]
            for value, label in options
        ]
        return InlineKeyboardMarkup(inline_keyboard=buttons)

    @staticmethod
    def back_button(callback_data: str | None = None) -> InlineKeyboardMarkup:
        """Simple back button."""
        buttons = [
            [
                InlineKeyboardButton(
                    text="⬅️ Voltar",
                    callback_data=callback_data or MenuCallback(section="main").pack(),
                )
            ],
        ]
        return InlineKeyboardMarkup(inline_keyboard=buttons)


class MessageTemplates:
    """
    Standardized message templates for consistent formatting.
    """

    @staticmethod
    def header(title: str, emoji: str = "📋") -> str:
        """Format a header."""
        return f"<b>{emoji} {title}</b>"

    @staticmethod
    def item(text: str, indent: int = 1) -> str:
        """Format an item in a list."""
        return "  " * indent + f"• {text}"

    @staticmethod
    def error(message: str) -> str:
        """Format an error message."""
        return f"❌ <b>Erro:</b> {message}"

    @staticmethod
    def success(message: str) -> str:
        """Format a success message."""
        return f"✅ <b>Feito!</b> {message}"

    @staticmethod
    def warning(message: str) -> str:
        """Format a warning message."""
        return f"⚠️ <b>Atenção:</b> {message}"

    @staticmethod
    def format_date(date_obj: date | None) -> str:
        """Format date consistently."""
        if date_obj is None:
            return "—"
        return f"<code>{date_obj.strftime('%d/%m/%Y')}</code>"

    @staticmethod
    def yes_no(value: bool) -> str:
        return "sim" if value else "não"
