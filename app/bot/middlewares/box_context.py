from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message, TelegramObject

from app.core.logging import configure_logging
from app.db import get_supabase_client
from app.db.models import AdminLink, Box, StaffBox


logger = configure_logging("access")


class BoxContextMiddleware(BaseMiddleware):
    """
    Middleware that attaches the admin link, their manageable boxes and the
    selected box to handler data.

    Only boxes where the person is admin or super_admin count. When exactly
    one such box exists it is selected automatically; otherwise the last
    selection stored in Telegram_Admin is used if it is still valid.
    Works for both Message and CallbackQuery events.
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = None
        if isinstance(event, (Message, CallbackQuery)):
            from_user = event.from_user

        admin: AdminLink | None = None
        boxes: list[StaffBox] = []
        box: Box | None = None

        if from_user:
            supabase = get_supabase_client()
            try:
                admin = await supabase.get_admin_link(from_user.id)
                if admin is not None:
                    boxes = [
                        item
                        for item in await supabase.list_staff_boxes(admin.user_detail_id)
                        if item.can_manage
                    ]
                    box_id = admin.selected_box_id
                    if box_id not in {item.box_id for item in boxes}:
                        box_id = None
                    if box_id is None and len(boxes) == 1:
                        box_id = boxes[0].box_id
                        admin = await supabase.set_selected_box(from_user.id, box_id)
                    if box_id is not None:
                        box = await supabase.get_box(box_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to resolve box context: %s", exc)

        data["admin"] = admin
        data["boxes"] = boxes
        data["box"] = box
        return await handler(event, data)
