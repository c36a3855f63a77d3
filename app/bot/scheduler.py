from __future__ import annotations

import logging
from datetime import date, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from aiogram import Bot
from aiogram.utils.text_decorations import html_decoration

from app.core import get_settings
from app.db import get_supabase_client
from app.db.models import AdminLink, InsuranceState, Member

logger = logging.getLogger(__name__)


def _fmt(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def build_digest(
    box_name: str,
    members: list[Member],
    window_days: int,
    today: date | None = None,
) -> str | None:
    """
    Text of the expiry digest for one box, or None when nothing is due.

    Lists active memberships ending within window_days and insurances that
    expired or expire soon.
    """
    today = today or date.today()
    limit = today + timedelta(days=window_days)

    ending: list[tuple[Member, date, str | None]] = []
    insurance: list[tuple[Member, date, InsuranceState]] = []
    for member in members:
        current = member.active_membership
        if current is not None and today < current.end_date <= limit:
            ending.append((member, current.end_date, current.plan_name))

        state = member.insurance_state(today)
        if state in (InsuranceState.EXPIRED, InsuranceState.EXPIRING_SOON):
            insurance.append((member, member.insurance_until, state))

    if not ending and not insurance:
        return None

    quote = html_decoration.quote
    lines = [f"⏰ <b>Resumo de validades · {quote(box_name)}</b>", ""]
    if ending:
        lines.append(f"<b>Planos a terminar nos próximos {window_days} dias</b>")
        for member, end_date, plan_name in sorted(ending, key=lambda item: item[1]):
            plan = f" ({quote(plan_name)})" if plan_name else ""
            lines.append(f"  • {quote(member.name)}{plan}: {_fmt(end_date)}")
        lines.append("")
    if insurance:
        lines.append("<b>Seguros</b>")
        for member, until, state in sorted(insurance, key=lambda item: item[1]):
            label = "expirado" if state is InsuranceState.EXPIRED else "a expirar"
            lines.append(f"  • {quote(member.name)}: {label} em {_fmt(until)}")
        lines.append("")
    lines.append("👥 Usa /members para ver os detalhes.")
    return "\n".join(lines)


class ExpiryDigestScheduler:
    """
    APScheduler manager for the daily expiry digest.
    Each linked admin gets the digest of the box they have selected.
    """

    def __init__(self, bot: Bot) -> None:
        self.bot = bot
        self.scheduler: AsyncIOScheduler | None = None

    async def start(self) -> None:
        """
        Initialize and start the scheduler.
        """
        settings = get_settings()
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._send_daily_digests,
            CronTrigger(hour=settings.digest_hour, minute=0),
            id="daily_expiry_digest",
            name="Daily Expiry Digest",
        )
        self.scheduler.start()
        logger.info("Expiry digest scheduler started (hour=%s)", settings.digest_hour)

    async def stop(self) -> None:
        """
        Stop the scheduler gracefully.
        """
        if self.scheduler:
            self.scheduler.shutdown()
            logger.info("Expiry digest scheduler stopped")

    async def _send_daily_digests(self) -> None:
        supabase = get_supabase_client()
        try:
            admins = await supabase.list_admin_links()
        except Exception as exc:
            logger.exception("Failed to load linked admins: %s", exc)
            return

        sent = 0
        for admin in admins:
            try:
                if not await self._still_manages(admin):
                    logger.info(
                        "Skipping digest for %s: no longer manages box %s",
                        admin.telegram_user_id,
                        admin.selected_box_id,
                    )
                    continue
                await self.send_digest(
                    box_id=admin.selected_box_id,
                    chat_id=admin.telegram_user_id,
                    silent_when_empty=True,
                )
            except Exception as exc:
                # One failing admin must not stop the others
                logger.error("Error sending digest to %s: %s", admin.telegram_user_id, exc)
                continue
            sent += 1

        logger.info("Daily digest processed for %d of %d admins", sent, len(admins))

    @staticmethod
    async def _still_manages(admin: AdminLink) -> bool:
        supabase = get_supabase_client()
        boxes = await supabase.list_staff_boxes(admin.user_detail_id)
        return any(item.box_id == admin.selected_box_id and item.can_manage for item in boxes)

    async def send_digest(
        self,
        box_id: str,
        chat_id: int,
        *,
        silent_when_empty: bool = False,
    ) -> bool:
        """
        Send the digest of box_id to chat_id.

        Returns False when there was nothing to report.
        """
        settings = get_settings()
        supabase = get_supabase_client()

        box = await supabase.get_box(box_id)
        members = await supabase.list_members(box_id)
        text = build_digest(box.name, members, settings.expiry_window_days)

        if text is None:
            logger.debug("Nothing to report for box %s", box_id)
            if not silent_when_empty:
                await self.bot.send_message(
                    chat_id=chat_id,
                    text=f"✅ Nada a expirar nos próximos {settings.expiry_window_days} dias.",
                )
            return False

        await self.bot.send_message(chat_id=chat_id, text=text)
        return True


# Global scheduler instance
_scheduler: ExpiryDigestScheduler | None = None


def get_digest_scheduler(bot: Bot | None = None) -> ExpiryDigestScheduler:
    """
    Get or create the global digest scheduler.
    """
    global _scheduler
    if _scheduler is None:
        if bot is None:
            raise RuntimeError("Bot instance required to initialize scheduler")
        _scheduler = ExpiryDigestScheduler(bot)
    return _scheduler
