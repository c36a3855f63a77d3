from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

from app.bot import scheduler as scheduler_module
from app.bot.scheduler import ExpiryDigestScheduler, build_digest
from app.db.models import AdminLink, Box, Member, StaffBox, StaffRole
from tests.helpers import member_row, membership_row

TODAY = date(2026, 3, 1)


def test_build_digest_lists_memberships_and_insurance():
    members = [
        Member.from_row(member_row("m1", name="Ana", memberships=[membership_row("2026-03-05")])),
        Member.from_row(member_row("m2", name="Rui", memberships=[membership_row("2026-06-01")])),
        Member.from_row(member_row("m3", name="Eva <3", insurance="2026-02-20")),
        Member.from_row(member_row("m4", name="Bia", insurance="2026-03-20")),
        Member.from_row(member_row("m5", name="Zé", insurance="2027-01-01")),
    ]

    text = build_digest("CrossFit Porto", members, 7, today=TODAY)

    assert "Ana (Ilimitado): 05/03/2026" in text
    assert "Rui" not in text
    assert "Eva &lt;3: expirado em 20/02/2026" in text
    assert "Bia: a expirar em 20/03/2026" in text
    assert "Zé" not in text


def test_build_digest_skips_memberships_already_over():
    members = [
        Member.from_row(member_row("m1", memberships=[membership_row("2026-02-27")])),
        # ends today, which already counts as expired
        Member.from_row(member_row("m2", memberships=[membership_row("2026-03-01")])),
    ]
    assert build_digest("Box", members, 7, today=TODAY) is None


def fake_supabase(members, managed=("box-1",)):
    supabase = MagicMock()
    supabase.list_staff_boxes = AsyncMock(
        return_value=[StaffBox(box_id=box_id, roles=[StaffRole.ADMIN]) for box_id in managed]
    )
    supabase.get_box = AsyncMock(return_value=Box(id="box-1", name="CrossFit Porto"))
    supabase.list_members = AsyncMock(return_value=members)
    return supabase


async def test_send_digest_reports_empty_box_on_demand(monkeypatch):
    monkeypatch.setattr(scheduler_module, "get_supabase_client", lambda: fake_supabase([]))
    bot = AsyncMock()

    sent = await ExpiryDigestScheduler(bot).send_digest("box-1", 77)

    assert sent is False
    bot.send_message.assert_awaited_once()
    assert bot.send_message.await_args.kwargs["text"].startswith("✅ Nada a expirar")


async def test_daily_digest_continues_after_a_failing_admin(monkeypatch):
    ending = (date.today() + timedelta(days=2)).isoformat()
    supabase = fake_supabase(
        [Member.from_row(member_row(memberships=[membership_row(ending)]))],
        managed=("gone", "box-1"),
    )
    supabase.list_admin_links = AsyncMock(return_value=[
        AdminLink(telegram_user_id=1, user_detail_id="u1", selected_box_id="gone"),
        AdminLink(telegram_user_id=2, user_detail_id="u2", selected_box_id="box-1"),
    ])
    supabase.get_box = AsyncMock(side_effect=[RuntimeError("Box not found"), Box(id="box-1", name="Porto")])
    monkeypatch.setattr(scheduler_module, "get_supabase_client", lambda: supabase)
    bot = AsyncMock()

    await ExpiryDigestScheduler(bot)._send_daily_digests()

    bot.send_message.assert_awaited_once()
    assert bot.send_message.await_args.kwargs["chat_id"] == 2


async def test_daily_digest_stays_silent_when_nothing_is_due(monkeypatch):
    supabase = fake_supabase([])
    supabase.list_admin_links = AsyncMock(return_value=[
        AdminLink(telegram_user_id=1, user_detail_id="u1", selected_box_id="box-1"),
    ])
    monkeypatch.setattr(scheduler_module, "get_supabase_client", lambda: supabase)
    bot = AsyncMock()

    await ExpiryDigestScheduler(bot)._send_daily_digests()

    bot.send_message.assert_not_awaited()


async def test_daily_digest_skips_admins_who_lost_access(monkeypatch):
    ending = (date.today() + timedelta(days=2)).isoformat()
    supabase = fake_supabase([Member.from_row(member_row(memberships=[membership_row(ending)]))])
    supabase.list_admin_links = AsyncMock(return_value=[
        AdminLink(telegram_user_id=7, user_detail_id="former-admin", selected_box_id="box-1"),
        AdminLink(telegram_user_id=8, user_detail_id="admin", selected_box_id="box-1"),
    ])
    supabase.list_staff_boxes = AsyncMock(side_effect=[
        [StaffBox(box_id="box-1", roles=[StaffRole.COACH])],
        [StaffBox(box_id="box-1", roles=[StaffRole.SUPER_ADMIN])],
    ])
    monkeypatch.setattr(scheduler_module, "get_supabase_client", lambda: supabase)
    bot = AsyncMock()

    await ExpiryDigestScheduler(bot)._send_daily_digests()

    assert [c.args for c in supabase.list_staff_boxes.await_args_list] == [("former-admin",), ("admin",)]
    bot.send_message.assert_awaited_once()
    assert bot.send_message.await_args.kwargs["chat_id"] == 8
