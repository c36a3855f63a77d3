from datetime import date

from app.db.models import (
    ClassLimit,
    ClassType,
    InsuranceState,
    Member,
    MembershipStatus,
    PlanClassLimit,
    Staff,
    StaffBox,
    StaffRole,
)
from tests.helpers import member_row, membership_row

TODAY = date(2026, 3, 1)


def test_member_from_row_reads_embedded_user_and_memberships():
    row = member_row(
        insurance="2026-12-31",
        memberships=[
            membership_row("2026-04-01"),
            membership_row("2025-01-01", membership_id="ms-old", deleted_at="2025-02-01T00:00:00+00:00"),
        ],
    )
    member = Member.from_row(row)

    assert member.name == "Ana Silva"
    assert member.joined_at == date(2026, 1, 10)
    assert member.insurance_until == date(2026, 12, 31)
    assert [m.id for m in member.memberships] == ["ms-1"]
    assert member.active_membership.plan_name == "Ilimitado"


def test_membership_status():
    active = Member.from_row(member_row(memberships=[membership_row("2026-03-02")]))
    ends_today = Member.from_row(member_row(memberships=[membership_row("2026-03-01")]))
    paused = Member.from_row(member_row(memberships=[membership_row("2026-06-01", is_active=False)]))
    without = Member.from_row(member_row())

    assert active.membership_status(TODAY) is MembershipStatus.ACTIVE
    assert ends_today.membership_status(TODAY) is MembershipStatus.EXPIRED
    assert paused.membership_status(TODAY) is MembershipStatus.INACTIVE
    assert without.membership_status(TODAY) is MembershipStatus.INACTIVE


def test_insurance_state():
    def state(value):
        return Member.from_row(member_row(insurance=value)).insurance_state(TODAY)

    assert state(None) is None
    assert state("2026-02-28") is InsuranceState.EXPIRED
    assert state("2026-03-01") is InsuranceState.EXPIRING_SOON
    assert state("2026-03-31") is InsuranceState.EXPIRING_SOON
    assert state("2026-04-01") is InsuranceState.VALID


def test_staff_rows_are_grouped_per_user():
    rows = [
        {"id": "s1", "box_id": "box-1", "user_id": "u1", "name": "Rui", "email": "rui@box.pt",
         "role": "coach", "start_date": "2025-05-01", "end_date": "2026-01-01"},
        {"id": "s2", "box_id": "box-1", "user_id": "u2", "name": "Eva", "email": "eva@box.pt",
         "role": "receptionist", "start_date": "2025-01-01", "end_date": None},
        {"id": "s3", "box_id": "box-1", "user_id": "u1", "name": "Rui", "email": "rui@box.pt",
         "role": "admin", "start_date": "2024-09-01T00:00:00", "end_date": None},
    ]
    staff = Staff.group_rows(rows)

    assert [s.user_id for s in staff] == ["u1", "u2"]
    rui = staff[0]
    assert rui.roles == [StaffRole.COACH, StaffRole.ADMIN]
    assert rui.staff_ids == {StaffRole.COACH: "s1", StaffRole.ADMIN: "s3"}
    assert rui.start_date == date(2024, 9, 1)
    assert rui.end_date is None
    assert rui.is_active(TODAY)


def test_staff_with_past_end_date_is_inactive():
    staff = Staff(user_id="u1", box_id="b", name="Rui", email="r@b.pt", end_date=date(2026, 2, 1))
    assert not staff.is_active(TODAY)


def test_staff_box_roles():
    single = StaffBox.from_row({"box_id": "b1", "box_name": "Porto", "role": "admin"})
    several = StaffBox.from_row({"box_id": "b2", "role": ["coach", "receptionist"]})

    assert single.can_manage
    assert not several.can_manage
    assert several.roles == [StaffRole.COACH, StaffRole.RECEPTIONIST]


def test_class_limits_combine():
    types = [
        ClassType(id="wod", box_id="b", name="WOD"),
        ClassType(id="oly", box_id="b", name="Olympic"),
        ClassType(id="yoga", box_id="b", name="Yoga"),
    ]
    limits = [
        PlanClassLimit(plan_id="p", class_type_id="wod", limit_per_period=3),
        PlanClassLimit(plan_id="p", class_type_id="oly", is_limitless=True),
    ]
    combined = {item.class_type.id: item for item in ClassLimit.combine(types, limits)}

    assert combined["wod"].included and combined["wod"].limit == 3
    assert combined["oly"].included and combined["oly"].limit is None
    assert not combined["yoga"].included and combined["yoga"].limit == 0
