from datetime import date
from decimal import Decimal

import pytest

from app.db.models import ClassLimit, ClassType, InsurancePeriod, Member, MembershipStatus, StaffRole
from app.db.supabase import MEMBER_SELECT, PACK_RELATIONS_TABLE, SupabaseClient, SupabaseError
from tests.helpers import body_of, member_row, membership_row


def plan_row(**overrides):
    row = {
        "id": "plan-1",
        "box_id": "box-1",
        "name": "3x Semana",
        "description": None,
        "price": "55.00",
        "is_active": True,
        "plans_public": True,
    }
    row.update(overrides)
    return row


def pack_row(**overrides):
    row = {
        "id": "pack-1",
        "box_id": "box-1",
        "name": "10 Aulas",
        "price": "80.00",
        "session_count": 10,
        "validity_days": 60,
    }
    row.update(overrides)
    return row


async def test_requests_carry_service_key(supabase, api):
    api.add("GET", "/Telegram_Admin", [])

    assert await supabase.get_admin_link(42) is None

    request = api.requests[0]
    assert request.headers["apikey"] == "service-key"
    assert request.headers["authorization"] == "Bearer service-key"
    assert request.url.params["telegram_user_id"] == "eq.42"


async def test_http_errors_become_supabase_errors(supabase, api):
    api.add("GET", "/Box_Member", {"message": "boom"}, status_code=500)

    with pytest.raises(SupabaseError) as info:
        await supabase.list_members("box-1")

    assert info.value.status_code == 500
    assert "boom" in info.value.detail


async def test_list_members_excludes_deleted_and_embeds_memberships(supabase, api):
    api.add("GET", "/Box_Member", [member_row(memberships=[membership_row("2999-01-01")])])

    members = await supabase.list_members("box-1")

    params = api.requests[0].url.params
    assert params["box_id"] == "eq.box-1"
    assert params["deleted_at"] == "is.null"
    assert params["order"] == "joined_at.desc"
    assert params["select"] == MEMBER_SELECT
    assert members[0].membership_status() is MembershipStatus.ACTIVE


async def test_get_box_missing(supabase, api):
    api.add("GET", "/Box", [])

    with pytest.raises(SupabaseError) as info:
        await supabase.get_box("nope")
    assert info.value.status_code == 404


async def test_create_member_reuses_user_and_appends_emergency_contact(supabase, api):
    api.add("GET", "/User_detail", [{"id": "user-member-1", "name": "Ana Silva", "email": "ana@example.com"}])
    api.add("POST", "/Box_Member", [{"id": "member-1"}])
    api.add("GET", "/Box_Member", [member_row()])

    member = await supabase.create_member(
        box_id="box-1",
        name="Ana Silva",
        email="ana@example.com",
        joined_at=date(2026, 1, 10),
        notes="Lesão no joelho",
        emergency_contact="Rui",
        insurance_until=date(2026, 12, 31),
    )

    assert member.id == "member-1"
    assert api.sent("POST", "/User_detail") == []
    payload = body_of(api.sent("POST", "/Box_Member")[0])[0]
    assert payload["user_id"] == "user-member-1"
    assert payload["joined_at"] == "2026-01-10"
    assert payload["seguro_validade"] == "2026-12-31"
    assert payload["notes"] == "Lesão no joelho\n\nEmergency Contact: Rui\nEmergency Phone: N/A"


async def test_create_member_inserts_new_user(supabase, api):
    api.add("GET", "/User_detail", [])
    api.add("POST", "/User_detail", [{"id": "new-user", "name": "Rita", "email": "rita@example.com"}])
    api.add("POST", "/Box_Member", [{"id": "member-1"}])
    api.add("GET", "/Box_Member", [member_row()])

    await supabase.create_member(box_id="box-1", name="Rita", email="rita@example.com")

    user_payload = body_of(api.sent("POST", "/User_detail")[0])[0]
    assert user_payload["email"] == "rita@example.com"
    assert len(user_payload["id"]) == 36
    assert body_of(api.sent("POST", "/Box_Member")[0])[0]["notes"] is None


async def test_update_member_splits_user_and_member_columns(supabase, api):
    api.add("GET", "/Box_Member", [member_row()])
    api.add("PATCH", "/User_detail", [{"id": "user-member-1"}])
    api.add("PATCH", "/Box_Member", [{"id": "member-1"}])

    await supabase.update_member("box-1", "member-1", phone="+351911111111", insurance_until=None)

    assert api.sent("GET", "/Box_Member")[0].url.params["box_id"] == "eq.box-1"
    assert body_of(api.sent("PATCH", "/User_detail")[0]) == {"phone": "+351911111111"}
    member_request = api.sent("PATCH", "/Box_Member")[0]
    assert member_request.url.params["box_id"] == "eq.box-1"
    member_patch = body_of(member_request)
    assert member_patch["seguro_validade"] is None
    assert "updated_at" in member_patch


async def test_update_member_rejects_unknown_fields(supabase, api):
    with pytest.raises(ValueError):
        await supabase.update_member("box-1", "member-1", favourite_wod="Fran")

    assert api.requests == []


async def test_update_member_of_another_box_writes_nothing(supabase, api):
    api.add("GET", "/Box_Member", [])

    with pytest.raises(SupabaseError) as info:
        await supabase.update_member("box-1", "member-of-box-2", name="Eva")

    assert info.value.status_code == 404
    assert api.sent("PATCH", "/User_detail") == []


async def test_delete_member_is_soft(supabase, api):
    api.add("PATCH", "/Box_Member", [{"id": "member-1"}])

    await supabase.delete_member("box-1", "member-1")

    assert api.sent("DELETE", "/Box_Member") == []
    request = api.sent("PATCH", "/Box_Member")[0]
    assert request.url.params["id"] == "eq.member-1"
    assert request.url.params["box_id"] == "eq.box-1"
    assert body_of(request)["deleted_at"]


def test_member_stats():
    today = date(2026, 3, 1)
    members = [
        Member.from_row(member_row("a", memberships=[membership_row("2026-05-01")])),
        Member.from_row(member_row("b", memberships=[membership_row("2026-02-01")])),
        Member.from_row(member_row("c")),
    ]
    stats = SupabaseClient.member_stats(members, today)
    assert (stats.total, stats.active, stats.expired, stats.inactive) == (3, 1, 1, 1)


STAFF_ROWS = [
    {"id": "s1", "user_id": "u1", "name": "Rui", "email": "rui@box.pt", "role": "coach",
     "start_date": "2025-01-01", "end_date": None},
    {"id": "s2", "user_id": "u1", "name": "Rui", "email": "rui@box.pt", "role": "receptionist",
     "start_date": "2025-01-01", "end_date": None},
]


async def test_list_staff_uses_rpc(supabase, api):
    api.add("POST", "/rpc/get_staff_by_box_id", STAFF_ROWS)

    staff = await supabase.list_staff("box-1")

    assert body_of(api.requests[0]) == {"p_box_id": "box-1"}
    assert len(staff) == 1
    assert staff[0].box_id == "box-1"
    assert staff[0].roles == [StaffRole.COACH, StaffRole.RECEPTIONIST]


async def test_update_staff_replaces_roles(supabase, api):
    api.add("POST", "/rpc/get_staff_by_box_id", STAFF_ROWS)
    api.add("DELETE", "/Box_Staff")
    api.add("POST", "/Box_Staff", [{"id": "s3"}])

    await supabase.update_staff("box-1", "u1", roles=[StaffRole.COACH, StaffRole.ADMIN])

    assert api.sent("DELETE", "/Box_Staff")[0].url.params["id"] == "in.(s2)"
    inserted = body_of(api.sent("POST", "/Box_Staff")[0])
    assert [row["role"] for row in inserted] == ["admin"]
    assert inserted[0]["start_date"] == "2025-01-01"


async def test_deactivate_staff_sets_end_date(supabase, api):
    api.add("POST", "/rpc/get_staff_by_box_id", STAFF_ROWS)
    api.add("PATCH", "/Box_Staff", [{"id": "s1"}, {"id": "s2"}])

    await supabase.update_staff("box-1", "u1", active=False)

    request = api.sent("PATCH", "/Box_Staff")[0]
    assert request.url.params["user_id"] == "eq.u1"
    assert body_of(request)["end_date"] == str(date.today())


async def test_staff_needs_a_role(supabase):
    with pytest.raises(ValueError):
        await supabase.create_staff(box_id="box-1", name="Rui", email="rui@box.pt", roles=[])


async def test_create_plan_inserts_only_included_limits(supabase, api):
    api.add("POST", "/Plan", [plan_row()])
    api.add("POST", "/Plan_Class_Limit", [{}])
    wod = ClassType(id="wod", box_id="box-1", name="WOD")
    yoga = ClassType(id="yoga", box_id="box-1", name="Yoga")
    oly = ClassType(id="oly", box_id="box-1", name="Olympic")

    plan = await supabase.create_plan(
        box_id="box-1",
        name="3x Semana",
        price=Decimal("55.00"),
        class_limits=[
            ClassLimit(class_type=wod, included=True, limit=3),
            ClassLimit(class_type=oly, included=True, limit=None),
            ClassLimit(class_type=yoga, included=False),
        ],
    )

    assert plan.price == Decimal("55.00")
    assert body_of(api.sent("POST", "/Plan")[0])[0]["price"] == "55.00"
    limits = body_of(api.sent("POST", "/Plan_Class_Limit")[0])
    assert limits == [
        {"plan_id": "plan-1", "class_type_id": "wod", "limit_per_period": 3,
         "period_type": "week", "is_limitless": False},
        {"plan_id": "plan-1", "class_type_id": "oly", "limit_per_period": None,
         "period_type": "week", "is_limitless": True},
    ]


async def test_create_plan_without_included_types_sends_no_limits(supabase, api):
    api.add("POST", "/Plan", [plan_row()])
    yoga = ClassType(id="yoga", box_id="box-1", name="Yoga")

    await supabase.create_plan(
        box_id="box-1",
        name="Base",
        price=Decimal("30"),
        class_limits=[ClassLimit(class_type=yoga, included=False)],
    )

    assert api.sent("POST", "/Plan_Class_Limit") == []


async def test_get_plan_with_limits(supabase, api):
    api.add("GET", "/Plan", [plan_row()])
    api.add("GET", "/Class_Type", [
        {"id": "wod", "box_id": "box-1", "name": "WOD"},
        {"id": "yoga", "box_id": "box-1", "name": "Yoga"},
    ])
    api.add("GET", "/Plan_Class_Limit", [{"plan_id": "plan-1", "class_type_id": "wod", "limit_per_period": 2}])

    plan, limits = await supabase.get_plan_with_limits("box-1", "plan-1")

    assert plan.name == "3x Semana"
    assert [(item.class_type.id, item.included, item.limit) for item in limits] == [
        ("wod", True, 2),
        ("yoga", False, 0),
    ]
    assert api.sent("GET", "/Class_Type")[0].url.params["active"] == "eq.true"


async def test_update_plan_replaces_only_offered_limits(supabase, api):
    api.add("PATCH", "/Plan", [plan_row(price="60.00")])
    api.add("DELETE", "/Plan_Class_Limit")
    api.add("POST", "/Plan_Class_Limit", [{}])
    wod = ClassType(id="wod", box_id="box-1", name="WOD")
    yoga = ClassType(id="yoga", box_id="box-1", name="Yoga")

    plan = await supabase.update_plan(
        "box-1",
        "plan-1",
        price=Decimal("60.00"),
        class_limits=[
            ClassLimit(class_type=wod, included=True, limit=5),
            ClassLimit(class_type=yoga, included=False),
        ],
    )

    assert plan.price == Decimal("60.00")
    patch = api.sent("PATCH", "/Plan")[0]
    assert patch.url.params["box_id"] == "eq.box-1"
    assert body_of(patch)["price"] == "60.00"
    # limits on class types not offered (e.g. inactive ones) stay untouched
    delete = api.sent("DELETE", "/Plan_Class_Limit")[0]
    assert delete.url.params["plan_id"] == "eq.plan-1"
    assert delete.url.params["class_type_id"] == "in.(wod,yoga)"
    assert [row["class_type_id"] for row in body_of(api.sent("POST", "/Plan_Class_Limit")[0])] == ["wod"]


async def test_update_missing_plan(supabase, api):
    api.add("PATCH", "/Plan", [])

    with pytest.raises(SupabaseError) as info:
        await supabase.update_plan("box-1", "nope", name="x")
    assert info.value.status_code == 404


async def test_update_plan_of_another_box_keeps_its_limits(supabase, api):
    api.add("PATCH", "/Plan", [])
    wod = ClassType(id="wod", box_id="box-1", name="WOD")

    with pytest.raises(SupabaseError):
        await supabase.update_plan(
            "box-1",
            "plan-of-box-2",
            class_limits=[ClassLimit(class_type=wod, included=True, limit=1)],
        )

    assert api.sent("DELETE", "/Plan_Class_Limit") == []
    assert api.sent("POST", "/Plan_Class_Limit") == []


async def test_delete_plan_removes_limits_first(supabase, api):
    api.add("GET", "/Plan", [plan_row()])
    api.add("DELETE", "/Plan_Class_Limit")
    api.add("DELETE", "/Plan")

    await supabase.delete_plan("box-1", "plan-1")

    deletes = [r for r in api.requests if r.method == "DELETE"]
    assert [r.url.path for r in deletes] == ["/rest/v1/Plan_Class_Limit", "/rest/v1/Plan"]
    assert deletes[1].url.params["box_id"] == "eq.box-1"


async def test_delete_plan_of_another_box_is_refused(supabase, api):
    api.add("GET", "/Plan", [])

    with pytest.raises(SupabaseError) as info:
        await supabase.delete_plan("box-1", "plan-of-another-box")

    assert info.value.status_code == 404
    assert api.sent("GET", "/Plan")[0].url.params["box_id"] == "eq.box-1"
    assert [r for r in api.requests if r.method == "DELETE"] == []


async def test_get_session_pack_includes_class_types(supabase, api):
    api.add("GET", "/Session_Pack", [pack_row()])
    api.add("GET", f"/{PACK_RELATIONS_TABLE}", [{"class_type_id": "wod"}, {"class_type_id": "oly"}])

    pack = await supabase.get_session_pack("box-1", "pack-1")

    assert pack.allowed_class_types == ["wod", "oly"]


async def test_create_session_pack_keeps_pack_when_relations_fail(supabase, api):
    api.add("POST", "/Session_Pack", [pack_row()])
    api.add("POST", f"/{PACK_RELATIONS_TABLE}", {"message": "fk violation"}, status_code=409)

    with pytest.raises(SupabaseError):
        await supabase.create_session_pack(
            box_id="box-1",
            name="10 Aulas",
            price=Decimal("80"),
            session_count=10,
            validity_days=60,
            allowed_class_types=["wod"],
        )

    assert api.sent("DELETE", "/Session_Pack") == []


async def test_update_session_pack_of_another_box_keeps_relations(supabase, api):
    api.add("PATCH", "/Session_Pack", [])

    with pytest.raises(SupabaseError) as info:
        await supabase.update_session_pack("box-1", "pack-of-box-2", allowed_class_types=["wod"])

    assert info.value.status_code == 404
    assert api.sent("PATCH", "/Session_Pack")[0].url.params["box_id"] == "eq.box-1"
    assert api.sent("DELETE", f"/{PACK_RELATIONS_TABLE}") == []


async def test_delete_session_pack_removes_relations_first(supabase, api):
    api.add("GET", "/Session_Pack", [pack_row()])
    api.add("DELETE", f"/{PACK_RELATIONS_TABLE}")
    api.add("DELETE", "/Session_Pack")

    await supabase.delete_session_pack("box-1", "pack-1")

    assert [r.url.path for r in api.requests if r.method == "DELETE"] == [
        f"/rest/v1/{PACK_RELATIONS_TABLE}",
        "/rest/v1/Session_Pack",
    ]


async def test_delete_session_pack_of_another_box_is_refused(supabase, api):
    api.add("GET", "/Session_Pack", [])

    with pytest.raises(SupabaseError):
        await supabase.delete_session_pack("box-1", "pack-of-box-2")

    assert [r for r in api.requests if r.method == "DELETE"] == []


async def test_list_class_types_including_inactive(supabase, api):
    api.add("GET", "/Class_Type", [{"id": "wod", "box_id": "box-1", "name": "WOD", "active": False}])

    class_types = await supabase.list_class_types("box-1", active_only=False)

    assert "active" not in api.requests[0].url.params
    assert class_types[0].active is False


async def test_create_class_type(supabase, api):
    api.add("POST", "/Class_Type", [{"id": "wod", "box_id": "box-1", "name": "WOD", "duration_default": 60}])

    class_type = await supabase.create_class_type(box_id="box-1", name="WOD", duration_default=60, capacity_default=14)

    payload = body_of(api.sent("POST", "/Class_Type")[0])[0]
    assert payload["box_id"] == "box-1"
    assert payload["active"] is True
    assert payload["capacity_default"] == 14
    assert payload["waitlist_default"] is None
    assert class_type.duration_default == 60


async def test_update_class_type_is_scoped_to_box(supabase, api):
    api.add("PATCH", "/Class_Type", [{"id": "wod", "box_id": "box-1", "name": "WOD", "color": "#ff0000"}])

    class_type = await supabase.update_class_type("box-1", "wod", color="#ff0000")

    request = api.sent("PATCH", "/Class_Type")[0]
    assert request.url.params["id"] == "eq.wod"
    assert request.url.params["box_id"] == "eq.box-1"
    assert body_of(request)["color"] == "#ff0000"
    assert "updated_at" in body_of(request)
    assert class_type.color == "#ff0000"


async def test_delete_class_type_of_another_box_is_refused(supabase, api):
    api.add("GET", "/Class_Type", [])

    with pytest.raises(SupabaseError) as info:
        await supabase.delete_class_type("box-1", "class-of-box-2")

    assert info.value.status_code == 404
    assert api.sent("DELETE", "/Class_Type") == []


async def test_list_insurances_reads_null_flag_as_inactive(supabase, api):
    api.add("GET", "/Insurance", [
        {"id": "ins-1", "box_id": "box-1", "name": "Seguro anual", "period": "annualy", "is_active": None},
        {"id": "ins-2", "box_id": "box-1", "name": "Seguro mensal", "period": "monthly", "is_active": True},
    ])

    insurances = await supabase.list_insurances("box-1")

    params = api.requests[0].url.params
    assert params["box_id"] == "eq.box-1"
    assert params["order"] == "created_at.asc"
    assert [(i.period, i.is_active) for i in insurances] == [
        (InsurancePeriod.ANNUAL, False),
        (InsurancePeriod.MONTHLY, True),
    ]


async def test_create_insurance(supabase, api):
    api.add("POST", "/Insurance", [{"id": "ins-1", "box_id": "box-1", "name": "Seguro", "period": "semester", "is_active": True}])

    insurance = await supabase.create_insurance(box_id="box-1", name="Seguro", period=InsurancePeriod.SEMESTER)

    payload = body_of(api.sent("POST", "/Insurance")[0])[0]
    assert (payload["box_id"], payload["period"], payload["is_active"]) == ("box-1", "semester", True)
    assert insurance.id == "ins-1"


async def test_update_insurance_is_scoped_to_box(supabase, api):
    api.add("PATCH", "/Insurance", [])

    with pytest.raises(SupabaseError) as info:
        await supabase.update_insurance("box-1", "ins-of-box-2", is_active=False)

    request = api.sent("PATCH", "/Insurance")[0]
    assert request.url.params["box_id"] == "eq.box-1"
    assert info.value.status_code == 404


async def test_update_insurance_period_is_refused(supabase, api):
    with pytest.raises(ValueError):
        await supabase.update_insurance("box-1", "ins-1", period="monthly")

    assert api.requests == []


async def test_delete_insurance(supabase, api):
    api.add("GET", "/Insurance", [{"id": "ins-1", "box_id": "box-1", "name": "Seguro", "period": "monthly"}])
    api.add("DELETE", "/Insurance", [])

    await supabase.delete_insurance("box-1", "ins-1")

    request = api.sent("DELETE", "/Insurance")[0]
    assert (request.url.params["id"], request.url.params["box_id"]) == ("eq.ins-1", "eq.box-1")


async def test_list_staff_boxes_rpc(supabase, api):
    api.add("POST", "/rpc/get_staff_by_userdetail_id", [
        {"box_id": "b1", "box_name": "Porto", "role": "admin"},
        {"box_id": "b2", "box_name": "Braga", "role": "coach"},
    ])

    boxes = await supabase.list_staff_boxes("user-1")

    assert body_of(api.requests[0]) == {"p_userdetail_id": "user-1"}
    assert [b.box_id for b in boxes if b.can_manage] == ["b1"]
