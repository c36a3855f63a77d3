from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

import httpx

from app.core import Settings, get_settings
from app.db.models import (
    AdminLink,
    Box,
    ClassLimit,
    ClassType,
    Insurance,
    InsurancePeriod,
    Member,
    MembershipStatus,
    MemberStats,
    Plan,
    PlanClassLimit,
    SessionPack,
    Staff,
    StaffBox,
    StaffRole,
    UserDetail,
)

logger = logging.getLogger(__name__)

MEMBER_SELECT = "*,User_detail(*,Membership(*,Plan(*)))"
PACK_RELATIONS_TABLE = "SessionPack_ClassTypeRelations"
# User_detail columns; everything else on a member lives on Box_Member
USER_FIELDS = ("name", "email", "phone")


class SupabaseError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _in_filter(values: Iterable[str]) -> str:
    return f"in.({','.join(values)})"


def _emergency_notes(
    notes: str | None,
    emergency_contact: str | None,
    emergency_phone: str | None,
) -> str | None:
    if not emergency_contact and not emergency_phone:
        return notes or None
    info = (
        f"Emergency Contact: {emergency_contact or 'N/A'}\n"
        f"Emergency Phone: {emergency_phone or 'N/A'}"
    )
    return f"{notes}\n\n{info}" if notes else info


class SupabaseClient:
    """
    Minimal async Supabase REST client for the box admin bot.

    Every screen talks to the remote tables through this class; there is no
    other data layer. Service role key is used, so RLS is bypassed: reads
    and writes of box-owned rows always filter on box_id, and the box
    itself comes from BoxContextMiddleware.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        base_url = str(self._settings.supabase_url).rstrip("/")
        self._rest = httpx.AsyncClient(
            base_url=f"{base_url}/rest/v1",
            headers={
                "apikey": self._settings.supabase_service_key,
                "Authorization": f"Bearer {self._settings.supabase_service_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=10.0,
            transport=transport,
        )

    async def close(self) -> None:
        await self._rest.aclose()

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_for_status(response: httpx.Response, message: str) -> None:
        if response.status_code >= 400:
            raise SupabaseError(
                message,
                status_code=response.status_code,
                detail=response.text,
            )

    async def _select(
        self,
        table: str,
        params: dict[str, Any],
        *,
        select: str = "*",
    ) -> list[dict[str, Any]]:
        response = await self._rest.get(f"/{table}", params={**params, "select": select})
        self._raise_for_status(response, f"Supabase REST GET failed for '{table}'")
        return response.json()

    async def _get_single_row(
        self,
        table: str,
        params: dict[str, Any],
        *,
        select: str = "*",
    ) -> dict[str, Any] | None:
        items = await self._select(table, {**params, "limit": 1}, select=select)
        if not items:
            return None
        return items[0]

    async def _insert_rows(
        self,
        table: str,
        payload: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        if not payload:
            return []
        response = await self._rest.post(
            f"/{table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, f"Supabase REST INSERT failed for '{table}'")
        return response.json()

    async def _insert_row(
        self,
        table: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        items = await self._insert_rows(table, [payload])
        if not items:
            raise SupabaseError(f"Empty insert response for table '{table}'")
        return items[0]

    async def _update_rows(
        self,
        table: str,
        params: dict[str, Any],
        payload: dict[str, Any],
    ) -> list[dict[str, Any]]:
        response = await self._rest.patch(
            f"/{table}",
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, f"Supabase REST UPDATE failed for '{table}'")
        return response.json()

    async def _update_box_row(
        self,
        table: str,
        box_id: str,
        row_id: str,
        payload: dict[str, Any],
        *,
        not_found: str,
    ) -> dict[str, Any]:
        """
        Patch one row of a box-owned table. A row of another box counts as missing.
        """
        items = await self._update_rows(
            table,
            {"id": f"eq.{row_id}", "box_id": f"eq.{box_id}"},
            payload,
        )
        if not items:
            raise SupabaseError(not_found, status_code=404)
        return items[0]

    async def _require_box_row(
        self,
        table: str,
        box_id: str,
        row_id: str,
        *,
        not_found: str,
    ) -> dict[str, Any]:
        row = await self._get_single_row(
            table,
            params={"id": f"eq.{row_id}", "box_id": f"eq.{box_id}"},
        )
        if row is None:
            raise SupabaseError(not_found, status_code=404)
        return row

    async def _delete_rows(self, table: str, params: dict[str, Any]) -> None:
        response = await self._rest.delete(f"/{table}", params=params)
        self._raise_for_status(response, f"Supabase REST DELETE failed for '{table}'")

    async def _rpc(self, function: str, args: dict[str, Any]) -> Any:
        response = await self._rest.post(f"/rpc/{function}", json=args)
        self._raise_for_status(response, f"Supabase RPC '{function}' failed")
        return response.json()

    # ------------------------------------------------------------------
    # Identity & boxes
    # ------------------------------------------------------------------

    async def get_admin_link(self, telegram_user_id: int) -> AdminLink | None:
        row = await self._get_single_row(
            "Telegram_Admin",
            params={"telegram_user_id": f"eq.{telegram_user_id}"},
        )
        if row is None:
            return None
        return AdminLink.model_validate(row)

    async def create_admin_link(
        self,
        *,
        telegram_user_id: int,
        user_detail_id: str,
        selected_box_id: str | None = None,
    ) -> AdminLink:
        row = await self._insert_row(
            "Telegram_Admin",
            {
                "telegram_user_id": telegram_user_id,
                "user_detail_id": user_detail_id,
                "selected_box_id": selected_box_id,
            },
        )
        return AdminLink.model_validate(row)

    async def set_selected_box(self, telegram_user_id: int, box_id: str) -> AdminLink:
        items = await self._update_rows(
            "Telegram_Admin",
            {"telegram_user_id": f"eq.{telegram_user_id}"},
            {"selected_box_id": box_id},
        )
        if not items:
            raise SupabaseError("Admin link not found", status_code=404)
        return AdminLink.model_validate(items[0])

    async def list_admin_links(self) -> list[AdminLink]:
        """
        Return every linked admin that has a box selected.
        """
        rows = await self._select(
            "Telegram_Admin",
            params={"selected_box_id": "not.is.null"},
        )
        return [AdminLink.model_validate(row) for row in rows]

    async def get_user_detail_by_email(self, email: str) -> UserDetail | None:
        row = await self._get_single_row(
            "User_detail",
            params={"email": f"eq.{email}", "deleted_at": "is.null"},
        )
        if row is None:
            return None
        return UserDetail.model_validate(row)

    async def _get_or_create_user_detail(
        self,
        *,
        name: str,
        email: str,
        phone: str | None,
    ) -> UserDetail:
        existing = await self.get_user_detail_by_email(email)
        if existing is not None:
            return existing
        row = await self._insert_row(
            "User_detail",
            {
                "id": str(uuid.uuid4()),
                "name": name,
                "email": email,
                "phone": phone,
            },
        )
        return UserDetail.model_validate(row)

    async def list_staff_boxes(self, user_detail_id: str) -> list[StaffBox]:
        """
        Boxes where this person works, with their roles in each.
        """
        rows = await self._rpc(
            "get_staff_by_userdetail_id",
            {"p_userdetail_id": user_detail_id},
        )
        return [StaffBox.from_row(row) for row in rows or []]

    async def get_box(self, box_id: str) -> Box:
        row = await self._get_single_row(
            "Box",
            params={"id": f"eq.{box_id}", "active": "eq.true"},
        )
        if row is None:
            raise SupabaseError("Box not found", status_code=404)
        return Box.model_validate(row)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def list_members(self, box_id: str) -> list[Member]:
        """
        Return the box's members, most recently joined first.
        """
        rows = await self._select(
            "Box_Member",
            params={
                "box_id": f"eq.{box_id}",
                "deleted_at": "is.null",
                "order": "joined_at.desc",
            },
            select=MEMBER_SELECT,
        )
        return [Member.from_row(row) for row in rows]

    async def get_member(self, box_id: str, member_id: str) -> Member:
        row = await self._get_single_row(
            "Box_Member",
            params={"id": f"eq.{member_id}", "box_id": f"eq.{box_id}", "deleted_at": "is.null"},
            select=MEMBER_SELECT,
        )
        if row is None:
            raise SupabaseError("Member not found", status_code=404)
        return Member.from_row(row)

    async def create_member(
        self,
        *,
        box_id: str,
        name: str,
        email: str,
        phone: str | None = None,
        joined_at: date | None = None,
        notes: str | None = None,
        emergency_contact: str | None = None,
        emergency_phone: str | None = None,
        insurance_until: date | None = None,
    ) -> Member:
        """
        Add a person to the box.

        An existing User_detail with the same email is reused, so the same
        person can be a member of several boxes.
        """
        user = await self._get_or_create_user_detail(name=name, email=email, phone=phone)

        payload: dict[str, Any] = {
            "user_id": user.id,
            "box_id": box_id,
            "joined_at": str(joined_at or date.today()),
            "notes": _emergency_notes(notes, emergency_contact, emergency_phone),
        }
        if insurance_until is not None:
            payload["seguro_validade"] = str(insurance_until)

        row = await self._insert_row("Box_Member", payload)
        return await self.get_member(box_id, row["id"])

    async def update_member(
        self,
        box_id: str,
        member_id: str,
        *,
        emergency_contact: str | None = None,
        emergency_phone: str | None = None,
        **changes: Any,
    ) -> Member:
        """
        Update a member. Name, email and phone go to User_detail; notes,
        joined_at and insurance_until go to Box_Member.

        The member must belong to `box_id`; nothing is written otherwise.
        """
        unknown = set(changes) - set(USER_FIELDS) - {"joined_at", "insurance_until", "notes"}
        if unknown:
            raise ValueError(f"Unknown member fields: {', '.join(sorted(unknown))}")

        current = await self.get_member(box_id, member_id)

        user_update = {key: changes.pop(key) for key in USER_FIELDS if key in changes}
        if user_update:
            items = await self._update_rows(
                "User_detail",
                {"id": f"eq.{current.user_id}"},
                user_update,
            )
            if not items:
                raise SupabaseError("User detail not found", status_code=404)

        member_update: dict[str, Any] = {}
        if "joined_at" in changes:
            member_update["joined_at"] = str(changes.pop("joined_at"))
        if "insurance_until" in changes:
            value = changes.pop("insurance_until")
            member_update["seguro_validade"] = str(value) if value is not None else None
        if "notes" in changes or emergency_contact or emergency_phone:
            member_update["notes"] = _emergency_notes(
                changes.pop("notes", current.notes),
                emergency_contact,
                emergency_phone,
            )

        if member_update:
            member_update["updated_at"] = _now_iso()
            await self._update_box_row(
                "Box_Member",
                box_id,
                member_id,
                member_update,
                not_found="Member not found",
            )
        return await self.get_member(box_id, member_id)

    async def delete_member(self, box_id: str, member_id: str) -> None:
        """
        Soft delete: the row stays, marked with deleted_at.
        """
        await self._update_box_row(
            "Box_Member",
            box_id,
            member_id,
            {"deleted_at": _now_iso()},
            not_found="Member not found",
        )

    @staticmethod
    def member_stats(members: list[Member], today: date | None = None) -> MemberStats:
        stats = MemberStats(total=len(members))
        for member in members:
            status = member.membership_status(today)
            if status == MembershipStatus.ACTIVE:
                stats.active += 1
            elif status == MembershipStatus.EXPIRED:
                stats.expired += 1
        stats.inactive = stats.total - stats.active - stats.expired
        return stats

    # ------------------------------------------------------------------
    # Staff
    # ------------------------------------------------------------------

    async def list_staff(self, box_id: str) -> list[Staff]:
        """
        Staff of a box, one entry per person.

        Uses the `get_staff_by_box_id` stored procedure, which joins
        Box_Staff with User_detail and returns one row per role.
        """
        rows = await self._rpc("get_staff_by_box_id", {"p_box_id": box_id})
        rows = [{"box_id": box_id, **row} for row in rows or []]
        return Staff.group_rows(rows)

    async def get_staff(self, box_id: str, user_id: str) -> Staff:
        for staff in await self.list_staff(box_id):
            if staff.user_id == user_id:
                return staff
        raise SupabaseError("Staff member not found", status_code=404)

    async def create_staff(
        self,
        *,
        box_id: str,
        name: str,
        email: str,
        roles: list[StaffRole],
        phone: str | None = None,
        start_date: date | None = None,
    ) -> Staff:
        if not roles:
            raise ValueError("At least one role is required")

        user = await self._get_or_create_user_detail(name=name, email=email, phone=phone)
        start = str(start_date or date.today())
        await self._insert_rows(
            "Box_Staff",
            [
                {"box_id": box_id, "user_id": user.id, "role": role.value, "start_date": start}
                for role in roles
            ],
        )
        return await self.get_staff(box_id, user.id)

    async def update_staff(
        self,
        box_id: str,
        user_id: str,
        *,
        roles: list[StaffRole] | None = None,
        active: bool | None = None,
        **user_changes: Any,
    ) -> Staff:
        unknown = set(user_changes) - set(USER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown staff fields: {', '.join(sorted(unknown))}")
        if roles is not None and not roles:
            raise ValueError("At least one role is required")

        current = await self.get_staff(box_id, user_id)

        if user_changes:
            await self._update_rows("User_detail", {"id": f"eq.{user_id}"}, user_changes)

        if roles is not None:
            removed = [current.staff_ids[role] for role in current.roles if role not in roles and role in current.staff_ids]
            added = [role for role in roles if role not in current.roles]
            if removed:
                await self._delete_rows("Box_Staff", {"id": _in_filter(removed)})
            if added:
                await self._insert_rows(
                    "Box_Staff",
                    [
                        {
                            "box_id": box_id,
                            "user_id": user_id,
                            "role": role.value,
                            "start_date": str(current.start_date or date.today()),
                            "end_date": str(current.end_date) if current.end_date else None,
                        }
                        for role in added
                    ],
                )

        if active is not None:
            await self._update_rows(
                "Box_Staff",
                {"box_id": f"eq.{box_id}", "user_id": f"eq.{user_id}"},
                {
                    "end_date": None if active else str(date.today()),
                    "updated_at": _now_iso(),
                },
            )

        return await self.get_staff(box_id, user_id)

    async def delete_staff(self, box_id: str, user_id: str) -> None:
        await self._delete_rows(
            "Box_Staff",
            {"box_id": f"eq.{box_id}", "user_id": f"eq.{user_id}"},
        )

    # ------------------------------------------------------------------
    # Class types
    # ------------------------------------------------------------------

    async def list_class_types(self, box_id: str, *, active_only: bool = True) -> list[ClassType]:
        params: dict[str, Any] = {"box_id": f"eq.{box_id}", "order": "name.asc"}
        if active_only:
            params["active"] = "eq.true"
        rows = await self._select("Class_Type", params)
        return [ClassType.model_validate(row) for row in rows]

    async def get_class_type(self, box_id: str, class_type_id: str) -> ClassType:
        row = await self._require_box_row(
            "Class_Type",
            box_id,
            class_type_id,
            not_found="Class type not found",
        )
        return ClassType.model_validate(row)

    async def create_class_type(
        self,
        *,
        box_id: str,
        name: str,
        duration_default: int,
        description: str | None = None,
        color: str | None = None,
        capacity_default: int | None = None,
        waitlist_default: int | None = None,
    ) -> ClassType:
        now = _now_iso()
        row = await self._insert_row(
            "Class_Type",
            {
                "box_id": box_id,
                "name": name,
                "description": description,
                "color": color,
                "duration_default": duration_default,
                "capacity_default": capacity_default,
                "waitlist_default": waitlist_default,
                "active": True,
                "created_at": now,
                "updated_at": now,
            },
        )
        return ClassType.model_validate(row)

    async def update_class_type(self, box_id: str, class_type_id: str, **changes: Any) -> ClassType:
        row = await self._update_box_row(
            "Class_Type",
            box_id,
            class_type_id,
            {**changes, "updated_at": _now_iso()},
            not_found="Class type not found",
        )
        return ClassType.model_validate(row)

    async def delete_class_type(self, box_id: str, class_type_id: str) -> None:
        """
        Hard delete. Fails while plans or packs still reference the type;
        deactivate it instead in that case.
        """
        await self._require_box_row("Class_Type", box_id, class_type_id, not_found="Class type not found")
        await self._delete_rows("Class_Type", {"id": f"eq.{class_type_id}", "box_id": f"eq.{box_id}"})

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def list_plans(self, box_id: str) -> list[Plan]:
        rows = await self._select(
            "Plan",
            params={"box_id": f"eq.{box_id}", "order": "created_at.desc"},
        )
        return [Plan.model_validate(row) for row in rows]

    async def get_plan(self, box_id: str, plan_id: str) -> Plan:
        row = await self._require_box_row("Plan", box_id, plan_id, not_found="Plan not found")
        return Plan.model_validate(row)

    async def get_plan_with_limits(
        self,
        box_id: str,
        plan_id: str,
    ) -> tuple[Plan, list[ClassLimit]]:
        """
        Plan plus every active class type of the box, marked with the plan's
        limit for it.
        """
        plan = await self.get_plan(box_id, plan_id)
        class_types = await self.list_class_types(box_id)
        rows = await self._select("Plan_Class_Limit", {"plan_id": f"eq.{plan_id}"})
        limits = [PlanClassLimit.model_validate(row) for row in rows]
        return plan, ClassLimit.combine(class_types, limits)

    async def _insert_class_limits(self, plan_id: str, class_limits: list[ClassLimit]) -> None:
        await self._insert_rows(
            "Plan_Class_Limit",
            [
                {
                    "plan_id": plan_id,
                    "class_type_id": item.class_type.id,
                    "limit_per_period": item.limit,
                    "period_type": item.period_type,
                    "is_limitless": item.limit is None,
                }
                for item in class_limits
                if item.included
            ],
        )

    async def create_plan(
        self,
        *,
        box_id: str,
        name: str,
        price: Decimal,
        description: str | None = None,
        is_active: bool = True,
        plans_public: bool = True,
        class_limits: list[ClassLimit] | None = None,
    ) -> Plan:
        row = await self._insert_row(
            "Plan",
            {
                "box_id": box_id,
                "name": name,
                "description": description,
                "price": str(price),  # Decimal to string for JSON
                "is_active": is_active,
                "plans_public": plans_public,
            },
        )
        plan = Plan.model_validate(row)
        if class_limits:
            try:
                await self._insert_class_limits(plan.id, class_limits)
            except SupabaseError:
                logger.error("Plan %s created but its class limits were not saved", plan.id)
                raise
        return plan

    async def update_plan(
        self,
        box_id: str,
        plan_id: str,
        *,
        class_limits: list[ClassLimit] | None = None,
        **changes: Any,
    ) -> Plan:
        """
        Patch a plan of the box.

        With `class_limits`, the limit rows of exactly those class types are
        replaced; rows for class types not listed (inactive ones, typically)
        are left alone.
        """
        payload = {key: str(value) if isinstance(value, Decimal) else value for key, value in changes.items()}
        payload["updated_at"] = _now_iso()
        row = await self._update_box_row("Plan", box_id, plan_id, payload, not_found="Plan not found")

        if class_limits:
            await self._delete_rows(
                "Plan_Class_Limit",
                {
                    "plan_id": f"eq.{plan_id}",
                    "class_type_id": _in_filter(item.class_type.id for item in class_limits),
                },
            )
            await self._insert_class_limits(plan_id, class_limits)
        return Plan.model_validate(row)

    async def delete_plan(self, box_id: str, plan_id: str) -> None:
        await self.get_plan(box_id, plan_id)
        await self._delete_rows("Plan_Class_Limit", {"plan_id": f"eq.{plan_id}"})
        await self._delete_rows("Plan", {"id": f"eq.{plan_id}", "box_id": f"eq.{box_id}"})

    # ------------------------------------------------------------------
    # Session packs
    # ------------------------------------------------------------------

    async def list_session_packs(self, box_id: str) -> list[SessionPack]:
        rows = await self._select(
            "Session_Pack",
            params={"box_id": f"eq.{box_id}", "order": "created_at.desc"},
        )
        return [SessionPack.model_validate(row) for row in rows]

    async def get_session_pack(self, box_id: str, pack_id: str) -> SessionPack:
        row = await self._require_box_row("Session_Pack", box_id, pack_id, not_found="Session pack not found")
        relations = await self._select(
            PACK_RELATIONS_TABLE,
            {"session_pack_id": f"eq.{pack_id}"},
            select="class_type_id",
        )
        row["allowed_class_types"] = [item["class_type_id"] for item in relations]
        return SessionPack.model_validate(row)

    async def _insert_pack_relations(self, pack_id: str, class_type_ids: list[str]) -> None:
        await self._insert_rows(
            PACK_RELATIONS_TABLE,
            [
                {"session_pack_id": pack_id, "class_type_id": class_type_id}
                for class_type_id in class_type_ids
            ],
        )

    async def create_session_pack(
        self,
        *,
        box_id: str,
        name: str,
        price: Decimal,
        session_count: int,
        validity_days: int,
        description: str | None = None,
        pack_public: bool = True,
        is_active: bool = True,
        allowed_class_types: list[str] | None = None,
    ) -> SessionPack:
        """
        Insert the pack, then its class type relations.

        There is no transaction: if the relations fail, the pack row stays.
        """
        row = await self._insert_row(
            "Session_Pack",
            {
                "box_id": box_id,
                "name": name,
                "description": description,
                "price": str(price),
                "session_count": session_count,
                "validity_days": validity_days,
                "pack_public": pack_public,
                "is_active": is_active,
            },
        )
        pack = SessionPack.model_validate(row)
        if allowed_class_types:
            try:
                await self._insert_pack_relations(pack.id, allowed_class_types)
            except SupabaseError:
                logger.error("Session pack %s created but its class types were not saved", pack.id)
                raise
            pack.allowed_class_types = list(allowed_class_types)
        return pack

    async def update_session_pack(
        self,
        box_id: str,
        pack_id: str,
        *,
        allowed_class_types: list[str] | None = None,
        **changes: Any,
    ) -> SessionPack:
        payload = {key: str(value) if isinstance(value, Decimal) else value for key, value in changes.items()}
        payload["updated_at"] = _now_iso()
        await self._update_box_row(
            "Session_Pack",
            box_id,
            pack_id,
            payload,
            not_found="Session pack not found",
        )

        if allowed_class_types is not None:
            await self._delete_rows(PACK_RELATIONS_TABLE, {"session_pack_id": f"eq.{pack_id}"})
            await self._insert_pack_relations(pack_id, allowed_class_types)
        return await self.get_session_pack(box_id, pack_id)

    async def delete_session_pack(self, box_id: str, pack_id: str) -> None:
        await self._require_box_row("Session_Pack", box_id, pack_id, not_found="Session pack not found")
        await self._delete_rows(PACK_RELATIONS_TABLE, {"session_pack_id": f"eq.{pack_id}"})
        await self._delete_rows("Session_Pack", {"id": f"eq.{pack_id}", "box_id": f"eq.{box_id}"})

    # ------------------------------------------------------------------
    # Insurance products
    # ------------------------------------------------------------------

    async def list_insurances(self, box_id: str) -> list[Insurance]:
        rows = await self._select(
            "Insurance",
            params={"box_id": f"eq.{box_id}", "order": "created_at.asc"},
        )
        return [Insurance.from_row(row) for row in rows]

    async def get_insurance(self, box_id: str, insurance_id: str) -> Insurance:
        row = await self._require_box_row("Insurance", box_id, insurance_id, not_found="Insurance not found")
        return Insurance.from_row(row)

    async def create_insurance(
        self,
        *,
        box_id: str,
        name: str,
        period: InsurancePeriod,
        is_active: bool = True,
    ) -> Insurance:
        row = await self._insert_row(
            "Insurance",
            {
                "box_id": box_id,
                "name": name,
                "period": InsurancePeriod(period).value,
                "is_active": is_active,
                "created_at": _now_iso(),
            },
        )
        return Insurance.from_row(row)

    async def update_insurance(self, box_id: str, insurance_id: str, **changes: Any) -> Insurance:
        """
        Patch name or is_active. The period is fixed once the product exists.
        """

        if "period" in changes:
            raise ValueError("The period of an insurance cannot be changed")
        row = await self._update_box_row(
            "Insurance",
            box_id,
            insurance_id,
            changes,
            not_found="Insurance not found",
        )
        return Insurance.from_row(row)

    async def delete_insurance(self, box_id: str, insurance_id: str) -> None:
        await self._require_box_row("Insurance", box_id, insurance_id, not_found="Insurance not found")
        await self._delete_rows("Insurance", {"id": f"eq.{insurance_id}", "box_id": f"eq.{box_id}"})


_supabase_client: SupabaseClient | None = None


def get_supabase_client() -> SupabaseClient:
    """
    Lazy singleton for SupabaseClient.

    Closed by the bot's shutdown hook (see app.bot.main).
    """

    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client


async def close_supabase_client() -> None:
    global _supabase_client
    if _supabase_client is not None:
        await _supabase_client.close()
        _supabase_client = None
