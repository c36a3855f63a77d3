from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

INSURANCE_WARNING_DAYS = 30


def _as_date(value: Any) -> date | None:
    # Timestamp columns come back as full ISO datetimes
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class StaffRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    COACH = "coach"
    RECEPTIONIST = "receptionist"


# Roles allowed to manage a box from the bot
MANAGER_ROLES = frozenset({StaffRole.SUPER_ADMIN, StaffRole.ADMIN})


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class InsuranceState(str, Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    NOT_PAID = "not_paid"
    PAID = "paid"
    PENDING = "pending"
    FAILED = "failed"


class AdminLink(BaseModel):
    # Binds a Telegram account to a User_detail row
    telegram_user_id: int
    user_detail_id: str
    selected_box_id: Optional[str] = None
    created_at: Optional[datetime] = None


class Box(BaseModel):
    id: str
    name: str
    location: str = ""
    timezone: str = "UTC"
    currency: str = "EUR"
    active: bool = True
    created_at: Optional[datetime] = None


class StaffBox(BaseModel):
    box_id: str
    box_name: Optional[str] = None
    roles: list[StaffRole] = Field(default_factory=list)

    @property
    def can_manage(self) -> bool:
        return any(role in MANAGER_ROLES for role in self.roles)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StaffBox":
        # The RPC returns `role` either as a single value or as an array
        raw_roles = row.get("role") or row.get("roles") or []
        if isinstance(raw_roles, str):
            raw_roles = [raw_roles]
        return cls(
            box_id=row["box_id"],
            box_name=row.get("box_name"),
            roles=[StaffRole(role) for role in raw_roles],
        )


class UserDetail(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


class Membership(BaseModel):
    id: str
    user_id: str
    plan_id: str
    start_date: date
    end_date: date
    is_active: bool = True
    payment_status: PaymentStatus = PaymentStatus.NOT_PAID
    plan_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Membership":
        plan = row.get("Plan") or {}
        return cls.model_validate({**row, "plan_name": plan.get("name")})


class Member(BaseModel):
    id: str
    box_id: str
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None
    joined_at: date
    notes: Optional[str] = None
    insurance_until: Optional[date] = None
    memberships: list[Membership] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Member":
        """
        Build a member from a Box_Member row with embedded User_detail.

        Memberships may be embedded either under User_detail (the usual
        PostgREST path) or directly on the row.
        """

        user = row.get("User_detail") or {}
        membership_rows = user.get("Membership") or row.get("Membership") or []
        return cls(
            id=row["id"],
            box_id=row["box_id"],
            user_id=row["user_id"],
            name=user.get("name", ""),
            email=user.get("email", ""),
            phone=user.get("phone"),
            joined_at=_as_date(row["joined_at"]),
            notes=row.get("notes"),
            insurance_until=_as_date(row.get("seguro_validade")),
            memberships=[
                Membership.from_row(item)
                for item in membership_rows
                if not item.get("deleted_at")
            ],
            created_at=row.get("created_at"),
        )

    @property
    def active_membership(self) -> Membership | None:
        return next((m for m in self.memberships if m.is_active), None)

    def membership_status(self, today: date | None = None) -> MembershipStatus:
        current = self.active_membership
        if current is None:
            return MembershipStatus.INACTIVE
        today = today or date.today()
        if current.end_date > today:
            return MembershipStatus.ACTIVE
        return MembershipStatus.EXPIRED

    def insurance_state(self, today: date | None = None) -> InsuranceState | None:
        if self.insurance_until is None:
            return None
        today = today or date.today()
        if self.insurance_until < today:
            return InsuranceState.EXPIRED
        if self.insurance_until <= today + timedelta(days=INSURANCE_WARNING_DAYS):
            return InsuranceState.EXPIRING_SOON
        return InsuranceState.VALID


class MemberStats(BaseModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    expired: int = 0


class Staff(BaseModel):
    """One person working in a box; aggregated from one Box_Staff row per role."""

    user_id: str
    box_id: str
    name: str
    email: str
    phone: Optional[str] = None
    roles: list[StaffRole] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    staff_ids: dict[StaffRole, str] = Field(default_factory=dict)

    def is_active(self, today: date | None = None) -> bool:
        if self.end_date is None:
            return True
        return self.end_date >= (today or date.today())

    @classmethod
    def group_rows(cls, rows: list[dict[str, Any]]) -> list["Staff"]:
        """
        Merge rows of the same user into a single Staff entry.

        Order follows the first appearance of each user.
        """

        grouped: dict[str, Staff] = {}
        for row in rows:
            role = StaffRole(row["role"])
            start = _as_date(row.get("start_date"))
            end = _as_date(row.get("end_date"))

            staff = grouped.get(row["user_id"])
            if staff is None:
                staff = cls(
                    user_id=row["user_id"],
                    box_id=row["box_id"],
                    name=row.get("name") or "",
                    email=row.get("email") or "",
                    phone=row.get("phone"),
                    start_date=start,
                    end_date=end,
                )
                grouped[row["user_id"]] = staff
            else:
                if start and (staff.start_date is None or start < staff.start_date):
                    staff.start_date = start
                # Any open-ended role keeps the person active
                if staff.end_date is not None and (end is None or end > staff.end_date):
                    staff.end_date = end

            if role not in staff.roles:
                staff.roles.append(role)
            if row.get("id"):
                staff.staff_ids[role] = row["id"]
        return list(grouped.values())


class ClassType(BaseModel):
    id: str
    box_id: str
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    duration_default: Optional[int] = None
    capacity_default: Optional[int] = None
    waitlist_default: Optional[int] = None
    active: bool = True
    created_at: Optional[datetime] = None


class Plan(BaseModel):
    id: str
    box_id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    is_active: bool = True
    plans_public: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlanClassLimit(BaseModel):
    plan_id: str
    class_type_id: str
    limit_per_period: Optional[int] = None
    period_type: str = "week"
    is_limitless: bool = False


class ClassLimit(BaseModel):
    """A class type as seen from a plan: included or not, and how often."""

    class_type: ClassType
    included: bool = False
    limit: Optional[int] = 0  # None = unlimited
    period_type: str = "week"

    @classmethod
    def combine(
        cls,
        class_types: list[ClassType],
        limits: list[PlanClassLimit],
    ) -> list["ClassLimit"]:
        by_type = {limit.class_type_id: limit for limit in limits}
        combined: list[ClassLimit] = []
        for class_type in class_types:
            found = by_type.get(class_type.id)
            if found is None:
                combined.append(cls(class_type=class_type))
                continue
            combined.append(
                cls(
                    class_type=class_type,
                    included=True,
                    limit=None if found.is_limitless else (found.limit_per_period or 0),
                    period_type=found.period_type or "week",
                )
            )
        return combined


class SessionPack(BaseModel):
    id: str
    box_id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    session_count: int
    validity_days: int
    pack_public: bool = True
    is_active: bool = True
    allowed_class_types: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InsurancePeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMESTER = "semester"
    # Stored spelling of the database enum
    ANNUAL = "annualy"


class Insurance(BaseModel):
    """An insurance product the box sells alongside its plans."""

    id: str
    box_id: str
    name: str
    period: InsurancePeriod = InsurancePeriod.MONTHLY
    is_active: bool = True
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Insurance":
        # is_active is nullable; NULL reads as inactive
        return cls.model_validate({**row, "is_active": bool(row.get("is_active"))})
