# tests/helpers.py
from __future__ import annotations

import json
from typing import Any

import httpx


class FakeApi:
    """
    Stand-in for the PostgREST endpoint, plugged into httpx.MockTransport.

    Responses are queued per (method, path); the last one is repeated.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[tuple[int, Any]]] = {}

    def add(self, method: str, path: str, body: Any = None, status_code: int = 200) -> None:
        self._routes.setdefault((method, path), []).append((status_code, [] if body is None else body))

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and self._path(r) == path]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/rest/v1")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, self._path(request)))
        if not queue:
            return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})
        status_code, body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status_code, json=body)


def body_of(request: httpx.Request) -> Any:
    return json.loads(request.content)


def membership_row(
    end_date: str,
    *,
    membership_id: str = "ms-1",
    is_active: bool = True,
    plan_name: str | None = "Ilimitado",
    deleted_at: str | None = None,
) -> dict[str, Any]:
    return {
        "id": membership_id,
        "user_id": "user-1",
        "plan_id": "plan-1",
        "start_date": "2026-01-01",
        "end_date": end_date,
        "is_active": is_active,
        "payment_status": "paid",
        "deleted_at": deleted_at,
        "Plan": {"name": plan_name} if plan_name else None,
    }


def member_row(
    member_id: str = "member-1",
    *,
    name: str = "Ana Silva",
    email: str = "ana@example.com",
    phone: str | None = "+351912345678",
    joined_at: str = "2026-01-10T09:30:00+00:00",
    insurance: str | None = None,
    memberships: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "id": member_id,
        "box_id": "box-1",
        "user_id": f"user-{member_id}",
        "joined_at": joined_at,
        "notes": None,
        "seguro_validade": insurance,
        "User_detail": {
            "id": f"user-{member_id}",
            "name": name,
            "email": email,
            "phone": phone,
            "Membership": memberships or [],
        },
    }
