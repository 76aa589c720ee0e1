from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from taskhub.domain.models import AuditLog
from taskhub.domain.policy import Actor
from taskhub.infra import db

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
UNAUDITED_PATHS = {"/healthz", "/readyz", "/api/auth/login"}
ANONYMOUS_COMPANY = "anonymous"


@dataclass
class AuditNote:
    """What a handler wants recorded about the request it served."""

    action: str | None = None
    resource: str | None = None
    denial: dict[str, str] | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def _note_for(request: Request) -> AuditNote:
    note = getattr(request.state, "audit_note", None)
    if not isinstance(note, AuditNote):
        note = AuditNote()
        request.state.audit_note = note
    return note


def label_request(request: Request, *, action: str, resource: str, **extra: Any) -> None:
    note = _note_for(request)
    note.action = action
    note.resource = resource
    note.extra.update(extra)


def record_denial(
    request: Request,
    *,
    reason: str,
    operation: str | None = None,
    resource_type: str | None = None,
) -> None:
    _note_for(request).denial = {
        "reason": reason,
        "operation": operation or "",
        "resource_type": resource_type or "",
    }


def _decision(note: AuditNote | None, status_code: int) -> dict[str, Any]:
    if note is not None and note.denial is not None:
        return {"outcome": "denied", **note.denial}
    if status_code >= 400:
        return {"outcome": "failed", "status_code": status_code}
    return {"outcome": "allowed"}


class AuditMiddleware(BaseHTTPMiddleware):
    """Writes one audit row per write request and per policy denial."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        if path in UNAUDITED_PATHS:
            return response
        note = getattr(request.state, "audit_note", None)
        if not isinstance(note, AuditNote):
            note = None
        denied = note is not None and note.denial is not None
        if request.method not in WRITE_METHODS and not denied:
            return response

        actor = getattr(request.state, "actor", None)
        if not isinstance(actor, Actor):
            actor = None
        route_path = getattr(request.scope.get("route"), "path", path)
        detail: dict[str, Any] = {
            "actor": None if actor is None else {"role": actor.role.value, "department_id": actor.department_id},
            "route": route_path,
            "decision": _decision(note, response.status_code),
        }
        if note is not None:
            detail.update(note.extra)

        row = AuditLog(
            company_id=ANONYMOUS_COMPANY if actor is None else actor.company_id,
            actor_id=None if actor is None else actor.user_id,
            action=(note.action if note and note.action else f"{request.method} {route_path}"),
            resource=(note.resource if note and note.resource else path),
            method=request.method,
            status_code=response.status_code,
            detail=detail,
        )
        try:
            with Session(db.engine) as session:
                session.add(row)
                session.commit()
        except Exception:
            logger.exception("Failed to write audit log for {} {}", request.method, path)
        return response
