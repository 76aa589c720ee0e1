from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from taskhub.domain.policy import Actor, DenyReason
from taskhub.infra.audit import record_denial
from taskhub.infra.auth import decode_access_token
from taskhub.services.access import AccessDeniedError
from taskhub.services.identity_service import AuthError, IdentityService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def _resolve_actor(request: Request, claims: dict[str, Any], *, require_active_company: bool) -> Actor:
    try:
        actor = IdentityService().resolve_actor(
            claims["sub"],
            claims["company_id"],
            require_active_company=require_active_company,
        )
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    request.state.actor = actor
    return actor


def get_current_actor(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> Actor:
    return _resolve_actor(request, claims, require_active_company=True)


def get_reactivating_actor(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> Actor:
    # Only the company reactivation route accepts actors of a deactivated company.
    return _resolve_actor(request, claims, require_active_company=False)


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
ReactivatingActor = Annotated[Actor, Depends(get_reactivating_actor)]


def raise_access_denied(request: Request, exc: AccessDeniedError) -> None:
    reason = exc.reason
    record_denial(
        request,
        reason=reason.value,
        operation=None if exc.operation is None else exc.operation.value,
        resource_type=None if exc.resource_type is None else exc.resource_type.value,
    )
    status_code = (
        status.HTTP_401_UNAUTHORIZED
        if reason == DenyReason.AUTHENTICATION_REQUIRED
        else status.HTTP_403_FORBIDDEN
    )
    raise HTTPException(
        status_code=status_code,
        detail={"code": reason.value, "message": str(exc)},
    ) from exc
