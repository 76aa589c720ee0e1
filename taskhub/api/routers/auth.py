from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import LoginRequest, RegisterRead, RegisterRequest, TokenResponse, UserRead
from taskhub.infra.auth import create_access_token
from taskhub.services.access import AccessDeniedError
from taskhub.services.identity_service import AuthError, ConflictError, IdentityService, NotFoundError

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_auth_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc


@router.post("/register", response_model=RegisterRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, request: Request, service: Service) -> RegisterRead:
    try:
        return service.register(payload)
    except (ConflictError, NotFoundError) as exc:
        _handle_auth_error(request, exc)
        raise


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, service: Service) -> TokenResponse:
    try:
        user = service.login(payload.email, payload.password)
    except AuthError as exc:
        _handle_auth_error(request, exc)
        raise
    token = create_access_token(
        user_id=user.id,
        company_id=user.company_id,
        department_id=user.department_id,
        role=user.role,
    )
    return TokenResponse(access_token=token, role=user.role)


@router.get("/me", response_model=UserRead)
def me(actor: CurrentActor, request: Request, service: Service) -> UserRead:
    try:
        user = service.get_profile(actor)
        return UserRead.model_validate(user)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_auth_error(request, exc)
        raise
