from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import UserCreate, UserRead, UserStatsRead, UserUpdate
from taskhub.services.access import AccessDeniedError
from taskhub.services.identity_service import ConflictError, IdentityService, NotFoundError

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_user_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.get("", response_model=list[UserRead])
def list_users(
    actor: CurrentActor,
    request: Request,
    service: Service,
    department_id: str | None = None,
) -> list[UserRead]:
    try:
        users = service.list_users(actor, department_id=department_id)
        return [UserRead.model_validate(item) for item in users]
    except AccessDeniedError as exc:
        _handle_user_error(request, exc)
        raise


@router.get("/stats", response_model=UserStatsRead)
def user_stats(actor: CurrentActor, request: Request, service: Service) -> UserStatsRead:
    try:
        return service.user_stats(actor)
    except AccessDeniedError as exc:
        _handle_user_error(request, exc)
        raise


@router.get("/profile", response_model=UserRead)
def get_profile(actor: CurrentActor, request: Request, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_profile(actor))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_user_error(request, exc)
        raise


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, actor: CurrentActor, request: Request, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.create_user(actor, payload))
    except (AccessDeniedError, NotFoundError, ConflictError) as exc:
        _handle_user_error(request, exc)
        raise


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: str, actor: CurrentActor, request: Request, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(actor, user_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_user_error(request, exc)
        raise


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: str,
    payload: UserUpdate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> UserRead:
    try:
        return UserRead.model_validate(service.update_user(actor, user_id, payload))
    except (AccessDeniedError, NotFoundError, ConflictError) as exc:
        _handle_user_error(request, exc)
        raise


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, actor: CurrentActor, request: Request, service: Service) -> Response:
    try:
        service.delete_user(actor, user_id)
    except (AccessDeniedError, NotFoundError, ConflictError) as exc:
        _handle_user_error(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
