from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import (
    DepartmentCreate,
    DepartmentManagerAdd,
    DepartmentManagersRead,
    DepartmentRead,
    DepartmentStatsRead,
    DepartmentUpdate,
    UserRead,
)
from taskhub.services.access import AccessDeniedError
from taskhub.services.identity_service import ConflictError, IdentityService, NotFoundError, ValidationError

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_department_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


@router.get("", response_model=list[DepartmentRead])
def list_departments(actor: CurrentActor, request: Request, service: Service) -> list[DepartmentRead]:
    try:
        return [DepartmentRead.model_validate(item) for item in service.list_departments(actor)]
    except AccessDeniedError as exc:
        _handle_department_error(request, exc)
        raise


@router.post("", response_model=DepartmentRead, status_code=status.HTTP_201_CREATED)
def create_department(
    payload: DepartmentCreate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> DepartmentRead:
    try:
        return DepartmentRead.model_validate(service.create_department(actor, payload))
    except (AccessDeniedError, ConflictError) as exc:
        _handle_department_error(request, exc)
        raise


@router.get("/{department_id}", response_model=DepartmentRead)
def get_department(department_id: str, actor: CurrentActor, request: Request, service: Service) -> DepartmentRead:
    try:
        return DepartmentRead.model_validate(service.get_department(actor, department_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_department_error(request, exc)
        raise


@router.get("/{department_id}/members", response_model=list[UserRead])
def list_department_members(
    department_id: str,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> list[UserRead]:
    try:
        members = service.list_department_members(actor, department_id)
        return [UserRead.model_validate(item) for item in members]
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_department_error(request, exc)
        raise


@router.patch("/{department_id}", response_model=DepartmentRead)
def update_department(
    department_id: str,
    payload: DepartmentUpdate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> DepartmentRead:
    try:
        return DepartmentRead.model_validate(service.update_department(actor, department_id, payload))
    except (AccessDeniedError, NotFoundError, ConflictError) as exc:
        _handle_department_error(request, exc)
        raise


@router.delete("/{department_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_department(department_id: str, actor: CurrentActor, request: Request, service: Service) -> Response:
    try:
        service.delete_department(actor, department_id)
    except (AccessDeniedError, NotFoundError, ConflictError) as exc:
        _handle_department_error(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{department_id}/stats", response_model=DepartmentStatsRead)
def department_stats(
    department_id: str,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> DepartmentStatsRead:
    try:
        return service.department_stats(actor, department_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_department_error(request, exc)
        raise


@router.get("/{department_id}/managers", response_model=DepartmentManagersRead)
def list_department_managers(
    department_id: str,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> DepartmentManagersRead:
    try:
        return service.list_department_managers(actor, department_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_department_error(request, exc)
        raise


@router.put("/{department_id}/managers", response_model=DepartmentManagersRead)
def add_department_manager(
    department_id: str,
    payload: DepartmentManagerAdd,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> DepartmentManagersRead:
    try:
        return service.add_department_manager(actor, department_id, payload.manager_id)
    except (AccessDeniedError, NotFoundError, ConflictError, ValidationError) as exc:
        _handle_department_error(request, exc)
        raise


@router.delete("/{department_id}/managers/{manager_id}", response_model=DepartmentManagersRead)
def remove_department_manager(
    department_id: str,
    manager_id: str,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> DepartmentManagersRead:
    try:
        return service.remove_department_manager(actor, department_id, manager_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_department_error(request, exc)
        raise
