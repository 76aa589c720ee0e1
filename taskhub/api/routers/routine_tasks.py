from __future__ import annotations

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import RoutineTaskCreate, RoutineTaskRead, RoutineTaskStatsRead, RoutineTaskUpdate
from taskhub.services.access import AccessDeniedError
from taskhub.services.routine_task_service import NotFoundError, RoutineTaskService

router = APIRouter()


def get_routine_task_service() -> RoutineTaskService:
    return RoutineTaskService()


Service = Annotated[RoutineTaskService, Depends(get_routine_task_service)]


def _handle_routine_task_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    raise exc


@router.get("", response_model=list[RoutineTaskRead])
def list_routine_tasks(
    actor: CurrentActor,
    request: Request,
    service: Service,
    performed_by: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[RoutineTaskRead]:
    try:
        rows = service.list_tasks(actor, performed_by=performed_by, start=start, end=end)
        return [RoutineTaskRead.model_validate(item) for item in rows]
    except AccessDeniedError as exc:
        _handle_routine_task_error(request, exc)
        raise


@router.get("/my-tasks", response_model=list[RoutineTaskRead])
def list_my_routine_tasks(actor: CurrentActor, request: Request, service: Service) -> list[RoutineTaskRead]:
    try:
        return [RoutineTaskRead.model_validate(item) for item in service.list_my_tasks(actor)]
    except AccessDeniedError as exc:
        _handle_routine_task_error(request, exc)
        raise


@router.get("/stats", response_model=RoutineTaskStatsRead)
def routine_task_stats(
    actor: CurrentActor,
    request: Request,
    service: Service,
    start: date | None = None,
    end: date | None = None,
) -> RoutineTaskStatsRead:
    try:
        return service.task_stats(actor, start=start, end=end)
    except AccessDeniedError as exc:
        _handle_routine_task_error(request, exc)
        raise


@router.post("", response_model=RoutineTaskRead, status_code=status.HTTP_201_CREATED)
def create_routine_task(
    payload: RoutineTaskCreate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> RoutineTaskRead:
    try:
        return RoutineTaskRead.model_validate(service.create_task(actor, payload))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_routine_task_error(request, exc)
        raise


@router.get("/{task_id}", response_model=RoutineTaskRead)
def get_routine_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> RoutineTaskRead:
    try:
        return RoutineTaskRead.model_validate(service.get_task(actor, task_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_routine_task_error(request, exc)
        raise


@router.patch("/{task_id}", response_model=RoutineTaskRead)
def update_routine_task(
    task_id: str,
    payload: RoutineTaskUpdate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> RoutineTaskRead:
    try:
        return RoutineTaskRead.model_validate(service.update_task(actor, task_id, payload))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_routine_task_error(request, exc)
        raise


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_routine_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> Response:
    try:
        service.delete_task(actor, task_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_routine_task_error(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
