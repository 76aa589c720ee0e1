from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import (
    TaskActivityCreate,
    TaskActivityRead,
    TaskActivityStatsRead,
    TaskActivityUpdate,
)
from taskhub.services.access import AccessDeniedError
from taskhub.services.task_activity_service import NotFoundError, TaskActivityService

router = APIRouter()


def get_task_activity_service() -> TaskActivityService:
    return TaskActivityService()


Service = Annotated[TaskActivityService, Depends(get_task_activity_service)]


def _handle_activity_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    raise exc


@router.get("", response_model=list[TaskActivityRead])
def list_task_activities(
    actor: CurrentActor,
    request: Request,
    service: Service,
    task_id: str | None = None,
) -> list[TaskActivityRead]:
    try:
        rows = service.list_activities(actor, task_id=task_id)
        return [TaskActivityRead.model_validate(item) for item in rows]
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_activity_error(request, exc)
        raise


@router.post("", response_model=TaskActivityRead, status_code=status.HTTP_201_CREATED)
def create_task_activity(
    payload: TaskActivityCreate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> TaskActivityRead:
    try:
        return TaskActivityRead.model_validate(service.create_activity(actor, payload))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_activity_error(request, exc)
        raise


@router.get("/stats", response_model=TaskActivityStatsRead)
def task_activity_stats(actor: CurrentActor, service: Service) -> TaskActivityStatsRead:
    return service.activity_stats(actor)


@router.get("/{activity_id}", response_model=TaskActivityRead)
def get_task_activity(activity_id: str, actor: CurrentActor, request: Request, service: Service) -> TaskActivityRead:
    try:
        return TaskActivityRead.model_validate(service.get_activity(actor, activity_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_activity_error(request, exc)
        raise


@router.patch("/{activity_id}", response_model=TaskActivityRead)
def update_task_activity(
    activity_id: str,
    payload: TaskActivityUpdate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> TaskActivityRead:
    try:
        return TaskActivityRead.model_validate(service.update_activity(actor, activity_id, payload))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_activity_error(request, exc)
        raise


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task_activity(activity_id: str, actor: CurrentActor, request: Request, service: Service) -> Response:
    try:
        service.delete_activity(actor, activity_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_activity_error(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
