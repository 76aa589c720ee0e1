from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import (
    ClientTaskSummaryRead,
    ProjectTaskCreate,
    ProjectTaskUpdate,
    TaskPriority,
    TaskRead,
    TaskStatsRead,
    TaskStatus,
    TaskType,
)
from taskhub.services.access import AccessDeniedError
from taskhub.services.task_service import NotFoundError, TaskService

router = APIRouter()


def get_task_service() -> TaskService:
    return TaskService()


Service = Annotated[TaskService, Depends(get_task_service)]


def _handle_project_task_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    raise exc


@router.get("", response_model=list[TaskRead])
def list_project_tasks(
    actor: CurrentActor,
    request: Request,
    service: Service,
    task_status: Annotated[TaskStatus | None, Query(alias="status")] = None,
    priority: TaskPriority | None = None,
    department_id: str | None = None,
) -> list[TaskRead]:
    try:
        return service.list_tasks(
            actor,
            TaskType.PROJECT,
            status=task_status,
            priority=priority,
            department_id=department_id,
        )
    except AccessDeniedError as exc:
        _handle_project_task_error(request, exc)
        raise


@router.get("/stats", response_model=TaskStatsRead)
def project_task_stats(actor: CurrentActor, request: Request, service: Service) -> TaskStatsRead:
    try:
        return service.task_stats(actor, TaskType.PROJECT)
    except AccessDeniedError as exc:
        _handle_project_task_error(request, exc)
        raise


@router.get("/by-client", response_model=list[ClientTaskSummaryRead])
def project_tasks_by_client(
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> list[ClientTaskSummaryRead]:
    try:
        return service.project_tasks_by_client(actor)
    except AccessDeniedError as exc:
        _handle_project_task_error(request, exc)
        raise


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_project_task(
    payload: ProjectTaskCreate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> TaskRead:
    try:
        return service.create_project_task(actor, payload)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_project_task_error(request, exc)
        raise


@router.get("/{task_id}", response_model=TaskRead)
def get_project_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> TaskRead:
    try:
        return service.get_task(actor, TaskType.PROJECT, task_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_project_task_error(request, exc)
        raise


@router.patch("/{task_id}", response_model=TaskRead)
def update_project_task(
    task_id: str,
    payload: ProjectTaskUpdate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> TaskRead:
    try:
        return service.update_project_task(actor, task_id, payload)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_project_task_error(request, exc)
        raise


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> Response:
    try:
        service.delete_task(actor, TaskType.PROJECT, task_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_project_task_error(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
