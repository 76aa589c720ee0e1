from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import (
    AssignedTaskCreate,
    AssignedTaskUpdate,
    TaskPriority,
    TaskRead,
    TaskStatsRead,
    TaskStatus,
    TaskType,
)
from taskhub.infra.audit import label_request
from taskhub.services.access import AccessDeniedError
from taskhub.services.task_service import NotFoundError, TaskService, ValidationError

router = APIRouter()


def get_task_service() -> TaskService:
    return TaskService()


Service = Annotated[TaskService, Depends(get_task_service)]


def _handle_task_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


@router.get("", response_model=list[TaskRead])
def list_assigned_tasks(
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
            TaskType.ASSIGNED,
            status=task_status,
            priority=priority,
            department_id=department_id,
        )
    except AccessDeniedError as exc:
        _handle_task_error(request, exc)
        raise


@router.get("/stats", response_model=TaskStatsRead)
def assigned_task_stats(actor: CurrentActor, request: Request, service: Service) -> TaskStatsRead:
    try:
        return service.task_stats(actor, TaskType.ASSIGNED)
    except AccessDeniedError as exc:
        _handle_task_error(request, exc)
        raise


@router.get("/my-tasks", response_model=list[TaskRead])
def list_my_tasks(actor: CurrentActor, service: Service) -> list[TaskRead]:
    return service.list_my_assigned_tasks(actor)


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_assigned_task(
    payload: AssignedTaskCreate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> TaskRead:
    try:
        task = service.create_assigned_task(actor, payload)
    except (AccessDeniedError, NotFoundError, ValidationError) as exc:
        _handle_task_error(request, exc)
        raise
    label_request(
        request,
        action="assigned_task.create",
        resource=f"assigned_task:{task.id}",
        assigned_to=task.assigned_to,
    )
    return task


@router.get("/{task_id}", response_model=TaskRead)
def get_assigned_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> TaskRead:
    try:
        return service.get_task(actor, TaskType.ASSIGNED, task_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_task_error(request, exc)
        raise


@router.patch("/{task_id}", response_model=TaskRead)
def update_assigned_task(
    task_id: str,
    payload: AssignedTaskUpdate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> TaskRead:
    try:
        return service.update_assigned_task(actor, task_id, payload)
    except (AccessDeniedError, NotFoundError, ValidationError) as exc:
        _handle_task_error(request, exc)
        raise


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_assigned_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> Response:
    try:
        service.delete_task(actor, TaskType.ASSIGNED, task_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_task_error(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{task_id}/complete", response_model=TaskRead)
def complete_assigned_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> TaskRead:
    try:
        return service.set_completion(actor, task_id, True)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_task_error(request, exc)
        raise


@router.post("/{task_id}/uncomplete", response_model=TaskRead)
def uncomplete_assigned_task(task_id: str, actor: CurrentActor, request: Request, service: Service) -> TaskRead:
    try:
        return service.set_completion(actor, task_id, False)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_task_error(request, exc)
        raise
