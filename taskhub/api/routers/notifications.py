from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from taskhub.api.deps import CurrentActor, raise_access_denied
from taskhub.domain.models import (
    DeleteAllResult,
    MarkAllReadResult,
    NotificationRead,
    NotificationStatsRead,
    NotificationType,
    UnreadCountRead,
)
from taskhub.services.access import AccessDeniedError
from taskhub.services.notification_service import NotFoundError, NotificationService

router = APIRouter()


def get_notification_service() -> NotificationService:
    return NotificationService()


Service = Annotated[NotificationService, Depends(get_notification_service)]


def _handle_notification_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    raise exc


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    actor: CurrentActor,
    request: Request,
    service: Service,
    is_read: bool | None = None,
) -> list[NotificationRead]:
    try:
        rows = service.list_notifications(actor, is_read=is_read)
        return [NotificationRead.model_validate(item) for item in rows]
    except AccessDeniedError as exc:
        _handle_notification_error(request, exc)
        raise


@router.delete("", response_model=DeleteAllResult)
def clear_notifications(actor: CurrentActor, request: Request, service: Service) -> DeleteAllResult:
    try:
        return DeleteAllResult(deleted=service.delete_all(actor))
    except AccessDeniedError as exc:
        _handle_notification_error(request, exc)
        raise


@router.get("/unread-count", response_model=UnreadCountRead)
def unread_count(actor: CurrentActor, service: Service) -> UnreadCountRead:
    return UnreadCountRead(unread=service.unread_count(actor))


@router.get("/stats", response_model=NotificationStatsRead)
def notification_stats(actor: CurrentActor, request: Request, service: Service) -> NotificationStatsRead:
    try:
        return service.notification_stats(actor)
    except AccessDeniedError as exc:
        _handle_notification_error(request, exc)
        raise


@router.get("/by-type/{notification_type}", response_model=list[NotificationRead])
def list_notifications_by_type(
    notification_type: NotificationType,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> list[NotificationRead]:
    try:
        rows = service.list_notifications(actor, type=notification_type)
        return [NotificationRead.model_validate(item) for item in rows]
    except AccessDeniedError as exc:
        _handle_notification_error(request, exc)
        raise


@router.post("/mark-all-read", response_model=MarkAllReadResult)
def mark_all_read(actor: CurrentActor, request: Request, service: Service) -> MarkAllReadResult:
    try:
        return MarkAllReadResult(updated=service.mark_all_read(actor))
    except AccessDeniedError as exc:
        _handle_notification_error(request, exc)
        raise


@router.get("/{notification_id}", response_model=NotificationRead)
def get_notification(
    notification_id: str,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> NotificationRead:
    try:
        return NotificationRead.model_validate(service.get_notification(actor, notification_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_notification_error(request, exc)
        raise


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_read(notification_id: str, actor: CurrentActor, request: Request, service: Service) -> NotificationRead:
    try:
        return NotificationRead.model_validate(service.set_read(actor, notification_id, True))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_notification_error(request, exc)
        raise


@router.post("/{notification_id}/unread", response_model=NotificationRead)
def mark_unread(notification_id: str, actor: CurrentActor, request: Request, service: Service) -> NotificationRead:
    try:
        return NotificationRead.model_validate(service.set_read(actor, notification_id, False))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_notification_error(request, exc)
        raise


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(notification_id: str, actor: CurrentActor, request: Request, service: Service) -> Response:
    try:
        service.delete_notification(actor, notification_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_notification_error(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
