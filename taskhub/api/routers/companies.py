from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from taskhub.api.deps import CurrentActor, ReactivatingActor, raise_access_denied
from taskhub.domain.models import CompanyRead, CompanyStatsRead, CompanyUpdate
from taskhub.services.access import AccessDeniedError
from taskhub.services.identity_service import ConflictError, IdentityService, NotFoundError

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_company_error(request: Request, exc: Exception) -> None:
    if isinstance(exc, AccessDeniedError):
        raise_access_denied(request, exc)
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.get("/my-company", response_model=CompanyRead)
def get_my_company(actor: CurrentActor, request: Request, service: Service) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.get_company(actor, actor.company_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_company_error(request, exc)
        raise


@router.get("/{company_id}", response_model=CompanyRead)
def get_company(company_id: str, actor: CurrentActor, request: Request, service: Service) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.get_company(actor, company_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_company_error(request, exc)
        raise


@router.patch("/{company_id}", response_model=CompanyRead)
def update_company(
    company_id: str,
    payload: CompanyUpdate,
    actor: CurrentActor,
    request: Request,
    service: Service,
) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.update_company(actor, company_id, payload))
    except (AccessDeniedError, NotFoundError, ConflictError) as exc:
        _handle_company_error(request, exc)
        raise


@router.delete("/{company_id}", response_model=CompanyRead)
def deactivate_company(company_id: str, actor: CurrentActor, request: Request, service: Service) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.deactivate_company(actor, company_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_company_error(request, exc)
        raise


@router.post("/{company_id}/activate", response_model=CompanyRead)
def activate_company(company_id: str, actor: ReactivatingActor, request: Request, service: Service) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.activate_company(actor, company_id))
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_company_error(request, exc)
        raise


@router.get("/{company_id}/stats", response_model=CompanyStatsRead)
def company_stats(company_id: str, actor: CurrentActor, request: Request, service: Service) -> CompanyStatsRead:
    try:
        return service.company_stats(actor, company_id)
    except (AccessDeniedError, NotFoundError) as exc:
        _handle_company_error(request, exc)
        raise
