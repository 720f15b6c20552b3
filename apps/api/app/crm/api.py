from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.database import get_db
from app.crm.errors import CRMError
from app.crm.schemas import (
    AccountCreate,
    AccountMutationResult,
    AccountRead,
    AccountStatusUpdate,
    AccountUpdate,
    AuditRead,
    HumanCreate,
    HumanMutationResult,
    HumanRead,
    HumanStatusUpdate,
    HumanUpdate,
    NextActionInput,
    OpportunityCreate,
    OpportunityDetail,
    OpportunityHumanLinkCreate,
    OpportunityHumanLinkRead,
    OpportunityHumanLinkUpdate,
    OpportunityMutationResult,
    OpportunityRead,
    OpportunityStage,
    OpportunityStageUpdate,
    OpportunityUpdate,
    UndoResponse,
)
from app.crm.service import AccountService, ActorUser, AuditService, HumanService, OpportunityService
from app.crm.undo import UndoService, default_undo_registry

humans_router = APIRouter(prefix="/api/crm/humans", tags=["crm.humans"])
accounts_router = APIRouter(prefix="/api/crm/accounts", tags=["crm.accounts"])
opportunities_router = APIRouter(prefix="/api/crm", tags=["crm.opportunities"])
audit_router = APIRouter(prefix="/api/crm", tags=["crm.audit"])
human_service = HumanService()
account_service = AccountService()
opportunity_service = OpportunityService()
audit_service = AuditService()
undo_service = UndoService(default_undo_registry())


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=get_correlation_id() or request.headers.get("x-correlation-id"),
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def crm_error_response(request: Request, exc: CRMError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def get_current_user(auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    return ActorUser(user_id=auth_user.sub, correlation_id=get_correlation_id())


@audit_router.get("/audit-log", response_model=list[AuditRead])
def list_audit_entries(
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AuditRead] | JSONResponse:
    return audit_service.list_entity_entries(db, entity_type, entity_id, limit=limit)


@audit_router.get("/audit-log/{entry_id}", response_model=AuditRead)
def get_audit_entry(
    request: Request,
    entry_id: str,
    db: Session = Depends(get_db),
) -> AuditRead | JSONResponse:
    try:
        return audit_service.get_entry(db, entry_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@audit_router.post("/audit-log/{entry_id}/undo", response_model=UndoResponse)
def undo_audit_entry(
    request: Request,
    entry_id: str,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UndoResponse | JSONResponse:
    try:
        return UndoResponse(undo_entry_id=undo_service.undo(db, entry_id, user.user_id))
    except CRMError as exc:
        return crm_error_response(request, exc)


@humans_router.post("", response_model=HumanRead, status_code=status.HTTP_201_CREATED)
def create_human(
    request: Request,
    dto: HumanCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> HumanRead | JSONResponse:
    try:
        return human_service.create_human(db, user, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@humans_router.get("/{human_id}", response_model=HumanRead)
def get_human(
    request: Request,
    human_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> HumanRead | JSONResponse:
    try:
        return human_service.get_human(db, human_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@humans_router.patch("/{human_id}", response_model=HumanMutationResult)
def patch_human(
    request: Request,
    human_id: uuid.UUID,
    dto: HumanUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> HumanMutationResult | JSONResponse:
    try:
        return human_service.update_human(db, user, human_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@humans_router.patch("/{human_id}/status", response_model=HumanMutationResult)
def patch_human_status(
    request: Request,
    human_id: uuid.UUID,
    dto: HumanStatusUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> HumanMutationResult | JSONResponse:
    try:
        return human_service.update_human_status(db, user, human_id, dto.status)
    except CRMError as exc:
        return crm_error_response(request, exc)


@accounts_router.post("", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    request: Request,
    dto: AccountCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AccountRead | JSONResponse:
    try:
        return account_service.create_account(db, user, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@accounts_router.get("/{account_id}", response_model=AccountRead)
def get_account(
    request: Request,
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> AccountRead | JSONResponse:
    try:
        return account_service.get_account(db, account_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@accounts_router.patch("/{account_id}", response_model=AccountMutationResult)
def patch_account(
    request: Request,
    account_id: uuid.UUID,
    dto: AccountUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AccountMutationResult | JSONResponse:
    try:
        return account_service.update_account(db, user, account_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@accounts_router.patch("/{account_id}/status", response_model=AccountMutationResult)
def patch_account_status(
    request: Request,
    account_id: uuid.UUID,
    dto: AccountStatusUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AccountMutationResult | JSONResponse:
    try:
        return account_service.update_account_status(db, user, account_id, dto.status)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.get("/opportunities", response_model=list[OpportunityRead])
def list_opportunities(
    request: Request,
    stage: OpportunityStage | None = Query(default=None),
    owner_id: str | None = Query(default=None),
    human_id: uuid.UUID | None = Query(default=None),
    overdue_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[OpportunityRead] | JSONResponse:
    return opportunity_service.list_opportunities(
        db,
        stage=stage,
        owner_id=owner_id,
        human_id=human_id,
        overdue_only=overdue_only,
        limit=limit,
        offset=offset,
    )


@opportunities_router.post("/opportunities", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    request: Request,
    dto: OpportunityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.create_opportunity(db, user, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.get("/opportunities/{opportunity_id}", response_model=OpportunityDetail)
def get_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> OpportunityDetail | JSONResponse:
    try:
        return opportunity_service.get_opportunity(db, opportunity_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.patch("/opportunities/{opportunity_id}", response_model=OpportunityMutationResult)
def patch_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: OpportunityUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityMutationResult | JSONResponse:
    try:
        return opportunity_service.update_opportunity(db, user, opportunity_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.delete("/opportunities/{opportunity_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        opportunity_service.delete_opportunity(db, user, opportunity_id)
        return {"status": "deleted"}
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.patch("/opportunities/{opportunity_id}/stage", response_model=OpportunityMutationResult)
def patch_opportunity_stage(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: OpportunityStageUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityMutationResult | JSONResponse:
    try:
        return opportunity_service.update_stage(db, user, opportunity_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.patch("/opportunities/{opportunity_id}/next-action", response_model=OpportunityMutationResult)
def patch_opportunity_next_action(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: NextActionInput,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityMutationResult | JSONResponse:
    try:
        return opportunity_service.update_next_action(db, user, opportunity_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.post("/opportunities/{opportunity_id}/next-action/done", response_model=OpportunityMutationResult)
def complete_opportunity_next_action(
    request: Request,
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityMutationResult | JSONResponse:
    try:
        return opportunity_service.complete_next_action(db, user, opportunity_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.post(
    "/opportunities/{opportunity_id}/humans",
    response_model=OpportunityHumanLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def link_opportunity_human(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: OpportunityHumanLinkCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityHumanLinkRead | JSONResponse:
    try:
        return opportunity_service.link_human(db, user, opportunity_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.patch("/opportunity-humans/{link_id}", response_model=OpportunityHumanLinkRead)
def patch_opportunity_human(
    request: Request,
    link_id: uuid.UUID,
    dto: OpportunityHumanLinkUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityHumanLinkRead | JSONResponse:
    try:
        return opportunity_service.update_human_role(db, user, link_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.delete("/opportunity-humans/{link_id}", status_code=status.HTTP_200_OK, response_model=None)
def unlink_opportunity_human(
    request: Request,
    link_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        opportunity_service.unlink_human(db, user, link_id)
        return {"status": "deleted"}
    except CRMError as exc:
        return crm_error_response(request, exc)
