from __future__ import annotations

# ruff: noqa: B008
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from trackmystartup.api.deps import get_current_principal, get_gateway, get_reconciler, request_context
from trackmystartup.config import settings
from trackmystartup.database import get_db
from trackmystartup.lifecycle.notifications import success_notification
from trackmystartup.lifecycle.projection import (
    apply_filters,
    by_opportunity,
    by_status,
    order_applications,
    show_more,
)
from trackmystartup.lifecycle.reconciler import Agreement, LifecycleReconciler
from trackmystartup.lifecycle.records import Application, Principal
from trackmystartup.lifecycle.status_model import ApplicationStatus, EntityType, UserRole
from trackmystartup.schemas.lifecycle import (
    ApplicationActionRead,
    ApplicationPage,
    ApplicationRead,
    NotificationRead,
)
from trackmystartup.services.audit import audit_event
from trackmystartup.services.sql_gateway import SqlMutationGateway

router = APIRouter(prefix="/applications", tags=["applications"])


async def _load(gateway: SqlMutationGateway, application_id: str) -> Application:
    return Application.from_row(await gateway.fetch_record(EntityType.application, application_id))


async def _respond(
    action: str,
    record: Application,
    *,
    request: Request,
    db: Session,
    principal: Principal,
) -> ApplicationActionRead:
    await run_in_threadpool(
        audit_event,
        action,
        principal.user_id,
        {"status": record.status.value, "diligence_status": record.diligence_status.value},
        db=db,
        entity=EntityType.application.value,
        record_id=record.id,
        **request_context(request),
    )
    return ApplicationActionRead(
        record=ApplicationRead.model_validate(record),
        notification=NotificationRead.model_validate(success_notification(action)),
    )


@router.get("", response_model=ApplicationPage)
def list_applications(
    opportunity_id: Optional[str] = Query(None),
    status_filter: Optional[list[ApplicationStatus]] = Query(None, alias="status"),
    expanded: bool = Query(False),
    gateway: SqlMutationGateway = Depends(get_gateway),
    principal: Principal = Depends(get_current_principal),
):
    if principal.role == UserRole.admin:
        rows = gateway.list_rows(EntityType.application)
    elif principal.role == UserRole.facilitator:
        rows = gateway.list_rows(EntityType.application, facilitator_id=principal.user_id)
    else:
        rows = gateway.list_rows(EntityType.application, startup_id=sorted(principal.startup_ids))
    apps = [Application.from_row(r) for r in rows]
    predicates = []
    if opportunity_id:
        predicates.append(by_opportunity(opportunity_id))
    if status_filter:
        predicates.append(by_status(status_filter))

    view = show_more(
        order_applications(apply_filters(apps, *predicates)),
        expanded,
        page_size=settings.show_more_page_size,
    )
    return ApplicationPage(
        items=[ApplicationRead.model_validate(a) for a in view.visible],
        hidden_count=view.hidden_count,
        expanded=view.expanded,
    )


@router.post("/{application_id}/accept", response_model=ApplicationActionRead)
async def accept_application(
    application_id: str,
    request: Request,
    agreement: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    app = await _load(gateway, application_id)
    upload = None
    if agreement is not None and agreement.filename:
        upload = Agreement(filename=agreement.filename, content=await agreement.read())
    record = await reconciler.accept_application(principal, app, agreement=upload)
    return await _respond("accept_application", record, request=request, db=db, principal=principal)


@router.post("/{application_id}/reject", response_model=ApplicationActionRead)
async def reject_application(
    application_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    record = await reconciler.reject_application(principal, await _load(gateway, application_id))
    return await _respond("reject_application", record, request=request, db=db, principal=principal)


@router.post("/{application_id}/withdraw", response_model=ApplicationActionRead)
async def withdraw_application(
    application_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    record = await reconciler.withdraw_application(principal, await _load(gateway, application_id))
    return await _respond("withdraw_application", record, request=request, db=db, principal=principal)


@router.post("/{application_id}/diligence/request", response_model=ApplicationActionRead)
async def request_diligence(
    application_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    record = await reconciler.request_diligence(principal, await _load(gateway, application_id))
    return await _respond("request_diligence", record, request=request, db=db, principal=principal)


@router.post("/{application_id}/diligence/approve", response_model=ApplicationActionRead)
async def approve_diligence(
    application_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    record = await reconciler.approve_diligence(principal, await _load(gateway, application_id))
    return await _respond("approve_diligence", record, request=request, db=db, principal=principal)


@router.post("/{application_id}/diligence/reject", response_model=ApplicationActionRead)
async def reject_diligence(
    application_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    record = await reconciler.reject_diligence(principal, await _load(gateway, application_id))
    return await _respond("reject_diligence", record, request=request, db=db, principal=principal)
