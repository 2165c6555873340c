from __future__ import annotations

# ruff: noqa: B008
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from trackmystartup.api.deps import get_gateway, get_reconciler, request_context, require_roles
from trackmystartup.config import settings
from trackmystartup.database import get_db
from trackmystartup.lifecycle.notifications import success_notification
from trackmystartup.lifecycle.projection import apply_filters, by_fee_type, recognition_sections, show_more
from trackmystartup.lifecycle.reconciler import LifecycleReconciler
from trackmystartup.lifecycle.records import Principal, RecognitionRecord
from trackmystartup.lifecycle.status_model import EntityType, FeeType, UserRole
from trackmystartup.schemas.lifecycle import (
    NotificationRead,
    RecognitionActionRead,
    RecognitionPage,
    RecognitionRecordRead,
    RecognitionSections,
)
from trackmystartup.services.audit import audit_event
from trackmystartup.services.sql_gateway import SqlMutationGateway

router = APIRouter(prefix="/recognition-records", tags=["recognition"])

_facilitator_dep = require_roles(UserRole.facilitator)


def _page(records: list[RecognitionRecord], expanded: bool) -> RecognitionPage:
    view = show_more(records, expanded, page_size=settings.show_more_page_size)
    return RecognitionPage(
        items=[RecognitionRecordRead.model_validate(r) for r in view.visible],
        hidden_count=view.hidden_count,
        expanded=view.expanded,
    )


@router.get("", response_model=RecognitionSections)
def list_recognition_records(
    facilitator_code: Optional[str] = Query(None),
    fee_type: Optional[list[FeeType]] = Query(None),
    expanded: bool = Query(False),
    gateway: SqlMutationGateway = Depends(get_gateway),
    principal: Principal = Depends(_facilitator_dep),
):
    """Records for the caller's facilitator code, split into fee and equity sections.

    Only admins may pick another code.
    """

    code = facilitator_code if principal.role == UserRole.admin else principal.facilitator_code
    if code is None and principal.role != UserRole.admin:
        rows = []
    else:
        rows = gateway.list_rows(EntityType.recognition_record, facilitator_code=code)
    records = [RecognitionRecord.from_row(r) for r in rows]
    if fee_type:
        records = apply_filters(records, by_fee_type(fee_type))
    records.sort(key=lambda r: (r.created_at is None, r.created_at), reverse=True)

    fees, equity = recognition_sections(records)
    return RecognitionSections(fees=_page(fees, expanded), equity=_page(equity, expanded))


@router.post("/{record_id}/approve", response_model=RecognitionActionRead)
async def approve_recognition_record(
    record_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_facilitator_dep),
):
    current = RecognitionRecord.from_row(await gateway.fetch_record(EntityType.recognition_record, record_id))
    record = await reconciler.approve_recognition_record(principal, current)
    await run_in_threadpool(
        audit_event,
        "approve_recognition_record",
        principal.user_id,
        {"status": record.status.value, "fee_type": record.fee_type.value},
        db=db,
        entity=EntityType.recognition_record.value,
        record_id=record.id,
        # Repeated approvals collapse into a single audit row.
        idempotency_key=f"recognition:{record.id}:approved",
        **request_context(request),
    )
    return RecognitionActionRead(
        record=RecognitionRecordRead.model_validate(record),
        notification=NotificationRead.model_validate(success_notification("approve_recognition_record")),
    )
