from __future__ import annotations

# ruff: noqa: B008
from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from trackmystartup.api.deps import get_current_principal, get_gateway, get_reconciler, request_context
from trackmystartup.database import get_db
from trackmystartup.lifecycle.errors import PermissionDeniedError
from trackmystartup.lifecycle.notifications import success_notification
from trackmystartup.lifecycle.reconciler import LifecycleReconciler
from trackmystartup.lifecycle.records import Application, IncubationMessage, Principal
from trackmystartup.lifecycle.status_model import EntityType
from trackmystartup.schemas.lifecycle import (
    MessageActionRead,
    MessageCreate,
    MessageRead,
    MessagesReadResult,
    NotificationRead,
)
from trackmystartup.services.audit import audit_event
from trackmystartup.services.sql_gateway import SqlMutationGateway

router = APIRouter(prefix="/applications/{application_id}/messages", tags=["messages"])


def _ensure_participant(principal: Principal, app: Application, action: str) -> None:
    if principal.manages(app.facilitator_id) or principal.owns_startup(app.startup_id):
        return
    raise PermissionDeniedError(action=action, role=principal.role.value)


@router.get("", response_model=list[MessageRead])
def list_messages(
    application_id: str,
    gateway: SqlMutationGateway = Depends(get_gateway),
    principal: Principal = Depends(get_current_principal),
):
    app = Application.from_row(gateway.get_row(EntityType.application, application_id))
    _ensure_participant(principal, app, "list_messages")
    messages = [
        IncubationMessage.from_row(r)
        for r in gateway.list_rows(EntityType.incubation_message, application_id=application_id)
    ]
    messages.sort(key=lambda m: (m.created_at is not None, m.created_at))
    return [MessageRead.model_validate(m) for m in messages]


@router.post("", response_model=MessageActionRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    application_id: str,
    payload: MessageCreate,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    app = Application.from_row(await gateway.fetch_record(EntityType.application, application_id))
    _ensure_participant(principal, app, "send_message")
    message = await reconciler.send_message(
        principal,
        application_id=application_id,
        receiver_id=payload.receiver_id,
        text=payload.message,
        attachment_url=payload.attachment_url,
    )
    await run_in_threadpool(
        audit_event,
        "send_message",
        principal.user_id,
        {"application_id": application_id, "message_type": message.message_type},
        db=db,
        entity=EntityType.incubation_message.value,
        record_id=message.id,
        **request_context(request),
    )
    return MessageActionRead(
        record=MessageRead.model_validate(message),
        notification=NotificationRead.model_validate(success_notification("send_message")),
    )


@router.post("/read", response_model=MessagesReadResult)
async def mark_messages_read(
    application_id: str,
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(get_current_principal),
):
    """Mark the caller's unread messages in this thread as read."""

    app = Application.from_row(await gateway.fetch_record(EntityType.application, application_id))
    _ensure_participant(principal, app, "mark_messages_read")
    message_ids = await reconciler.mark_messages_read(principal, application_id=application_id)
    return MessagesReadResult(
        message_ids=message_ids,
        notification=NotificationRead.model_validate(success_notification("mark_messages_read")),
    )
