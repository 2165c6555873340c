from __future__ import annotations

# ruff: noqa: B008
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from trackmystartup.api.deps import get_gateway, get_reconciler, request_context, require_roles
from trackmystartup.database import get_db
from trackmystartup.lifecycle.notifications import success_notification
from trackmystartup.lifecycle.projection import apply_filters, by_status
from trackmystartup.lifecycle.reconciler import LifecycleReconciler
from trackmystartup.lifecycle.records import Principal, StartupInvitation
from trackmystartup.lifecycle.status_model import EntityType, InvitationStatus, UserRole
from trackmystartup.schemas.lifecycle import (
    InvitationActionRead,
    InvitationAdvance,
    InvitationRead,
    NotificationRead,
)
from trackmystartup.services.audit import audit_event
from trackmystartup.services.sql_gateway import SqlMutationGateway

router = APIRouter(prefix="/invitations", tags=["invitations"])

_facilitator_dep = require_roles(UserRole.facilitator)


@router.get("", response_model=list[InvitationRead])
def list_invitations(
    status_filter: Optional[list[InvitationStatus]] = Query(None, alias="status"),
    gateway: SqlMutationGateway = Depends(get_gateway),
    principal: Principal = Depends(_facilitator_dep),
):
    rows = gateway.list_rows(
        EntityType.startup_invitation,
        facilitator_id=None if principal.role == UserRole.admin else principal.user_id,
    )
    invitations = [StartupInvitation.from_row(r) for r in rows]
    if status_filter:
        invitations = apply_filters(invitations, by_status(status_filter))
    invitations.sort(key=lambda i: (i.created_at is None, i.created_at), reverse=True)
    return [InvitationRead.model_validate(i) for i in invitations]


@router.post("/{invitation_id}/advance", response_model=InvitationActionRead)
async def advance_invitation(
    invitation_id: str,
    payload: InvitationAdvance,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_facilitator_dep),
):
    current = StartupInvitation.from_row(await gateway.fetch_record(EntityType.startup_invitation, invitation_id))
    invitation = await reconciler.advance_invitation(principal, current, payload.status)
    await run_in_threadpool(
        audit_event,
        "advance_invitation",
        principal.user_id,
        {"from": current.status.value, "to": invitation.status.value},
        db=db,
        entity=EntityType.startup_invitation.value,
        record_id=invitation.id,
        **request_context(request),
    )
    return InvitationActionRead(
        record=InvitationRead.model_validate(invitation),
        notification=NotificationRead.model_validate(success_notification("advance_invitation")),
    )
