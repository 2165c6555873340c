from __future__ import annotations

import logging
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Optional

from trackmystartup.lifecycle.errors import (
    ActionInProgressError,
    ConflictError,
    GatewayError,
    InvalidTransitionError,
    LifecycleError,
    PermissionDeniedError,
)
from trackmystartup.lifecycle.gateway import MutationGateway, record_from_row
from trackmystartup.lifecycle.records import (
    Application,
    CoInvestment,
    DirectOffer,
    IncubationMessage,
    InvestmentOffer,
    Principal,
    RecognitionRecord,
    Record,
    StartupInvitation,
)
from trackmystartup.lifecycle.status_model import (
    ACCEPTED_STAGE,
    READY_FOR_REVIEW_STAGE,
    ApplicationStatus,
    ApprovalStatus,
    DiligenceStatus,
    EntityType,
    InvitationStatus,
    OfferStatus,
    RecognitionStatus,
    UserRole,
    ensure_transition,
)
from trackmystartup.lifecycle.store import LOCAL_ID_PREFIX, RecordStore

logger = logging.getLogger("trackmystartup.reconciler")

DOCUMENTS_BUCKET = "startup-documents"

PROC_REQUEST_DILIGENCE = "request_diligence"
PROC_SAFE_UPDATE_DILIGENCE = "safe_update_diligence_status"
PROC_APPROVE_STARTUP_OFFER = "approve_startup_offer"
PROC_APPROVE_CO_INVESTMENT_STARTUP = "approve_co_investment_offer_startup"
PROC_MARK_MESSAGES_READ = "mark_messages_read"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def safe_file_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name or "") or "agreement.pdf"


@dataclass(frozen=True)
class Agreement:
    filename: str
    content: bytes


@dataclass(frozen=True)
class GatewayCall:
    method: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionPlan:
    """What a legal action will do: one gateway call and the expected record."""

    action: str
    entity: EntityType
    record_id: str
    call: GatewayCall
    expected: Record


def _offer_entity(offer: InvestmentOffer) -> EntityType:
    return EntityType.co_investment_offer if offer.is_co_investment else EntityType.investment_offer


def _require_role(principal: Principal, action: str, *roles: UserRole) -> None:
    if not principal.has_role(*roles):
        raise PermissionDeniedError(action=action, role=principal.role.value)


def _require_application_owner(principal: Principal, app: Application, action: str) -> None:
    _require_role(principal, action, UserRole.facilitator)
    if not principal.manages(app.facilitator_id):
        raise PermissionDeniedError(action=action, role=principal.role.value)


def _require_pending_application(app: Application, action: str) -> None:
    if app.status != ApplicationStatus.pending:
        raise InvalidTransitionError(
            from_status=app.status.value,
            action=action,
            reason="diligence is only available for pending applications",
        )


# ---------------------------------------------------------------------------
# Planning (pure)
# ---------------------------------------------------------------------------


def plan_accept_application(
    principal: Principal, app: Application, *, agreement_url: str | None = None
) -> TransitionPlan:
    action = "accept_application"
    _require_application_owner(principal, app, action)
    ensure_transition("application", app.status, ApplicationStatus.accepted, action=action)

    extra: dict[str, Any] = {"diligence_status": DiligenceStatus.none.value}
    if agreement_url:
        extra["agreement_url"] = agreement_url
    return TransitionPlan(
        action=action,
        entity=EntityType.application,
        record_id=app.id,
        call=GatewayCall(
            "update_status",
            {
                "new_status": ApplicationStatus.accepted.value,
                "extra": extra,
                "expected": {"status": app.status.value},
            },
        ),
        expected=replace(
            app,
            status=ApplicationStatus.accepted,
            diligence_status=DiligenceStatus.none,
            agreement_url=agreement_url or app.agreement_url,
        ),
    )


def plan_reject_application(principal: Principal, app: Application) -> TransitionPlan:
    action = "reject_application"
    _require_application_owner(principal, app, action)
    ensure_transition("application", app.status, ApplicationStatus.rejected, action=action)
    return TransitionPlan(
        action=action,
        entity=EntityType.application,
        record_id=app.id,
        call=GatewayCall(
            "update_status",
            {"new_status": ApplicationStatus.rejected.value, "expected": {"status": app.status.value}},
        ),
        expected=replace(app, status=ApplicationStatus.rejected),
    )


def plan_withdraw_application(principal: Principal, app: Application) -> TransitionPlan:
    action = "withdraw_application"
    if not (principal.manages(app.facilitator_id) or principal.owns_startup(app.startup_id)):
        raise PermissionDeniedError(action=action, role=principal.role.value)
    ensure_transition("application", app.status, ApplicationStatus.withdrawn, action=action)
    return TransitionPlan(
        action=action,
        entity=EntityType.application,
        record_id=app.id,
        call=GatewayCall(
            "update_status",
            {"new_status": ApplicationStatus.withdrawn.value, "expected": {"status": app.status.value}},
        ),
        expected=replace(app, status=ApplicationStatus.withdrawn),
    )


def plan_request_diligence(principal: Principal, app: Application) -> TransitionPlan:
    action = "request_diligence"
    _require_application_owner(principal, app, action)
    _require_pending_application(app, action)
    ensure_transition("diligence", app.diligence_status, DiligenceStatus.requested, action=action)
    return TransitionPlan(
        action=action,
        entity=EntityType.application,
        record_id=app.id,
        call=GatewayCall("call_procedure", {"name": PROC_REQUEST_DILIGENCE, "args": {"p_application_id": app.id}}),
        expected=replace(app, diligence_status=DiligenceStatus.requested),
    )


def _plan_decide_diligence(
    principal: Principal, app: Application, *, decision: DiligenceStatus, action: str
) -> TransitionPlan:
    _require_application_owner(principal, app, action)
    _require_pending_application(app, action)
    ensure_transition("diligence", app.diligence_status, decision, action=action)

    # A rejection resets to none so the startup may request again.
    resulting = DiligenceStatus.approved if decision == DiligenceStatus.approved else DiligenceStatus.none
    return TransitionPlan(
        action=action,
        entity=EntityType.application,
        record_id=app.id,
        call=GatewayCall(
            "call_procedure",
            {
                "name": PROC_SAFE_UPDATE_DILIGENCE,
                "args": {
                    "p_application_id": app.id,
                    "p_new_status": decision.value,
                    "p_old_status": DiligenceStatus.requested.value,
                },
            },
        ),
        expected=replace(app, diligence_status=resulting),
    )


def plan_approve_diligence(principal: Principal, app: Application) -> TransitionPlan:
    return _plan_decide_diligence(
        principal, app, decision=DiligenceStatus.approved, action="approve_diligence"
    )


def plan_reject_diligence(principal: Principal, app: Application) -> TransitionPlan:
    return _plan_decide_diligence(
        principal, app, decision=DiligenceStatus.rejected, action="reject_diligence"
    )


def _plan_offer_decision(principal: Principal, offer: InvestmentOffer, *, approve: bool) -> TransitionPlan:
    kind = offer.kind
    if isinstance(kind, CoInvestment):
        action = "accept_co_investment_offer" if approve else "reject_co_investment_offer"
    else:
        action = "accept_investment_offer" if approve else "reject_investment_offer"

    _require_role(principal, action, UserRole.startup)
    if not principal.owns_startup(offer.startup_id):
        raise PermissionDeniedError(action=action, role=principal.role.value)

    if offer.status == OfferStatus.rejected:
        raise InvalidTransitionError(from_status=offer.status.value, action=action)

    p_action = "approve" if approve else "reject"

    if isinstance(kind, CoInvestment):
        if not offer.surfaced_to_startup:
            raise InvalidTransitionError(
                from_status=offer.status.value,
                action=action,
                reason="investor advisor and lead investor approvals are not complete",
            )
        target = ApprovalStatus.approved if approve else ApprovalStatus.rejected
        ensure_transition("startup_approval", offer.startup_approval, target, action=action)
        if approve:
            expected = replace(
                offer,
                startup_approval=target,
                status=OfferStatus.accepted,
                stage=ACCEPTED_STAGE,
                contact_details_revealed=True,
            )
        else:
            expected = replace(offer, startup_approval=target, status=OfferStatus.rejected)
        return TransitionPlan(
            action=action,
            entity=EntityType.co_investment_offer,
            record_id=offer.id,
            call=GatewayCall(
                "call_procedure",
                {
                    "name": PROC_APPROVE_CO_INVESTMENT_STARTUP,
                    "args": {"p_offer_id": offer.id, "p_approval_action": p_action},
                },
            ),
            expected=expected,
        )

    if not isinstance(kind, DirectOffer):
        raise ValueError(f"Unsupported offer kind: {type(kind).__name__}")

    if approve:
        if offer.stage != READY_FOR_REVIEW_STAGE:
            raise InvalidTransitionError(
                from_status=f"stage {offer.stage}",
                action=action,
                reason="offer is not ready for startup review",
            )
        ensure_transition("offer_stage", offer.stage, ACCEPTED_STAGE, action=action)
        expected = replace(
            offer,
            stage=ACCEPTED_STAGE,
            status=OfferStatus.accepted,
            startup_approval=ApprovalStatus.approved,
            contact_details_revealed=True,
        )
    else:
        ensure_transition("offer_stage", offer.stage, OfferStatus.rejected, action=action)
        expected = replace(offer, status=OfferStatus.rejected, startup_approval=ApprovalStatus.rejected)

    return TransitionPlan(
        action=action,
        entity=EntityType.investment_offer,
        record_id=offer.id,
        call=GatewayCall(
            "call_procedure",
            {
                "name": PROC_APPROVE_STARTUP_OFFER,
                "args": {"p_offer_id": offer.id, "p_approval_action": p_action},
            },
        ),
        expected=expected,
    )


def plan_accept_investment_offer(principal: Principal, offer: InvestmentOffer) -> TransitionPlan:
    return _plan_offer_decision(principal, offer, approve=True)


def plan_reject_investment_offer(principal: Principal, offer: InvestmentOffer) -> TransitionPlan:
    return _plan_offer_decision(principal, offer, approve=False)


def plan_approve_recognition_record(
    principal: Principal, record: RecognitionRecord
) -> TransitionPlan | None:
    """Return None when the record is already approved (idempotent no-op)."""

    action = "approve_recognition_record"
    _require_role(principal, action, UserRole.facilitator)
    if principal.role != UserRole.admin and principal.facilitator_code != record.facilitator_code:
        raise PermissionDeniedError(action=action, role=principal.role.value)

    ensure_transition("recognition", record.status, RecognitionStatus.approved, action=action)
    if record.status == RecognitionStatus.approved:
        return None
    return TransitionPlan(
        action=action,
        entity=EntityType.recognition_record,
        record_id=record.id,
        call=GatewayCall(
            "update_status",
            {
                "new_status": RecognitionStatus.approved.value,
                "expected": {"status": RecognitionStatus.pending.value},
            },
        ),
        expected=replace(record, status=RecognitionStatus.approved),
    )


def plan_advance_invitation(
    principal: Principal,
    invitation: StartupInvitation,
    target: InvitationStatus,
    *,
    now: datetime,
) -> TransitionPlan:
    action = "advance_invitation"
    _require_role(principal, action, UserRole.facilitator)
    if principal.role != UserRole.admin and principal.user_id != invitation.facilitator_id:
        raise PermissionDeniedError(action=action, role=principal.role.value)
    ensure_transition("invitation", invitation.status, target, action=action)

    extra: dict[str, Any] = {}
    expected = replace(invitation, status=target)
    if target == InvitationStatus.sent:
        extra["invitation_sent_at"] = now.isoformat()
        expected = replace(expected, invitation_sent_at=now)
    elif target in {InvitationStatus.accepted, InvitationStatus.declined}:
        extra["response_received_at"] = now.isoformat()
        expected = replace(expected, response_received_at=now)

    return TransitionPlan(
        action=action,
        entity=EntityType.startup_invitation,
        record_id=invitation.id,
        call=GatewayCall(
            "update_status",
            {"new_status": target.value, "extra": extra, "expected": {"status": invitation.status.value}},
        ),
        expected=expected,
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class InFlightGuard:
    """Per-record guard: at most one action in flight for a given id."""

    def __init__(self) -> None:
        self._keys: set[str] = set()

    def busy(self, entity: EntityType, record_id: str) -> bool:
        return f"{entity.value}:{record_id}" in self._keys

    @contextmanager
    def hold(self, entity: EntityType, record_id: str, *, action: str) -> Iterator[None]:
        key = f"{entity.value}:{record_id}"
        if key in self._keys:
            raise ActionInProgressError(record_id=str(record_id), action=action)
        self._keys.add(key)
        try:
            yield
        finally:
            self._keys.discard(key)


class LifecycleReconciler:
    """Decides whether a lifecycle action is legal and applies its outcome.

    Every action validates locally, issues exactly one mutation through the
    injected gateway and merges the authoritative result into the store.
    Failures leave the store untouched.
    """

    def __init__(
        self,
        gateway: MutationGateway,
        *,
        store: Optional[RecordStore] = None,
        guard: Optional[InFlightGuard] = None,
        documents_bucket: str = DOCUMENTS_BUCKET,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.gateway = gateway
        self.store = store if store is not None else RecordStore()
        self.guard = guard if guard is not None else InFlightGuard()
        self.documents_bucket = documents_bucket
        self.clock = clock
        self._mounted = True

    @property
    def mounted(self) -> bool:
        return self._mounted

    def close(self) -> None:
        """Stop applying results of calls still in flight."""

        self._mounted = False

    # -- applications -----------------------------------------------------

    async def accept_application(
        self, principal: Principal, app: Application, *, agreement: Optional[Agreement] = None
    ) -> Application:
        # Validate before touching storage.
        plan_accept_application(principal, app)
        with self.guard.hold(EntityType.application, app.id, action="accept_application"):
            agreement_path = agreement_url = None
            if agreement is not None:
                agreement_path, agreement_url = await self._upload_agreement(app, agreement)
            plan = plan_accept_application(principal, app, agreement_url=agreement_url)
            try:
                return await self._run(plan)
            except LifecycleError:
                # The status did not change; the stored agreement would be orphaned.
                if agreement_path is not None:
                    await self._discard_upload(agreement_path)
                raise

    async def reject_application(self, principal: Principal, app: Application) -> Application:
        return await self._execute(plan_reject_application(principal, app))

    async def withdraw_application(self, principal: Principal, app: Application) -> Application:
        return await self._execute(plan_withdraw_application(principal, app))

    async def request_diligence(self, principal: Principal, app: Application) -> Application:
        return await self._execute(plan_request_diligence(principal, app))

    async def approve_diligence(self, principal: Principal, app: Application) -> Application:
        return await self._execute(plan_approve_diligence(principal, app))

    async def reject_diligence(self, principal: Principal, app: Application) -> Application:
        return await self._execute(plan_reject_diligence(principal, app))

    # -- offers -------------------------------------------------------------

    async def accept_investment_offer(self, principal: Principal, offer: InvestmentOffer) -> InvestmentOffer:
        return await self._execute(plan_accept_investment_offer(principal, offer))

    async def reject_investment_offer(self, principal: Principal, offer: InvestmentOffer) -> InvestmentOffer:
        return await self._execute(plan_reject_investment_offer(principal, offer))

    async def delete_investment_offer(self, principal: Principal, offer: InvestmentOffer) -> None:
        action = "delete_investment_offer"
        _require_role(principal, action, UserRole.startup)
        if not principal.owns_startup(offer.startup_id):
            raise PermissionDeniedError(action=action, role=principal.role.value)
        if not offer.is_terminal:
            raise InvalidTransitionError(
                from_status=offer.status.value,
                action=action,
                reason="only accepted or rejected offers can be deleted",
            )

        entity = _offer_entity(offer)
        with self.guard.hold(entity, offer.id, action=action):
            await self._call(action, self.gateway.delete_record(entity, offer.id))
            if self._mounted:
                self.store.remove(entity, offer.id)
        logger.info("lifecycle_record_deleted", extra={"entity": entity.value, "record_id": offer.id})

    # -- recognition & invitations -----------------------------------------

    async def approve_recognition_record(
        self, principal: Principal, record: RecognitionRecord
    ) -> RecognitionRecord:
        plan = plan_approve_recognition_record(principal, record)
        if plan is None:
            return record
        try:
            return await self._execute(plan)
        except ConflictError as exc:
            current = exc.current
            if isinstance(current, RecognitionRecord) and current.status == RecognitionStatus.approved:
                return current
            raise

    async def advance_invitation(
        self, principal: Principal, invitation: StartupInvitation, target: InvitationStatus
    ) -> StartupInvitation:
        return await self._execute(
            plan_advance_invitation(principal, invitation, target, now=self.clock())
        )

    # -- messages -----------------------------------------------------------

    async def send_message(
        self,
        principal: Principal,
        *,
        application_id: str,
        receiver_id: str,
        text: str,
        attachment_url: str | None = None,
    ) -> IncubationMessage:
        action = "send_message"
        if not text.strip() and not attachment_url:
            raise InvalidTransitionError(from_status="empty", action=action, reason="message is empty")

        now = self.clock()
        fields = {
            "application_id": application_id,
            "sender_id": principal.user_id,
            "receiver_id": receiver_id,
            "message": text,
            "message_type": "file" if attachment_url else "text",
            "attachment_url": attachment_url,
            "is_read": False,
            "created_at": now.isoformat(),
        }
        row = await self._call(
            action, self.gateway.insert_record(EntityType.incubation_message, fields)
        )
        row = dict(row or fields)
        # The backend does not guarantee the id comes back with the insert.
        row.setdefault("id", f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}")
        message = IncubationMessage.from_row(row)
        if self._mounted:
            try:
                message = self.store.merge_message(EntityType.incubation_message, message)
            except LifecycleError:
                # The realtime echo already delivered it.
                message = self.store.get(EntityType.incubation_message, message.id) or message
        return message

    async def mark_messages_read(self, principal: Principal, *, application_id: str) -> list[str]:
        """Mark every unread message addressed to `principal` in one thread as read.

        Returns the ids that changed; an empty list when nothing was unread.
        """

        action = "mark_messages_read"
        with self.guard.hold(EntityType.incubation_message, application_id, action=action):
            result = await self._call(
                action,
                self.gateway.call_procedure(
                    PROC_MARK_MESSAGES_READ,
                    {"p_application_id": application_id, "p_receiver_id": principal.user_id},
                ),
            )
        message_ids = [str(i) for i in (result or {}).get("message_ids") or ()]
        if self._mounted:
            self.store.mark_read(EntityType.incubation_message, message_ids)
        logger.info(
            "lifecycle_messages_read",
            extra={"application_id": application_id, "count": len(message_ids)},
        )
        return message_ids

    # -- reload -------------------------------------------------------------

    async def refresh(self, entity: EntityType, record_id: str) -> Record:
        row = await self._call("refresh", self.gateway.fetch_record(entity, record_id))
        record = record_from_row(entity, row)
        if self._mounted:
            record = self.store.merge(entity, record)
        return record

    # -- internals ----------------------------------------------------------

    async def _upload_agreement(self, app: Application, agreement: Agreement) -> tuple[str, str]:
        stamp = int(self.clock().timestamp() * 1000)
        path = f"agreements/{app.id}/{stamp}-{safe_file_name(agreement.filename)}"
        result = await self._call(
            "upload_agreement",
            self.gateway.upload_file(self.documents_bucket, path, agreement.content),
        )
        if not result.success or not result.url:
            raise GatewayError(operation="upload_agreement", reason="storage rejected the upload")
        return path, result.url

    async def _discard_upload(self, path: str) -> None:
        try:
            await self._call("discard_agreement", self.gateway.delete_file(self.documents_bucket, path))
        except GatewayError as exc:
            # The caller still gets the original failure.
            logger.warning("agreement_discard_failed", extra={"path": path, "error": exc.reason})
            return
        logger.info("agreement_discarded", extra={"bucket": self.documents_bucket, "path": path})

    async def _execute(self, plan: TransitionPlan) -> Any:
        with self.guard.hold(plan.entity, plan.record_id, action=plan.action):
            return await self._run(plan)

    async def _run(self, plan: TransitionPlan) -> Any:
        call = plan.call
        if call.method == "update_status":
            awaitable = self.gateway.update_status(
                plan.entity,
                plan.record_id,
                call.args["new_status"],
                call.args.get("extra"),
                expected=call.args.get("expected"),
            )
        elif call.method == "call_procedure":
            awaitable = self.gateway.call_procedure(call.args["name"], call.args["args"])
        else:
            raise ValueError(f"Unsupported gateway call: {call.method}")

        result = await self._call(plan.action, awaitable)
        if not result:
            await self._raise_conflict(plan)

        record = self._result_record(plan, result)
        if self._mounted:
            self.store.merge(plan.entity, record)
        logger.info(
            "lifecycle_action_applied",
            extra={"action": plan.action, "entity": plan.entity.value, "record_id": plan.record_id},
        )
        return record

    @staticmethod
    def _result_record(plan: TransitionPlan, result: Mapping[str, Any]) -> Record:
        if isinstance(result, Mapping) and "id" in result:
            return record_from_row(plan.entity, result)
        return plan.expected

    async def _call(self, action: str, awaitable):
        try:
            return await awaitable
        except LifecycleError:
            raise
        except Exception as exc:
            logger.error(
                "lifecycle_gateway_failed",
                extra={"action": action, "error": str(exc), "exception_type": type(exc).__name__},
            )
            raise GatewayError(operation=action, reason=str(exc)) from exc

    async def _raise_conflict(self, plan: TransitionPlan) -> None:
        logger.warning(
            "lifecycle_conflict",
            extra={"action": plan.action, "entity": plan.entity.value, "record_id": plan.record_id},
        )
        current: Record | None = None
        try:
            current = await self.refresh(plan.entity, plan.record_id)
        except GatewayError as exc:
            logger.warning(
                "lifecycle_conflict_refetch_failed",
                extra={"record_id": plan.record_id, "error": exc.reason},
            )
        raise ConflictError(entity=plan.entity.value, record_id=plan.record_id, current=current)
