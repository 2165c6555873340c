from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import DateTime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trackmystartup import models
from trackmystartup.lifecycle.errors import GatewayError, RecordNotFoundError
from trackmystartup.lifecycle.gateway import ChangeEvent, ChangeOperation, UploadResult
from trackmystartup.lifecycle.records import parse_timestamp
from trackmystartup.lifecycle.status_model import (
    ACCEPTED_STAGE,
    READY_FOR_REVIEW_STAGE,
    ApplicationStatus,
    ApprovalStatus,
    DiligenceStatus,
    EntityType,
    OfferStatus,
)
from trackmystartup.services import storage
from trackmystartup.services.change_feed import InProcessChangeFeed

logger = logging.getLogger("trackmystartup.gateway")

MODELS: dict[EntityType, type] = {
    EntityType.application: models.OpportunityApplication,
    EntityType.investment_offer: models.InvestmentOffer,
    EntityType.co_investment_offer: models.CoInvestmentOffer,
    EntityType.recognition_record: models.RecognitionRecord,
    EntityType.startup_invitation: models.StartupInvitation,
    EntityType.incubation_message: models.IncubationMessage,
}

CO_INVESTMENT_PENDING_STARTUP = "pending_startup_approval"


@dataclass(frozen=True)
class TransitionResult:
    updated: bool
    rowcount: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_values(model: type, values: Mapping[str, Any]) -> dict[str, Any]:
    """Keep known columns only; ISO strings become datetimes for DateTime columns."""

    columns = model.__table__.columns
    out: dict[str, Any] = {}
    for key, value in values.items():
        if key not in columns:
            continue
        if isinstance(columns[key].type, DateTime) and isinstance(value, str):
            value = parse_timestamp(value)
        out[key] = value
    return out


def atomic_transition(
    *,
    db: Session,
    model: type,
    record_id: str,
    guards: Mapping[str, Any] | None = None,
    updates: Mapping[str, Any],
) -> TransitionResult:
    """Apply a status transition with an atomic DB guard.

    Performs a single conditional UPDATE:

        UPDATE <table> SET ... WHERE id = :id AND <column> = :expected ...

    Guard values that are sets/lists/tuples become `IN (...)`. Callers
    control commit/rollback.
    """

    query = db.query(model).filter(model.id == str(record_id))
    for column, expected in (guards or {}).items():
        attr = getattr(model, column)
        if isinstance(expected, (set, frozenset, list, tuple)):
            query = query.filter(attr.in_([getattr(v, "value", v) for v in expected]))
        else:
            query = query.filter(attr == getattr(expected, "value", expected))

    rowcount = query.update(dict(updates), synchronize_session=False)
    return TransitionResult(updated=rowcount > 0, rowcount=int(rowcount or 0))


class SqlMutationGateway:
    """Mutation gateway over a SQLAlchemy session.

    Named procedures mirror the hosted backend's RPCs: each one is a guarded
    conditional update that returns the changed row, or None when the guard
    no longer holds.
    """

    def __init__(self, db: Session, *, feed: Optional[InProcessChangeFeed] = None):
        self.db = db
        self.feed = feed
        self._pending: list[ChangeEvent] = []
        self._procedures: dict[str, Callable[[Mapping[str, Any]], Optional[dict[str, Any]]]] = {
            "request_diligence": self._request_diligence,
            "safe_update_diligence_status": self._safe_update_diligence_status,
            "approve_startup_offer": self._approve_startup_offer,
            "approve_co_investment_offer_startup": self._approve_co_investment_offer_startup,
            "mark_messages_read": self._mark_messages_read,
        }

    # -- protocol -----------------------------------------------------------
    #
    # Session work is blocking; it runs in the threadpool and the resulting
    # change events are published back on the event loop.

    async def update_status(
        self,
        entity: EntityType,
        record_id: str,
        new_status: str,
        extra: Optional[Mapping[str, Any]] = None,
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        updates = {"status": new_status, **dict(extra or {})}
        return await self._offload(
            self._guarded_update, entity, record_id, guards=expected, updates=updates, operation="update_status"
        )

    async def insert_record(self, entity: EntityType, fields: Mapping[str, Any]) -> dict[str, Any]:
        return await self._offload(self._insert, entity, fields)

    async def call_procedure(self, name: str, args: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        proc = self._procedures.get(name)
        if proc is None:
            raise GatewayError(operation=name, reason="unknown procedure")
        logger.info("gateway_procedure", extra={"procedure": name, "procedure_args": dict(args)})
        return await self._offload(proc, args)

    async def fetch_record(self, entity: EntityType, record_id: str) -> dict[str, Any]:
        return await self._offload(self.get_row, entity, record_id)

    async def delete_record(self, entity: EntityType, record_id: str) -> None:
        await self._offload(self._delete, entity, record_id)

    async def upload_file(self, bucket: str, path: str, blob: bytes) -> UploadResult:
        return await run_in_threadpool(storage.upload_file, bucket, path, blob)

    async def delete_file(self, bucket: str, path: str) -> None:
        try:
            await run_in_threadpool(storage.delete_object, bucket, path)
        except (OSError, ValueError) as exc:
            raise GatewayError(operation="storage.delete", reason=str(exc)) from exc

    # -- reads --------------------------------------------------------------

    def get_row(self, entity: EntityType, record_id: str) -> dict[str, Any]:
        model = MODELS[entity]
        try:
            obj = self.db.get(model, str(record_id))
        except SQLAlchemyError as exc:
            raise GatewayError(operation=f"{entity.value}.fetch", reason=str(exc)) from exc
        if obj is None:
            raise RecordNotFoundError(entity=entity.value, record_id=str(record_id))
        return models.row_to_dict(obj)

    def list_rows(self, entity: EntityType, **filters: Any) -> list[dict[str, Any]]:
        model = MODELS[entity]
        query = self.db.query(model)
        for column, value in filters.items():
            if value is None:
                continue
            attr = getattr(model, column)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.filter(attr.in_(list(value)))
            else:
                query = query.filter(attr == value)
        try:
            return [models.row_to_dict(obj) for obj in query.all()]
        except SQLAlchemyError as exc:
            raise GatewayError(operation=f"{entity.value}.list", reason=str(exc)) from exc

    # -- procedures ---------------------------------------------------------

    def _request_diligence(self, args: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        return self._guarded_update(
            EntityType.application,
            args["p_application_id"],
            guards={
                "status": ApplicationStatus.pending,
                "diligence_status": {DiligenceStatus.none, DiligenceStatus.rejected},
            },
            updates={"diligence_status": DiligenceStatus.requested.value},
            operation="request_diligence",
        )

    def _safe_update_diligence_status(self, args: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        new_status = DiligenceStatus(args["p_new_status"])
        old_status = DiligenceStatus(args.get("p_old_status") or DiligenceStatus.requested.value)
        if new_status not in {DiligenceStatus.approved, DiligenceStatus.rejected}:
            raise GatewayError(operation="safe_update_diligence_status", reason=f"invalid status {new_status.value}")

        # A rejected request is stored as none so it can be requested again.
        stored = DiligenceStatus.approved if new_status == DiligenceStatus.approved else DiligenceStatus.none
        return self._guarded_update(
            EntityType.application,
            args["p_application_id"],
            guards={"status": ApplicationStatus.pending, "diligence_status": old_status},
            updates={"diligence_status": stored.value},
            operation="safe_update_diligence_status",
        )

    def _approve_startup_offer(self, args: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        action = _approval_action(args, "approve_startup_offer")
        if action == "approve":
            return self._guarded_update(
                EntityType.investment_offer,
                args["p_offer_id"],
                guards={"stage": READY_FOR_REVIEW_STAGE, "status": OfferStatus.pending},
                updates={
                    "stage": ACCEPTED_STAGE,
                    "status": OfferStatus.accepted.value,
                    "startup_approval_status": ApprovalStatus.approved.value,
                    "contact_details_revealed": True,
                },
                operation="approve_startup_offer",
            )
        return self._guarded_update(
            EntityType.investment_offer,
            args["p_offer_id"],
            guards={"status": OfferStatus.pending, "stage": (1, 2, 3)},
            updates={
                "status": OfferStatus.rejected.value,
                "startup_approval_status": ApprovalStatus.rejected.value,
            },
            operation="approve_startup_offer",
        )

    def _approve_co_investment_offer_startup(self, args: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        action = _approval_action(args, "approve_co_investment_offer_startup")
        guards = {
            "status": CO_INVESTMENT_PENDING_STARTUP,
            "startup_approval_status": ApprovalStatus.pending,
            "lead_investor_approval_status": ApprovalStatus.approved,
            "investor_advisor_approval_status": {ApprovalStatus.approved, ApprovalStatus.not_required},
        }
        if action == "approve":
            updates = {
                "status": OfferStatus.accepted.value,
                "startup_approval_status": ApprovalStatus.approved.value,
                "stage": ACCEPTED_STAGE,
                "contact_details_revealed": True,
            }
        else:
            updates = {
                "status": OfferStatus.rejected.value,
                "startup_approval_status": ApprovalStatus.rejected.value,
            }
        return self._guarded_update(
            EntityType.co_investment_offer,
            args["p_offer_id"],
            guards=guards,
            updates=updates,
            operation="approve_co_investment_offer_startup",
        )

    def _mark_messages_read(self, args: Mapping[str, Any]) -> dict[str, Any]:
        model = models.IncubationMessage
        application_id = str(args["p_application_id"])
        unread = self.db.query(model.id).filter(
            model.application_id == application_id,
            model.receiver_id == str(args["p_receiver_id"]),
            model.is_read.is_(False),
        )
        try:
            message_ids = [row.id for row in unread.all()]
            if message_ids:
                self.db.query(model).filter(model.id.in_(message_ids)).update(
                    {"is_read": True}, synchronize_session=False
                )
                self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise GatewayError(operation="mark_messages_read", reason=str(exc)) from exc

        for message_id in message_ids:
            self._publish(
                EntityType.incubation_message,
                ChangeOperation.update,
                self.get_row(EntityType.incubation_message, message_id),
            )
        return {"application_id": application_id, "message_ids": message_ids}

    # -- internals ----------------------------------------------------------

    async def _offload(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await run_in_threadpool(func, *args, **kwargs)
        finally:
            self._flush()

    def _insert(self, entity: EntityType, fields: Mapping[str, Any]) -> dict[str, Any]:
        model = MODELS[entity]
        try:
            obj = model(**_coerce_values(model, fields))
            self.db.add(obj)
            self.db.commit()
            self.db.refresh(obj)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise GatewayError(operation=f"{entity.value}.insert", reason=str(exc)) from exc

        row = models.row_to_dict(obj)
        self._publish(entity, ChangeOperation.insert, row)
        return row

    def _delete(self, entity: EntityType, record_id: str) -> None:
        model = MODELS[entity]
        try:
            rowcount = self.db.query(model).filter(model.id == str(record_id)).delete(synchronize_session=False)
            if not rowcount:
                self.db.rollback()
                raise RecordNotFoundError(entity=entity.value, record_id=str(record_id))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise GatewayError(operation=f"{entity.value}.delete", reason=str(exc)) from exc
        self._publish(entity, ChangeOperation.delete, {"id": str(record_id)})


    def _guarded_update(
        self,
        entity: EntityType,
        record_id: str,
        *,
        guards: Optional[Mapping[str, Any]],
        updates: Mapping[str, Any],
        operation: str,
    ) -> Optional[dict[str, Any]]:
        model = MODELS[entity]
        values = _coerce_values(model, updates)
        if "updated_at" in model.__table__.columns:
            values["updated_at"] = _utcnow()

        try:
            result = atomic_transition(
                db=self.db, model=model, record_id=record_id, guards=guards, updates=values
            )
            if not result.updated:
                self.db.rollback()
                # Distinguish a missing row from a failed guard.
                self.get_row(entity, record_id)
                logger.info(
                    "gateway_guard_failed",
                    extra={"operation": operation, "entity": entity.value, "record_id": str(record_id)},
                )
                return None
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise GatewayError(operation=operation, reason=str(exc)) from exc

        row = self.get_row(entity, record_id)
        self._publish(entity, ChangeOperation.update, row)
        return row

    def _publish(self, entity: EntityType, operation: ChangeOperation, row: Mapping[str, Any]) -> None:
        if self.feed is None:
            return
        ts = parse_timestamp(row.get("updated_at") or row.get("created_at")) or _utcnow()
        self._pending.append(ChangeEvent(entity=entity, operation=operation, payload=dict(row), commit_timestamp=ts))

    def _flush(self) -> None:
        # Subscriber queues belong to the event loop; only publish from it.
        pending, self._pending = self._pending, []
        for event in pending:
            self.feed.publish(event)


def _approval_action(args: Mapping[str, Any], operation: str) -> str:
    action = str(args.get("p_approval_action") or "").lower()
    if action not in {"approve", "reject"}:
        raise GatewayError(operation=operation, reason=f"invalid approval action {action!r}")
    return action
