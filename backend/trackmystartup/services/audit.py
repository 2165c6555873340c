import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trackmystartup import models

logger = logging.getLogger("trackmystartup.audit")


def audit_event(
    action: str,
    user_id: Optional[str],
    payload: Dict[str, Any],
    *,
    db: Session,
    entity: str | None = None,
    record_id: str | None = None,
    idempotency_key: str | None = None,
    request_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> Optional[int]:
    """
    Persist an audit event; if the DB write fails, log it instead.

    Returns the created audit log id when available. A repeated
    `idempotency_key` returns the existing row's id.
    """
    try:
        if idempotency_key:
            existing = (
                db.query(models.AuditLog)
                .filter(models.AuditLog.idempotency_key == idempotency_key)
                .first()
            )
            if existing is not None:
                return existing.id

        log = models.AuditLog(
            action=action,
            user_id=user_id,
            entity=entity,
            record_id=record_id,
            payload_json=json.dumps(payload or {}, default=str),
            idempotency_key=idempotency_key,
            request_id=request_id,
            ip=ip,
            user_agent=user_agent,
        )
        db.add(log)
        db.commit()
        db.refresh(log)
        return log.id
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "audit_write_failed",
            extra={
                "action": action,
                "user_id": user_id,
                "record_id": record_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "error": str(exc),
            },
        )
        return None
