from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder

from trackmystartup.api.deps import change_feed
from trackmystartup.lifecycle.gateway import ChangeEvent
from trackmystartup.lifecycle.records import Record
from trackmystartup.lifecycle.status_model import EntityType, UserRole
from trackmystartup.lifecycle.store import RecordStore
from trackmystartup.lifecycle.sync import RealtimeSyncAdapter
from trackmystartup.services.auth import decode_access_token, principal_from_claims

logger = logging.getLogger("trackmystartup.realtime")

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.websocket("/applications")
async def application_changes(websocket: WebSocket, opportunity_id: str, token: Optional[str] = None):
    """Push reconciled application changes for one opportunity."""

    claims = decode_access_token(token) if token else None
    principal = principal_from_claims(claims) if claims else None
    if principal is None or not principal.has_role(UserRole.facilitator):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    subscription = {"opportunity_id": opportunity_id}
    if principal.role != UserRole.admin:
        # Facilitators only see applications to their own opportunities.
        subscription["facilitator_id"] = principal.user_id

    await websocket.accept()
    outbox: asyncio.Queue = asyncio.Queue()

    def _on_change(event: ChangeEvent, record: Optional[Record]) -> None:
        outbox.put_nowait(
            {"operation": event.operation.value, "id": event.record_id, "record": jsonable_encoder(record)}
        )

    adapter = RealtimeSyncAdapter(change_feed, RecordStore(), on_change=_on_change)
    adapter.start(EntityType.application, subscription)
    try:
        while True:
            await websocket.send_json(await outbox.get())
    except WebSocketDisconnect:
        logger.info("realtime_client_disconnected", extra={"opportunity_id": opportunity_id})
    finally:
        await adapter.close()
