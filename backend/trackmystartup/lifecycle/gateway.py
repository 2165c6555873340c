from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Mapping, Optional, Protocol

from trackmystartup.lifecycle.records import (
    Application,
    IncubationMessage,
    InvestmentOffer,
    RecognitionRecord,
    Record,
    StartupInvitation,
    parse_timestamp,
)
from trackmystartup.lifecycle.status_model import EntityType

_RECORD_TYPES = {
    EntityType.application: Application,
    EntityType.investment_offer: InvestmentOffer,
    EntityType.co_investment_offer: InvestmentOffer,
    EntityType.recognition_record: RecognitionRecord,
    EntityType.startup_invitation: StartupInvitation,
    EntityType.incubation_message: IncubationMessage,
}


class ChangeOperation(str, Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    entity: EntityType
    operation: ChangeOperation
    payload: Mapping[str, Any]
    commit_timestamp: datetime | None = None

    @property
    def record_id(self) -> str:
        return str(self.payload["id"])

    @property
    def timestamp(self) -> datetime | None:
        return self.commit_timestamp or parse_timestamp(
            self.payload.get("updated_at") or self.payload.get("created_at")
        )


@dataclass(frozen=True)
class UploadResult:
    success: bool
    url: str | None = None


def record_from_row(entity: EntityType, row: Mapping[str, Any]) -> Record:
    return _RECORD_TYPES[entity].from_row(row)


class MutationGateway(Protocol):
    """Boundary to the hosted backend.

    Implementations raise `GatewayError` for remote failures. Guarded calls
    (`update_status` with `expected`, and procedures) return `None` or an
    empty result when their precondition no longer holds.
    """

    async def update_status(
        self,
        entity: EntityType,
        record_id: str,
        new_status: str,
        extra: Optional[Mapping[str, Any]] = None,
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[dict[str, Any]]: ...

    async def insert_record(self, entity: EntityType, fields: Mapping[str, Any]) -> dict[str, Any]: ...

    async def call_procedure(self, name: str, args: Mapping[str, Any]) -> Optional[dict[str, Any]]: ...

    async def fetch_record(self, entity: EntityType, record_id: str) -> dict[str, Any]: ...

    async def delete_record(self, entity: EntityType, record_id: str) -> None: ...

    async def upload_file(self, bucket: str, path: str, blob: bytes) -> UploadResult: ...

    async def delete_file(self, bucket: str, path: str) -> None: ...


class ChangeFeed(Protocol):
    def subscribe(
        self, entity: EntityType, filter: Optional[Mapping[str, Any]] = None
    ) -> AsyncIterator[ChangeEvent]: ...
