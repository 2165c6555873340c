from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
    """Base class for every failure surfaced by the lifecycle layer."""

    code = "lifecycle_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTransitionError(LifecycleError):
    """Local precondition failed. Never reaches the gateway."""

    code = "invalid_transition"

    def __init__(self, *, from_status: str, action: str, reason: str | None = None):
        msg = f"Cannot {action} from status '{from_status}'"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.from_status = from_status
        self.action = action
        self.reason = reason


class ActionInProgressError(InvalidTransitionError):
    code = "action_in_progress"

    def __init__(self, *, record_id: str, action: str):
        super().__init__(from_status="in_flight", action=action, reason="another action is in flight")
        self.record_id = record_id


class PermissionDeniedError(LifecycleError):
    code = "permission_denied"

    def __init__(self, *, action: str, role: str | None):
        super().__init__(f"Role '{role}' may not {action}")
        self.action = action
        self.role = role


class GatewayError(LifecycleError):
    """The remote call failed (network, validation or authorization)."""

    code = "gateway_error"

    def __init__(self, *, operation: str, reason: str):
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.reason = reason


class RecordNotFoundError(GatewayError):
    code = "not_found"

    def __init__(self, *, entity: str, record_id: str):
        super().__init__(operation=f"{entity}.fetch", reason=f"record {record_id} not found")
        self.entity = entity
        self.record_id = record_id


class ConflictError(LifecycleError):
    """Remote state diverged from the assumed precondition.

    `current` carries the authoritative record re-fetched after the conflict,
    when it could be loaded.
    """

    code = "conflict"

    def __init__(self, *, entity: str, record_id: str, current: Any = None):
        super().__init__(f"{entity} {record_id} was changed by someone else")
        self.entity = entity
        self.record_id = record_id
        self.current = current


class DuplicateEventError(LifecycleError):
    """Raised by the store for an already-applied event; callers drop it silently."""

    code = "duplicate_event"
