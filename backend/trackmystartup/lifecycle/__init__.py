"""Status model, reconciliation and projection for lifecycle records.

Nothing in this package touches the database or HTTP; the backend is reached
only through a `MutationGateway` implementation.
"""

from trackmystartup.lifecycle.errors import (
    ActionInProgressError,
    ConflictError,
    DuplicateEventError,
    GatewayError,
    InvalidTransitionError,
    LifecycleError,
    PermissionDeniedError,
    RecordNotFoundError,
)
from trackmystartup.lifecycle.reconciler import Agreement, InFlightGuard, LifecycleReconciler
from trackmystartup.lifecycle.store import RecordStore
from trackmystartup.lifecycle.sync import RealtimeSyncAdapter

__all__ = [
    "ActionInProgressError",
    "Agreement",
    "ConflictError",
    "DuplicateEventError",
    "GatewayError",
    "InFlightGuard",
    "InvalidTransitionError",
    "LifecycleError",
    "LifecycleReconciler",
    "PermissionDeniedError",
    "RealtimeSyncAdapter",
    "RecordNotFoundError",
    "RecordStore",
]
