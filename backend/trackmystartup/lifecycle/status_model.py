from __future__ import annotations

from enum import Enum
from typing import Mapping

from trackmystartup.lifecycle.errors import InvalidTransitionError


class EntityType(str, Enum):
    application = "opportunity_applications"
    investment_offer = "investment_offers"
    co_investment_offer = "co_investment_offers"
    recognition_record = "recognition_records"
    startup_invitation = "startup_invitations"
    incubation_message = "incubation_messages"


class ApplicationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"


class DiligenceStatus(str, Enum):
    none = "none"
    requested = "requested"
    approved = "approved"
    rejected = "rejected"


class OfferStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class ApprovalStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    not_required = "not_required"


class RecognitionStatus(str, Enum):
    pending = "pending"
    approved = "approved"


class FeeType(str, Enum):
    free = "Free"
    fees = "Fees"
    equity = "Equity"
    hybrid = "Hybrid"


class InvitationStatus(str, Enum):
    pending = "pending"
    sent = "sent"
    accepted = "accepted"
    declined = "declined"


class UserRole(str, Enum):
    startup = "Startup"
    facilitator = "Startup Facilitation Center"
    investor = "Investor"
    investment_advisor = "Investment Advisor"
    admin = "Admin"


# Offer stages: 1 investor-advisor, 2 startup-advisor, 3 ready for startup review, 4 accepted.
FIRST_STAGE = 1
READY_FOR_REVIEW_STAGE = 3
ACCEPTED_STAGE = 4
OFFER_STAGES = (1, 2, 3, 4)

EQUITY_FEE_TYPES = frozenset({FeeType.equity, FeeType.hybrid})

APPLICATION_TRANSITIONS: Mapping[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.pending: frozenset(
        {ApplicationStatus.accepted, ApplicationStatus.rejected, ApplicationStatus.withdrawn}
    ),
    ApplicationStatus.accepted: frozenset({ApplicationStatus.withdrawn}),
    ApplicationStatus.rejected: frozenset({ApplicationStatus.withdrawn}),
    ApplicationStatus.withdrawn: frozenset(),
}

# A rejected diligence request is reset to none so the startup can request again.
DILIGENCE_TRANSITIONS: Mapping[DiligenceStatus, frozenset[DiligenceStatus]] = {
    DiligenceStatus.none: frozenset({DiligenceStatus.requested}),
    DiligenceStatus.requested: frozenset({DiligenceStatus.approved, DiligenceStatus.rejected}),
    DiligenceStatus.rejected: frozenset({DiligenceStatus.none, DiligenceStatus.requested}),
    DiligenceStatus.approved: frozenset(),
}

OFFER_STAGE_TRANSITIONS: Mapping[int, frozenset[int | OfferStatus]] = {
    1: frozenset({2, OfferStatus.rejected}),
    2: frozenset({3, OfferStatus.rejected}),
    3: frozenset({4, OfferStatus.rejected}),
    4: frozenset(),
}

STARTUP_APPROVAL_TRANSITIONS: Mapping[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.pending: frozenset({ApprovalStatus.approved, ApprovalStatus.rejected}),
    ApprovalStatus.approved: frozenset(),
    ApprovalStatus.rejected: frozenset(),
    ApprovalStatus.not_required: frozenset(),
}

# approved -> approved is the idempotent repeat.
RECOGNITION_TRANSITIONS: Mapping[RecognitionStatus, frozenset[RecognitionStatus]] = {
    RecognitionStatus.pending: frozenset({RecognitionStatus.approved}),
    RecognitionStatus.approved: frozenset({RecognitionStatus.approved}),
}

INVITATION_TRANSITIONS: Mapping[InvitationStatus, frozenset[InvitationStatus]] = {
    InvitationStatus.pending: frozenset({InvitationStatus.sent, InvitationStatus.declined}),
    InvitationStatus.sent: frozenset({InvitationStatus.accepted, InvitationStatus.declined}),
    InvitationStatus.accepted: frozenset(),
    InvitationStatus.declined: frozenset(),
}

_TABLES: dict[str, Mapping] = {
    "application": APPLICATION_TRANSITIONS,
    "diligence": DILIGENCE_TRANSITIONS,
    "offer_stage": OFFER_STAGE_TRANSITIONS,
    "startup_approval": STARTUP_APPROVAL_TRANSITIONS,
    "recognition": RECOGNITION_TRANSITIONS,
    "invitation": INVITATION_TRANSITIONS,
}

# Used to break ties between events that carry no usable timestamp.
_TERMINAL_RANK: dict[str, int] = {
    ApplicationStatus.pending.value: 0,
    InvitationStatus.sent.value: 1,
    ApplicationStatus.accepted.value: 2,
    ApplicationStatus.rejected.value: 2,
    InvitationStatus.declined.value: 2,
    RecognitionStatus.approved.value: 2,
    ApplicationStatus.withdrawn.value: 3,
}


def allowed_transitions(machine: str, current) -> frozenset:
    """Return the statuses reachable from `current` in the named machine.

    Unknown statuses have no outgoing transitions.
    """

    try:
        table = _TABLES[machine]
    except KeyError:
        raise ValueError(f"Unknown status machine: {machine}") from None
    return table.get(current, frozenset())


def is_terminal(machine: str, current) -> bool:
    allowed = allowed_transitions(machine, current)
    return not allowed or allowed == frozenset({current})


def ensure_transition(machine: str, current, target, *, action: str) -> None:
    if target not in allowed_transitions(machine, current):
        raise InvalidTransitionError(from_status=_value(current), action=action)


def terminal_rank(status) -> int:
    return _TERMINAL_RANK.get(_value(status), 0)


def offer_status_for_stage(stage: int) -> OfferStatus:
    return OfferStatus.accepted if stage >= ACCEPTED_STAGE else OfferStatus.pending


def _value(status) -> str:
    return str(getattr(status, "value", status))
