"""Transient, reconciled copies of the records owned by the backend.

Every record is immutable; transitions produce a new instance through
`dataclasses.replace`. `from_row` accepts the column dicts returned by the
mutation gateway and by realtime change events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Union

from trackmystartup.lifecycle.status_model import (
    ACCEPTED_STAGE,
    EQUITY_FEE_TYPES,
    FIRST_STAGE,
    ApplicationStatus,
    ApprovalStatus,
    DiligenceStatus,
    FeeType,
    InvitationStatus,
    OfferStatus,
    RecognitionStatus,
    UserRole,
)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Principal:
    """The acting user, passed explicitly into every reconciler call."""

    user_id: str
    role: UserRole
    facilitator_code: str | None = None
    startup_ids: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, *roles: UserRole) -> bool:
        return self.role == UserRole.admin or self.role in roles

    def owns_startup(self, startup_id: str | None) -> bool:
        if self.role == UserRole.admin:
            return True
        return startup_id is not None and str(startup_id) in self.startup_ids

    def manages(self, facilitator_id: str | None) -> bool:
        """True when this facilitator owns the opportunity behind a record."""

        if self.role == UserRole.admin:
            return True
        return self.role == UserRole.facilitator and facilitator_id is not None and facilitator_id == self.user_id


@dataclass(frozen=True)
class Application:
    id: str
    startup_id: str
    opportunity_id: str
    facilitator_id: str | None = None
    status: ApplicationStatus = ApplicationStatus.pending
    diligence_status: DiligenceStatus = DiligenceStatus.none
    agreement_url: str | None = None
    contract_url: str | None = None
    startup_name: str | None = None
    diligence_urls: tuple[str, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Application":
        return cls(
            id=str(row["id"]),
            startup_id=str(row.get("startup_id")),
            opportunity_id=str(row.get("opportunity_id")),
            facilitator_id=_opt_str(row.get("facilitator_id")),
            status=ApplicationStatus(row.get("status") or "pending"),
            diligence_status=DiligenceStatus(row.get("diligence_status") or "none"),
            agreement_url=_opt_str(row.get("agreement_url")),
            contract_url=_opt_str(row.get("contract_url")),
            startup_name=_opt_str(row.get("startup_name")),
            diligence_urls=tuple(row.get("diligence_urls") or ()),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(frozen=True)
class DirectOffer:
    pass


@dataclass(frozen=True)
class CoInvestment:
    parent_id: str


OfferKind = Union[DirectOffer, CoInvestment]


@dataclass(frozen=True)
class InvestmentOffer:
    id: str
    startup_id: str
    investor_id: str
    offer_amount: float
    equity_percentage: float
    currency: str = "USD"
    stage: int = FIRST_STAGE
    status: OfferStatus = OfferStatus.pending
    contact_details_revealed: bool = False
    kind: OfferKind = DirectOffer()
    investor_advisor_approval: ApprovalStatus = ApprovalStatus.not_required
    lead_investor_approval: ApprovalStatus = ApprovalStatus.not_required
    startup_approval: ApprovalStatus = ApprovalStatus.pending
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_co_investment(self) -> bool:
        return isinstance(self.kind, CoInvestment)

    @property
    def co_investment_opportunity_id(self) -> str | None:
        return self.kind.parent_id if isinstance(self.kind, CoInvestment) else None

    @property
    def is_terminal(self) -> bool:
        return self.status == OfferStatus.rejected or self.stage >= ACCEPTED_STAGE

    @property
    def surfaced_to_startup(self) -> bool:
        if not isinstance(self.kind, CoInvestment):
            return True
        return (
            self.investor_advisor_approval in {ApprovalStatus.approved, ApprovalStatus.not_required}
            and self.lead_investor_approval == ApprovalStatus.approved
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InvestmentOffer":
        parent = _opt_str(row.get("co_investment_opportunity_id"))
        kind: OfferKind = CoInvestment(parent_id=parent) if parent else DirectOffer()

        stage = int(row.get("stage") or FIRST_STAGE)
        raw_status = str(row.get("status") or "pending")
        startup_approval = ApprovalStatus(row.get("startup_approval_status") or "pending")
        if raw_status == OfferStatus.rejected.value or startup_approval == ApprovalStatus.rejected:
            status = OfferStatus.rejected
        elif raw_status == OfferStatus.accepted.value or stage >= ACCEPTED_STAGE:
            status = OfferStatus.accepted
        else:
            # Co-investment rows carry pending_lead_investor_approval / pending_startup_approval.
            status = OfferStatus.pending

        default_chain = (
            ApprovalStatus.pending if isinstance(kind, CoInvestment) else ApprovalStatus.not_required
        )
        return cls(
            id=str(row["id"]),
            startup_id=str(row.get("startup_id")),
            investor_id=str(row.get("investor_id")),
            offer_amount=_opt_float(row.get("offer_amount")) or 0.0,
            equity_percentage=_opt_float(row.get("equity_percentage")) or 0.0,
            currency=str(row.get("currency") or "USD"),
            stage=stage,
            status=status,
            contact_details_revealed=bool(row.get("contact_details_revealed") or False),
            kind=kind,
            investor_advisor_approval=ApprovalStatus(
                row.get("investor_advisor_approval_status") or default_chain
            ),
            lead_investor_approval=ApprovalStatus(
                row.get("lead_investor_approval_status") or default_chain
            ),
            startup_approval=startup_approval,
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(frozen=True)
class RecognitionRecord:
    id: str
    startup_id: str
    facilitator_code: str
    fee_type: FeeType
    status: RecognitionStatus = RecognitionStatus.pending
    program_name: str | None = None
    fee_amount: float | None = None
    equity_allocated: float | None = None
    shares: float | None = None
    price_per_share: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def carries_equity(self) -> bool:
        return self.fee_type in EQUITY_FEE_TYPES

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RecognitionRecord":
        fee_type = FeeType(row.get("fee_type") or FeeType.free.value)
        equity = fee_type in EQUITY_FEE_TYPES
        return cls(
            id=str(row["id"]),
            startup_id=str(row.get("startup_id")),
            facilitator_code=str(row.get("facilitator_code") or ""),
            fee_type=fee_type,
            status=RecognitionStatus(row.get("status") or "pending"),
            program_name=_opt_str(row.get("program_name")),
            fee_amount=_opt_float(row.get("fee_amount")),
            equity_allocated=_opt_float(row.get("equity_allocated")) if equity else None,
            shares=_opt_float(row.get("shares")) if equity else None,
            price_per_share=_opt_float(row.get("price_per_share")) if equity else None,
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(frozen=True)
class StartupInvitation:
    id: str
    facilitator_id: str
    startup_name: str
    contact_email: str | None = None
    status: InvitationStatus = InvitationStatus.pending
    invitation_sent_at: datetime | None = None
    response_received_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StartupInvitation":
        return cls(
            id=str(row["id"]),
            facilitator_id=str(row.get("facilitator_id")),
            startup_name=str(row.get("startup_name") or ""),
            contact_email=_opt_str(row.get("contact_email")),
            status=InvitationStatus(row.get("status") or "pending"),
            invitation_sent_at=parse_timestamp(row.get("invitation_sent_at")),
            response_received_at=parse_timestamp(row.get("response_received_at")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(frozen=True)
class IncubationMessage:
    id: str
    application_id: str
    sender_id: str
    receiver_id: str
    message: str
    message_type: str = "text"
    attachment_url: str | None = None
    is_read: bool = False
    created_at: datetime | None = None

    @property
    def updated_at(self) -> datetime | None:
        return self.created_at

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "IncubationMessage":
        return cls(
            id=str(row["id"]),
            application_id=str(row.get("application_id")),
            sender_id=str(row.get("sender_id")),
            receiver_id=str(row.get("receiver_id")),
            message=str(row.get("message") or ""),
            message_type=str(row.get("message_type") or "text"),
            attachment_url=_opt_str(row.get("attachment_url")),
            is_read=bool(row.get("is_read") or False),
            created_at=parse_timestamp(row.get("created_at")),
        )


Record = Union[Application, InvestmentOffer, RecognitionRecord, StartupInvitation, IncubationMessage]
