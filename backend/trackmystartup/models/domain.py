# ruff: noqa: E501
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func, inspect
from sqlalchemy.orm import Mapped, mapped_column

from trackmystartup.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def row_to_dict(obj: Any) -> dict[str, Any]:
    """Column values of an ORM instance, keyed by column name."""

    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


# Statuses are stored as VARCHAR, matching the hosted schema.


class Startup(Base):
    __tablename__ = "startups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OpportunityApplication(Base):
    __tablename__ = "opportunity_applications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    startup_id: Mapped[str] = mapped_column(ForeignKey("startups.id"), nullable=False, index=True)
    opportunity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    facilitator_id: Mapped[str | None] = mapped_column(String(64), index=True)
    startup_name: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    diligence_status: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    agreement_url: Mapped[str | None] = mapped_column(Text)
    contract_url: Mapped[str | None] = mapped_column(Text)
    diligence_urls: Mapped[list[str] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class InvestmentOffer(Base):
    __tablename__ = "investment_offers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    startup_id: Mapped[str] = mapped_column(ForeignKey("startups.id"), nullable=False, index=True)
    investor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    offer_amount: Mapped[float] = mapped_column(Float, nullable=False)
    equity_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    stage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    startup_approval_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    contact_details_revealed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CoInvestmentOffer(Base):
    __tablename__ = "co_investment_offers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    co_investment_opportunity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    startup_id: Mapped[str] = mapped_column(ForeignKey("startups.id"), nullable=False, index=True)
    investor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    offer_amount: Mapped[float] = mapped_column(Float, nullable=False)
    equity_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    stage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # pending_lead_investor_approval | pending_startup_approval | accepted | rejected
    status: Mapped[str] = mapped_column(String(40), nullable=False, default="pending_lead_investor_approval")
    investor_advisor_approval_status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_required")
    lead_investor_approval_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    startup_approval_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    contact_details_revealed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class RecognitionRecord(Base):
    __tablename__ = "recognition_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    startup_id: Mapped[str] = mapped_column(ForeignKey("startups.id"), nullable=False, index=True)
    facilitator_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    program_name: Mapped[str | None] = mapped_column(String(255))
    fee_type: Mapped[str] = mapped_column(String(16), nullable=False, default="Free")
    fee_amount: Mapped[float | None] = mapped_column(Float)
    equity_allocated: Mapped[float | None] = mapped_column(Float)
    shares: Mapped[float | None] = mapped_column(Float)
    price_per_share: Mapped[float | None] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class StartupInvitation(Base):
    __tablename__ = "startup_invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    facilitator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    startup_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    invitation_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    response_received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class IncubationMessage(Base):
    __tablename__ = "incubation_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    application_id: Mapped[str] = mapped_column(
        ForeignKey("opportunity_applications.id"), nullable=False, index=True
    )
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    attachment_url: Mapped[str | None] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    entity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    record_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    payload_json: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        unique=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
