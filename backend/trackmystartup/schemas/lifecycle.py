from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from trackmystartup.lifecycle.status_model import (
    ApplicationStatus,
    ApprovalStatus,
    DiligenceStatus,
    FeeType,
    InvitationStatus,
    OfferStatus,
    RecognitionStatus,
)


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: str
    title: str
    message: str


class ApplicationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    startup_id: str
    opportunity_id: str
    facilitator_id: Optional[str] = None
    startup_name: Optional[str] = None
    status: ApplicationStatus
    diligence_status: DiligenceStatus
    agreement_url: Optional[str] = None
    contract_url: Optional[str] = None
    diligence_urls: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OfferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    startup_id: str
    investor_id: str
    offer_amount: float
    equity_percentage: float
    currency: str
    stage: int
    status: OfferStatus
    contact_details_revealed: bool
    is_co_investment: bool
    co_investment_opportunity_id: Optional[str] = None
    investor_advisor_approval: ApprovalStatus
    lead_investor_approval: ApprovalStatus
    startup_approval: ApprovalStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RecognitionRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    startup_id: str
    facilitator_code: str
    program_name: Optional[str] = None
    fee_type: FeeType
    status: RecognitionStatus
    fee_amount: Optional[float] = None
    equity_allocated: Optional[float] = None
    shares: Optional[float] = None
    price_per_share: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InvitationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    facilitator_id: str
    startup_name: str
    contact_email: Optional[str] = None
    status: InvitationStatus
    invitation_sent_at: Optional[datetime] = None
    response_received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class InvitationAdvance(BaseModel):
    status: InvitationStatus


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    application_id: str
    sender_id: str
    receiver_id: str
    message: str
    message_type: str
    attachment_url: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None


class MessageCreate(BaseModel):
    receiver_id: str = Field(..., min_length=1, max_length=64)
    message: str = Field("", max_length=4000)
    attachment_url: Optional[str] = None


class ApplicationPage(BaseModel):
    items: list[ApplicationRead]
    hidden_count: int
    expanded: bool


class RecognitionPage(BaseModel):
    items: list[RecognitionRecordRead]
    hidden_count: int
    expanded: bool


class RecognitionSections(BaseModel):
    fees: RecognitionPage
    equity: RecognitionPage


class ApplicationActionRead(BaseModel):
    record: ApplicationRead
    notification: NotificationRead


class OfferActionRead(BaseModel):
    record: OfferRead
    notification: NotificationRead


class RecognitionActionRead(BaseModel):
    record: RecognitionRecordRead
    notification: NotificationRead


class InvitationActionRead(BaseModel):
    record: InvitationRead
    notification: NotificationRead


class MessageActionRead(BaseModel):
    record: MessageRead
    notification: NotificationRead


class MessagesReadResult(BaseModel):
    message_ids: list[str]
    notification: NotificationRead
