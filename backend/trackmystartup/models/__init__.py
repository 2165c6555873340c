from trackmystartup.models.domain import (
    AuditLog,
    CoInvestmentOffer,
    IncubationMessage,
    InvestmentOffer,
    OpportunityApplication,
    RecognitionRecord,
    Startup,
    StartupInvitation,
    row_to_dict,
)

__all__ = [
    "AuditLog",
    "CoInvestmentOffer",
    "IncubationMessage",
    "InvestmentOffer",
    "OpportunityApplication",
    "RecognitionRecord",
    "Startup",
    "StartupInvitation",
    "row_to_dict",
]
