from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from trackmystartup.lifecycle.errors import (
    ActionInProgressError,
    ConflictError,
    GatewayError,
    InvalidTransitionError,
    LifecycleError,
    PermissionDeniedError,
)

NotificationLevel = Literal["success", "error", "warning", "info"]


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    title: str
    message: str


# action -> (success title, success message, failure title, failure subject)
_MESSAGES: dict[str, tuple[str, str, str, str]] = {
    "accept_application": (
        "Application Accepted",
        "Agreement uploaded successfully. You can now request due diligence.",
        "Acceptance Failed",
        "accept application",
    ),
    "reject_application": (
        "Application Rejected",
        "Application rejected successfully.",
        "Rejection Failed",
        "reject application",
    ),
    "withdraw_application": (
        "Application Withdrawn",
        "Application withdrawn. Its history has been preserved.",
        "Withdrawal Failed",
        "withdraw application",
    ),
    "request_diligence": (
        "Due Diligence Requested",
        "The startup has been notified to complete due diligence.",
        "Diligence Request Failed",
        "request diligence",
    ),
    "approve_diligence": (
        "Diligence Approved",
        "Diligence request approved! The startup has been notified.",
        "Approval Failed",
        "approve diligence request",
    ),
    "reject_diligence": (
        "Diligence Rejected",
        "Diligence request rejected. The startup can upload new documents and request again.",
        "Rejection Failed",
        "reject diligence request",
    ),
    "accept_investment_offer": (
        "Offer Accepted",
        "Investment offer accepted! Contact details have been revealed.",
        "Acceptance Failed",
        "accept investment offer",
    ),
    "reject_investment_offer": (
        "Offer Rejected",
        "Investment offer rejected successfully.",
        "Rejection Failed",
        "reject investment offer",
    ),
    "accept_co_investment_offer": (
        "Co-Investment Offer Accepted",
        "Co-investment offer accepted successfully!",
        "Acceptance Failed",
        "accept co-investment offer",
    ),
    "reject_co_investment_offer": (
        "Co-Investment Offer Rejected",
        "Co-investment offer rejected successfully.",
        "Rejection Failed",
        "reject co-investment offer",
    ),
    "delete_investment_offer": (
        "Offer Deleted",
        "Investment offer deleted.",
        "Deletion Failed",
        "delete investment offer",
    ),
    "approve_recognition_record": (
        "Recognition Approved",
        "Recognition request approved.",
        "Approval Failed",
        "approve recognition request",
    ),
    "advance_invitation": (
        "Invitation Updated",
        "Invitation status updated.",
        "Update Failed",
        "update invitation",
    ),
    "send_message": (
        "Message Sent",
        "Message sent.",
        "Message Failed",
        "send message",
    ),
    "mark_messages_read": (
        "Messages Read",
        "Messages marked as read.",
        "Update Failed",
        "mark messages as read",
    ),
}


def _entry(action: str) -> tuple[str, str, str, str]:
    subject = action.replace("_", " ")
    return _MESSAGES.get(action, ("Done", f"{subject.capitalize()} succeeded.", "Action Failed", subject))


def success_notification(action: str) -> Notification:
    title, message, _, _ = _entry(action)
    return Notification(level="success", title=title, message=message)


def failure_notification(action: str, error: LifecycleError) -> Notification:
    """One human readable message saying what failed and that nothing changed."""

    _, _, title, subject = _entry(action)

    if isinstance(error, ActionInProgressError):
        return Notification(
            level="warning",
            title="Please Wait",
            message=f"Another update is already in progress. Could not {subject}; no changes were made.",
        )
    if isinstance(error, PermissionDeniedError):
        return Notification(
            level="error",
            title="Unauthorized",
            message=f"You are not authorized to {subject}. No changes were made.",
        )
    if isinstance(error, InvalidTransitionError):
        return Notification(
            level="warning",
            title=title,
            message=f"Cannot {subject} while it is '{error.from_status}'. No changes were made.",
        )
    if isinstance(error, ConflictError):
        return Notification(
            level="warning",
            title=title,
            message=(
                f"Could not {subject}: it was already changed by someone else. "
                "No changes were made; the latest status has been reloaded."
            ),
        )
    if isinstance(error, GatewayError):
        return Notification(
            level="error",
            title=title,
            message=f"Failed to {subject}. No changes were made. Please try again.",
        )
    return Notification(level="error", title=title, message=f"Failed to {subject}. No changes were made.")
