import pytest

from trackmystartup.lifecycle.errors import InvalidTransitionError
from trackmystartup.lifecycle.status_model import (
    APPLICATION_TRANSITIONS,
    DILIGENCE_TRANSITIONS,
    INVITATION_TRANSITIONS,
    OFFER_STAGE_TRANSITIONS,
    RECOGNITION_TRANSITIONS,
    STARTUP_APPROVAL_TRANSITIONS,
    ApplicationStatus,
    DiligenceStatus,
    InvitationStatus,
    OfferStatus,
    RecognitionStatus,
    allowed_transitions,
    ensure_transition,
    is_terminal,
    offer_status_for_stage,
    terminal_rank,
)

_MACHINES = {
    "application": APPLICATION_TRANSITIONS,
    "diligence": DILIGENCE_TRANSITIONS,
    "offer_stage": OFFER_STAGE_TRANSITIONS,
    "startup_approval": STARTUP_APPROVAL_TRANSITIONS,
    "recognition": RECOGNITION_TRANSITIONS,
    "invitation": INVITATION_TRANSITIONS,
}

_TERMINALS = {
    "application": {ApplicationStatus.withdrawn},
    "diligence": {DiligenceStatus.approved},
    "offer_stage": {4},
    "recognition": {RecognitionStatus.approved},
    "invitation": {InvitationStatus.accepted, InvitationStatus.declined},
}


@pytest.mark.parametrize("machine", sorted(_TERMINALS))
def test_only_terminal_statuses_have_no_way_forward(machine):
    for status in _MACHINES[machine]:
        if status in _TERMINALS[machine]:
            assert is_terminal(machine, status)
        else:
            assert allowed_transitions(machine, status)
            assert not is_terminal(machine, status)


def test_application_transitions():
    assert allowed_transitions("application", ApplicationStatus.pending) == {
        ApplicationStatus.accepted,
        ApplicationStatus.rejected,
        ApplicationStatus.withdrawn,
    }
    assert allowed_transitions("application", ApplicationStatus.accepted) == {ApplicationStatus.withdrawn}
    assert allowed_transitions("application", ApplicationStatus.withdrawn) == frozenset()


def test_rejected_diligence_can_be_requested_again():
    assert DiligenceStatus.requested in allowed_transitions("diligence", DiligenceStatus.rejected)
    assert DiligenceStatus.none in allowed_transitions("diligence", DiligenceStatus.rejected)


def test_offer_stage_moves_forward_or_rejects():
    assert allowed_transitions("offer_stage", 3) == {4, OfferStatus.rejected}
    assert 1 not in allowed_transitions("offer_stage", 2)
    assert offer_status_for_stage(4) == OfferStatus.accepted
    assert offer_status_for_stage(3) == OfferStatus.pending


def test_recognition_repeat_approval_is_allowed():
    ensure_transition("recognition", RecognitionStatus.approved, RecognitionStatus.approved, action="approve")
    with pytest.raises(InvalidTransitionError):
        ensure_transition("recognition", RecognitionStatus.approved, RecognitionStatus.pending, action="revert")


def test_ensure_transition_reports_source_status_and_action():
    with pytest.raises(InvalidTransitionError) as exc_info:
        ensure_transition(
            "application", ApplicationStatus.accepted, ApplicationStatus.accepted, action="accept_application"
        )
    assert exc_info.value.from_status == "accepted"
    assert exc_info.value.action == "accept_application"


def test_unknown_machine_is_rejected():
    with pytest.raises(ValueError):
        allowed_transitions("payments", "pending")


def test_terminal_rank_prefers_terminal_statuses():
    assert terminal_rank(ApplicationStatus.accepted) > terminal_rank(ApplicationStatus.pending)
    assert terminal_rank(ApplicationStatus.withdrawn) > terminal_rank(ApplicationStatus.rejected)
