from datetime import timedelta

import pytest

from conftest import T0
from trackmystartup.lifecycle.errors import DuplicateEventError
from trackmystartup.lifecycle.gateway import ChangeEvent, ChangeOperation
from trackmystartup.lifecycle.records import Application, IncubationMessage, InvestmentOffer
from trackmystartup.lifecycle.status_model import ApplicationStatus, EntityType
from trackmystartup.lifecycle.store import RecordStore, progress_rank


def _app(status="pending", updated_at=T0, **kw):
    row = {"id": "app-1", "startup_id": "s-1", "opportunity_id": "opp-1", "status": status, "updated_at": updated_at}
    row.update(kw)
    return Application.from_row(row)


def _message(msg_id, text="hello", sender="fac-1", created_at=T0):
    return IncubationMessage.from_row(
        {
            "id": msg_id,
            "application_id": "app-1",
            "sender_id": sender,
            "receiver_id": "founder-1",
            "message": text,
            "created_at": created_at,
        }
    )


@pytest.mark.parametrize("order", ["in_order", "reversed"])
def test_latest_timestamp_wins_regardless_of_arrival(order):
    older = _app(status="accepted", updated_at=T0)
    newer = _app(status="withdrawn", updated_at=T0 + timedelta(seconds=1))
    arrivals = [older, newer] if order == "in_order" else [newer, older]

    store = RecordStore()
    for record in arrivals:
        store.merge(EntityType.application, record)

    assert store.get(EntityType.application, "app-1").status == ApplicationStatus.withdrawn


def test_equal_timestamps_prefer_terminal_status():
    store = RecordStore()
    store.merge(EntityType.application, _app(status="accepted"))
    store.merge(EntityType.application, _app(status="pending"))

    assert store.get(EntityType.application, "app-1").status == ApplicationStatus.accepted


def test_offer_stage_and_contact_details_never_regress():
    store = RecordStore()
    base = {"id": "off-1", "startup_id": "s-1", "investor_id": "inv-1", "offer_amount": 10, "equity_percentage": 1}
    accepted = InvestmentOffer.from_row({**base, "stage": 4, "contact_details_revealed": True, "updated_at": T0})
    later_partial = InvestmentOffer.from_row({**base, "stage": 3, "updated_at": T0 + timedelta(seconds=5)})

    store.merge(EntityType.investment_offer, accepted)
    merged = store.merge(EntityType.investment_offer, later_partial)

    assert merged.stage == 4
    assert merged.contact_details_revealed is True
    assert progress_rank(merged) == 4


def test_change_event_merges_and_duplicate_insert_is_reported():
    store = RecordStore()
    payload = {"id": "app-1", "startup_id": "s-1", "opportunity_id": "opp-1", "status": "pending", "updated_at": T0}
    event = ChangeEvent(entity=EntityType.application, operation=ChangeOperation.insert, payload=payload)

    store.apply_event(event)
    with pytest.raises(DuplicateEventError):
        store.apply_event(event)

    store.apply_event(ChangeEvent(entity=EntityType.application, operation=ChangeOperation.delete, payload=payload))
    assert store.get(EntityType.application, "app-1") is None


def test_message_with_same_id_is_deduplicated():
    store = RecordStore()
    store.merge_message(EntityType.incubation_message, _message("m-1"))

    with pytest.raises(DuplicateEventError):
        store.merge_message(EntityType.incubation_message, _message("m-1"))
    assert len(store.records(EntityType.incubation_message)) == 1


def test_echo_of_local_message_adopts_server_id():
    store = RecordStore()
    store.merge_message(EntityType.incubation_message, _message("local-abc"))

    echoed = store.merge_message(
        EntityType.incubation_message, _message("m-42", created_at=T0 + timedelta(seconds=2))
    )

    assert echoed.id == "m-42"
    assert [m.id for m in store.records(EntityType.incubation_message)] == ["m-42"]


def test_same_text_within_window_is_a_duplicate():
    store = RecordStore()
    store.merge_message(EntityType.incubation_message, _message("m-1"))

    with pytest.raises(DuplicateEventError):
        store.merge_message(EntityType.incubation_message, _message("m-2", created_at=T0 + timedelta(seconds=4)))


def test_same_text_outside_window_is_kept():
    store = RecordStore()
    store.merge_message(EntityType.incubation_message, _message("m-1"))
    store.merge_message(EntityType.incubation_message, _message("m-2", created_at=T0 + timedelta(seconds=6)))
    store.merge_message(EntityType.incubation_message, _message("m-3", sender="founder-1"))

    assert {m.id for m in store.records(EntityType.incubation_message)} == {"m-1", "m-2", "m-3"}


def test_mark_read_only_touches_unread_messages():
    store = RecordStore()
    store.merge_message(EntityType.incubation_message, _message("m-1"))
    store.merge_message(EntityType.incubation_message, _message("m-2", text="second"))

    changed = store.mark_read(EntityType.incubation_message, ["m-1", "missing"])

    assert [m.id for m in changed] == ["m-1"]
    assert store.get(EntityType.incubation_message, "m-1").is_read is True
    assert store.get(EntityType.incubation_message, "m-2").is_read is False
    assert store.mark_read(EntityType.incubation_message, ["m-1"]) == []
