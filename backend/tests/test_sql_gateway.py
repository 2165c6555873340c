import asyncio
import threading

import pytest

from trackmystartup import models
from trackmystartup.lifecycle.errors import GatewayError, RecordNotFoundError
from trackmystartup.lifecycle.status_model import EntityType
from trackmystartup.services import storage
from trackmystartup.services.change_feed import InProcessChangeFeed
from trackmystartup.services.sql_gateway import SqlMutationGateway, atomic_transition


def _seed(db, *, app_status="pending", diligence="none"):
    db.add(models.Startup(id="s-1", name="Acme", user_id="founder-1"))
    db.add(
        models.OpportunityApplication(
            id="app-1",
            startup_id="s-1",
            opportunity_id="opp-1",
            status=app_status,
            diligence_status=diligence,
        )
    )
    db.commit()


def test_atomic_transition_only_updates_when_guard_matches(db_session):
    _seed(db_session)

    miss = atomic_transition(
        db=db_session,
        model=models.OpportunityApplication,
        record_id="app-1",
        guards={"status": "accepted"},
        updates={"status": "withdrawn"},
    )
    assert miss.updated is False
    db_session.rollback()

    hit = atomic_transition(
        db=db_session,
        model=models.OpportunityApplication,
        record_id="app-1",
        guards={"status": {"pending", "accepted"}},
        updates={"status": "rejected"},
    )
    db_session.commit()

    assert hit.updated is True and hit.rowcount == 1
    assert db_session.get(models.OpportunityApplication, "app-1").status == "rejected"


def test_update_status_returns_none_when_expected_status_is_stale(db_session):
    _seed(db_session, app_status="rejected")
    gateway = SqlMutationGateway(db_session)

    result = asyncio.run(
        gateway.update_status(EntityType.application, "app-1", "accepted", expected={"status": "pending"})
    )

    assert result is None
    assert gateway.get_row(EntityType.application, "app-1")["status"] == "rejected"


def test_update_status_on_missing_record_raises_not_found(db_session):
    gateway = SqlMutationGateway(db_session)

    with pytest.raises(RecordNotFoundError):
        asyncio.run(gateway.update_status(EntityType.application, "nope", "accepted", expected={"status": "pending"}))


def test_update_status_publishes_change_event(db_session):
    _seed(db_session)
    feed = InProcessChangeFeed()
    published = []
    feed.publish = published.append
    gateway = SqlMutationGateway(db_session, feed=feed)

    row = asyncio.run(
        gateway.update_status(
            EntityType.application,
            "app-1",
            "accepted",
            {"diligence_status": "none", "agreement_url": "/storage/a.pdf", "unknown": 1},
            expected={"status": "pending"},
        )
    )

    assert row["status"] == "accepted"
    assert row["agreement_url"] == "/storage/a.pdf"
    assert published[0].payload["id"] == "app-1"
    assert published[0].operation.value == "UPDATE"


def test_diligence_procedures_follow_the_request_cycle(db_session):
    _seed(db_session)
    gateway = SqlMutationGateway(db_session)

    requested = asyncio.run(gateway.call_procedure("request_diligence", {"p_application_id": "app-1"}))
    assert requested["diligence_status"] == "requested"

    # A second request while one is open fails the guard.
    assert asyncio.run(gateway.call_procedure("request_diligence", {"p_application_id": "app-1"})) is None

    rejected = asyncio.run(
        gateway.call_procedure(
            "safe_update_diligence_status",
            {"p_application_id": "app-1", "p_new_status": "rejected", "p_old_status": "requested"},
        )
    )
    assert rejected["diligence_status"] == "none"

    again = asyncio.run(gateway.call_procedure("request_diligence", {"p_application_id": "app-1"}))
    assert again["diligence_status"] == "requested"


def test_request_diligence_refused_for_accepted_application(db_session):
    _seed(db_session, app_status="accepted")
    gateway = SqlMutationGateway(db_session)

    assert asyncio.run(gateway.call_procedure("request_diligence", {"p_application_id": "app-1"})) is None


def test_approve_startup_offer_requires_review_stage(db_session):
    _seed(db_session)
    db_session.add(
        models.InvestmentOffer(
            id="off-1", startup_id="s-1", investor_id="inv-1", offer_amount=10, equity_percentage=1, stage=2
        )
    )
    db_session.commit()
    gateway = SqlMutationGateway(db_session)
    args = {"p_offer_id": "off-1", "p_approval_action": "approve"}

    assert asyncio.run(gateway.call_procedure("approve_startup_offer", args)) is None

    db_session.query(models.InvestmentOffer).filter_by(id="off-1").update({"stage": 3})
    db_session.commit()
    row = asyncio.run(gateway.call_procedure("approve_startup_offer", args))

    assert row["stage"] == 4
    assert row["status"] == "accepted"
    assert row["contact_details_revealed"] is True


def test_co_investment_startup_approval_needs_lead_investor(db_session):
    _seed(db_session)
    db_session.add(
        models.CoInvestmentOffer(
            id="co-1",
            co_investment_opportunity_id="parent-1",
            startup_id="s-1",
            investor_id="inv-1",
            offer_amount=10,
            equity_percentage=1,
            status="pending_lead_investor_approval",
            lead_investor_approval_status="pending",
        )
    )
    db_session.commit()
    gateway = SqlMutationGateway(db_session)
    args = {"p_offer_id": "co-1", "p_approval_action": "reject"}

    assert asyncio.run(gateway.call_procedure("approve_co_investment_offer_startup", args)) is None

    db_session.query(models.CoInvestmentOffer).filter_by(id="co-1").update(
        {"status": "pending_startup_approval", "lead_investor_approval_status": "approved"}
    )
    db_session.commit()
    row = asyncio.run(gateway.call_procedure("approve_co_investment_offer_startup", args))

    assert row["status"] == "rejected"
    assert row["startup_approval_status"] == "rejected"


def test_unknown_procedure_and_bad_action_raise_gateway_error(db_session):
    gateway = SqlMutationGateway(db_session)

    with pytest.raises(GatewayError):
        asyncio.run(gateway.call_procedure("drop_everything", {}))
    with pytest.raises(GatewayError):
        asyncio.run(gateway.call_procedure("approve_startup_offer", {"p_offer_id": "x", "p_approval_action": "maybe"}))


def test_insert_and_delete_records(db_session):
    _seed(db_session)
    gateway = SqlMutationGateway(db_session)

    row = asyncio.run(
        gateway.insert_record(
            EntityType.incubation_message,
            {
                "application_id": "app-1",
                "sender_id": "fac-1",
                "receiver_id": "founder-1",
                "message": "hi",
                "created_at": "2024-01-01T12:00:00+00:00",
            },
        )
    )
    assert row["id"]
    assert gateway.list_rows(EntityType.incubation_message, application_id="app-1", sender_id=None)[0]["message"] == "hi"

    asyncio.run(gateway.delete_record(EntityType.incubation_message, row["id"]))
    with pytest.raises(RecordNotFoundError):
        asyncio.run(gateway.delete_record(EntityType.incubation_message, row["id"]))


def test_session_work_runs_off_the_event_loop_thread(db_session):
    _seed(db_session)
    feed = InProcessChangeFeed()
    published = []
    feed.publish = lambda event: published.append((event, threading.get_ident()))
    gateway = SqlMutationGateway(db_session, feed=feed)

    session_threads = []
    guarded_update = gateway._guarded_update

    def recording_update(*args, **kwargs):
        session_threads.append(threading.get_ident())
        return guarded_update(*args, **kwargs)

    gateway._guarded_update = recording_update

    async def scenario():
        row = await gateway.update_status(EntityType.application, "app-1", "rejected", expected={"status": "pending"})
        return row, threading.get_ident()

    row, loop_thread = asyncio.run(scenario())

    assert row["status"] == "rejected"
    assert session_threads and session_threads[0] != loop_thread
    # Subscribers are notified from the loop thread, after the commit.
    assert [(event.payload["id"], thread) for event, thread in published] == [("app-1", loop_thread)]


def test_mark_messages_read_only_flips_messages_for_the_receiver(db_session):
    _seed(db_session)
    for msg_id, receiver, is_read in (("m-1", "founder-1", False), ("m-2", "fac-1", False), ("m-3", "founder-1", True)):
        db_session.add(
            models.IncubationMessage(
                id=msg_id,
                application_id="app-1",
                sender_id="x",
                receiver_id=receiver,
                message=msg_id,
                is_read=is_read,
            )
        )
    db_session.commit()
    feed = InProcessChangeFeed()
    published = []
    feed.publish = published.append
    gateway = SqlMutationGateway(db_session, feed=feed)
    args = {"p_application_id": "app-1", "p_receiver_id": "founder-1"}

    result = asyncio.run(gateway.call_procedure("mark_messages_read", args))

    assert result == {"application_id": "app-1", "message_ids": ["m-1"]}
    assert gateway.get_row(EntityType.incubation_message, "m-1")["is_read"] is True
    assert gateway.get_row(EntityType.incubation_message, "m-2")["is_read"] is False
    assert [(e.operation.value, e.payload["id"], e.payload["is_read"]) for e in published] == [("UPDATE", "m-1", True)]

    assert asyncio.run(gateway.call_procedure("mark_messages_read", args))["message_ids"] == []


def test_delete_file_removes_uploaded_object(db_session):
    gateway = SqlMutationGateway(db_session)
    path = "agreements/app-1/1-a.pdf"

    assert asyncio.run(gateway.upload_file("startup-documents", path, b"%PDF")).success
    target = storage.storage_root() / "startup-documents" / path
    assert target.exists()

    asyncio.run(gateway.delete_file("startup-documents", path))
    assert not target.exists()
    # Already gone is not an error.
    asyncio.run(gateway.delete_file("startup-documents", path))

    with pytest.raises(GatewayError):
        asyncio.run(gateway.delete_file("startup-documents", "../../escape.pdf"))
