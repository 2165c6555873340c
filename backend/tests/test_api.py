import pytest
from fastapi.testclient import TestClient

from trackmystartup import models
from trackmystartup.lifecycle.status_model import UserRole
from trackmystartup.main import app
from trackmystartup.services.auth import create_access_token_for_principal

client = TestClient(app)


def _headers(user_id, role, facilitator_code=None):
    token = create_access_token_for_principal(user_id, role, facilitator_code=facilitator_code)
    return {"Authorization": f"Bearer {token}"}


FACILITATOR = _headers("fac-1", UserRole.facilitator, "FAC-001")
FOUNDER = _headers("founder-1", UserRole.startup)


@pytest.fixture
def seeded(db_session):
    db_session.add(models.Startup(id="s-1", name="Acme", user_id="founder-1"))
    db_session.add(models.Startup(id="s-2", name="Other", user_id="founder-2"))
    db_session.add(
        models.OpportunityApplication(
            id="app-1", startup_id="s-1", opportunity_id="opp-1", facilitator_id="fac-1", status="pending"
        )
    )
    db_session.commit()
    return db_session


def test_health_is_public():
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_actions_require_authentication(seeded):
    r = client.post("/api/applications/app-1/reject")
    assert r.status_code == 401


def test_accept_application_with_agreement(seeded):
    r = client.post(
        "/api/applications/app-1/accept",
        files={"agreement": ("term sheet.pdf", b"%PDF-1.4", "application/pdf")},
        headers=FACILITATOR,
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["record"]["status"] == "accepted"
    assert body["record"]["diligence_status"] == "none"
    assert body["record"]["agreement_url"].startswith("/storage/startup-documents/agreements/app-1/")
    assert body["record"]["agreement_url"].endswith("-term_sheet.pdf")
    assert body["notification"]["level"] == "success"
    assert body["notification"]["title"] == "Application Accepted"

    audit = seeded.query(models.AuditLog).filter_by(action="accept_application").one()
    assert audit.record_id == "app-1"
    assert audit.user_id == "fac-1"


def test_invalid_transition_returns_409_with_notification(seeded):
    assert client.post("/api/applications/app-1/reject", headers=FACILITATOR).status_code == 200

    r = client.post("/api/applications/app-1/accept", headers=FACILITATOR)

    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "invalid_transition"
    assert body["notification"]["level"] == "warning"
    assert "rejected" in body["notification"]["message"]
    assert "No changes were made" in body["notification"]["message"]


def test_startup_cannot_accept_applications(seeded):
    r = client.post("/api/applications/app-1/accept", headers=FOUNDER)

    assert r.status_code == 403
    assert r.json()["notification"]["title"] == "Unauthorized"


def test_missing_application_returns_404(seeded):
    r = client.post("/api/applications/missing/reject", headers=FACILITATOR)
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_diligence_request_and_rejection_round(seeded):
    r = client.post("/api/applications/app-1/diligence/request", headers=FACILITATOR)
    assert r.status_code == 200, r.text
    assert r.json()["record"]["diligence_status"] == "requested"

    r = client.post("/api/applications/app-1/diligence/reject", headers=FACILITATOR)
    assert r.status_code == 200, r.text
    assert r.json()["record"]["diligence_status"] == "none"

    r = client.post("/api/applications/app-1/diligence/request", headers=FACILITATOR)
    assert r.json()["record"]["diligence_status"] == "requested"

    r = client.post("/api/applications/app-1/diligence/approve", headers=FACILITATOR)
    assert r.json()["record"]["diligence_status"] == "approved"


def test_list_applications_puts_pending_first_and_scopes_startups(seeded):
    seeded.add(
        models.OpportunityApplication(
            id="app-2", startup_id="s-2", opportunity_id="opp-1", facilitator_id="fac-1", status="accepted"
        )
    )
    seeded.add(
        models.OpportunityApplication(id="app-9", startup_id="s-2", opportunity_id="opp-2", facilitator_id="fac-2")
    )
    seeded.commit()

    r = client.get("/api/applications", params={"opportunity_id": "opp-1"}, headers=FACILITATOR)
    assert r.status_code == 200
    assert [a["id"] for a in r.json()["items"]] == ["app-1", "app-2"]

    # Applications to another facilitator's opportunities stay hidden.
    r = client.get("/api/applications", headers=FACILITATOR)
    assert [a["id"] for a in r.json()["items"]] == ["app-1", "app-2"]

    r = client.get("/api/applications", headers=FOUNDER)
    assert [a["id"] for a in r.json()["items"]] == ["app-1"]


def test_other_facilitator_cannot_list_or_decide_applications(seeded):
    outsider = _headers("fac-other", UserRole.facilitator, "FAC-999")

    r = client.get("/api/applications", headers=outsider)
    assert r.status_code == 200
    assert r.json()["items"] == []

    for path in ("reject", "accept", "withdraw", "diligence/request"):
        r = client.post(f"/api/applications/app-1/{path}", headers=outsider)
        assert r.status_code == 403, path
        assert r.json()["notification"]["title"] == "Unauthorized"

    assert client.get("/api/applications/app-1/messages", headers=outsider).status_code == 403
    assert seeded.query(models.OpportunityApplication).filter_by(id="app-1").one().status == "pending"


def test_withdraw_by_owning_startup(seeded):
    r = client.post("/api/applications/app-1/withdraw", headers=FOUNDER)
    assert r.status_code == 200
    assert r.json()["record"]["status"] == "withdrawn"

    other = _headers("founder-2", UserRole.startup)
    seeded.add(models.OpportunityApplication(id="app-3", startup_id="s-1", opportunity_id="opp-1"))
    seeded.commit()
    assert client.post("/api/applications/app-3/withdraw", headers=other).status_code == 403


def test_accept_direct_offer_reveals_contact_details(seeded):
    seeded.add(
        models.InvestmentOffer(
            id="off-1", startup_id="s-1", investor_id="inv-1", offer_amount=50000, equity_percentage=5, stage=3
        )
    )
    seeded.commit()

    r = client.post("/api/offers/off-1/accept", headers=FOUNDER)

    assert r.status_code == 200, r.text
    record = r.json()["record"]
    assert record["stage"] == 4
    assert record["status"] == "accepted"
    assert record["contact_details_revealed"] is True
    assert r.json()["notification"]["title"] == "Offer Accepted"

    # Accepted offers can be removed from the list.
    r = client.delete("/api/offers/off-1", headers=FOUNDER)
    assert r.status_code == 200
    assert seeded.query(models.InvestmentOffer).filter_by(id="off-1").count() == 0


def test_facilitator_cannot_act_on_offers(seeded):
    assert client.post("/api/offers/off-1/accept", headers=FACILITATOR).status_code == 403


def test_offer_list_hides_co_investment_waiting_for_lead(seeded):
    seeded.add(
        models.InvestmentOffer(
            id="off-1", startup_id="s-1", investor_id="inv-1", offer_amount=10, equity_percentage=1, stage=2
        )
    )
    seeded.add(
        models.CoInvestmentOffer(
            id="co-1",
            co_investment_opportunity_id="parent-1",
            startup_id="s-1",
            investor_id="inv-2",
            offer_amount=10,
            equity_percentage=1,
            status="pending_lead_investor_approval",
            lead_investor_approval_status="pending",
        )
    )
    seeded.add(
        models.CoInvestmentOffer(
            id="co-2",
            co_investment_opportunity_id="parent-1",
            startup_id="s-1",
            investor_id="inv-3",
            offer_amount=10,
            equity_percentage=1,
            status="pending_startup_approval",
            lead_investor_approval_status="approved",
        )
    )
    seeded.commit()

    r = client.get("/api/offers", params={"startup_id": "s-1"}, headers=FOUNDER)
    assert r.status_code == 200
    assert {o["id"] for o in r.json()} == {"off-1", "co-2"}

    assert client.post("/api/co-investment-offers/co-1/accept", headers=FOUNDER).status_code == 409
    r = client.post("/api/co-investment-offers/co-2/accept", headers=FOUNDER)
    assert r.status_code == 200, r.text
    assert r.json()["record"]["startup_approval"] == "approved"

    other = _headers("founder-2", UserRole.startup)
    assert client.get("/api/offers", params={"startup_id": "s-1"}, headers=other).status_code == 403


def test_recognition_approval_is_idempotent(seeded):
    seeded.add(
        models.RecognitionRecord(
            id="rec-1", startup_id="s-1", facilitator_code="FAC-001", fee_type="Equity", equity_allocated=2.5
        )
    )
    seeded.add(models.RecognitionRecord(id="rec-2", startup_id="s-1", facilitator_code="FAC-001", fee_type="Free"))
    seeded.add(models.RecognitionRecord(id="rec-3", startup_id="s-2", facilitator_code="FAC-777", fee_type="Fees"))
    seeded.commit()

    first = client.post("/api/recognition-records/rec-1/approve", headers=FACILITATOR)
    second = client.post("/api/recognition-records/rec-1/approve", headers=FACILITATOR)

    assert first.status_code == second.status_code == 200
    assert second.json()["record"]["status"] == "approved"
    assert seeded.query(models.AuditLog).filter_by(idempotency_key="recognition:rec-1:approved").count() == 1

    sections = client.get("/api/recognition-records", headers=FACILITATOR).json()
    assert [r["id"] for r in sections["fees"]["items"]] == ["rec-2"]
    assert [r["id"] for r in sections["equity"]["items"]] == ["rec-1"]

    assert client.post("/api/recognition-records/rec-3/approve", headers=FACILITATOR).status_code == 403


def test_invitation_advances_through_its_lifecycle(seeded):
    seeded.add(models.StartupInvitation(id="inv-1", facilitator_id="fac-1", startup_name="Acme"))
    seeded.commit()

    r = client.post("/api/invitations/inv-1/advance", json={"status": "accepted"}, headers=FACILITATOR)
    assert r.status_code == 409

    r = client.post("/api/invitations/inv-1/advance", json={"status": "sent"}, headers=FACILITATOR)
    assert r.status_code == 200, r.text
    assert r.json()["record"]["status"] == "sent"
    assert r.json()["record"]["invitation_sent_at"] is not None

    listed = client.get("/api/invitations", params={"status": "sent"}, headers=FACILITATOR).json()
    assert [i["id"] for i in listed] == ["inv-1"]


def test_messages_between_facilitator_and_startup(seeded):
    r = client.post(
        "/api/applications/app-1/messages",
        json={"receiver_id": "founder-1", "message": "Please upload your pitch deck"},
        headers=FACILITATOR,
    )
    assert r.status_code == 201, r.text
    assert r.json()["record"]["sender_id"] == "fac-1"

    r = client.post(
        "/api/applications/app-1/messages",
        json={"receiver_id": "fac-1", "message": "   "},
        headers=FOUNDER,
    )
    assert r.status_code == 409

    listed = client.get("/api/applications/app-1/messages", headers=FOUNDER).json()
    assert [m["message"] for m in listed] == ["Please upload your pitch deck"]

    outsider = _headers("founder-2", UserRole.startup)
    assert client.get("/api/applications/app-1/messages", headers=outsider).status_code == 403


def test_rejected_co_investment_offer_can_be_deleted(seeded):
    seeded.add(
        models.CoInvestmentOffer(
            id="co-1",
            co_investment_opportunity_id="parent-1",
            startup_id="s-1",
            investor_id="inv-2",
            offer_amount=10,
            equity_percentage=1,
            status="pending_startup_approval",
            lead_investor_approval_status="approved",
        )
    )
    seeded.commit()

    assert client.delete("/api/co-investment-offers/co-1", headers=FOUNDER).status_code == 409
    assert client.post("/api/co-investment-offers/co-1/reject", headers=FOUNDER).status_code == 200

    r = client.delete("/api/co-investment-offers/co-1", headers=FOUNDER)

    assert r.status_code == 200, r.text
    assert r.json()["title"] == "Offer Deleted"
    assert seeded.query(models.CoInvestmentOffer).filter_by(id="co-1").count() == 0
    assert client.delete("/api/co-investment-offers/co-1", headers=FOUNDER).status_code == 404


def test_receiver_marks_thread_messages_read(seeded):
    for text in ("Welcome", "Please upload your pitch deck"):
        r = client.post(
            "/api/applications/app-1/messages",
            json={"receiver_id": "founder-1", "message": text},
            headers=FACILITATOR,
        )
        assert r.status_code == 201, r.text

    r = client.post("/api/applications/app-1/messages/read", headers=FOUNDER)

    assert r.status_code == 200, r.text
    assert len(r.json()["message_ids"]) == 2
    assert r.json()["notification"]["title"] == "Messages Read"
    listed = client.get("/api/applications/app-1/messages", headers=FOUNDER).json()
    assert [m["is_read"] for m in listed] == [True, True]

    # The sender has nothing unread in this thread.
    r = client.post("/api/applications/app-1/messages/read", headers=FACILITATOR)
    assert r.json()["message_ids"] == []

    outsider = _headers("founder-2", UserRole.startup)
    assert client.post("/api/applications/app-1/messages/read", headers=outsider).status_code == 403
