from datetime import timedelta

from conftest import T0
from trackmystartup.lifecycle.projection import (
    apply_filters,
    by_favorite,
    by_fee_type,
    by_opportunity,
    by_status,
    order_applications,
    recognition_sections,
    show_more,
    startup_visible_co_investment,
)
from trackmystartup.lifecycle.records import Application, InvestmentOffer, RecognitionRecord
from trackmystartup.lifecycle.status_model import FeeType


def _app(app_id, status, days, opportunity="opp-1"):
    return Application.from_row(
        {
            "id": app_id,
            "startup_id": "s-1",
            "opportunity_id": opportunity,
            "status": status,
            "created_at": T0 + timedelta(days=days),
        }
    )


def test_pending_applications_come_first_newest_first():
    apps = [
        _app("accepted5", "accepted", 5),
        _app("pending1", "pending", 1),
        _app("rejected10", "rejected", 10),
        _app("pending3", "pending", 3),
    ]

    ordered = order_applications(apps)

    assert [a.id for a in ordered] == ["pending3", "pending1", "rejected10", "accepted5"]


def test_show_more_hides_beyond_page_size():
    items = list(range(7))

    collapsed = show_more(items, expanded=False)
    assert collapsed.visible == [0, 1, 2, 3, 4]
    assert collapsed.hidden_count == 2
    assert collapsed.can_expand

    expanded = show_more(items, expanded=True)
    assert expanded.visible == items
    assert not expanded.can_expand

    short = show_more(items[:3], expanded=False, page_size=5)
    assert short.visible == [0, 1, 2]
    assert not short.can_expand


def test_filters_compose_in_any_order():
    apps = [
        _app("a", "pending", 1, opportunity="opp-1"),
        _app("b", "accepted", 2, opportunity="opp-1"),
        _app("c", "pending", 3, opportunity="opp-2"),
    ]
    opp = by_opportunity("opp-1")
    pending = by_status(["pending"])

    first = apply_filters(apps, opp, pending)
    second = apply_filters(apps, pending, opp)

    assert [a.id for a in first] == [a.id for a in second] == ["a"]
    assert [a.id for a in apply_filters(apps, by_favorite({"opp-2"}))] == ["c"]
    assert apply_filters(apps) == apps


def _recognition(rec_id, fee_type):
    return RecognitionRecord.from_row(
        {"id": rec_id, "startup_id": "s-1", "facilitator_code": "FAC-001", "fee_type": fee_type}
    )


def test_recognition_sections_split_equity_from_fees():
    records = [
        _recognition("free", "Free"),
        _recognition("fees", "Fees"),
        _recognition("equity", "Equity"),
        _recognition("hybrid", "Hybrid"),
    ]

    fees, equity = recognition_sections(records)

    assert [r.id for r in fees] == ["free", "fees"]
    assert [r.id for r in equity] == ["equity", "hybrid"]
    assert [r.id for r in apply_filters(records, by_fee_type([FeeType.hybrid, "Free"]))] == ["free", "hybrid"]


def test_startup_sees_co_investment_offers_only_after_lead_approval():
    base = {"startup_id": "s-1", "investor_id": "inv-1", "offer_amount": 10, "equity_percentage": 1}
    direct = InvestmentOffer.from_row({**base, "id": "direct", "stage": 2})
    waiting = InvestmentOffer.from_row(
        {
            **base,
            "id": "waiting",
            "co_investment_opportunity_id": "parent",
            "status": "pending_lead_investor_approval",
            "lead_investor_approval_status": "pending",
            "investor_advisor_approval_status": "not_required",
        }
    )
    surfaced = InvestmentOffer.from_row(
        {
            **base,
            "id": "surfaced",
            "co_investment_opportunity_id": "parent",
            "status": "pending_startup_approval",
            "lead_investor_approval_status": "approved",
            "investor_advisor_approval_status": "approved",
        }
    )

    visible = apply_filters([direct, waiting, surfaced], startup_visible_co_investment())

    assert [o.id for o in visible] == ["direct", "surfaced"]
