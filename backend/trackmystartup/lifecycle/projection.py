from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence, TypeVar

from trackmystartup.lifecycle.records import Application, InvestmentOffer, RecognitionRecord
from trackmystartup.lifecycle.status_model import (
    EQUITY_FEE_TYPES,
    ApplicationStatus,
    FeeType,
    OfferStatus,
)

T = TypeVar("T")
Predicate = Callable[[Any], bool]

DEFAULT_PAGE_SIZE = 5

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ShowMoreView:
    visible: list
    hidden_count: int
    expanded: bool

    @property
    def can_expand(self) -> bool:
        return self.hidden_count > 0


def order_applications(apps: Iterable[Application]) -> list[Application]:
    """Pending first, then the rest; newest first inside each group."""

    items = list(apps)
    pending = [a for a in items if a.status == ApplicationStatus.pending]
    others = [a for a in items if a.status != ApplicationStatus.pending]

    def _newest_first(group: list[Application]) -> list[Application]:
        return sorted(group, key=lambda a: a.created_at or _EPOCH, reverse=True)

    return _newest_first(pending) + _newest_first(others)


def show_more(items: Sequence[T], expanded: bool, page_size: int = DEFAULT_PAGE_SIZE) -> ShowMoreView:
    items = list(items)
    if expanded or len(items) <= page_size:
        return ShowMoreView(visible=items, hidden_count=0, expanded=expanded)
    return ShowMoreView(visible=items[:page_size], hidden_count=len(items) - page_size, expanded=False)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def by_opportunity(opportunity_id: str) -> Predicate:
    return lambda item: str(getattr(item, "opportunity_id", None)) == str(opportunity_id)


def by_fee_type(fee_types: Iterable[FeeType | str]) -> Predicate:
    wanted = {FeeType(f) for f in fee_types}
    return lambda item: getattr(item, "fee_type", None) in wanted


def by_favorite(favorite_ids: Iterable[str]) -> Predicate:
    ids = {str(i) for i in favorite_ids}
    return lambda item: str(getattr(item, "opportunity_id", item.id)) in ids or str(item.id) in ids


def by_status(statuses: Iterable[Any]) -> Predicate:
    wanted = {str(getattr(s, "value", s)) for s in statuses}

    def _match(item: Any) -> bool:
        status = getattr(item, "status", None)
        return str(getattr(status, "value", status)) in wanted

    return _match


def startup_visible_co_investment() -> Predicate:
    """Direct offers pass; co-investment offers only once the approval chain lets them through."""

    def _match(item: Any) -> bool:
        if not isinstance(item, InvestmentOffer):
            return False
        if not item.is_co_investment:
            return True
        return item.surfaced_to_startup and item.status in {
            OfferStatus.pending,
            OfferStatus.accepted,
            OfferStatus.rejected,
        }

    return _match


def apply_filters(items: Iterable[T], *predicates: Predicate) -> list[T]:
    return [item for item in items if all(p(item) for p in predicates)]


def recognition_sections(records: Iterable[RecognitionRecord]) -> tuple[list[RecognitionRecord], list[RecognitionRecord]]:
    """Split into (free or fee based, equity or hybrid)."""

    fees: list[RecognitionRecord] = []
    equity: list[RecognitionRecord] = []
    for record in records:
        (equity if record.fee_type in EQUITY_FEE_TYPES else fees).append(record)
    return fees, equity
