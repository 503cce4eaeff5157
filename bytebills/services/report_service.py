from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from bytebills.models.document import KINDS, BillingDocument, Invoice
from bytebills.services.auth_service import Session
from bytebills.services.money import round_money

log = logging.getLogger(__name__)

TIMEFRAMES = ("last30Days", "last3Months", "last6Months", "thisYear", "lastYear")
REVENUE_KINDS = ("invoice", "receipt")


@dataclass(frozen=True)
class RevenuePoint:
    day: date
    revenue: float
    label: str


@dataclass(frozen=True)
class ClientRevenue:
    name: str
    revenue: float
    documents: int

    @property
    def average(self) -> float:
        return round_money(self.revenue / self.documents) if self.documents else 0.0


@dataclass
class ReportSummary:
    start: date
    end: date
    total_revenue: float = 0.0
    total_documents: int = 0
    total_clients: int = 0
    average_value: float = 0.0
    counts: Dict[str, int] = field(default_factory=dict)
    revenue_change: float = 0.0  # percent vs. the previous period of equal length
    documents_change: float = 0.0


def _doc_day(doc: BillingDocument) -> date:
    created = doc.created_at
    return created.date() if isinstance(created, datetime) else created


def timeframe_range(timeframe: str, today: Optional[date] = None) -> Tuple[date, date]:
    today = today or date.today()
    if timeframe == "last30Days":
        return today - timedelta(days=30), today
    if timeframe == "last3Months":
        return today - relativedelta(months=3), today
    if timeframe == "thisYear":
        return date(today.year, 1, 1), today
    if timeframe == "lastYear":
        return date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
    return today - relativedelta(months=6), today


def in_range(documents: Iterable[BillingDocument], start: date, end: date) -> List[BillingDocument]:
    return [d for d in documents if start <= _doc_day(d) <= end]


def revenue_of(documents: Iterable[BillingDocument]) -> float:
    """Sum of persisted totals of invoices and receipts."""
    return round_money(sum(d.total for d in documents if d.kind in REVENUE_KINDS))  # type: ignore[attr-defined]


def revenue_series(documents: Sequence[BillingDocument], timeframe: str, start: date, end: date) -> List[RevenuePoint]:
    """Daily points for ``last30Days``, monthly points otherwise."""
    out: List[RevenuePoint] = []
    if timeframe == "last30Days":
        day = start
        while day <= end:
            out.append(RevenuePoint(day, revenue_of(in_range(documents, day, day)), f"{day:%b} {day.day}"))
            day += timedelta(days=1)
        return out
    month = start.replace(day=1)
    while month <= end:
        month_end = month + relativedelta(months=1, days=-1)
        out.append(RevenuePoint(month, revenue_of(in_range(documents, month, month_end)), f"{month:%b %Y}"))
        month += relativedelta(months=1)
    return out


def top_clients(documents: Iterable[BillingDocument], limit: int = 5) -> List[ClientRevenue]:
    revenue: Dict[str, float] = {}
    count: Counter = Counter()
    for d in documents:
        name = d.recipient.name or "Unknown Client"
        count[name] += 1
        revenue.setdefault(name, 0.0)
        if d.kind in REVENUE_KINDS:  # type: ignore[attr-defined]
            revenue[name] += d.total
    rows = [ClientRevenue(n, round_money(revenue[n]), count[n]) for n in count]
    rows.sort(key=lambda r: r.revenue, reverse=True)
    return rows[:limit]


def status_breakdown(documents: Iterable[BillingDocument]) -> Dict[str, int]:
    return dict(Counter(d.status for d in documents if isinstance(d, Invoice)))


def document_counts(documents: Iterable[BillingDocument]) -> Dict[str, int]:
    counts = Counter(d.kind for d in documents)  # type: ignore[attr-defined]
    return {k: counts.get(k, 0) for k in KINDS}


def _change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100, 2)


def summarize(documents: Sequence[BillingDocument], start: date, end: date) -> ReportSummary:
    current = in_range(documents, start, end)
    span = end - start
    previous = in_range(documents, start - span - timedelta(days=1), start - timedelta(days=1))

    counts = document_counts(current)
    total = revenue_of(current)
    revenue_docs = counts["invoice"] + counts["receipt"]
    return ReportSummary(
        start=start,
        end=end,
        total_revenue=total,
        total_documents=len(current),
        total_clients=len({d.recipient.name for d in current}),
        average_value=round_money(total / (revenue_docs or 1)),
        counts=counts,
        revenue_change=_change(total, revenue_of(previous)),
        documents_change=_change(len(current), len(previous)),
    )


class ReportService:
    """Loads a user's documents once and derives the report views from them."""

    def __init__(self, documents) -> None:
        self.documents = documents  # DocumentService

    def load(self, session: Session) -> List[BillingDocument]:
        out: List[BillingDocument] = []
        for kind in KINDS:
            out.extend(self.documents.list_documents(session, kind, sort=None) or [])
        log.debug("report: %d documents for %s", len(out), session.user_id)
        return out

    def summary(self, session: Session, timeframe: str = "last6Months", today: Optional[date] = None) -> ReportSummary:
        start, end = timeframe_range(timeframe, today)
        return summarize(self.load(session), start, end)
