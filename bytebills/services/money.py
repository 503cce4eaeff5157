from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Mapping, NamedTuple

DEFAULT_CURRENCY = "USD"


class Currency(NamedTuple):
    code: str
    symbol: str
    name: str
    minor_units: int = 2


CURRENCIES: Dict[str, Currency] = {
    c.code: c
    for c in (
        Currency("SHS", "SHS", "UG Shillings"),
        Currency("USD", "$", "US Dollar"),
        Currency("EUR", "€", "Euro"),
        Currency("GBP", "£", "British Pound"),
        Currency("JPY", "¥", "Japanese Yen", 0),
        Currency("AUD", "A$", "Australian Dollar"),
        Currency("CAD", "C$", "Canadian Dollar"),
        Currency("CHF", "CHF", "Swiss Franc"),
        Currency("CNY", "¥", "Chinese Yuan"),
        Currency("INR", "₹", "Indian Rupee"),
        Currency("MXN", "$", "Mexican Peso"),
    )
}


@dataclass(frozen=True)
class Totals:
    subtotal: float
    tax: float
    total: float


# ---------- Helpers ----------

def _to_number(val: Any) -> float:
    """Finite, non-negative float or 0."""
    if val is None or val == "" or isinstance(val, bool):
        return 0.0
    try:
        f = float(val)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(f) or f < 0:
        return 0.0
    return f


def _field(item: Any, *names: str) -> Any:
    if isinstance(item, Mapping):
        for n in names:
            if n in item:
                return item[n]
        return None
    for n in names:
        if hasattr(item, n):
            return getattr(item, n)
    return None


def resolve_currency(code: str | None, default: str = DEFAULT_CURRENCY) -> Currency:
    cur = CURRENCIES.get((code or "").strip().upper())
    if cur is None:
        cur = CURRENCIES.get(default, CURRENCIES[DEFAULT_CURRENCY])
    return cur


# ---------- Engine ----------

def compute_subtotal(items: Iterable[Any] | None) -> float:
    """Sum of quantity * unit price; items without a price count as 0."""
    if not items:
        return 0.0
    subtotal = 0.0
    try:
        for it in items:
            qty = _to_number(_field(it, "quantity", "qty"))
            price = _to_number(_field(it, "unit_price", "unitPrice"))
            subtotal += qty * price
    except TypeError:
        return 0.0
    return subtotal


def compute_tax(subtotal: float, tax_rate_percent: float) -> float:
    return _to_number(subtotal) * _to_number(tax_rate_percent) / 100


def compute_total(subtotal: float, tax: float) -> float:
    return _to_number(subtotal) + _to_number(tax)


def compute_totals(items: Iterable[Any] | None, tax_rate_percent: float) -> Totals:
    subtotal = compute_subtotal(items)
    tax = compute_tax(subtotal, tax_rate_percent)
    return Totals(subtotal, tax, compute_total(subtotal, tax))


def round_money(amount: float, currency_code: str | None = None) -> float:
    """Round half-even to the currency's minor units."""
    cur = resolve_currency(currency_code)
    quantum = Decimal(1).scaleb(-cur.minor_units)
    try:
        d = Decimal(str(amount))
    except InvalidOperation:
        return 0.0
    if not d.is_finite():
        return 0.0
    return float(d.quantize(quantum, rounding=ROUND_HALF_EVEN))


def rounded_totals(items: Iterable[Any] | None, tax_rate_percent: float, currency_code: str | None) -> Totals:
    raw = compute_totals(items, tax_rate_percent)
    subtotal = round_money(raw.subtotal, currency_code)
    tax = round_money(raw.tax, currency_code)
    return Totals(subtotal, tax, round_money(subtotal + tax, currency_code))


# ---------- Formats ----------

def format_money(amount: Any, currency_code: str | None, default_currency: str = DEFAULT_CURRENCY) -> str:
    cur = resolve_currency(currency_code, default_currency)
    try:
        value = float(amount)
    except (TypeError, ValueError):
        value = 0.0
    if not math.isfinite(value):
        value = 0.0
    value = round_money(value, cur.code)
    sign = "-" if value < 0 else ""
    body = f"{abs(value):,.{cur.minor_units}f}"
    # symbol-less codes read "CHF 1,000.00"
    prefix = f"{cur.symbol} " if cur.symbol == cur.code else cur.symbol
    return f"{sign}{prefix}{body}"


def format_quantity(qty: Any) -> str:
    try:
        return f"{float(qty):g}"
    except (TypeError, ValueError):
        return "0"


def _as_date(d: date | datetime | str) -> date:
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    return datetime.fromisoformat(str(d)).date()


def format_long_date(d: date | datetime | str) -> str:
    """'January 5, 2025'"""
    d = _as_date(d)
    return f"{d:%B} {d.day}, {d.year}"


def format_short_date(d: date | datetime | str) -> str:
    """'Jan 5, 2025'"""
    d = _as_date(d)
    return f"{d:%b} {d.day}, {d.year}"
