# finpilot/recurring.py
from __future__ import annotations

import math
import re
from calendar import monthrange
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Sequence, Tuple

from finpilot.core.models import RecurringExpense, Transaction, TxType
from finpilot.core.normalize import format_date, parse_date

EXPENSE_TYPES = (TxType.EXPENSE, TxType.REAL_EXPENSE)

# Interval bands (in days) that count as recurring.
RECURRING_BANDS = (
    ('weekly', 5, 9),
    ('biweekly', 12, 16),
    ('monthly', 25, 35),
)
# Labelled when seen, but not part of the recurring gate.
LONG_BANDS = (
    ('quarterly', 85, 95),
    ('yearly', 350, 370),
)
MAX_STD_DEV = 5
AMOUNT_BUCKET = 100

_DIGITS = re.compile(r"\d+")
_PUNCT = re.compile(r"[^\w\s]")
_NAME_PREFIX = re.compile(r"^(pago|compra|suscripcion|cuota)\s+", re.I)
_NAME_SUFFIX = re.compile(r"\s+(mensual|anual|semanal)$", re.I)


def _add_months(original_date: date, months: int) -> date:
    month_index = original_date.month - 1 + months
    year = original_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(original_date.day, monthrange(year, month)[1])
    return date(year, month, day)


def _next_date(current_date: date, frequency: str) -> date:
    if frequency == "weekly":
        return current_date + timedelta(weeks=1)
    if frequency == "biweekly":
        return current_date + timedelta(weeks=2)
    if frequency == "quarterly":
        return _add_months(current_date, 3)
    if frequency == "yearly":
        return _add_months(current_date, 12)
    return _add_months(current_date, 1)


def next_occurrence(last: str, frequency: str) -> str:
    """Advance a DD/MM/YYYY date by one period; unknown frequencies advance a month."""
    return format_date(_next_date(parse_date(last), frequency))


def normalize_description(description: str) -> str:
    text = _DIGITS.sub('', (description or '').lower())
    text = _PUNCT.sub('', text)
    return text.strip()[:20]


def extract_name(description: str) -> str:
    name = _NAME_PREFIX.sub('', description or '')
    name = _NAME_SUFFIX.sub('', name).strip()
    return name[:1].upper() + name[1:]


def amount_bucket(amount: float) -> int:
    # Round half up, to the nearest bucket
    return int(math.floor(abs(amount) / AMOUNT_BUCKET + 0.5)) * AMOUNT_BUCKET


def group_key(tx: Transaction) -> Tuple[str, int, str]:
    return normalize_description(tx.description), amount_bucket(tx.amount), tx.currency


def interval_stats(intervals: Sequence[int]) -> Tuple[float, float]:
    mean = sum(intervals) / len(intervals)
    variance = sum((i - mean) ** 2 for i in intervals) / len(intervals)
    return mean, math.sqrt(variance)


def determine_frequency(mean_interval: float) -> str:
    for label, low, high in RECURRING_BANDS + LONG_BANDS:
        if low <= mean_interval <= high:
            return label
    return 'custom'


def is_recurring(mean_interval: float, std_dev: float) -> bool:
    if std_dev >= MAX_STD_DEV:
        return False
    return any(low <= mean_interval <= high for _, low, high in RECURRING_BANDS)


def confidence_score(std_dev: float) -> int:
    return int(round(max(0.0, min(100.0, 100 - std_dev * 10))))


def detect_recurring_expenses(transactions: Iterable[Transaction]) -> List[RecurringExpense]:
    """
    Group expenses by (description, amount bucket, currency) and keep the
    groups whose occurrences are spaced at a steady weekly, biweekly or
    monthly interval.
    """
    groups: Dict[Tuple[str, int, str], List[Transaction]] = defaultdict(list)
    for tx in transactions:
        if tx.type in EXPENSE_TYPES:
            groups[group_key(tx)].append(tx)

    candidates = []
    for key in sorted(groups):
        members = sorted(groups[key], key=lambda t: (t.as_date(), t.id))
        if len(members) < 2:
            continue

        dates = [t.as_date() for t in members]
        intervals = [(b - a).days for a, b in zip(dates, dates[1:])]
        mean, std_dev = interval_stats(intervals)
        if not is_recurring(mean, std_dev):
            continue

        frequency = determine_frequency(mean)
        last = members[-1]
        candidates.append(
            RecurringExpense(
                name=extract_name(last.description),
                amount=abs(last.amount),
                currency=last.currency,
                frequency=frequency,
                category=last.category,
                subcategory=last.subcategory,
                last_occurrence=last.date,
                next_occurrence=next_occurrence(last.date, frequency),
                confidence=confidence_score(std_dev),
                linked_transaction_ids=[t.id for t in members],
                active=True,
            )
        )
    return candidates


def mark_as_recurring(tx: Transaction, frequency: str = "monthly") -> RecurringExpense:
    """Build a candidate by hand from a single transaction."""
    return RecurringExpense(
        name=extract_name(tx.description),
        amount=abs(tx.amount),
        currency=tx.currency,
        frequency=frequency,
        category=tx.category,
        subcategory=tx.subcategory,
        last_occurrence=tx.date,
        next_occurrence=next_occurrence(tx.date, frequency),
        confidence=100,
        linked_transaction_ids=[tx.id],
        active=True,
    )


def days_until(expense: RecurringExpense, today: date) -> int:
    return (parse_date(expense.next_occurrence) - today).days


def is_due_soon(expense: RecurringExpense, today: date, days_ahead: int = 3) -> bool:
    return 0 <= days_until(expense, today) <= days_ahead


def upcoming_renewals(
    expenses: Iterable[RecurringExpense],
    today: date,
    days_ahead: int = 7,
) -> List[Tuple[RecurringExpense, int]]:
    """Active candidates due within ``days_ahead`` days, soonest first."""
    upcoming = [
        (exp, days_until(exp, today))
        for exp in expenses
        if exp.active
    ]
    upcoming = [(exp, d) for exp, d in upcoming if 0 <= d <= days_ahead]
    return sorted(upcoming, key=lambda pair: pair[1])
