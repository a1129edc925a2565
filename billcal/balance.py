"""
Running balance derived by replaying every rule forward from the ledger's anchor.

Days before the anchor carry the flat initial balance; nothing is replayed
backwards from it. Amounts are summed at full precision and only rounded
for display.
"""
from datetime import date, timedelta
from typing import Dict, List

from billcal.dates import canonicalize, iter_days, month_bounds
from billcal.ledger import Ledger, sorted_rules
from billcal.models import BalancePoint, DaySummary


def day_total(ledger: Ledger, d: date) -> float:
    return sum(rule.amount for rule in ledger.rules_on(d))


def starting_balance(ledger: Ledger, d: date) -> float:
    """Balance carried into the morning of `d`, before that day's occurrences."""
    d = canonicalize(d)
    balance = ledger.initial_balance
    anchor = ledger.effective_anchor()
    if anchor is None or d <= anchor:
        return balance

    for day in iter_days(anchor, d - timedelta(days=1)):
        balance += day_total(ledger, day)
    return balance


def balance_series(ledger: Ledger, start: date, end: date) -> List[BalancePoint]:
    """One end-of-day BalancePoint per day in [start, end]."""
    start = canonicalize(start)
    end = canonicalize(end)
    if start > end:
        return []

    anchor = ledger.effective_anchor()
    running = starting_balance(ledger, start)
    points = []
    for day in iter_days(start, end):
        if anchor is not None and day >= anchor:
            running += day_total(ledger, day)
        points.append(BalancePoint(date=day, balance=running))
    return points


def balance_at(ledger: Ledger, d: date) -> float:
    d = canonicalize(d)
    return balance_series(ledger, d, d)[-1].balance


def month_balances(ledger: Ledger, year: int, month: int) -> Dict[int, float]:
    """End-of-day balance keyed by day of month, as the calendar grid shows it."""
    first, last = month_bounds(year, month)
    return {point.date.day: point.balance for point in balance_series(ledger, first, last)}


def day_summary(ledger: Ledger, d: date) -> DaySummary:
    d = canonicalize(d)
    rules = sorted_rules(ledger.rules_on(d))
    income = sum(r.amount for r in rules if r.amount > 0)
    expenses = sum(abs(r.amount) for r in rules if r.amount < 0)
    return DaySummary(date=d, income=income, expenses=expenses, net=income - expenses, rules=rules)


def range_totals(ledger: Ledger, start: date, end: date) -> dict:
    totals = {
        "income": 0.0,
        "expense": 0.0,
        "net": 0.0,
    }
    for day in iter_days(start, end):
        summary = day_summary(ledger, day)
        totals["income"] += summary.income
        totals["expense"] += summary.expenses
    totals["net"] = totals["income"] - totals["expense"]
    return totals
