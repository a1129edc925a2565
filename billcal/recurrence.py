from datetime import date, timedelta
from typing import List, Optional

from billcal.config import MAX_LOOKAHEAD_DAYS
from billcal.dates import canonicalize, days_between, days_in_month, iter_days
from billcal.models import RecurrenceKind, TransactionRule


def occurs_on(rule: TransactionRule, d: date) -> bool:
    """True when the rule fires on the given calendar day."""
    anchor = canonicalize(rule.anchor_date)
    d = canonicalize(d)

    if d < anchor:
        return False
    if rule.end_date is not None and d > canonicalize(rule.end_date):
        return False

    if rule.kind == RecurrenceKind.ONE_TIME:
        return d == anchor

    diff = days_between(anchor, d)

    if rule.kind == RecurrenceKind.DAILY:
        return True
    elif rule.kind == RecurrenceKind.WEEKLY:
        return diff % 7 == 0
    elif rule.kind == RecurrenceKind.BIWEEKLY:
        return diff % 14 == 0
    elif rule.kind == RecurrenceKind.MONTHLY:
        # anchor on the 31st lands on the last day of shorter months
        effective_day = min(anchor.day, days_in_month(d.year, d.month))
        return d.day == effective_day
    elif rule.kind == RecurrenceKind.YEARLY:
        return d.day == anchor.day and d.month == anchor.month
    return False


def occurrences_between(rule: TransactionRule, start: date, end: date) -> List[date]:
    start = max(canonicalize(start), canonicalize(rule.anchor_date))
    end = canonicalize(end)
    if rule.end_date is not None:
        end = min(end, canonicalize(rule.end_date))
    return [d for d in iter_days(start, end) if occurs_on(rule, d)]


def next_occurrence(rule: TransactionRule, after: date) -> Optional[date]:
    """First firing date strictly after `after`, or None within the lookahead."""
    candidate = max(canonicalize(after) + timedelta(days=1), canonicalize(rule.anchor_date))
    for _ in range(MAX_LOOKAHEAD_DAYS):
        if rule.end_date is not None and candidate > canonicalize(rule.end_date):
            return None
        if occurs_on(rule, candidate):
            return candidate
        candidate += timedelta(days=1)
    return None
