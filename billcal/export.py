import csv
from datetime import date
from pathlib import Path
from typing import List

from billcal.balance import balance_series, starting_balance
from billcal.dates import format_key
from billcal.ledger import Ledger, sorted_rules
from billcal.models import RECURRENCE_LABELS


CSV_COLUMNS = [
    "Date",
    "Description",
    "Category",
    "Recurrence",
    "Income",
    "Expense",
    "Running Balance",
    "Balance Delta",
]


def export_rows(ledger: Ledger, start: date, end: date) -> List[dict]:
    """One row per rule occurrence in [start, end], with that day's closing balance.

    Occurrences before the balance anchor are not replayed, so they get no row.
    """
    rows = []
    anchor = ledger.effective_anchor()
    previous = starting_balance(ledger, start)
    for point in balance_series(ledger, start, end):
        delta = point.balance - previous
        previous = point.balance
        if anchor is not None and point.date < anchor:
            continue

        for rule in sorted_rules(ledger.rules_on(point.date)):
            rows.append({
                "Date": format_key(point.date),
                "Description": rule.name,
                "Category": rule.category.value,
                "Recurrence": RECURRENCE_LABELS[rule.kind],
                "Income": rule.amount if rule.amount > 0 else 0.0,
                "Expense": abs(rule.amount) if rule.amount < 0 else 0.0,
                "Running Balance": point.balance,
                "Balance Delta": delta,
            })
    return rows


def _format_row(row: dict) -> dict:
    formatted = dict(row)
    for key in ("Income", "Expense", "Running Balance", "Balance Delta"):
        formatted[key] = f"{row[key]:.2f}"
    return formatted


def write_csv(ledger: Ledger, start: date, end: date, target) -> int:
    """Write the export to a path or an open text stream; returns the row count."""
    rows = export_rows(ledger, start, end)
    if isinstance(target, (str, Path)):
        with open(target, "w", newline="", encoding="utf-8") as f:
            _write(f, rows)
    else:
        _write(target, rows)
    return len(rows)


def _write(stream, rows: List[dict]) -> None:
    writer = csv.DictWriter(stream, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    writer.writerows(_format_row(row) for row in rows)
