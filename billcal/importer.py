"""
CSV import: turn bank export rows into draft one-time rules.

Bank exports rarely agree on sign conventions, so the sign of each amount is
inferred: from the change in the running balance column when there is one,
otherwise the row is treated as an expense. Descriptions that name a debit
card purchase or a withdrawal are always expenses.
"""
import csv
import io
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from billcal.dates import canonicalize, parse_import_date
from billcal.ledger import Ledger, build_rule
from billcal.models import Category, DraftImportRule, ImportFailed, Outcome, RecurrenceKind

LOGGER = logging.getLogger(__name__)

EXPENSE_MARKERS = ("debit card purchase", "withdrawal")
DEFAULT_DRAFT_NAME = "Imported transaction"

HEADER_ALIASES = {
    "description": ("description", "desc", "memo", "payee", "name", "details", "narrative", "transaction"),
    "date": ("date", "posted date", "posting date", "transaction date", "trans date"),
    "amount": ("amount", "transaction amount", "value"),
    "balance": ("balance", "running balance", "running bal.", "available balance"),
}

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


@dataclass(frozen=True)
class ColumnMap:
    description: str
    date: str
    amount: str
    balance: Optional[str] = None


def _parse_number(text) -> Optional[float]:
    if text is None:
        return None
    raw = str(text).strip()
    if not raw:
        return None
    negative = raw.startswith("(") and raw.endswith(")")
    cleaned = _NON_NUMERIC.sub("", raw)
    if cleaned in ("", "-", ".", "-."):
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return -abs(value) if negative else value


def parse_amount(text) -> Optional[float]:
    """Read an amount like '$1,234.56' or '(20.00)'; None if unreadable or zero."""
    value = _parse_number(text)
    if value is None or value == 0:
        return None
    return value


def detect_columns(header: Sequence[str]) -> ColumnMap:
    """Map CSV headers to fields; a header is claimed by at most one field."""
    normalized = {str(h).strip().lower(): str(h) for h in header if h is not None}
    columns = {field: None for field in HEADER_ALIASES}
    taken = set()

    for field, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias in normalized and alias not in taken:
                columns[field] = normalized[alias]
                taken.add(alias)
                break

    # loose matches: the specific fields go first so "Transaction Date" is a date
    for field in ("date", "amount", "balance", "description"):
        if columns[field] is not None:
            continue
        for key, original in normalized.items():
            if key not in taken and any(alias in key for alias in HEADER_ALIASES[field]):
                columns[field] = original
                taken.add(key)
                break

    missing = [f for f in ("description", "date", "amount") if columns[f] is None]
    if missing:
        raise ImportFailed(f"CSV is missing required columns: {', '.join(missing)}")
    return ColumnMap(**columns)


def reconcile_rows(rows: Iterable[Mapping[str, str]], columns: ColumnMap) -> List[DraftImportRule]:
    drafts = []
    previous_balance = None
    skipped = 0

    for line_no, row in enumerate(rows, start=1):
        amount = parse_amount(row.get(columns.amount))
        if amount is None:
            LOGGER.debug("Skipping row %d: unreadable amount %r", line_no, row.get(columns.amount))
            skipped += 1
            continue
        t_date = parse_import_date(row.get(columns.date) or "")
        if t_date is None:
            LOGGER.debug("Skipping row %d: unreadable date %r", line_no, row.get(columns.date))
            skipped += 1
            continue

        magnitude = abs(amount)
        current_balance = _parse_number(row.get(columns.balance)) if columns.balance else None
        if current_balance is not None and previous_balance is not None:
            signed = magnitude if current_balance - previous_balance > 0 else -magnitude
        else:
            signed = -magnitude
        if current_balance is not None:
            previous_balance = current_balance

        description = (row.get(columns.description) or "").strip()
        if any(marker in description.lower() for marker in EXPENSE_MARKERS):
            signed = -magnitude

        drafts.append(DraftImportRule(
            name=description or DEFAULT_DRAFT_NAME,
            amount=signed,
            anchor_date=t_date,
        ))

    LOGGER.info("Reconciled %d rows, skipped %d", len(drafts), skipped)
    return drafts


def _detect_delimiter(sample_lines: List[str]) -> str:
    tab_count = sum(line.count("\t") for line in sample_lines)
    comma_count = sum(line.count(",") for line in sample_lines)
    return "\t" if tab_count > comma_count else ","


def parse_csv_text(text: str) -> List[DraftImportRule]:
    sample = text.splitlines()[:10]
    reader = csv.reader(io.StringIO(text), delimiter=_detect_delimiter(sample), skipinitialspace=True)

    rows = [[cell.strip() for cell in row] for row in reader]
    rows = [row for row in rows if any(row)]
    if not rows:
        raise ImportFailed("CSV file is empty")

    header, body = rows[0], rows[1:]
    columns = detect_columns(header)
    records = [dict(zip(header, row)) for row in body]

    drafts = reconcile_rows(records, columns)
    if not drafts:
        raise ImportFailed("No valid transactions found in CSV")
    return drafts


def read_csv(path) -> List[DraftImportRule]:
    text = Path(path).read_text(encoding="utf-8-sig", errors="ignore")
    return parse_csv_text(text)


def edit_draft(draft: DraftImportRule, **changes) -> DraftImportRule:
    """Apply user edits to a draft; raises ValueError and leaves it untouched on bad values."""
    unknown = set(changes) - {"name", "amount", "kind", "anchor_date", "category", "selected"}
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")

    staged = {}
    if "name" in changes:
        name = str(changes["name"]).strip()
        if not name:
            raise ValueError("Name cannot be empty")
        staged["name"] = name
    if "amount" in changes:
        try:
            amount = float(changes["amount"])
        except (TypeError, ValueError):
            raise ValueError(f"Amount must be a number: {changes['amount']!r}")
        if math.isnan(amount) or math.isinf(amount):
            raise ValueError("Amount must be a finite number")
        if amount == 0:
            raise ValueError("Amount cannot be zero")
        staged["amount"] = amount
    if "kind" in changes:
        staged["kind"] = RecurrenceKind.parse(changes["kind"])
    if "anchor_date" in changes:
        staged["anchor_date"] = canonicalize(changes["anchor_date"])
    if "category" in changes:
        staged["category"] = Category.parse(changes["category"])
    if "selected" in changes:
        staged["selected"] = bool(changes["selected"])

    for field, value in staged.items():
        setattr(draft, field, value)
    return draft


def select_all(drafts: Iterable[DraftImportRule], selected: bool = True) -> None:
    for draft in drafts:
        draft.selected = selected


def commit_drafts(ledger: Ledger, drafts: Iterable[DraftImportRule]) -> Outcome:
    """Append every selected draft as a new rule. No de-duplication is done."""
    chosen = [d for d in drafts if d.selected]
    for draft in chosen:
        try:
            build_rule(0, draft.name, draft.amount, draft.kind, draft.anchor_date, None, draft.category)
        except (TypeError, ValueError) as e:
            return Outcome.failure(f"Draft {draft.name!r} is invalid: {e}")

    added = []
    for draft in chosen:
        outcome = ledger.add(draft.name, draft.amount, draft.kind, draft.anchor_date, None, draft.category)
        added.append(outcome.rule)

    LOGGER.info("Imported %d transactions", len(added))
    return Outcome(ok=True, message=f"Imported {len(added)} transactions", count=len(added))
