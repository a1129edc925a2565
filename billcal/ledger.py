import logging
import math
import time
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional

from billcal.config import merged_settings
from billcal.dates import canonicalize, first_of_month
from billcal.models import Category, Outcome, RecurrenceKind, TransactionRule
from billcal.recurrence import occurs_on

LOGGER = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_rule(
        rule_id: int,
        name,
        amount,
        kind=RecurrenceKind.ONE_TIME,
        anchor_date=None,
        end_date=None,
        category=Category.OTHER,
) -> TransactionRule:
    """Validate raw field values and build a rule; raises ValueError on bad input."""
    name = str(name).strip() if name is not None else ""
    if not name:
        raise ValueError("Name cannot be empty")

    if isinstance(amount, bool):
        raise ValueError("Amount must be a number")
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise ValueError(f"Amount must be a number: {amount!r}")
    if math.isnan(amount) or math.isinf(amount):
        raise ValueError("Amount must be a finite number")
    if amount == 0:
        raise ValueError("Amount cannot be zero")

    if anchor_date is None:
        raise ValueError("Date is required")
    anchor = canonicalize(anchor_date)
    end = canonicalize(end_date) if end_date not in (None, "") else None

    return TransactionRule(
        id=rule_id,
        name=name,
        amount=amount,
        kind=RecurrenceKind.parse(kind),
        anchor_date=anchor,
        end_date=end,
        category=Category.parse(category if category not in (None, "") else Category.OTHER),
    )


def sorted_rules(rules: Iterable[TransactionRule]) -> List[TransactionRule]:
    """Income first, then expenses; larger amounts first within each."""
    return sorted(rules, key=lambda r: (r.amount < 0, -abs(r.amount), r.name.lower()))


class Ledger:
    def __init__(
            self,
            initial_balance: float = 0.0,
            initial_balance_date: Optional[date] = None,
            rules: Iterable[TransactionRule] = (),
            settings: Optional[dict] = None,
    ):
        self.initial_balance = float(initial_balance)
        self.initial_balance_date = canonicalize(initial_balance_date) if initial_balance_date else None
        self.settings = merged_settings(settings)
        self._rules: Dict[int, TransactionRule] = {}
        self._last_id = 0
        for rule in rules:
            if rule.id in self._rules:
                raise ValueError(f"Duplicate rule id: {rule.id}")
            self._rules[rule.id] = rule
            self._last_id = max(self._last_id, rule.id)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return (f"Ledger(initial_balance={self.initial_balance!r}, "
                f"initial_balance_date={self.initial_balance_date!r}, rules={len(self._rules)})")

    # ===== QUERIES =====
    def all_rules(self) -> List[TransactionRule]:
        return list(self._rules.values())

    def get(self, rule_id: int) -> Optional[TransactionRule]:
        return self._rules.get(rule_id)

    def rules_on(self, d: date) -> List[TransactionRule]:
        d = canonicalize(d)
        return [rule for rule in self._rules.values() if occurs_on(rule, d)]

    def effective_anchor(self) -> Optional[date]:
        if self.initial_balance_date is not None:
            return self.initial_balance_date
        return min((rule.anchor_date for rule in self._rules.values()), default=None)

    def next_id(self) -> int:
        """Millisecond timestamp, bumped so ids only ever increase."""
        self._last_id = max(_now_ms(), self._last_id + 1)
        return self._last_id

    # ===== MUTATIONS =====
    def add(
            self,
            name: str,
            amount: float,
            kind=RecurrenceKind.ONE_TIME,
            anchor_date=None,
            end_date=None,
            category=Category.OTHER,
    ) -> Outcome:
        try:
            rule = build_rule(0, name, amount, kind, anchor_date, end_date, category)
        except (TypeError, ValueError) as e:
            LOGGER.debug("Rejected rule %r: %s", name, e)
            return Outcome.failure(str(e))

        rule = self._store(rule)
        return Outcome(ok=True, message=f"{rule.name} added", rule=rule, count=1)

    def remove(self, rule_id: int) -> Outcome:
        rule = self._rules.pop(rule_id, None)
        if rule is None:
            return Outcome.failure(f"Rule {rule_id} not found")
        LOGGER.debug("Removed rule %s (%s)", rule_id, rule.name)
        return Outcome(ok=True, message=f"{rule.name} deleted", rule=rule, count=1)

    def edit(self, rule_id: int, **changes) -> Outcome:
        """Replace a rule with an edited copy under a fresh id."""
        old = self._rules.get(rule_id)
        if old is None:
            return Outcome.failure(f"Rule {rule_id} not found")

        unknown = set(changes) - {"name", "amount", "kind", "anchor_date", "end_date", "category"}
        if unknown:
            return Outcome.failure(f"Unknown fields: {', '.join(sorted(unknown))}")

        fields = {
            "name": old.name,
            "amount": old.amount,
            "kind": old.kind,
            "anchor_date": old.anchor_date,
            "end_date": old.end_date,
            "category": old.category,
        }
        fields.update(changes)
        try:
            rule = build_rule(0, **fields)
        except (TypeError, ValueError) as e:
            return Outcome.failure(str(e))

        del self._rules[rule_id]
        rule = self._store(rule)
        LOGGER.debug("Edited rule %s -> %s", rule_id, rule.id)
        return Outcome(ok=True, message=f"{rule.name} updated", rule=rule, count=1)

    def replace_all(
            self,
            rules: Iterable[TransactionRule],
            initial_balance: float,
            initial_balance_date: Optional[date],
            settings: Optional[dict] = None,
    ) -> Outcome:
        """Swap in a whole new rule set and balance anchor, or change nothing."""
        staged: Dict[int, TransactionRule] = {}
        try:
            balance = float(initial_balance)
            if math.isnan(balance) or math.isinf(balance):
                raise ValueError("Initial balance must be a finite number")
            anchor = canonicalize(initial_balance_date) if initial_balance_date else None
            for rule in rules:
                checked = build_rule(rule.id, rule.name, rule.amount, rule.kind,
                                     rule.anchor_date, rule.end_date, rule.category)
                if checked.id in staged:
                    raise ValueError(f"Duplicate rule id: {checked.id}")
                staged[checked.id] = checked
        except (TypeError, ValueError) as e:
            return Outcome.failure(str(e))

        self.initial_balance = balance
        self.initial_balance_date = anchor
        if settings is not None:
            self.settings = merged_settings(settings)
        self._rules = staged
        self._last_id = max(staged, default=self._last_id)
        LOGGER.debug("Replaced ledger with %d rules", len(staged))
        return Outcome(ok=True, message=f"Loaded {len(staged)} transactions", count=len(staged))

    def set_initial_balance(self, amount: float, anchor_date=None, today: Optional[date] = None) -> Outcome:
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            return Outcome.failure(f"Balance must be a number: {amount!r}")
        if math.isnan(amount) or math.isinf(amount):
            return Outcome.failure("Balance must be a finite number")

        if anchor_date is not None:
            try:
                self.initial_balance_date = canonicalize(anchor_date)
            except (TypeError, ValueError) as e:
                return Outcome.failure(str(e))
        elif self.initial_balance_date is None:
            self.initial_balance_date = first_of_month(today or date.today())

        self.initial_balance = amount
        return Outcome(ok=True, message=f"Initial balance set to {amount:.2f}")

    def reset(self) -> None:
        self.initial_balance = 0.0
        self.initial_balance_date = None
        self.settings = merged_settings(None)
        self._rules = {}

    def _store(self, rule: TransactionRule) -> TransactionRule:
        stored = replace(rule, id=self.next_id())
        self._rules[stored.id] = stored
        LOGGER.debug("Added rule %s (%s)", stored.id, stored.name)
        return stored
