from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, List


class BillCalError(Exception):
    pass


class SnapshotError(BillCalError):
    """A persisted snapshot could not be read into a Ledger."""


class ImportFailed(BillCalError):
    """A CSV import produced nothing usable."""


class _ParseableEnum(str, Enum):

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text == member.value or text == member.name.lower():
                return member
        raise ValueError(f"Unknown {cls.__name__}: {value!r}")


class RecurrenceKind(_ParseableEnum):
    ONE_TIME = "one-time"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Category(_ParseableEnum):
    SALARY = "salary"
    FOOD = "food"
    TRANSPORT = "transport"
    UTILITIES = "utilities"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    HEALTH = "health"
    EDUCATION = "education"
    SAVINGS = "savings"
    RENT = "rent"
    SUBSCRIPTIONS = "subscriptions"
    OTHER = "other"


CATEGORY_EMOJI = {
    Category.SALARY: "💰",
    Category.FOOD: "🍔",
    Category.TRANSPORT: "🚗",
    Category.UTILITIES: "💡",
    Category.ENTERTAINMENT: "🎮",
    Category.SHOPPING: "🛍️",
    Category.HEALTH: "🏥",
    Category.EDUCATION: "📚",
    Category.SAVINGS: "🏦",
    Category.RENT: "🏠",
    Category.SUBSCRIPTIONS: "📱",
    Category.OTHER: "📝",
}

RECURRENCE_LABELS = {
    RecurrenceKind.ONE_TIME: "One-time",
    RecurrenceKind.DAILY: "Daily",
    RecurrenceKind.WEEKLY: "Weekly",
    RecurrenceKind.BIWEEKLY: "Bi-weekly",
    RecurrenceKind.MONTHLY: "Monthly",
    RecurrenceKind.YEARLY: "Yearly",
}


@dataclass(frozen=True)
class TransactionRule:
    id: int
    name: str
    amount: float              # positive = income, negative = expense
    kind: RecurrenceKind
    anchor_date: date
    end_date: Optional[date] = None
    category: Category = Category.OTHER

    @property
    def is_recurring(self) -> bool:
        return self.kind != RecurrenceKind.ONE_TIME

    @property
    def is_income(self) -> bool:
        return self.amount > 0


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance: float


@dataclass
class DraftImportRule:
    name: str
    amount: float
    anchor_date: date
    kind: RecurrenceKind = RecurrenceKind.ONE_TIME
    category: Category = Category.OTHER
    selected: bool = True


@dataclass
class DaySummary:
    date: date
    income: float
    expenses: float
    net: float
    rules: List[TransactionRule] = field(default_factory=list)


@dataclass
class Outcome:
    """Result of a Ledger mutation; failures leave the Ledger untouched."""
    ok: bool
    message: str = ""
    rule: Optional[TransactionRule] = None
    count: int = 0

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def failure(cls, message: str) -> Outcome:
        return cls(ok=False, message=message)
