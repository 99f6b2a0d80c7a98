"""
models.py - Data model definitions

This file defines the records shared by the settlement engine, the IOU ledger
and the tracker. Records are serialized to/from simple dicts so they can be
persisted as JSON in data/household_data.json.

Expense, RecurringExpenseTemplate and SalaryRecord are frozen: an edit builds
a new instance (dataclasses.replace) and the tracker swaps it in by id. Their
mapping fields are copied into read-only views, so the records are hashable
and cannot be changed through a dict the caller still holds.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


class Classification(str, Enum):
    SHARED = "SHARED"
    PERSONAL = "PERSONAL"


class Intent(str, Enum):
    SPLIT_BY_POLICY = "SPLIT_BY_POLICY"
    EQUAL_SPLIT = "EQUAL_SPLIT"
    GIFT = "GIFT"
    LOAN = "LOAN"


class SplitMode(str, Enum):
    EQUAL = "EQUAL"
    SALARY_RATIO = "SALARY_RATIO"
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


# labels written by older versions of the data file
_LEGACY_CLASSIFICATIONS = {"HOUSEHOLD": Classification.SHARED}
_LEGACY_INTENTS = {
    "NORMAL": Intent.SPLIT_BY_POLICY,
    "EQUALLY": Intent.EQUAL_SPLIT,
    "HELPING": Intent.GIFT,
}

SPLITTABLE_INTENTS = (Intent.SPLIT_BY_POLICY, Intent.EQUAL_SPLIT)


def _parse_classification(value: Any) -> Classification:
    text = str(value or "").strip().upper()
    if text in _LEGACY_CLASSIFICATIONS:
        return _LEGACY_CLASSIFICATIONS[text]
    try:
        return Classification(text)
    except ValueError:
        return Classification.SHARED


def _parse_intent(value: Any) -> Intent:
    text = str(value or "").strip().upper()
    if text in _LEGACY_INTENTS:
        return _LEGACY_INTENTS[text]
    try:
        return Intent(text)
    except ValueError:
        return Intent.SPLIT_BY_POLICY


def _parse_split_mode(value: Any) -> Optional[SplitMode]:
    text = str(value or "").strip().upper()
    if not text:
        return None
    try:
        return SplitMode(text)
    except ValueError:
        return None


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def _parse_custom_split(value: Any) -> Optional[Dict[str, float]]:
    if not isinstance(value, dict):
        return None
    return {str(k).strip(): _to_float(v) for k, v in value.items() if str(k).strip()}


def _read_only(mapping: Optional[Mapping]) -> Optional[Mapping]:
    """Copy `mapping` behind a read-only view so a frozen record stays frozen."""
    if mapping is None:
        return None
    return MappingProxyType(dict(mapping))


def _hash_fields(record) -> int:
    return hash(tuple(
        frozenset(value.items()) if isinstance(value, Mapping) else value
        for value in (getattr(record, f.name) for f in fields(record))
    ))


@dataclass(frozen=True)
class Participant:
    """One member of the household. `name` is display-only; `id` keys every mapping."""
    id: str
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Recorded:
    """Origin of an expense a user actually entered."""


@dataclass(frozen=True)
class Virtual:
    """Origin of an expense materialized from a recurring template for one month."""
    template_id: str


ExpenseOrigin = Union[Recorded, Virtual]
RECORDED = Recorded()


@dataclass(frozen=True)
class Expense:
    """
    Represents a single transaction.

    Fields:
      - id: identifier assigned by the tracker; unique among recorded expenses
      - amount: non-negative total amount
      - classification: SHARED expenses take part in settlement, PERSONAL never do
      - payer: participant id of whoever paid
      - intent: for SHARED expenses, whether and how the cost is distributed
      - participants: split group; empty means the whole household
      - split_mode: allocation policy; None means "predates mode tracking"
      - custom_split: participant -> percentage points or fixed amount
      - on_behalf_of: PERSONAL only, the participant the payer fronted money for
      - date: ISO date string "YYYY-MM-DD"
      - origin: Recorded() or Virtual(template_id)
    """
    id: str
    amount: float
    classification: Classification
    payer: str
    intent: Intent = Intent.SPLIT_BY_POLICY
    participants: Tuple[str, ...] = ()
    split_mode: Optional[SplitMode] = None
    custom_split: Optional[Mapping[str, float]] = None
    on_behalf_of: Optional[str] = None
    date: str = ""
    category: str = "Misc"
    note: str = ""
    timestamp: float = 0.0
    origin: ExpenseOrigin = RECORDED

    def __post_init__(self):
        object.__setattr__(self, "participants", tuple(self.participants))
        object.__setattr__(self, "custom_split", _read_only(self.custom_split))

    __hash__ = _hash_fields

    @property
    def is_virtual(self) -> bool:
        return isinstance(self.origin, Virtual)

    @property
    def key(self) -> Tuple[str, str]:
        """Identity that cannot collide between recorded and virtual expenses."""
        if isinstance(self.origin, Virtual):
            return ("virtual", self.origin.template_id)
        return ("recorded", self.id)

    def to_dict(self) -> Dict:
        """Plain dict for JSON. Virtual expenses are never persisted, so origin is omitted."""
        return {
            "id": self.id,
            "amount": self.amount,
            "classification": self.classification.value,
            "payer": self.payer,
            "intent": self.intent.value,
            "participants": list(self.participants),
            "split_mode": self.split_mode.value if self.split_mode else None,
            "custom_split": dict(self.custom_split) if self.custom_split is not None else None,
            "on_behalf_of": self.on_behalf_of,
            "date": self.date,
            "category": self.category,
            "note": self.note,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Expense":
        """
        Construct an Expense from a dict (inverse of to_dict).
        Uses defaults for missing keys so older/corrupted files are tolerated.
        """
        return Expense(
            id=str(d.get("id", "")),
            amount=_to_float(d.get("amount", 0.0)),
            classification=_parse_classification(d.get("classification", d.get("type"))),
            payer=str(d.get("payer", "") or ""),
            intent=_parse_intent(d.get("intent")),
            participants=tuple(d.get("participants", []) or []),
            split_mode=_parse_split_mode(d.get("split_mode")),
            custom_split=_parse_custom_split(d.get("custom_split")),
            on_behalf_of=d.get("on_behalf_of") or None,
            date=str(d.get("date", "") or ""),
            category=str(d.get("category", "") or "Misc"),
            note=str(d.get("note", "") or ""),
            timestamp=_to_float(d.get("timestamp", 0.0)),
        )


@dataclass(frozen=True)
class RecurringExpenseTemplate:
    """An expense definition that repeats every month while active."""
    id: str
    amount: float
    classification: Classification
    payer: str
    intent: Intent = Intent.SPLIT_BY_POLICY
    participants: Tuple[str, ...] = ()
    split_mode: Optional[SplitMode] = None
    custom_split: Optional[Mapping[str, float]] = None
    on_behalf_of: Optional[str] = None
    category: str = "Misc"
    note: str = ""
    active: bool = True

    def __post_init__(self):
        object.__setattr__(self, "participants", tuple(self.participants))
        object.__setattr__(self, "custom_split", _read_only(self.custom_split))

    __hash__ = _hash_fields

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "amount": self.amount,
            "classification": self.classification.value,
            "payer": self.payer,
            "intent": self.intent.value,
            "participants": list(self.participants),
            "split_mode": self.split_mode.value if self.split_mode else None,
            "custom_split": dict(self.custom_split) if self.custom_split is not None else None,
            "on_behalf_of": self.on_behalf_of,
            "category": self.category,
            "note": self.note,
            "active": self.active,
        }

    @staticmethod
    def from_dict(d: Dict) -> "RecurringExpenseTemplate":
        return RecurringExpenseTemplate(
            id=str(d.get("id", "")),
            amount=_to_float(d.get("amount", 0.0)),
            classification=_parse_classification(d.get("classification", d.get("type"))),
            payer=str(d.get("payer", "") or ""),
            intent=_parse_intent(d.get("intent")),
            participants=tuple(d.get("participants", []) or []),
            split_mode=_parse_split_mode(d.get("split_mode")),
            custom_split=_parse_custom_split(d.get("custom_split")),
            on_behalf_of=d.get("on_behalf_of") or None,
            category=str(d.get("category", "") or "Misc"),
            note=str(d.get("note", "") or ""),
            active=bool(d.get("active", True)),
        )


@dataclass(frozen=True)
class SalaryRecord:
    """Monthly incomes keyed by participant. `locked` is advisory, the engine ignores it."""
    month: str
    salaries: Mapping[str, float] = field(default_factory=dict)
    locked: bool = False

    def __post_init__(self):
        object.__setattr__(self, "salaries", _read_only(self.salaries))

    __hash__ = _hash_fields

    def to_dict(self) -> Dict:
        return {"month": self.month, "salaries": dict(self.salaries), "locked": self.locked}

    @staticmethod
    def from_dict(d: Dict) -> "SalaryRecord":
        raw = d.get("salaries", {}) or {}
        return SalaryRecord(
            month=str(d.get("month", "")),
            salaries={str(k): _to_float(v) for k, v in raw.items()} if isinstance(raw, dict) else {},
            locked=bool(d.get("locked", False)),
        )


@dataclass(frozen=True)
class Transfer:
    """One payment instruction: `from_id` pays `to_id` the given amount."""
    from_id: str
    to_id: str
    amount: float

    def to_dict(self) -> Dict:
        return {"from": self.from_id, "to": self.to_id, "amount": self.amount}


@dataclass
class SettlementResult:
    """
    Output of one settlement computation for a month.

    `excluded_paid` holds what each participant paid that month for SHARED
    gift/loan expenses; those amounts are reported here and kept out of
    `paid`, `shares` and `balances` so the balances stay zero-sum.
    """
    month: str
    total_expense: float
    salaries: Dict[str, float]
    shares: Dict[str, float]
    paid: Dict[str, float]
    balances: Dict[str, float]
    transactions: List[Transfer]
    excluded_paid: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "month": self.month,
            "total_expense": self.total_expense,
            "salaries": dict(self.salaries),
            "shares": dict(self.shares),
            "paid": dict(self.paid),
            "balances": dict(self.balances),
            "transactions": [t.to_dict() for t in self.transactions],
            "excluded_paid": dict(self.excluded_paid),
        }
