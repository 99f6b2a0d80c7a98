"""
tracker.py - application layer around the settlement engine

Responsibilities:
 - keep in-memory lists of expenses, recurring templates and salary records
 - persist/load them as a local JSON document (atomic writes)
 - validate input before it is stored (the engine itself never rejects data)
 - provide the entry points consumed by callers:
     add/edit/delete expenses and recurring templates,
     save/lock salaries (with carry-forward lookup),
     settlement(month), ious(month)
"""

import dataclasses
import json
import logging
import math
import os
import shutil
import tempfile
import time
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from household import config
from household.ious import IOU, collect_ious
from household.models import (
    Classification,
    Expense,
    Intent,
    Participant,
    RecurringExpenseTemplate,
    SalaryRecord,
    SettlementResult,
    SplitMode,
)
from household.periods import current_month, is_valid_month, month_of, previous_month
from household.salaries import resolve_salary
from household.settlement import calculate_settlement

# ensure a logger is available
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_EXPENSE_FIELDS = (
    "amount", "classification", "payer", "intent", "participants", "split_mode",
    "custom_split", "on_behalf_of", "date", "category", "note",
)
_TEMPLATE_FIELDS = (
    "amount", "classification", "payer", "intent", "participants", "split_mode",
    "custom_split", "on_behalf_of", "category", "note", "active",
)


def _check_amount(value, label: str):
    """Amounts and salaries must be finite and non-negative. Raises ValueError."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a number, got {value!r}")
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"{label} must be a finite non-negative number, got {value!r}")


def _check_entry(item, known: Sequence[str], label: str):
    """Shared checks for expenses and recurring templates. Raises ValueError."""
    _check_amount(item.amount, f"{label} amount")
    if item.payer not in known:
        raise ValueError(f"Unknown payer {item.payer!r}")
    unknown = [p for p in item.participants if p not in known]
    if unknown:
        raise ValueError(f"Unknown participants in split group: {unknown}")
    if len(set(item.participants)) != len(item.participants):
        raise ValueError(f"Split group lists a participant twice: {list(item.participants)}")
    if item.custom_split:
        unknown = [p for p in item.custom_split if p not in known]
        if unknown:
            raise ValueError(f"Unknown participants in custom split: {unknown}")
        for p, v in item.custom_split.items():
            _check_amount(v, f"Custom split for {p!r}")
    if item.on_behalf_of is not None:
        if item.classification != Classification.PERSONAL:
            raise ValueError("on_behalf_of is only allowed on PERSONAL expenses")
        if item.on_behalf_of not in known:
            raise ValueError(f"Unknown participant {item.on_behalf_of!r} in on_behalf_of")
        if item.on_behalf_of == item.payer:
            raise ValueError("on_behalf_of must name someone other than the payer")


def validate_expense(expense: Expense, participants: Sequence[str]):
    _check_entry(expense, participants, "Expense")
    if month_of(expense.date) is None:
        raise ValueError(f"Expense date must be an ISO date, got {expense.date!r}")


def validate_template(template: RecurringExpenseTemplate, participants: Sequence[str]):
    _check_entry(template, participants, "Recurring expense")


def validate_salaries(month: str, salaries: Mapping[str, float], participants: Sequence[str]):
    if not is_valid_month(month):
        raise ValueError(f"Month must look like YYYY-MM, got {month!r}")
    for p, v in salaries.items():
        if p not in participants:
            raise ValueError(f"Unknown participant {p!r} in salaries")
        _check_amount(v, f"Salary for {p!r}")


def _coerce(changes: Dict) -> Dict:
    """Normalize enum/tuple fields passed as plain strings/lists."""
    out = dict(changes)
    if "classification" in out and not isinstance(out["classification"], Classification):
        out["classification"] = Classification(out["classification"])
    if "intent" in out and not isinstance(out["intent"], Intent):
        out["intent"] = Intent(out["intent"])
    if out.get("split_mode") is not None and not isinstance(out["split_mode"], SplitMode):
        out["split_mode"] = SplitMode(out["split_mode"])
    if "participants" in out:
        out["participants"] = tuple(out["participants"] or ())
    if out.get("custom_split") is not None:
        out["custom_split"] = {p: float(v) for p, v in out["custom_split"].items()}
    if "amount" in out:
        out["amount"] = round(float(out["amount"]), 2)
    return out


def _equal_split_mode(item):
    """Shared equal-split items always carry the EQUAL split mode."""
    if item.intent == Intent.EQUAL_SPLIT and item.classification == Classification.SHARED:
        return dataclasses.replace(item, split_mode=SplitMode.EQUAL)
    return item


class HouseholdTracker:
    """
    Single-instance style tracker object. Callers create one HouseholdTracker()
    and use its methods to read/write data and compute settlements.
    """

    def __init__(self, data_file: Optional[str] = None, participants: Optional[Sequence[Participant]] = None):
        self.data_file = data_file or config.DATA_FILE
        self.participants: List[Participant] = list(participants or config.load_participants())
        self.expenses: List[Expense] = []
        self.recurring: List[RecurringExpenseTemplate] = []
        self.salaries: List[SalaryRecord] = []
        self.categories: List[str] = list(config.DEFAULT_CATEGORIES)
        # next id for new expenses and templates
        self._next_id = 1
        self.load()

    @property
    def participant_ids(self) -> List[str]:
        return [p.id for p in self.participants]

    # -----------------------
    # Expenses
    # -----------------------
    def _build_expense(
        self,
        expense_id: str,
        amount: float,
        payer: str,
        classification=Classification.SHARED,
        intent=Intent.SPLIT_BY_POLICY,
        participants: Sequence[str] = (),
        split_mode=None,
        custom_split: Optional[Dict[str, float]] = None,
        on_behalf_of: Optional[str] = None,
        date: str = "",
        category: str = "Misc",
        note: str = "",
    ) -> Expense:
        fields = _coerce({
            "amount": amount,
            "classification": classification,
            "intent": intent,
            "participants": participants,
            "split_mode": split_mode,
            "custom_split": custom_split,
        })
        exp = _equal_split_mode(Expense(
            id=expense_id,
            payer=payer,
            on_behalf_of=on_behalf_of or None,
            date=date,
            category=category,
            note=note,
            timestamp=time.time(),
            **fields,
        ))
        validate_expense(exp, self.participant_ids)
        return exp

    def add_expense(
        self,
        amount: float,
        payer: str,
        classification=Classification.SHARED,
        intent=Intent.SPLIT_BY_POLICY,
        participants: Sequence[str] = (),
        split_mode=None,
        custom_split: Optional[Dict[str, float]] = None,
        on_behalf_of: Optional[str] = None,
        date: str = "",
        category: str = "Misc",
        note: str = "",
    ) -> Expense:
        """
        Validate, store and persist a new expense.
        Raises ValueError when the expense references unknown participants,
        has a negative or non-finite amount or a bad date.
        """
        exp = self._build_expense(
            str(self._next_id),
            amount,
            payer,
            classification=classification,
            intent=intent,
            participants=participants,
            split_mode=split_mode,
            custom_split=custom_split,
            on_behalf_of=on_behalf_of,
            date=date,
            category=category,
            note=note,
        )
        self._next_id += 1
        self.expenses.append(exp)
        self.save()
        return exp

    def add_expenses(self, drafts: Sequence[Mapping]) -> List[Expense]:
        """
        Store a batch of expenses with a single save.

        Each draft is a mapping of add_expense keyword arguments. Drafts whose
        amount is zero or negative are skipped, like blank rows of a bulk entry
        form. Every remaining draft is validated before anything is stored; if
        one fails, ValueError names its row and the tracker is left unchanged.
        """
        batch: List[Expense] = []
        next_id = self._next_id
        for row, draft in enumerate(drafts, start=1):
            try:
                skip = float(draft.get("amount") or 0) <= 0
            except (TypeError, ValueError):
                raise ValueError(f"Row {row}: amount must be a number, got {draft.get('amount')!r}")
            if skip:
                logger.info("Skipping row %d with non-positive amount", row)
                continue
            try:
                batch.append(self._build_expense(str(next_id), **draft))
            except (TypeError, ValueError) as e:
                raise ValueError(f"Row {row}: {e}") from e
            next_id += 1
        if not batch:
            return []
        previous_next_id = self._next_id
        self.expenses.extend(batch)
        self._next_id = next_id
        try:
            self.save()
        except Exception:
            logger.exception("Error saving bulk add")
            del self.expenses[-len(batch):]
            self._next_id = previous_next_id
            raise
        logger.info("Added %d expenses in one batch", len(batch))
        return batch

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        for e in self.expenses:
            if e.id == str(expense_id):
                return e
        return None

    def edit_expense(self, expense_id: str, **changes) -> Optional[Expense]:
        """
        Replace fields of an existing expense. Supported kwargs:
        amount, classification, payer, intent, participants, split_mode,
        custom_split, on_behalf_of, date, category, note.
        Returns the updated Expense or None if id not found.
        """
        unsupported = set(changes) - set(_EXPENSE_FIELDS)
        if unsupported:
            raise ValueError(f"Unsupported expense fields: {sorted(unsupported)}")
        for i, e in enumerate(self.expenses):
            if e.id == str(expense_id):
                updated = _equal_split_mode(dataclasses.replace(e, **_coerce(changes)))
                validate_expense(updated, self.participant_ids)
                self.expenses[i] = updated
                self.save()
                return updated
        logger.info("Expense id=%s not found", expense_id)
        return None

    def delete_expense(self, expense_id: str) -> bool:
        """Remove expense by id. Returns True if deleted, False if not found.

        IDs are not renumbered, to keep references stable across sessions.
        """
        target_id = str(expense_id)
        logger.info("Attempting to delete expense id=%s", target_id)
        for i, e in enumerate(self.expenses):
            if e.id == target_id:
                removed = self.expenses.pop(i)
                try:
                    self.save()
                except Exception:
                    logger.exception("Error saving after delete")
                    # restore in-memory list if save failed
                    self.expenses.insert(i, removed)
                    return False
                logger.info("Deleted expense id=%s (category=%s, amount=%s). Remaining expenses=%d.",
                            target_id, removed.category, removed.amount, len(self.expenses))
                return True
        logger.info("Expense id=%s not found", target_id)
        return False

    def list_expenses(self, month: Optional[str] = None) -> List[Expense]:
        """
        Return the list of expenses, optionally filtered to one "YYYY-MM" month.
        Expenses with unparseable dates are skipped when filtering.
        """
        if month is None:
            return list(self.expenses)
        return [e for e in self.expenses if month_of(e.date) == month]

    def available_months(self) -> List[str]:
        """Sorted months that have at least one recorded expense."""
        months = {month_of(e.date) for e in self.expenses}
        months.discard(None)
        return sorted(months)

    # -----------------------
    # Recurring templates
    # -----------------------
    def add_recurring(
        self,
        amount: float,
        payer: str,
        classification=Classification.SHARED,
        intent=Intent.SPLIT_BY_POLICY,
        participants: Sequence[str] = (),
        split_mode=None,
        custom_split: Optional[Dict[str, float]] = None,
        on_behalf_of: Optional[str] = None,
        category: str = "Misc",
        note: str = "",
        active: bool = True,
    ) -> RecurringExpenseTemplate:
        fields = _coerce({
            "amount": amount,
            "classification": classification,
            "intent": intent,
            "participants": participants,
            "split_mode": split_mode,
            "custom_split": custom_split,
        })
        template = RecurringExpenseTemplate(
            id=str(self._next_id),
            payer=payer,
            on_behalf_of=on_behalf_of or None,
            category=category,
            note=note,
            active=bool(active),
            **fields,
        )
        validate_template(template, self.participant_ids)
        self._next_id += 1
        self.recurring.append(template)
        self.save()
        return template

    def update_recurring(self, template_id: str, **changes) -> Optional[RecurringExpenseTemplate]:
        """Replace fields of a recurring template; returns None if id not found."""
        unsupported = set(changes) - set(_TEMPLATE_FIELDS)
        if unsupported:
            raise ValueError(f"Unsupported recurring fields: {sorted(unsupported)}")
        for i, t in enumerate(self.recurring):
            if t.id == str(template_id):
                updated = dataclasses.replace(t, **_coerce(changes))
                validate_template(updated, self.participant_ids)
                self.recurring[i] = updated
                self.save()
                return updated
        logger.info("Recurring expense id=%s not found", template_id)
        return None

    def delete_recurring(self, template_id: str) -> bool:
        for i, t in enumerate(self.recurring):
            if t.id == str(template_id):
                removed = self.recurring.pop(i)
                try:
                    self.save()
                except Exception:
                    logger.exception("Error saving after recurring delete")
                    self.recurring.insert(i, removed)
                    return False
                logger.info("Deleted recurring expense id=%s", template_id)
                return True
        logger.info("Recurring expense id=%s not found", template_id)
        return False

    def list_recurring(self, active_only: bool = False) -> List[RecurringExpenseTemplate]:
        if active_only:
            return [t for t in self.recurring if t.active]
        return list(self.recurring)

    # -----------------------
    # Salaries
    # -----------------------
    def save_salary(self, month: str, salaries: Mapping[str, float], locked: bool = False, force: bool = False) -> bool:
        """
        Insert or replace the salary record for `month`.
        Returns False (and leaves data untouched) when the existing record is
        locked, unless force=True.
        """
        validate_salaries(month, salaries, self.participant_ids)
        record = SalaryRecord(
            month,
            {p: float(salaries.get(p, 0.0) or 0.0) for p in self.participant_ids},
            bool(locked),
        )
        for i, existing in enumerate(self.salaries):
            if existing.month == month:
                if existing.locked and not force:
                    logger.warning("Salary for %s is locked; not overwriting", month)
                    return False
                self.salaries[i] = record
                break
        else:
            self.salaries.append(record)
        self.save()
        return True

    def lock_salary(self, month: str) -> bool:
        """Lock the month's salary, storing the carried-forward figures if none were saved."""
        record = self.salary_for(month)
        return self.save_salary(month, record.salaries, locked=True, force=True)

    def salary_for(self, month: str) -> SalaryRecord:
        return resolve_salary(month, self.salaries, self.participant_ids)

    # -----------------------
    # Settlement / IOUs
    # -----------------------
    def settlement(self, month: Optional[str] = None) -> SettlementResult:
        """Compute a month's settlement (default: current month) from the current snapshot of data."""
        month = month or current_month()
        if not is_valid_month(month):
            raise ValueError(f"Month must look like YYYY-MM, got {month!r}")
        return calculate_settlement(
            month,
            self.expenses,
            self.salary_for(month),
            self.recurring,
            self.participant_ids,
        )

    def settlement_with_previous(self, month: Optional[str] = None) -> Tuple[SettlementResult, SettlementResult]:
        """Settlements for `month` and the month before it, for month-over-month comparison."""
        current = self.settlement(month)
        return current, self.settlement(previous_month(current.month))

    def ious(self, month: Optional[str] = None) -> List[IOU]:
        return collect_ious(month or current_month(), self.expenses, self.recurring)

    # -----------------------
    # Persistence
    # -----------------------
    def clear(self):
        """
        Reset tracker state: clear all records, reset categories to default and next_id.
        Persists the cleared state.
        """
        self.expenses = []
        self.recurring = []
        self.salaries = []
        self.categories = list(config.DEFAULT_CATEGORIES)
        self._next_id = 1
        self.save()

    def save(self):
        """
        Persist tracker state as JSON atomically.
        Logs the target path so we can verify the file being written.
        """
        data = {
            "next_id": self._next_id,
            "expenses": [e.to_dict() for e in self.expenses],
            "recurring": [t.to_dict() for t in self.recurring],
            "salaries": [s.to_dict() for s in self.salaries],
            "categories": self.categories,
        }

        target = os.path.abspath(self.data_file)
        dirn = os.path.dirname(target)
        os.makedirs(dirn, exist_ok=True)
        logger.info("Saving data to %s (expenses=%d, recurring=%d)", target, len(self.expenses), len(self.recurring))
        # atomic write: write to temp file then move
        fd, tmp_path = tempfile.mkstemp(prefix="tmp_household_", dir=dirn, text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            shutil.move(tmp_path, target)
        except Exception:
            logger.exception("Failed to save data file")
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def load(self):
        """
        Load tracker state from the JSON file.
        If no saved data exists, defaults remain (empty collections, default categories).
        IDs are kept stable; _next_id is set to at least max(existing numeric id) + 1.
        """
        if not os.path.exists(self.data_file):
            return
        with open(self.data_file, "r", encoding="utf-8") as f:
            data = json.load(f)

        self.expenses = [Expense.from_dict(d) for d in data.get("expenses", []) or []]
        self.recurring = [RecurringExpenseTemplate.from_dict(d) for d in data.get("recurring", []) or []]
        self.salaries = [SalaryRecord.from_dict(d) for d in data.get("salaries", []) or []]

        max_id = 0
        for item in self.expenses + self.recurring:
            if item.id.isdigit():
                max_id = max(max_id, int(item.id))
        try:
            next_id_raw = int(data.get("next_id", max_id + 1))
        except (TypeError, ValueError):
            next_id_raw = max_id + 1
        self._next_id = max(next_id_raw, max_id + 1)

        # restore categories: defaults first, then any extra loaded categories in order
        loaded_cats = data.get("categories", []) or []
        merged = [c for c in config.DEFAULT_CATEGORIES if c in loaded_cats]
        merged.extend(c for c in loaded_cats if c not in merged)
        self.categories = merged or list(config.DEFAULT_CATEGORIES)
        logger.info("Loaded %d expenses, %d recurring, %d salary records from %s",
                    len(self.expenses), len(self.recurring), len(self.salaries), self.data_file)

    # -----------------------
    # Categories
    # -----------------------
    def get_categories(self) -> List[str]:
        """Return a copy of the category list."""
        return list(self.categories)

    def add_category(self, name: str) -> bool:
        """
        Persist a new category if it doesn't already exist.
        Returns True when a new category was added, False otherwise.
        """
        name = (name or "").strip()
        if not name or name in self.categories:
            return False
        self.categories.append(name)
        self.save()
        return True
