"""
settlement.py - monthly settlement engine

Pipeline for one month:
  select_relevant_expenses -> allocate_shares / aggregate_paid
  -> compute_balances -> minimize_transfers

Every function here is pure: inputs are never mutated and nothing is read
from or written to storage. Splitting configuration never raises; malformed
or partial custom splits contribute zero instead, so a month with missing
salaries still produces a (lopsided) settlement rather than an error.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from household.config import DEFAULT_PARTICIPANTS, RECURRING_NOTE_PREFIX, TOLERANCE
from household.models import (
    SPLITTABLE_INTENTS,
    Classification,
    Expense,
    Intent,
    RecurringExpenseTemplate,
    SalaryRecord,
    SettlementResult,
    SplitMode,
    Transfer,
    Virtual,
)
from household.periods import first_day, month_of

logger = logging.getLogger(__name__)


def _zeroed(participants: Sequence[str]) -> Dict[str, float]:
    return {p: 0.0 for p in participants}


def _settles(expense_or_template) -> bool:
    return (
        expense_or_template.classification == Classification.SHARED
        and expense_or_template.intent in SPLITTABLE_INTENTS
    )


def materialize(template: RecurringExpenseTemplate, month: str) -> Expense:
    """Virtual expense for `template`, dated the first day of `month`."""
    return Expense(
        id=template.id,
        amount=template.amount,
        classification=template.classification,
        payer=template.payer,
        intent=template.intent,
        participants=template.participants,
        split_mode=template.split_mode,
        custom_split=template.custom_split,
        on_behalf_of=template.on_behalf_of,
        date=first_day(month),
        category=template.category,
        note=f"{RECURRING_NOTE_PREFIX}{template.note}",
        origin=Virtual(template.id),
    )


def select_relevant_expenses(
    month: str,
    expenses: Iterable[Expense],
    recurring: Iterable[RecurringExpenseTemplate] = (),
) -> List[Expense]:
    """
    Recorded SHARED expenses of `month` with a splittable intent, followed by
    one virtual expense per active template meeting the same criteria.
    Input order is preserved within each group.
    """
    recorded = [e for e in expenses if month_of(e.date) == month and _settles(e)]
    virtual = [materialize(t, month) for t in recurring if t.active and _settles(t)]
    return recorded + virtual


def excluded_shared_expenses(month: str, expenses: Iterable[Expense]) -> List[Expense]:
    """SHARED gift/loan expenses of `month`: shown in history, kept out of settlement."""
    return [
        e for e in expenses
        if month_of(e.date) == month
        and e.classification == Classification.SHARED
        and e.intent not in SPLITTABLE_INTENTS
    ]


def resolve_split_mode(expense: Expense) -> SplitMode:
    """
    Split mode to apply. Expenses recorded before split modes existed carry
    none: equal-split intents then split equally, everything else by salary.
    PERCENTAGE/FIXED_AMOUNT without any custom split also fall back to salary.
    """
    mode = expense.split_mode
    if mode in (SplitMode.PERCENTAGE, SplitMode.FIXED_AMOUNT) and expense.custom_split is None:
        return SplitMode.SALARY_RATIO
    if mode is not None:
        return mode
    if expense.intent == Intent.EQUAL_SPLIT:
        return SplitMode.EQUAL
    return SplitMode.SALARY_RATIO


def _split_group(expense: Expense, participants: Sequence[str]) -> List[str]:
    if not expense.participants:
        return list(participants)
    # each member counts once, in first-seen order
    group = [p for p in dict.fromkeys(expense.participants) if p in participants]
    if len(group) != len(expense.participants):
        logger.debug("Expense %s: ignoring repeated or unknown participants in split group %s",
                     expense.id, list(expense.participants))
    return group


def allocate_shares(
    expenses: Iterable[Expense],
    participants: Sequence[str],
    salaries: Mapping[str, float],
) -> Dict[str, float]:
    """
    Accumulate each participant's fair share of `expenses`.

    EQUAL splits evenly across the group, SALARY_RATIO in proportion to the
    group's salaries (a group earning nothing in total receives no share at
    all), PERCENTAGE applies custom percentage points and FIXED_AMOUNT takes
    custom amounts as-is. Missing custom entries count as zero; custom splits
    are not checked against 100 or the expense amount.
    """
    shares = _zeroed(participants)
    for e in expenses:
        group = _split_group(e, participants)
        if not group:
            continue
        mode = resolve_split_mode(e)
        if mode == SplitMode.EQUAL:
            per_person = e.amount / len(group)
            for p in group:
                shares[p] += per_person
        elif mode == SplitMode.PERCENTAGE:
            for p in group:
                shares[p] += e.amount * (e.custom_split.get(p, 0.0) or 0.0) / 100.0
        elif mode == SplitMode.FIXED_AMOUNT:
            for p in group:
                shares[p] += e.custom_split.get(p, 0.0) or 0.0
        else:
            group_salary = sum(salaries.get(p, 0.0) or 0.0 for p in group)
            if group_salary <= 0:
                logger.debug("Expense %s: split group has no salary, no shares allocated", e.id)
                continue
            for p in group:
                shares[p] += e.amount * (salaries.get(p, 0.0) or 0.0) / group_salary
    return shares


def aggregate_paid(expenses: Iterable[Expense], participants: Sequence[str]) -> Dict[str, float]:
    """Total amount paid per participant; unknown payers are skipped."""
    paid = _zeroed(participants)
    for e in expenses:
        if e.payer in paid:
            paid[e.payer] += e.amount
        else:
            logger.warning("Expense %s paid by unknown participant %r", e.id, e.payer)
    return paid


def compute_balances(
    paid: Mapping[str, float],
    shares: Mapping[str, float],
    participants: Sequence[str],
) -> Dict[str, float]:
    """balance = paid - share. Positive: the group owes them; negative: they owe the group."""
    return {p: paid.get(p, 0.0) - shares.get(p, 0.0) for p in participants}


def minimize_transfers(
    balances: Mapping[str, float],
    participants: Optional[Sequence[str]] = None,
    tolerance: float = TOLERANCE,
) -> List[Transfer]:
    """
    Greedy settle-up:
      - debtors (balance < -tolerance) sorted most negative first
      - creditors (balance > tolerance) sorted largest first
      - match current debtor with current creditor for the smaller amount,
        advancing whichever side is within tolerance of zero
    Ties keep the participant order, so output is deterministic.
    Produces at most len(debtors) + len(creditors) - 1 transfers.
    """
    order = list(participants) if participants is not None else list(balances)
    debtors = [[p, balances.get(p, 0.0)] for p in order if balances.get(p, 0.0) < -tolerance]
    creditors = [[p, balances.get(p, 0.0)] for p in order if balances.get(p, 0.0) > tolerance]
    debtors.sort(key=lambda x: x[1])
    creditors.sort(key=lambda x: x[1], reverse=True)

    transfers: List[Transfer] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]
        amount = min(abs(debtor[1]), creditor[1])
        transfers.append(Transfer(debtor[0], creditor[0], round(amount, 2)))
        debtor[1] += amount
        creditor[1] -= amount
        if abs(debtor[1]) < tolerance:
            i += 1
        if creditor[1] < tolerance:
            j += 1
    return transfers


def calculate_settlement(
    month: str,
    expenses: Iterable[Expense],
    salary: Union[SalaryRecord, Mapping[str, float]],
    recurring: Iterable[RecurringExpenseTemplate] = (),
    participants: Optional[Sequence[str]] = None,
) -> SettlementResult:
    """
    Compute the settlement for `month`.

    `expenses` is the full history (it is filtered here), `salary` the
    already-resolved salary record or mapping for the month. Carry-forward of
    salaries from earlier months is the caller's job (see salaries.resolve_salary).
    """
    expenses = list(expenses)
    participants = list(participants) if participants is not None else [p.id for p in DEFAULT_PARTICIPANTS]
    raw_salaries = salary.salaries if isinstance(salary, SalaryRecord) else salary
    salaries = {p: float(raw_salaries.get(p, 0.0) or 0.0) for p in participants}

    relevant = select_relevant_expenses(month, expenses, recurring)
    total_expense = sum(e.amount for e in relevant)
    shares = allocate_shares(relevant, participants, salaries)
    paid = aggregate_paid(relevant, participants)
    balances = compute_balances(paid, shares, participants)
    transactions = minimize_transfers(balances, participants)
    excluded_paid = aggregate_paid(excluded_shared_expenses(month, expenses), participants)

    logger.debug("Settlement %s: %d relevant expenses, total=%.2f, %d transfers",
                 month, len(relevant), total_expense, len(transactions))
    return SettlementResult(
        month=month,
        total_expense=total_expense,
        salaries=salaries,
        shares=shares,
        paid=paid,
        balances=balances,
        transactions=transactions,
        excluded_paid=excluded_paid,
    )
