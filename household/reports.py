"""
reports.py - tabular views over settlement results and expenses

Builds pandas DataFrames for display layers and an XLSX export. The export
contains sheets:
  summary   - salary, share, paid, balance per participant
  transfers - from, to, amount
  expenses  - (optional) the expense list used for the month
"""

from typing import Iterable, Optional, Sequence

import pandas as pd

from household.models import Classification, Expense, SettlementResult
from household.periods import month_of

SUMMARY_COLUMNS = ["salary", "share", "paid", "balance"]
TRANSFER_COLUMNS = ["from", "to", "amount"]
EXPENSE_COLUMNS = [
    "id", "date", "category", "amount", "payer", "participants",
    "classification", "intent", "split_mode", "note", "recurring",
]


def settlement_frame(result: SettlementResult) -> pd.DataFrame:
    """One row per participant, in the order the settlement lists them."""
    rows = []
    for p in result.balances:
        rows.append({
            "participant": p,
            "salary": result.salaries.get(p, 0.0),
            "share": result.shares.get(p, 0.0),
            "paid": result.paid.get(p, 0.0),
            "balance": result.balances.get(p, 0.0),
        })
    df = pd.DataFrame(rows, columns=["participant"] + SUMMARY_COLUMNS)
    return df.set_index("participant")


def transfers_frame(result: SettlementResult) -> pd.DataFrame:
    rows = [t.to_dict() for t in result.transactions]
    return pd.DataFrame(rows, columns=TRANSFER_COLUMNS)


def expenses_frame(expenses: Iterable[Expense]) -> pd.DataFrame:
    rows = []
    for e in expenses:
        rows.append({
            "id": e.id,
            "date": e.date,
            "category": e.category,
            "amount": float(e.amount),
            "payer": e.payer,
            # participants stored as tuple -> join into string for display/export
            "participants": ", ".join(e.participants),
            "classification": e.classification.value,
            "intent": e.intent.value,
            "split_mode": e.split_mode.value if e.split_mode else "",
            "note": e.note,
            "recurring": e.is_virtual,
        })
    return pd.DataFrame(rows, columns=EXPENSE_COLUMNS)


def category_totals(month: str, expenses: Iterable[Expense], top: Optional[int] = None) -> pd.Series:
    """
    Totals per category of the month's SHARED expenses, all intents included,
    largest first. `top` keeps only the N largest categories.
    """
    amounts = {}
    for e in expenses:
        if e.classification != Classification.SHARED or month_of(e.date) != month:
            continue
        amounts[e.category] = amounts.get(e.category, 0.0) + e.amount
    totals = pd.Series(amounts, dtype="float64", name="amount").sort_values(ascending=False, kind="stable")
    if top is not None:
        totals = totals.head(top)
    return totals


def export_settlement_xlsx(
    result: SettlementResult,
    target,
    expenses: Optional[Sequence[Expense]] = None,
) -> None:
    """Write the settlement to `target` (a path or a binary buffer such as BytesIO)."""
    with pd.ExcelWriter(target, engine="openpyxl") as writer:
        settlement_frame(result).round(2).to_excel(writer, sheet_name="summary")
        transfers_frame(result).to_excel(writer, index=False, sheet_name="transfers")
        if expenses is not None:
            expenses_frame(expenses).to_excel(writer, index=False, sheet_name="expenses")
