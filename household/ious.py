"""
ious.py - personal IOUs

A PERSONAL expense with `on_behalf_of` set means the payer fronted money for
another participant. Those debts are tracked pairwise here and never enter the
shared settlement balances.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from household.config import TOLERANCE
from household.models import Classification, Expense, RecurringExpenseTemplate, Transfer
from household.periods import month_of


@dataclass(frozen=True)
class IOU:
    creditor: str
    debtor: str
    amount: float
    category: str = ""
    note: str = ""
    recurring: bool = False


def _fronted(item) -> bool:
    return (
        item.classification == Classification.PERSONAL
        and bool(item.on_behalf_of)
        and item.on_behalf_of != item.payer
    )


def collect_ious(
    month: str,
    expenses: Iterable[Expense],
    recurring: Iterable[RecurringExpenseTemplate] = (),
) -> List[IOU]:
    """IOUs arising in `month`: recorded expenses first, then active recurring templates."""
    out = [
        IOU(e.payer, e.on_behalf_of, e.amount, e.category, e.note, False)
        for e in expenses
        if month_of(e.date) == month and _fronted(e)
    ]
    out.extend(
        IOU(t.payer, t.on_behalf_of, t.amount, t.category, t.note, True)
        for t in recurring
        if t.active and _fronted(t)
    )
    return out


def owed_to(ious: Iterable[IOU], participant: str) -> Dict[str, float]:
    """What each other participant owes `participant`."""
    totals: Dict[str, float] = defaultdict(float)
    for iou in ious:
        if iou.creditor == participant:
            totals[iou.debtor] += iou.amount
    return dict(totals)


def owed_by(ious: Iterable[IOU], participant: str) -> Dict[str, float]:
    """What `participant` owes each other participant."""
    totals: Dict[str, float] = defaultdict(float)
    for iou in ious:
        if iou.debtor == participant:
            totals[iou.creditor] += iou.amount
    return dict(totals)


def net_ious(ious: Iterable[IOU], participants: Sequence[str]) -> List[Transfer]:
    """
    Net the IOUs of each pair into at most one transfer from debtor to creditor.
    Pairs are visited in participant order; nets within tolerance are dropped.
    """
    owed: Dict[tuple, float] = defaultdict(float)
    for iou in ious:
        owed[(iou.debtor, iou.creditor)] += iou.amount

    participants = list(participants)
    transfers: List[Transfer] = []
    for i, a in enumerate(participants):
        for b in participants[i + 1:]:
            net = owed[(a, b)] - owed[(b, a)]
            if net > TOLERANCE:
                transfers.append(Transfer(a, b, round(net, 2)))
            elif net < -TOLERANCE:
                transfers.append(Transfer(b, a, round(-net, 2)))
    return transfers


def personal_total(month: str, expenses: Iterable[Expense], participant: str) -> float:
    """Participant's own PERSONAL spending in `month`, excluding money fronted for others."""
    return sum(
        e.amount for e in expenses
        if e.payer == participant
        and e.classification == Classification.PERSONAL
        and not e.on_behalf_of
        and month_of(e.date) == month
    )
