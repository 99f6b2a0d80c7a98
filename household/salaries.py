"""
salaries.py - salary lookup for a settlement month

The tracker resolves the salary before calling the settlement engine, so the
engine only ever sees a concrete mapping.
"""

import logging
from typing import Iterable, Optional, Sequence

from household.models import SalaryRecord

logger = logging.getLogger(__name__)


def _filled(salaries, participants: Sequence[str]):
    return {p: float(salaries.get(p, 0.0) or 0.0) for p in participants}


def resolve_salary(
    month: str,
    records: Iterable[SalaryRecord],
    participants: Sequence[str],
) -> SalaryRecord:
    """
    Salary record to use for `month`:
      - the record for that month, if one exists (lock flag kept)
      - otherwise the most recent earlier month's figures, carried forward unlocked
      - otherwise zero for everyone, unlocked
    The returned mapping always has one entry per participant.
    """
    latest_prior: Optional[SalaryRecord] = None
    for record in records:
        if record.month == month:
            return SalaryRecord(month, _filled(record.salaries, participants), record.locked)
        if record.month < month and (latest_prior is None or record.month > latest_prior.month):
            latest_prior = record

    if latest_prior is not None:
        logger.debug("No salary for %s, carrying forward %s", month, latest_prior.month)
        return SalaryRecord(month, _filled(latest_prior.salaries, participants), False)
    return SalaryRecord(month, _filled({}, participants), False)
