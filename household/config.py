"""
config.py - household-wide settings

Values come from environment variables when set, otherwise from the defaults
below. The participant list is fixed for the lifetime of a tracker; every
per-participant mapping produced by the engine carries one entry per id here.
"""

import os
from typing import List

from household.models import Participant

# location of the JSON persistence file (relative to household/)
_default_data_file = os.path.join(os.path.dirname(__file__), "..", "data", "household_data.json")
DATA_FILE = os.getenv("HOUSEHOLD_DATA_FILE") or _default_data_file

DEFAULT_PARTICIPANTS = [
    Participant("A"),
    Participant("B"),
    Participant("C"),
]

DEFAULT_CATEGORIES = [
    "Groceries",
    "Rent",
    "Utilities",
    "Internet",
    "Fun",
    "Medical",
    "Transport",
    "Credit Card",
    "Loan EMI",
    "Subscriptions",
    "Phone Bill",
    "Gym",
    "Petrol",
    "Insurance",
    "Shopping",
    "Food & Dining",
    "Lend to Friends/Family",
    "Misc",
]

# balances within this distance of zero count as settled
TOLERANCE = 0.01

RECURRING_NOTE_PREFIX = "[Recurring] "


def parse_participants(text: str) -> List[Participant]:
    """
    Parse a comma list such as "A=Abrar,B,C=Muddu" into participants.
    Raises ValueError for fewer than two participants or duplicate ids.
    """
    out: List[Participant] = []
    seen = set()
    for chunk in (text or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        pid, _, name = chunk.partition("=")
        pid = pid.strip()
        if not pid:
            raise ValueError(f"Participant entry {chunk!r} has no id")
        if pid in seen:
            raise ValueError(f"Duplicate participant id {pid!r}")
        seen.add(pid)
        out.append(Participant(pid, name.strip()))
    if len(out) < 2:
        raise ValueError("A household needs at least two participants")
    return out


def load_participants() -> List[Participant]:
    """Participants from HOUSEHOLD_PARTICIPANTS, falling back to the defaults."""
    raw = (os.getenv("HOUSEHOLD_PARTICIPANTS") or "").strip()
    if not raw:
        return list(DEFAULT_PARTICIPANTS)
    return parse_participants(raw)
