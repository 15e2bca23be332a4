"""Workflow status and priority normalization for tickets.

Tracker instances name their workflow states differently ("Closed",
"Resolved", "Won't Do" ...). The helpers here fold those variants into a
small canonical vocabulary so freshness policy and recommendations can ask
a single question: is this ticket still open?
"""

from __future__ import annotations

import re

# Canonical statuses that mean no more work is expected on the ticket
TERMINAL_STATUSES: frozenset[str] = frozenset({"Done", "Cancelled", "Duplicate"})

# Keys are lowercase for case-insensitive matching
STATUS_ALIASES: dict[str, str] = {
    "backlog": "To Do",
    "to do": "To Do",
    "todo": "To Do",
    "open": "To Do",
    "new": "To Do",
    "reopened": "To Do",
    "in progress": "In Progress",
    "in-progress": "In Progress",
    "in review": "In Progress",
    "code review": "In Progress",
    "testing": "In Progress",
    "blocked": "Blocked",
    "done": "Done",
    "resolved": "Done",
    "closed": "Done",
    "complete": "Done",
    "completed": "Done",
    "cancelled": "Cancelled",
    "canceled": "Cancelled",
    "won't do": "Cancelled",
    "wont do": "Cancelled",
    "duplicate": "Duplicate",
    "duplicated": "Duplicate",
}

PRIORITY_ALIASES: dict[str, str] = {
    "blocker": "Blocker",
    "highest": "Highest",
    "critical": "Critical",
    "high": "High",
    "medium": "Medium",
    "low": "Low",
    "lowest": "Lowest",
    "none": "Undefined",
    "undefined": "Undefined",
}


def normalize_workflow_status(value: str | None) -> str:
    """Map a raw tracker status to its canonical name.

    >>> normalize_workflow_status("resolved")
    'Done'
    >>> normalize_workflow_status("Ready for QA")
    'Ready for QA'
    """
    if not value:
        return "Unknown"
    text = " ".join(str(value).split())
    if not text:
        return "Unknown"
    return STATUS_ALIASES.get(text.lower(), text)


def is_terminal_status(value: str | None) -> bool:
    return normalize_workflow_status(value) in TERMINAL_STATUSES


def normalize_priority_name(priority: str | None) -> str | None:
    """Strip migration suffixes and fold case ("HIGH (migrated)" -> "High")."""
    if priority is None:
        return None
    cleaned = str(priority).strip()
    if not cleaned:
        return None
    cleaned = re.sub(r"\s*\(migrated\)\s*$", "", cleaned, flags=re.IGNORECASE).strip()
    return PRIORITY_ALIASES.get(cleaned.lower(), cleaned)
