"""Status labels and colours for display.

The core works with status values only; user interfaces look the label
and colour up here.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StatusPresentation:
    status: str
    label: str
    color: str


_PRESENTATION: dict[str, dict[str, tuple[str, str]]] = {
    "period": {
        "draft": ("Draft", "gray"),
        "calculating": ("Calculating", "blue"),
        "calculated": ("Calculated", "blue"),
        "reviewing": ("Under Review", "yellow"),
        "approved": ("Approved", "green"),
        "finalized": ("Finalized", "purple"),
        "cancelled": ("Cancelled", "red"),
    },
    "adjustment": {
        "pending": ("Pending", "yellow"),
        "approved": ("Approved", "green"),
        "rejected": ("Rejected", "red"),
    },
    "report": {
        "draft": ("Draft", "blue"),
        "ready": ("Ready", "yellow"),
        "submitted": ("Submitted", "green"),
        "accepted": ("Accepted", "green"),
        "superseded": ("Superseded", "gray"),
    },
}


def present_status(kind: str, status: str) -> StatusPresentation:
    """Label and colour of a status; unknown statuses render as gray."""
    label, color = _PRESENTATION.get(kind, {}).get(
        status, (status.replace("_", " ").title(), "gray")
    )
    return StatusPresentation(status=status, label=label, color=color)
