"""Status transition bookkeeping rules.

Every single-entity mutation path runs ``derive_on_transition`` so that status
dates are maintained the same way no matter how the change was made.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from mctracker.models.manuscript import Status


def derive_on_transition(
    old_status: Status,
    new_status: Status,
    existing_completed_date: Optional[datetime],
    now: datetime,
) -> dict[str, Any]:
    """Return the derived field updates for a status change.

    ``completed_date`` is never cleared here; readers hide it when the record
    is not WORKED.
    """
    if old_status == new_status:
        return {}
    derived: dict[str, Any] = {"date_status_changed": now}
    if new_status == Status.WORKED and existing_completed_date is None:
        derived["completed_date"] = now
    return derived


def auto_remark(old_status: Status, new_status: Status) -> str:
    """Note text recorded automatically for a quick status change ("" for none)."""
    if new_status == Status.WORKED:
        return "JM Query Resolved / Submitted" if old_status == Status.PENDING_JM else "Done / Submitted"
    if new_status == Status.PENDING_JM:
        return "Queried to JM"
    if new_status == Status.PENDING_TL:
        return "Queried to TL"
    if new_status == Status.PENDING_CED:
        return "Emailed to CED"
    return ""


def bulk_transition_fields(new_status: Optional[Status], now: datetime) -> dict[str, Any]:
    """Shared derived fields for a bulk change.

    A bulk write carries one change set for every id, so the derived dates can't
    depend on each record's previous status: any status in the change stamps
    ``date_status_changed``, and WORKED stamps ``completed_date`` as well.
    """
    if new_status is None:
        return {}
    derived: dict[str, Any] = {"date_status_changed": now}
    if new_status == Status.WORKED:
        derived["completed_date"] = now
    return derived
