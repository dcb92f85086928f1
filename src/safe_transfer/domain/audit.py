"""Append-only audit trail shared by deals and payments.

Every mutation of a Deal or Payment goes through ``append`` (or
``change_status``, which is ``append`` plus the status write), so the trail is
the complete compliance record. Repositories call ``ensure_append_only`` before
persisting, which rejects any save that edits or drops an earlier entry, even
on terminal deals.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from safe_transfer.domain.exceptions import AuditTrailViolation
from safe_transfer.domain.models import AuditEntry

if TYPE_CHECKING:
    import enum
    from collections.abc import Sequence
    from datetime import datetime

    from safe_transfer.domain.models import Deal, Payment

SYSTEM_ACTOR = "SYSTEM"


def append(
    entity: Deal | Payment,
    action: str,
    performed_by: str,
    now: datetime,
    details: str = "",
    old_status: str | None = None,
    new_status: str | None = None,
) -> AuditEntry:
    """Append one entry to ``entity.audit_trail`` and bump ``updated_at``."""
    entry = AuditEntry(
        action=action,
        performed_by=performed_by,
        timestamp=now,
        details=details,
        old_status=old_status,
        new_status=new_status,
    )
    entity.audit_trail.append(entry)
    entity.updated_at = now
    return entry


def change_status(
    entity: Deal | Payment,
    new_status: enum.StrEnum,
    performed_by: str,
    now: datetime,
    action: str | None = None,
    details: str = "",
) -> AuditEntry:
    """Write ``new_status`` and record the old/new pair in the trail.

    Callers validate the transition with the state machine guard first.
    """
    old_status = entity.status
    entity.status = new_status
    return append(
        entity,
        action=action or f"Status changed to {new_status}",
        performed_by=performed_by,
        now=now,
        details=details,
        old_status=str(old_status),
        new_status=str(new_status),
    )


def ensure_append_only(
    entity_id: str,
    previous: Sequence[AuditEntry],
    current: Sequence[AuditEntry],
) -> None:
    """Raise AuditTrailViolation unless ``current`` extends ``previous``."""
    if len(current) < len(previous) or list(current[: len(previous)]) != list(previous):
        raise AuditTrailViolation(entity_id)
