"""Bounded, newest-first audit log for certificate mutations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from docauth.config import get_config
from docauth.core import compact_dict, now_rfc3339

ACTION_ADVANCE_STAGE = "Advanced lifecycle stage"
ACTION_UPDATE_FIELD = "Updated field"
ACTION_ADD_INSTALLER = "Added installer"
ACTION_ADD_DEVICE = "Added device"
ACTION_UPDATE_DEVICE = "Updated device"
ACTION_CAPTURE_PHOTO = "Captured install photo"
ACTION_HEALTH_CHECK = "Recorded health check"
ACTION_TELEMETRY_PULL = "Pulled health from telemetry"
ACTION_HEALTH_OVERRIDE = "Manual health override"
ACTION_ACCEPTANCE = "Customer acceptance captured"


@dataclass(frozen=True)
class AuditEntry:
    id: str
    timestamp: str
    actor: str
    action: str
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return compact_dict({
            "id": self.id,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "action": self.action,
            "details": self.details,
        })

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AuditEntry":
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            actor=d["actor"],
            action=d["action"],
            details=d.get("details"),
        )


def append_audit(
    log: Iterable[AuditEntry],
    actor: Any,
    action: str,
    details: Optional[str] = None,
    *,
    timestamp: Optional[str] = None,
    limit: Optional[int] = None,
) -> Tuple[AuditEntry, ...]:
    """Prepend an entry and keep only the newest ``limit`` entries.

    ``actor`` may be a Role member or its string value. ``limit`` defaults to
    ``lifecycle.audit_max_entries``.
    """
    if limit is None:
        limit = get_config().lifecycle.audit_max_entries.get()
    entry = AuditEntry(
        id=str(uuid.uuid4()),
        timestamp=timestamp or now_rfc3339(),
        actor=getattr(actor, "value", actor),
        action=action,
        details=details,
    )
    return ((entry,) + tuple(log))[:limit]


def lifecycle_entries(log: Iterable[AuditEntry]) -> Tuple[AuditEntry, ...]:
    """Stage-transition entries, in log order."""
    return tuple(e for e in log if "lifecycle" in e.action.lower())
