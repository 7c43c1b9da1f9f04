"""Change-request records and the approval state table.

    Pending (level 1) ──approve──▶ Under Review (level 2..N) ──approve@N──▶ Approved
        │                               │   │
        └────────reject─────────────────┼───┴──reject──▶ Rejected
                                        └──send back──▶ Pending (level 1)

Approved and Rejected are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Status(str, Enum):
    PENDING = "Pending"
    UNDER_REVIEW = "Under Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class Action(str, Enum):
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SEND_BACK = "SEND_BACK"


class Operation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DEACTIVATE = "DEACTIVATE"


TERMINAL_STATES = frozenset({Status.APPROVED, Status.REJECTED})

# (status, action) → next status.  Anything absent is an invalid transition.
# APPROVE at the last level of the chain lands in FINAL_APPROVAL instead.
TRANSITIONS: dict[tuple[Status, Action], Status] = {
    (Status.PENDING, Action.APPROVE): Status.UNDER_REVIEW,
    (Status.PENDING, Action.REJECT): Status.REJECTED,
    (Status.UNDER_REVIEW, Action.APPROVE): Status.UNDER_REVIEW,
    (Status.UNDER_REVIEW, Action.REJECT): Status.REJECTED,
    (Status.UNDER_REVIEW, Action.SEND_BACK): Status.PENDING,
}
FINAL_APPROVAL = Status.APPROVED


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class AuditEntry:
    request_id: str
    action: Action
    performed_by: str
    timestamp: str
    from_state: Optional[Status]
    to_state: Status
    from_level: Optional[int]
    to_level: int
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "action": self.action.value,
            "performed_by": self.performed_by,
            "timestamp": self.timestamp,
            "from_state": self.from_state.value if self.from_state else None,
            "to_state": self.to_state.value,
            "from_level": self.from_level,
            "to_level": self.to_level,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            request_id=data["request_id"],
            action=Action(data["action"]),
            performed_by=data["performed_by"],
            timestamp=data["timestamp"],
            from_state=Status(data["from_state"]) if data.get("from_state") else None,
            to_state=Status(data["to_state"]),
            from_level=data.get("from_level"),
            to_level=data["to_level"],
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class ChangeRequest:
    """A proposed master-data mutation.

    Snapshots are immutable; every transition produces a new snapshot with
    ``version`` incremented, which the store accepts only if the stored
    version still matches the one the caller read.
    """

    id: str
    entity_type: str
    operation: Operation
    payload: dict
    requested_by: str
    reason: str = ""
    status: Status = Status.PENDING
    current_level: int = 1
    history: tuple[AuditEntry, ...] = ()
    version: int = 1
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "operation": self.operation.value,
            "payload": self.payload,
            "requested_by": self.requested_by,
            "reason": self.reason,
            "status": self.status.value,
            "current_level": self.current_level,
            "history": [e.to_dict() for e in self.history],
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeRequest":
        return cls(
            id=data["id"],
            entity_type=data["entity_type"],
            operation=Operation(data["operation"]),
            payload=data.get("payload") or {},
            requested_by=data["requested_by"],
            reason=data.get("reason") or "",
            status=Status(data["status"]),
            current_level=int(data["current_level"]),
            history=tuple(AuditEntry.from_dict(e) for e in data.get("history", [])),
            version=int(data["version"]),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )


@dataclass(frozen=True)
class ChangeCommitted:
    """Emitted once a request clears the last approval level."""

    request_id: str
    entity_type: str
    operation: Operation
    payload: dict
    approved_by: str
    committed_at: str

    @classmethod
    def from_request(cls, request: ChangeRequest, approved_by: str) -> "ChangeCommitted":
        return cls(
            request_id=request.id,
            entity_type=request.entity_type,
            operation=request.operation,
            payload=request.payload,
            approved_by=approved_by,
            committed_at=request.updated_at,
        )


def as_payload(value: Any) -> dict:
    if not isinstance(value, dict):
        raise ValueError("Change request payload must be an object")
    return dict(value)
