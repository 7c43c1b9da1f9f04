"""Four-level approval workflow for master-data change requests.

Every transition is computed from the caller's snapshot and committed with
compare-and-swap on the request ``version``.  The audit entry is appended
after the swap; if that append fails the swap is reverted and the error
propagates, so a persisted transition always has its audit entry.
A final approval is only recorded once the change has been checked against
the current reference data.
"""

import dataclasses
import logging
import uuid
from typing import Callable, Optional

from app.config import ENTITY_TYPES
from app.errors import (
    InvalidTransitionError,
    MissingReasonError,
    RequestNotFoundError,
    UnauthorizedTransitionError,
    WorkflowError,
)
from app.workflow.audit import AuditLogStore, InMemoryAuditLogStore
from app.workflow.models import (
    FINAL_APPROVAL,
    TRANSITIONS,
    Action,
    AuditEntry,
    ChangeCommitted,
    ChangeRequest,
    Operation,
    Status,
    as_payload,
    utc_now,
)
from app.workflow.roles import RoleAuthority
from app.workflow.stores import ChangeRequestStore, InMemoryChangeRequestStore

logger = logging.getLogger(__name__)

ChangeListener = Callable[[ChangeCommitted], None]
PayloadValidator = Callable[[str, Operation, dict], None]

_OPEN_STATES = (Status.PENDING, Status.UNDER_REVIEW)


class ApprovalWorkflow:
    def __init__(
        self,
        store: ChangeRequestStore | None = None,
        audit_log: AuditLogStore | None = None,
        roles: RoleAuthority | None = None,
        validate_payload: PayloadValidator | None = None,
        check_commit: PayloadValidator | None = None,
    ):
        self.store = store or InMemoryChangeRequestStore()
        self.audit_log = audit_log or InMemoryAuditLogStore()
        self.roles = roles or RoleAuthority()
        self._validate_payload = validate_payload
        # Runs before the final approval is recorded; raising leaves the request as it was
        self._check_commit = check_commit
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callback for ChangeCommitted events."""
        self._listeners.append(listener)

    # ═══════════════════════════════════════════════════
    # COMMANDS
    # ═══════════════════════════════════════════════════

    def submit(
        self,
        entity_type: str,
        operation: Operation | str,
        payload: dict,
        requested_by: str,
        reason: str = "",
    ) -> ChangeRequest:
        """Create a request at level 1 / Pending and record the SUBMIT entry.

        Raises:
            ValueError: unknown entity type or operation, empty requester,
                or a payload the validator rejects.
        """
        entity_type = str(entity_type or "").strip().upper()
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type '{entity_type}' (expected one of {ENTITY_TYPES})")
        if not isinstance(operation, Operation):
            operation = Operation(str(operation).strip().upper())
        payload = as_payload(payload)
        if not str(requested_by or "").strip():
            raise ValueError("requested_by is required")
        if self._validate_payload is not None:
            self._validate_payload(entity_type, operation, payload)

        now = utc_now()
        request_id = str(uuid.uuid4())
        entry = AuditEntry(
            request_id=request_id,
            action=Action.SUBMIT,
            performed_by=requested_by,
            timestamp=now,
            from_state=None,
            to_state=Status.PENDING,
            from_level=None,
            to_level=1,
            reason=reason or None,
        )
        request = ChangeRequest(
            id=request_id,
            entity_type=entity_type,
            operation=operation,
            payload=payload,
            requested_by=requested_by,
            reason=reason or "",
            status=Status.PENDING,
            current_level=1,
            history=(entry,),
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.store.create(request)
        try:
            self.audit_log.append(entry)
        except Exception:
            logger.error(f"Audit append failed for new request {request_id}; discarding it")
            self.store.delete(request_id)
            raise
        logger.info(
            f"Change request {request_id} submitted by {requested_by}: "
            f"{operation.value} {entity_type}"
        )
        return request

    def approve(
        self,
        request: ChangeRequest | str,
        acting_role: str,
        actor: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> ChangeRequest:
        """Advance one level; at the last level the request becomes Approved."""
        return self._transition(request, Action.APPROVE, acting_role, actor, comment)

    def reject(
        self,
        request: ChangeRequest | str,
        acting_role: str,
        reason: str,
        actor: Optional[str] = None,
    ) -> ChangeRequest:
        return self._transition(request, Action.REJECT, acting_role, actor, reason)

    def send_back(
        self,
        request: ChangeRequest | str,
        acting_role: str,
        reason: str,
        actor: Optional[str] = None,
    ) -> ChangeRequest:
        """Return the request to level 1 / Pending.  Only valid above level 1."""
        return self._transition(request, Action.SEND_BACK, acting_role, actor, reason)

    def _snapshot(self, request: ChangeRequest | str) -> ChangeRequest:
        if isinstance(request, ChangeRequest):
            return request
        return self.get(request)

    def _transition(
        self,
        request: ChangeRequest | str,
        action: Action,
        acting_role: str,
        actor: Optional[str],
        reason: Optional[str],
    ) -> ChangeRequest:
        snapshot = self._snapshot(request)
        level = snapshot.current_level

        target = TRANSITIONS.get((snapshot.status, action))
        if target is None:
            raise InvalidTransitionError(
                f"Cannot {action.value} change request {snapshot.id} "
                f"in state {snapshot.status.value} (level {level})"
            )

        required_role = self.roles.role_for_level(level)
        if not self.roles.is_authorized(acting_role, level):
            raise UnauthorizedTransitionError(acting_role, required_role, level)

        reason = (reason or "").strip() or None
        if action in (Action.REJECT, Action.SEND_BACK) and reason is None:
            raise MissingReasonError(
                f"A reason is required to {action.value.lower().replace('_', ' ')} "
                f"change request {snapshot.id}"
            )

        if action is Action.APPROVE:
            if level >= self.roles.top_level:
                to_status, to_level = FINAL_APPROVAL, level
            else:
                to_status, to_level = target, level + 1
        elif action is Action.SEND_BACK:
            to_status, to_level = target, 1
        else:
            to_status, to_level = target, level

        if to_status is FINAL_APPROVAL and self._check_commit is not None:
            self._check_commit(snapshot.entity_type, snapshot.operation, snapshot.payload)

        now = utc_now()
        performed_by = actor or acting_role
        entry = AuditEntry(
            request_id=snapshot.id,
            action=action,
            performed_by=performed_by,
            timestamp=now,
            from_state=snapshot.status,
            to_state=to_status,
            from_level=level,
            to_level=to_level,
            reason=reason,
        )
        updated = dataclasses.replace(
            snapshot,
            status=to_status,
            current_level=to_level,
            history=snapshot.history + (entry,),
            version=snapshot.version + 1,
            updated_at=now,
        )

        self.store.compare_and_swap(updated, expected_version=snapshot.version)
        try:
            self.audit_log.append(entry)
        except Exception:
            logger.error(f"Audit append failed for {snapshot.id} {action.value}; reverting to v{snapshot.version}")
            try:
                self.store.compare_and_swap(snapshot, expected_version=updated.version)
            except WorkflowError as revert_error:
                logger.error(f"Could not revert change request {snapshot.id}: {revert_error}")
            raise

        logger.info(
            f"Change request {snapshot.id}: {action.value} by {performed_by} "
            f"({snapshot.status.value} L{level} → {to_status.value} L{to_level})"
        )
        if updated.status is FINAL_APPROVAL:
            self._emit(ChangeCommitted.from_request(updated, performed_by))
        return updated

    def _emit(self, event: ChangeCommitted) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    f"Listener failed applying approved change request {event.request_id}"
                )
                raise

    # ═══════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════

    def get(self, request_id: str) -> ChangeRequest:
        request = self.store.get(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def list_requests(
        self, status: Status | str | None = None, level: Optional[int] = None,
    ) -> list[ChangeRequest]:
        status = Status(status) if status is not None else None
        return [
            r for r in self.store.list_all()
            if (status is None or r.status is status)
            and (level is None or r.current_level == level)
        ]

    def inbox(self, role: str) -> list[ChangeRequest]:
        """Open requests currently waiting on ``role``."""
        levels = set(self.roles.levels_for_role(role))
        return [
            r for r in self.store.list_all()
            if r.status in _OPEN_STATES and r.current_level in levels
        ]

    def audit_trail(self, request_id: str) -> list[AuditEntry]:
        return self.audit_log.entries(request_id)
