"""Wires the reference stores, workflow and committer together."""

import logging
from dataclasses import dataclass
from pathlib import Path

from app.config import (
    AUDIT_LOG_FILE,
    REFERENCE_SNAPSHOT,
    REQUESTS_DIR,
    WORKFLOW_STORE_BACKEND,
)
from app.valuation.reference_store import (
    MasterDataRegistry,
    ParameterStore,
    ReferenceStore,
    load_snapshot,
)
from app.workflow.approval import ApprovalWorkflow
from app.workflow.audit import InMemoryAuditLogStore, JsonlAuditLogStore
from app.workflow.commit import ChangeCommitter
from app.workflow.roles import RoleAuthority
from app.workflow.stores import InMemoryChangeRequestStore, JsonFileChangeRequestStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    reference_store: ReferenceStore
    parameter_store: ParameterStore
    registry: MasterDataRegistry
    workflow: ApprovalWorkflow
    committer: ChangeCommitter


def build_services(
    reference_store: ReferenceStore | None = None,
    parameter_store: ParameterStore | None = None,
    backend: str = WORKFLOW_STORE_BACKEND,
    snapshot: str | Path | None = REFERENCE_SNAPSHOT,
    roles: RoleAuthority | None = None,
) -> Services:
    """Assemble the service graph.

    Approved change requests flow straight into the stores: the committer
    is subscribed to the workflow, validates payloads at submit and re-checks
    them against current data just before the final approval.
    """
    if reference_store is None and parameter_store is None and snapshot:
        reference_store, parameter_store = load_snapshot(Path(snapshot))
    reference_store = reference_store or ReferenceStore()
    parameter_store = parameter_store or ParameterStore()
    registry = MasterDataRegistry()
    committer = ChangeCommitter(reference_store, parameter_store, registry)

    if backend == "file":
        store = JsonFileChangeRequestStore(REQUESTS_DIR)
        audit_log = JsonlAuditLogStore(AUDIT_LOG_FILE)
    elif backend == "memory":
        store = InMemoryChangeRequestStore()
        audit_log = InMemoryAuditLogStore()
    else:
        raise ValueError(f"Unknown WORKFLOW_STORE_BACKEND '{backend}' (expected memory | file)")
    logger.info(f"Workflow store backend: {backend}")

    workflow = ApprovalWorkflow(
        store=store,
        audit_log=audit_log,
        roles=roles,
        validate_payload=committer.validate,
        check_commit=committer.check_applicable,
    )
    workflow.subscribe(committer.apply)
    return Services(reference_store, parameter_store, registry, workflow, committer)
