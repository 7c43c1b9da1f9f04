"""Error taxonomy shared by the valuation engine and the approval workflow.

Valuation:
  - StaleReferenceError: a base-data lookup returned no effective record
  - NoBandMatchError: observed value fits no band (caller treats as zero)
  - BandOverlapError: band definitions for one parameter overlap
  - ValueFlooredWarning: depreciation pushed the value below zero (non-fatal)

Workflow:
  - InvalidTransitionError: action not allowed from the current state
  - UnauthorizedTransitionError: acting role is not the current approver
  - ConcurrentModificationError: transition attempted on a stale snapshot
  - MissingReasonError: reject / send-back without a reason
  - RequestNotFoundError: unknown change request id

None of these leave persisted state partially modified.
"""


class ValuationCoreError(Exception):
    """Base class for every error raised by the core."""


# ═══════════════════════════════════════════════════
# VALUATION
# ═══════════════════════════════════════════════════

class StaleReferenceError(ValuationCoreError):
    """No effective reference record exists for the lookup."""

    def __init__(self, entity: str, key: str, as_of=None):
        self.entity = entity
        self.key = key
        self.as_of = as_of
        when = f" as of {as_of}" if as_of else ""
        super().__init__(f"No effective {entity} for {key}{when}")


class NoBandMatchError(ValuationCoreError):
    """Observed value does not fall into any band of the parameter."""

    def __init__(self, parameter_code: str, observed_value):
        self.parameter_code = parameter_code
        self.observed_value = observed_value
        super().__init__(f"No band of {parameter_code} matches {observed_value!r}")


class BandOverlapError(ValuationCoreError, ValueError):
    """Two bands of the same parameter overlap."""


class ValueFlooredWarning(ValuationCoreError, UserWarning):
    """Depreciation would have produced a negative value; clamped to zero."""


# ═══════════════════════════════════════════════════
# WORKFLOW
# ═══════════════════════════════════════════════════

class WorkflowError(ValuationCoreError):
    """Base class for change-request workflow failures."""


class InvalidTransitionError(WorkflowError):
    pass


class UnauthorizedTransitionError(WorkflowError):
    def __init__(self, acting_role: str, required_role: str, level: int):
        self.acting_role = acting_role
        self.required_role = required_role
        self.level = level
        super().__init__(
            f"Role '{acting_role}' cannot act at level {level} (requires '{required_role}')"
        )


class ConcurrentModificationError(WorkflowError):
    def __init__(self, request_id: str, expected_version: int, actual_version: int):
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Change request {request_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version}); re-read and retry"
        )


class MissingReasonError(WorkflowError, ValueError):
    pass


class RequestNotFoundError(WorkflowError, KeyError):
    def __str__(self):
        return f"Change request {self.args[0]} not found"
