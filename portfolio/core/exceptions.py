"""
Platform-wide exception hierarchy.

Every failure the initiative workflow can signal is one member of a
closed set of kinds (``ErrorKind``).  Each kind has exactly one exception
class carrying a structured ``details`` payload, so the HTTP layer maps
``error.kind`` to a status code once instead of matching message strings.

Usage:
    from portfolio.core.exceptions import MissingApproversError, NotFoundError

    raise NotFoundError(resource="Initiative", resource_id=initiative_id)
    raise MissingApproversError(role="finance", gate_key="l2-gate", round_index=0)
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    STAGE_PENDING = "STAGE_PENDING"
    STAGE_ALREADY_APPROVED = "STAGE_ALREADY_APPROVED"
    MISSING_APPROVERS = "MISSING_APPROVERS"
    WORKSTREAM_NOT_FOUND = "WORKSTREAM_NOT_FOUND"
    APPROVAL_NOT_FOUND = "APPROVAL_NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_INPUT = "INVALID_INPUT"


class PortfolioError(Exception):
    """Base class: a named failure kind plus a structured payload.

    Args:
        message: Human-readable explanation.
        details: Field-level or context breakdown for API responses.
    """

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(PortfolioError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Initiative").
        resource_id: The identifier that was looked up.
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, {"resource": resource, "id": resource_id})


class WorkstreamNotFoundError(NotFoundError):
    """The initiative's workstream (and so its gate configuration) is missing."""

    kind = ErrorKind.WORKSTREAM_NOT_FOUND

    def __init__(self, workstream_id: str | None) -> None:
        super().__init__(resource="Workstream", resource_id=workstream_id)


class ApprovalNotFoundError(NotFoundError):
    kind = ErrorKind.APPROVAL_NOT_FOUND

    def __init__(self, approval_id: str | None) -> None:
        super().__init__(resource="Approval", resource_id=approval_id)


class VersionConflictError(PortfolioError):
    """Raised when a versioned write lost the race against another writer.

    Callers must re-read and recompute before retrying.
    """

    kind = ErrorKind.VERSION_CONFLICT

    def __init__(self, resource: str, resource_id: str, expected_version: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        super().__init__(
            f"{resource} id={resource_id} was updated elsewhere",
            {"resource": resource, "id": resource_id, "expected_version": expected_version},
        )


class StagePendingError(PortfolioError):
    kind = ErrorKind.STAGE_PENDING

    def __init__(self, stage_key: str) -> None:
        self.stage_key = stage_key
        super().__init__(f"Stage {stage_key} is already awaiting approval", {"stage_key": stage_key})


class StageAlreadyApprovedError(PortfolioError):
    kind = ErrorKind.STAGE_ALREADY_APPROVED

    def __init__(self, stage_key: str) -> None:
        self.stage_key = stage_key
        super().__init__(f"Stage {stage_key} is already approved", {"stage_key": stage_key})


class MissingApproversError(PortfolioError):
    """A gate round requires a role nobody in the workstream holds."""

    kind = ErrorKind.MISSING_APPROVERS

    def __init__(self, role: str, gate_key: str | None = None, round_index: int | None = None) -> None:
        self.role = role
        self.gate_key = gate_key
        self.round_index = round_index
        super().__init__(
            f"No accounts are assigned to role '{role}'",
            {"role": role, "gate_key": gate_key, "round_index": round_index},
        )


class ForbiddenError(PortfolioError):
    """The acting account is not the one the approval task is bound to."""

    kind = ErrorKind.FORBIDDEN

    def __init__(self, approval_id: str, account_id: str | None) -> None:
        self.approval_id = approval_id
        self.account_id = account_id
        super().__init__(
            "You cannot act on this approval",
            {"approval_id": approval_id, "account_id": account_id},
        )


class ValidationError(PortfolioError):
    """Raised when input is malformed or violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    kind = ErrorKind.INVALID_INPUT
