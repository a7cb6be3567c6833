# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Archon Exception Hierarchy

Every error carries a stable ``code`` and the HTTP ``status_code`` the
handler layer answers with.

Exception Hierarchy:
    ArchonError (base)
    ├── ConfigError
    ├── UnauthorizedError
    ├── ForbiddenError
    │   └── ProtectedBranchError
    ├── ValidationError
    ├── NotFoundError
    ├── ConflictError
    │   ├── ActiveRunsError
    │   └── ConcurrentUpdateError
    ├── StoreError
    │   └── StoreUnavailableError
    └── DAGError
        └── DAGCycleError
"""

from typing import Any, Dict, List, Optional

# ============================================================================
# Base Exception
# ============================================================================


class ArchonError(Exception):
    """Base exception for all Archon errors"""

    code = "SERVER_ERROR"
    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause
        self.hint = hint

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        result = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.cause:
            base += f" | Caused by: {self.cause}"
        return base


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(ArchonError):
    """Configuration-related errors"""

    code = "CONFIG_ERROR"


# ============================================================================
# Access Errors
# ============================================================================


class UnauthorizedError(ArchonError):
    """Request carries no usable identity"""

    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(ArchonError):
    """Identity is known but not allowed to perform the action"""

    code = "FORBIDDEN"
    status_code = 403


class ProtectedBranchError(ForbiddenError):
    """Merge attempted into a protected branch"""

    def __init__(self, branch_id: str, branch_name: Optional[str] = None, **kwargs):
        kwargs.setdefault("hint", "Protected branches require an approved merge request")
        super().__init__("Protected branch requires approval", **kwargs)
        self.branch_id = branch_id
        self.branch_name = branch_name

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"branch_id": self.branch_id, "branch_name": self.branch_name})
        return result


# ============================================================================
# Validation / Lookup Errors
# ============================================================================


class ValidationError(ArchonError):
    """Input validation errors"""

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.errors = errors or []
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "field": self.field,
                "value": self.value,
                "errors": self.errors,
            }
        )
        return result


class NotFoundError(ArchonError):
    """Referenced entity does not exist"""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"entity": self.entity, "entity_id": self.entity_id})
        return result


# ============================================================================
# Conflict Errors
# ============================================================================


class ConflictError(ArchonError):
    """Request conflicts with the current state of a resource"""

    code = "CONFLICT"
    status_code = 409


class ActiveRunsError(ConflictError):
    """Rollback blocked by runs still in progress"""

    def __init__(self, workflow_id: str, active_runs: int, **kwargs):
        kwargs.setdefault("hint", "Wait for active runs to complete or cancel them first")
        super().__init__(
            f"Cannot rollback: {active_runs} runs in progress", **kwargs
        )
        self.workflow_id = workflow_id
        self.active_runs = active_runs

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"workflow_id": self.workflow_id, "active_runs": self.active_runs})
        return result


class ConcurrentUpdateError(ConflictError):
    """Compare-and-swap precondition failed"""

    retryable = True

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        expected: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        kwargs.setdefault("hint", "Reload the resource and retry the operation")
        super().__init__(message, **kwargs)
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected or {}

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "entity": self.entity,
                "entity_id": self.entity_id,
                "expected": self.expected,
            }
        )
        return result


# ============================================================================
# Store Errors
# ============================================================================


class StoreError(ArchonError):
    """Entity store failed to complete an operation"""

    code = "DATABASE_ERROR"


class StoreUnavailableError(StoreError):
    """Entity store unreachable or temporarily failing"""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    retryable = True


# ============================================================================
# DAG Errors
# ============================================================================


class DAGError(ArchonError):
    """DAG construction or analysis failed"""

    code = "WORKFLOW_ERROR"
    status_code = 422


class DAGCycleError(DAGError):
    """Cycle detected in workflow graph"""

    def __init__(self, cycle: List[str], **kwargs):
        path = " -> ".join(cycle)
        super().__init__(f"Circular dependency detected in workflow: {path}", **kwargs)
        self.cycle = cycle

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["cycle"] = self.cycle
        return result


# ============================================================================
# Utility Functions
# ============================================================================


def format_error_envelope(
    error: Exception, trace_id: str, debug: bool = False
) -> Dict[str, Any]:
    """
    Build the JSON error envelope returned by every handler.

    Args:
        error: Exception to render
        trace_id: Request trace identifier
        debug: Include exception details for non-Archon errors

    Returns:
        ``{code, message, hint?, retryable, trace_id}`` dictionary
    """
    if isinstance(error, ArchonError):
        envelope: Dict[str, Any] = {
            "code": error.code,
            "message": error.message,
            "retryable": error.retryable,
            "trace_id": trace_id,
        }
        if error.hint:
            envelope["hint"] = error.hint
        if error.details:
            envelope["details"] = error.details
        return envelope

    return {
        "code": "SERVER_ERROR",
        "message": str(error) if debug else "Internal server error",
        "retryable": True,
        "trace_id": trace_id,
    }
