"""
Platform-wide exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and get consistent HTTP status codes everywhere.

The workflow engine raises them internally and converts them into
``TransitionResult`` values at its public boundary, so callers of
``apply_transition`` / ``escalate`` branch on ``result.success`` instead of
catching.

Usage:
    from proposal_workflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Workflow", resource_id="default-proposal-workflow")
    raise ValidationError("Step orders must be contiguous", details={"orders": [1, 3]})
"""


class WorkflowError(Exception):
    """Base class for all workflow-domain errors."""


class NotFoundError(WorkflowError):
    """Raised when a workflow, transition, proposal or notification does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Workflow", "Transition").
        resource_id: The identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(WorkflowError):
    """Raised when a configuration or payload is well-formed but violates a rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(WorkflowError):
    """Raised when the acting user's role lacks permission for an action.

    Maps to HTTP 403.
    """

    def __init__(self, user_id: str, role: str, action: str, reason: str | None = None) -> None:
        self.user_id = user_id
        self.role = role
        self.action = action
        msg = f"User {user_id} ({role}) is not authorized to {action}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PreconditionError(WorkflowError):
    """Raised when a transition guard does not hold for the proposal.

    Carries the failing condition's description. Maps to HTTP 409.
    """

    def __init__(self, description: str) -> None:
        self.description = description
        super().__init__(f"Condition not met: {description}")


class ConflictError(WorkflowError):
    """Raised when a save would overwrite a newer version of a record.

    Maps to HTTP 409.

    Args:
        resource: Entity name.
        field: The field that conflicted (usually "version").
        value: The value the caller expected.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} {field} conflict (expected {value!r})")
