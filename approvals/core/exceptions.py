"""
Engine-wide exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and map each to a stable HTTP status and error code.

Usage:
    from approvals.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Process", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested process, step or approval request does not exist.

    Soft-deleted rows are reported as missing.

    Args:
        resource: Human-readable model name (e.g. "Process", "ProcessStep").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed JSON but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique business key
    or clash with rows that still depend on the target.

    Maps to HTTP 409.
    """

    def __init__(
        self, resource: str, field: str, value: str | None = None, message: str | None = None
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class InvalidReorderError(ValidationError):
    """Raised when a proposed step order is not a permutation of the current steps.

    Args:
        process_id: The process whose steps were being reordered.
        missing: Current step ids absent from the proposal.
        extra: Proposed ids that are not live steps of the process.
        duplicates: Ids that appear more than once in the proposal.
    """

    def __init__(
        self,
        process_id: int,
        missing: list[int] | None = None,
        extra: list[int] | None = None,
        duplicates: list[int] | None = None,
        message: str | None = None,
    ) -> None:
        self.process_id = process_id
        self.missing = sorted(missing or [])
        self.extra = sorted(extra or [])
        self.duplicates = sorted(duplicates or [])
        details = {
            "missing": self.missing,
            "extra": self.extra,
            "duplicates": self.duplicates,
        }
        super().__init__(
            message or f"Proposed order for process {process_id} is not a permutation of its steps",
            details=details,
        )


class UnauthorizedActorError(Exception):
    """Raised when the actor may not decide the request's current step.

    Maps to HTTP 403.
    """

    def __init__(self, actor_id: int | None, request_id: int, step_order: int) -> None:
        self.actor_id = actor_id
        self.request_id = request_id
        self.step_order = step_order
        super().__init__(
            f"User {actor_id} is not an approver for step {step_order} "
            f"of approval request {request_id}"
        )


class TerminalStateError(Exception):
    """Raised when a decision is attempted on a request that is no longer Pending.

    Maps to HTTP 409.
    """

    def __init__(self, request_id: int, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"Approval request {request_id} is already {status}")


class NoStepsError(Exception):
    """Raised when a process has no live steps and therefore cannot be used.

    Maps to HTTP 422.
    """

    def __init__(self, process_id: int) -> None:
        self.process_id = process_id
        super().__init__(f"Process {process_id} has no steps")


class ConcurrentModificationError(Exception):
    """Raised when an optimistic version check fails.

    Callers should re-fetch the request and retry. Maps to HTTP 409.
    """

    def __init__(self, request_id: int, expected: int | None = None, actual: int | None = None) -> None:
        self.request_id = request_id
        self.expected = expected
        self.actual = actual
        msg = f"Approval request {request_id} was modified concurrently"
        if expected is not None:
            msg += f" (expected version {expected}, found {actual})"
        super().__init__(msg)
