"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Workflow commands are issued by several actors (requester, approver,
warehouse, accountant) through an outer transport layer that must map
every failure to a specific, machine-readable outcome.  Callers must
never parse message strings to decide what happened.

Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        service.approve(ctx, request_id)
    except InvalidTransitionError as e:
        api_response(409, code=e.code, status=e.current_status)
    except RequestNotFoundError as e:
        api_response(404, code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementKernelError (base)
    |
    +-- RequestError
    |   +-- RequestNotFoundError
    |   +-- InvalidTransitionError
    |   +-- ValidationFailedError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |       +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Request         | REQUEST_NOT_FOUND           | Unknown id or other tenant's request
                | INVALID_TRANSITION          | Command not valid from current status
                | VALIDATION_FAILED           | Structurally invalid command payload
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification detected
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying/deleting an audit record
----------------|-----------------------------|-----------------------------------------
Config          | CONFIG_ERROR                | Invalid policy configuration

===============================================================================
PROPAGATION
===============================================================================

The command facade rolls back the transaction and re-raises.  Nothing in
the kernel retries; a ConflictError means the caller may re-read and
re-issue the command if it still makes sense.
"""


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"


# Request-related exceptions


class RequestError(ProcurementKernelError):
    """Base exception for material request errors."""

    code: str = "REQUEST_ERROR"


class RequestNotFoundError(RequestError):
    """
    The request does not exist or belongs to another organization.

    Both cases produce the same error so that tenant boundaries are not
    observable from the outside.
    """

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Material request not found: {request_id}")


class InvalidTransitionError(RequestError):
    """The command is not valid from the request's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        request_id: str,
        action: str,
        current_status: str,
        reason: str | None = None,
    ):
        self.request_id = request_id
        self.action = action
        self.current_status = current_status
        self.reason = reason
        message = (
            f"Cannot {action} material request {request_id} "
            f"in status {current_status}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ValidationFailedError(RequestError):
    """The command payload is structurally invalid."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(ProcurementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """A concurrent writer changed the aggregate first."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, message: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            message
            or (
                f"Conflict on {entity_type} {entity_id}: "
                "entity was modified by another transaction"
            )
        )


class OptimisticLockError(ConflictError):
    """Version check failed when loading or writing an aggregate."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.expected_version = expected_version
        self.actual_version = actual_version
        if expected_version is not None:
            message = (
                f"Optimistic lock conflict on {entity_type} {entity_id}: "
                f"expected version {expected_version}, found {actual_version}"
            )
        else:
            message = None
        super().__init__(entity_type, entity_id, message)


# Immutability-related exceptions


class ImmutabilityError(ProcurementKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Material request history rows are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigError(ProcurementKernelError):
    """A configuration value is missing or out of range."""

    code: str = "CONFIG_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
