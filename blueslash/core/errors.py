"""Domain error taxonomy and user-facing error classification."""

from enum import Enum

from pydantic import BaseModel


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_PERMISSION_DENIED = "ERR_PERMISSION_DENIED"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_CONFLICT = "ERR_CONFLICT"
    ERR_FAILED_PRECONDITION = "ERR_FAILED_PRECONDITION"
    ERR_INSUFFICIENT_GEMS = "ERR_INSUFFICIENT_GEMS"
    ERR_EXTERNAL_SERVICE = "ERR_EXTERNAL_SERVICE"
    ERR_LLM = "ERR_LLM"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class BlueSlashError(Exception):
    """Base class for errors surfaced to callers of the service layer."""

    code: str = ErrorCode.ERR_UNKNOWN


class ValidationError(BlueSlashError, ValueError):
    """Malformed input: empty names, negative gems, oversized messages."""

    code = ErrorCode.ERR_VALIDATION


class PermissionDeniedError(BlueSlashError, PermissionError):
    """Role or ownership check failed."""

    code = ErrorCode.ERR_PERMISSION_DENIED


class NotFoundError(BlueSlashError, LookupError):
    """Referenced entity is absent."""

    code = ErrorCode.ERR_NOT_FOUND


class ConflictError(BlueSlashError):
    """Optimistic concurrency loss between read and write."""

    code = ErrorCode.ERR_CONFLICT


class FailedPreconditionError(BlueSlashError):
    """Valid input that violates a business rule in the current state."""

    code = ErrorCode.ERR_FAILED_PRECONDITION


class InsufficientGemsError(FailedPreconditionError):
    """Gem balance too low for the requested transfer."""

    code = ErrorCode.ERR_INSUFFICIENT_GEMS


class ExternalServiceError(BlueSlashError):
    """A collaborator (LLM, push gateway, blob store) failed."""

    code = ErrorCode.ERR_EXTERNAL_SERVICE


class LLMError(ExternalServiceError):
    """Gem estimation failed or returned an unusable value."""

    code = ErrorCode.ERR_LLM


class UnregisteredTokenError(ExternalServiceError):
    """The push gateway no longer recognises a user's notification token."""


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Domain errors carry their own message; claim conflicts and insufficient
    gem balances get fixed wording so clients can tell them apart from
    transport failures.
    """
    detail = str(exception)

    if isinstance(exception, ConflictError):
        return ErrorResponse(
            code=ErrorCode.ERR_CONFLICT,
            message="This task was already claimed by someone else.",
            suggestion="Refresh the task board to see what is still available.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InsufficientGemsError):
        return ErrorResponse(
            code=ErrorCode.ERR_INSUFFICIENT_GEMS,
            message="Not enough gems.",
            suggestion="Complete or verify tasks to earn more gems, or send a smaller gift.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            message=detail,
            suggestion="Check the values you entered and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, PermissionDeniedError):
        return ErrorResponse(
            code=ErrorCode.ERR_PERMISSION_DENIED,
            message=detail or "You don't have permission for this action.",
            suggestion="Ask the head of household if you think this is an error.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, NotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_FOUND,
            message=detail,
            suggestion="It may have been removed or the link may have expired.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, FailedPreconditionError):
        return ErrorResponse(
            code=ErrorCode.ERR_FAILED_PRECONDITION,
            message=detail,
            suggestion="Refresh and check the current status before trying again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, LLMError):
        return ErrorResponse(
            code=ErrorCode.ERR_LLM,
            message="Gem estimation is unavailable right now.",
            suggestion=(
                "Try again later. Households that allow gem overrides can enter a value manually instead."
            ),
            severity=ErrorSeverity.HIGH,
        )

    if isinstance(exception, ExternalServiceError):
        return ErrorResponse(
            code=ErrorCode.ERR_EXTERNAL_SERVICE,
            message="An external service failed.",
            suggestion="Please try again later.",
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
