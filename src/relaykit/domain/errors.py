"""RelayKit error handling.

Domain exceptions raised by the estimate pipeline. Routes translate them
into HTTP responses; the queue runner uses ``retryable`` to decide between
returning an entry to ``pending`` and failing it outright.
"""

from typing import Any, Optional


class ErrorCode:
    """Error code constants."""

    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    GENERATION_IN_PROGRESS = "GENERATION_IN_PROGRESS"
    LLM_INVALID_RESPONSE = "LLM_INVALID_RESPONSE"
    LLM_REQUEST_FAILED = "LLM_REQUEST_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PDF_GENERATION_FAILED = "PDF_GENERATION_FAILED"
    NOT_FOUND = "NOT_FOUND"


class RelayKitError(Exception):
    """Base exception for RelayKit errors.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message
        details: Additional error context
    """

    http_status = 500
    retryable = True

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API response."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class JobNotFoundError(RelayKitError):
    http_status = 404
    retryable = False

    def __init__(self, job_id: str):
        super().__init__(ErrorCode.JOB_NOT_FOUND, "Job not found", {"job_id": job_id})


class EntitlementError(RelayKitError):
    """Workspace has no active subscription and its trial has ended."""

    http_status = 402
    retryable = False

    def __init__(self, workspace_id: str):
        super().__init__(
            ErrorCode.PAYMENT_REQUIRED,
            "Subscription required",
            {"workspace_id": workspace_id},
        )


class GenerationInProgressError(RelayKitError):
    """Another estimate generation holds the job's single-flight marker."""

    http_status = 409

    def __init__(self, job_id: str):
        super().__init__(
            ErrorCode.GENERATION_IN_PROGRESS,
            "An estimate is already being generated for this job",
            {"job_id": job_id},
        )


class MalformedResponseError(RelayKitError):
    """The LLM answered, but not with JSON matching the estimate contract."""

    http_status = 502

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCode.LLM_INVALID_RESPONSE, message, details)


class UpstreamError(RelayKitError):
    """The LLM request itself failed (HTTP error, timeout, empty reply)."""

    http_status = 502

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCode.LLM_REQUEST_FAILED, message, details)


class ConfigurationError(RelayKitError):
    """Missing credentials or configuration. Never retried."""

    http_status = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message)


class PdfGenerationError(RelayKitError):
    """The estimate PDF could not be rendered or stored."""

    http_status = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCode.PDF_GENERATION_FAILED, message, details)


class ResourceNotFoundError(RelayKitError):
    """A workspace-scoped record (template, customer, package) does not exist."""

    http_status = 404
    retryable = False

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"{resource.capitalize()} not found",
            {"resource": resource, "id": resource_id},
        )
