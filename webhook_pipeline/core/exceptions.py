"""
Custom Exception Hierarchy

Structured exceptions for consistent error handling across the API, the
Celery workers and the admin CLI.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"

    # Webhook event errors (2xxx)
    WEBHOOK_EVENT_NOT_FOUND = "ERR_2001"
    WEBHOOK_ALREADY_PROCESSED = "ERR_2002"
    WEBHOOK_PAYLOAD_MISSING = "ERR_2003"
    WEBHOOK_RETRY_CONFLICT = "ERR_2004"
    UNKNOWN_PROVIDER = "ERR_2005"
    INVALID_WEBHOOK_PAYLOAD = "ERR_2006"

    # External service errors (5xxx)
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class WebhookException(AppException):
    """Base exception for operator-facing webhook errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 400,
        webhook_event_id: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        if webhook_event_id:
            self.details["webhook_event_id"] = webhook_event_id


class WebhookEventNotFoundError(WebhookException):
    """Raised when no webhook event exists with the given id"""

    def __init__(self, webhook_event_id: str):
        super().__init__(
            message=f"Webhook event not found: {webhook_event_id}",
            error_code=ErrorCode.WEBHOOK_EVENT_NOT_FOUND,
            status_code=404,
            webhook_event_id=webhook_event_id
        )


class WebhookAlreadyProcessedError(WebhookException):
    """Raised when retrying an event that already succeeded"""

    def __init__(self, webhook_event_id: str):
        super().__init__(
            message=f"Webhook event {webhook_event_id} was already processed",
            error_code=ErrorCode.WEBHOOK_ALREADY_PROCESSED,
            status_code=409,
            webhook_event_id=webhook_event_id
        )


class WebhookPayloadMissingError(WebhookException):
    """Raised when an event has no stored payload to replay"""

    def __init__(self, webhook_event_id: str):
        super().__init__(
            message=f"Webhook event {webhook_event_id} has no stored payload",
            error_code=ErrorCode.WEBHOOK_PAYLOAD_MISSING,
            status_code=422,
            webhook_event_id=webhook_event_id
        )


class WebhookRetryConflictError(WebhookException):
    """Raised when the event is not in a retryable state at update time"""

    def __init__(self, webhook_event_id: str, current_status: str | None):
        super().__init__(
            message=f"Webhook event {webhook_event_id} cannot be retried from status '{current_status}'",
            error_code=ErrorCode.WEBHOOK_RETRY_CONFLICT,
            status_code=409,
            webhook_event_id=webhook_event_id,
            details={"current_status": current_status}
        )


class UnknownProviderError(WebhookException):
    """Raised when no handler is registered for a provider"""

    def __init__(self, provider: str):
        super().__init__(
            message=f"Unknown webhook provider: {provider}",
            error_code=ErrorCode.UNKNOWN_PROVIDER,
            status_code=404,
            details={"provider": provider}
        )


class InvalidWebhookPayloadError(ValidationException):
    """Raised when a payload does not carry the provider's event identity"""

    def __init__(self, provider: str, message: str):
        super().__init__(
            message=message,
            field="payload",
            error_code=ErrorCode.INVALID_WEBHOOK_PAYLOAD,
            details={"provider": provider}
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class JobQueueError(ExternalServiceException):
    """Raised when a job cannot be handed to the queue"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="job_queue",
            message=f"Job queue error: {message}",
            details=details
        )
