"""
Custom exception hierarchy for structured error handling.

WHY: Billing failures come from three very different places (our own
validation, the database, and the payment provider). Each gets a typed
exception with an HTTP status so routes, jobs and alerts can tell them
apart without string matching.

IMPORTANT: NEVER raise the base Exception class. Always use these types.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses and HTTP status code mapping, and keeps secrets out
    of error payloads.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Debugging context such as subscription_id or
                correlation_id (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Configuration & Authentication
# ============================================================================


class ConfigurationError(AppException):
    """
    Raised when a required setting (API key, shared secret) is missing.

    WHY: A missing provider key is an operator problem, not a client one.
    503 tells callers to retry once the deployment is fixed.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Service is not configured"


class AuthenticationError(AppException):
    """
    Raised when a machine caller presents a missing or wrong shared secret.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class WebhookSignatureError(AuthenticationError):
    """Raised when a provider webhook signature does not verify."""

    default_message = "Invalid webhook signature"


# ============================================================================
# Validation & Resources
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class SubscriptionNotFoundError(ResourceNotFoundError):
    """Raised when an organization has no active subscription."""

    default_message = "No active subscription found"


class OrganizationNotFoundError(ResourceNotFoundError):
    """Raised when an organization doesn't exist."""

    default_message = "Organization not found"


class MembershipNotFoundError(ResourceNotFoundError):
    """Raised when a member doesn't belong to the organization."""

    default_message = "Member not found"


# ============================================================================
# Billing Rules
# ============================================================================


class LegacyBillingError(AppException):
    """
    Raised on any seat change against a legacy volume-pricing subscription.

    WHY: Legacy volume subscriptions cannot be edited in place on the
    provider. The only way forward is a new subscription, so the error
    carries an ``action_required`` hint the client can act on.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = (
        "Legacy volume-pricing subscriptions cannot change seats. "
        "Please create a new subscription."
    )

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("legacy_subscription", True)
        context.setdefault("action_required", "create_new_subscription")
        super().__init__(message, **context)


class ConcurrentModificationError(AppException):
    """
    Raised when an optimistic version check keeps failing.

    WHY: Two writers (API, webhook, scheduler) racing on the same
    subscription row must not silently overwrite each other. After the
    retry budget is spent, the caller gets a 409 and an operator alert.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Subscription was modified concurrently"


# ============================================================================
# External Services
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class ProviderError(ExternalServiceError):
    """
    Raised when a LemonSqueezy API call fails with a definite answer.

    WHY: A 4xx/5xx response means the provider did not apply the change,
    so local state must stay untouched and the caller can retry.
    """

    default_message = "Billing provider error"


class ProviderTimeoutError(ProviderError):
    """
    Raised when a LemonSqueezy call times out.

    WHY: A timeout is not a failure. The provider may or may not have
    applied the change, so the outcome is reported as ``unknown`` and the
    reconciliation job is responsible for catching any drift.

    HTTP Status: 504 Gateway Timeout
    """

    status_code = 504
    default_message = "Billing provider timed out; outcome unknown"

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("outcome", "unknown")
        super().__init__(message, **context)


class SlackNotificationError(ExternalServiceError):
    """
    Raised when Slack webhook calls fail.

    WHY: Slack delivery is best effort. The alert service catches this and
    reports the channel as failed without blocking other channels.
    """

    default_message = "Slack notification error"


class EmailServiceError(ExternalServiceError):
    """Raised when email sending fails (Resend)."""

    default_message = "Email service error"


# ============================================================================
# Database
# ============================================================================


class DatabaseError(AppException):
    """
    Raised when database operations fail.

    WHY: SQL errors are converted to this type with a safe message so no
    query text reaches API responses.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Database error"
