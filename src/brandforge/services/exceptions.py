"""Service error hierarchy for synthesis, storage and ledger operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts, 5xx)
- PermanentError: Non-retryable errors (authentication, validation)

The retry policy classifies errors by these base classes first, so client code
should always raise the most specific subclass it can.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (500, 502, 503, 504)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400, 422)
    - Configuration errors
    """

    pass


# Synthesis provider errors
class ProviderError(ServiceError):
    """Base exception for image-synthesis provider errors."""

    status_code: int | None = None

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTransientError(ProviderError, TransientError):
    """Provider network failure, timeout or 5xx."""

    pass


class ProviderRateLimitError(ProviderError, TransientError):
    """Provider rate limit exceeded (429)."""

    pass


class ProviderAuthError(ProviderError, PermanentError):
    """Provider authentication failure (401, 403)."""

    pass


class ProviderValidationError(ProviderError, PermanentError):
    """Provider rejected the request parameters (400, 422)."""

    pass


class ContentPolicyError(ProviderError, PermanentError):
    """Prompt or output rejected by the provider's safety filter."""

    pass


# Object storage errors
class StorageError(ServiceError):
    """Base exception for object storage errors."""

    pass


class StorageNetworkError(StorageError, TransientError):
    """Network timeout or service unavailable."""

    pass


class StorageRateLimitError(StorageError, TransientError):
    """Rate limit exceeded (429)."""

    pass


class StorageAuthError(StorageError, PermanentError):
    """Authentication failure (401, 403)."""

    pass


class StorageValidationError(StorageError, PermanentError):
    """Bad request (400) or unusable download response."""

    pass


# Derived-asset errors
class AssetFetchError(PermanentError):
    """Base image could not be fetched or failed size sanity checks."""

    pass


# Ledger errors
class InsufficientEntitlementError(PermanentError):
    """User can neither use the free grant nor pay the job cost."""

    def __init__(self, cost: int, balance: int, reason: str):
        super().__init__(f"Insufficient entitlement ({reason}): cost={cost}, balance={balance}")
        self.cost = cost
        self.balance = balance
        self.reason = reason


# Startup errors
class ConfigurationError(PermanentError):
    """Application wiring is incomplete (e.g. a job type without a handler)."""

    pass


# Front end delivery errors
class DeliveryError(ServiceError):
    """Base exception for front end notification errors."""

    pass


class DeliveryNetworkError(DeliveryError, TransientError):
    """Callback endpoint unreachable, rate limited or failing (429, 5xx)."""

    pass


class DeliveryRejectedError(DeliveryError, PermanentError):
    """Callback endpoint rejected the message (4xx)."""

    pass
