"""Clean control-plane exception hierarchy.

Every error carries the HTTP status it maps to. ``public_message`` is what
leaves the process; for most errors it is the message itself, but
configuration and license failures deliberately say less.
"""


class CleanError(Exception):
    """Base exception for all control-plane errors."""

    status_code = 500

    def __init__(self, message: str = "", code: str = "CLEAN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    @property
    def public_message(self) -> str:
        return self.message


class ConfigurationError(CleanError):
    """Raised when a required secret or credential is not configured."""

    status_code = 500

    def __init__(self, message: str = "Required configuration is missing"):
        super().__init__(message, code="CONFIGURATION")

    @property
    def public_message(self) -> str:
        return "Internal server error"


class UnauthorizedError(CleanError):
    """Raised when a request carries no usable credential."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED")


class InvalidLicenseError(CleanError):
    """Raised when a license token cannot be accepted.

    Subclasses record why for logs; callers outside the process only ever
    see "Invalid license".
    """

    status_code = 401

    def __init__(self, message: str = "Invalid license"):
        super().__init__(message, code="INVALID_LICENSE")

    @property
    def public_message(self) -> str:
        return "Invalid license"


class InvalidSignatureError(InvalidLicenseError):
    """Bad signature, wrong algorithm, or malformed token."""

    def __init__(self, message: str = "License signature is invalid"):
        super().__init__(message)


class ExpiredLicenseError(InvalidLicenseError):
    """Token signature is fine but its exp claim has passed."""

    def __init__(self, message: str = "License has expired"):
        super().__init__(message)


class InvalidTierError(CleanError):
    status_code = 400

    def __init__(self, tier: str = ""):
        super().__init__(
            f"Invalid tier {tier!r} — must be free, pro, or enterprise",
            code="INVALID_TIER",
        )
        self.tier = tier


class ProviderRequestError(CleanError):
    """Raised when the tunnel provider answers with a non-2xx status."""

    status_code = 502

    def __init__(self, message: str = "Tunnel provider request failed", provider_status: int | None = None):
        super().__init__(message, code="PROVIDER_ERROR")
        self.provider_status = provider_status


class RateLimitExceeded(CleanError):
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded — try again in a minute", retry_after: int = 60):
        super().__init__(message, code="RATE_LIMITED")
        self.retry_after = retry_after


class ConflictError(CleanError):
    status_code = 409

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message, code="CONFLICT")


class NotFoundError(CleanError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND")


class PermissionDeniedError(CleanError):
    status_code = 403

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, code="FORBIDDEN")


class QuotaExceededError(CleanError):
    """Raised when a tier's entitlement limit is already reached."""

    status_code = 403

    def __init__(self, resource: str, current: int, limit: int):
        super().__init__(
            f"{resource.replace('_', ' ').capitalize()} limit reached for your plan "
            f"({current}/{limit}). Upgrade to add more.",
            code="QUOTA_EXCEEDED",
        )
        self.resource = resource
        self.current = current
        self.limit = limit
