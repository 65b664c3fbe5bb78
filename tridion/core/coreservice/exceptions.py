"""CoreService-specific exceptions for error handling."""


class CoreServiceError(Exception):
    """Base exception for all CoreService operations."""
    pass


class CoreServiceAPIError(CoreServiceError):
    """SOAP fault returned by the CoreService.

    Attributes:
        operation: CoreService operation that failed
        message: Fault message
        fault_code: SOAP fault code (may be empty)
    """

    def __init__(self, operation: str, message: str, fault_code: str = ""):
        self.operation = operation
        self.message = message
        self.fault_code = fault_code or ""
        prefix = f"[{self.fault_code}] " if self.fault_code else ""
        super().__init__(f"{prefix}{operation}: {message}")

    @property
    def is_not_found(self) -> bool:
        """True when the fault reports a missing item."""
        text = f"{self.fault_code} {self.message}".lower()
        return "does not exist" in text or "itemdoesnotexist" in text


class CoreServiceConnectionError(CoreServiceError):
    """Transport-level failure talking to the CoreService endpoint."""
    pass


class NotConnectedError(CoreServiceError):
    """Client used before connect() or after close()."""
    pass


class ConfigurationError(CoreServiceError):
    """Settings are incomplete for the selected connection type."""
    pass


class UnsupportedConnectionTypeError(ConfigurationError):
    """Connection type cannot be served by an HTTP SOAP stack."""
    pass


class AdfsAuthenticationError(CoreServiceError):
    """Token issuance by the federation server failed.

    Attributes:
        status_code: HTTP status code when the failure was HTTP-level, else None
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class UserNotFoundError(CoreServiceError):
    """User lookup failed - no user with that id or name."""
    pass


class UserAlreadyExistsError(CoreServiceError):
    """User creation failed - a user with that name already exists."""
    pass


class GroupNotFoundError(CoreServiceError):
    """Group lookup failed - no group with that id or name."""
    pass


class GroupAlreadyExistsError(CoreServiceError):
    """Group creation failed - a group with that name already exists."""
    pass


class InvalidTcmUriError(CoreServiceError, ValueError):
    """Identifier is not a valid TCM URI for the expected item type."""
    pass
