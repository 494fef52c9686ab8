"""Provider-specific exceptions for error handling."""


class ProviderError(Exception):
    """Base exception for all identity provider and store operations."""
    pass


class ProviderAPIError(ProviderError):
    """HTTP error from the admin API or the REST store.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class ProviderUnavailableError(ProviderError):
    """Request never produced a response (timeout, refused connection, DNS)."""

    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"{endpoint}: {reason}")


class IdentityConflictError(ProviderError):
    """Identity creation rejected because the email is already registered."""

    def __init__(self, email: str, message: str):
        self.email = email
        self.message = message
        super().__init__(f"Identity for '{email}' already exists: {message}")


class InvalidCallerTokenError(ProviderError):
    """Caller bearer token is missing, expired or rejected by the provider."""
    pass
