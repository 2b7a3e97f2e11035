from fastapi import status


class ConduitException(Exception):
    """
    Base class for all Conduit exceptions with consistent structure.

    Attributes:
        title (str): short, stable message that is safe to show to external callers
        message (str, optional): detailed message for logs and operators only
        error_code (int): HTTP status code the boundary should answer with
    """

    def __init__(
        self,
        title: str,
        message: str | None = None,
        error_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    ):
        super().__init__(title, message, error_code)
        self.title = title
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        """
        String representation that combines title and message (if available)
        """
        if self.message:
            return f"{self.title}: {self.message}"
        return self.title


class ServiceNotFound(ConduitException):
    """
    Exception raised when an OAuth2 flow references a service that is not configured
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Service not found", message=message, error_code=status.HTTP_404_NOT_FOUND
        )


class InvalidState(ConduitException):
    """
    Exception raised when an OAuth2 state is unknown, tampered with, mismatched or already used
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Invalid authorization state",
            message=message,
            error_code=status.HTTP_400_BAD_REQUEST,
        )


class ExpiredState(ConduitException):
    """
    Exception raised when an OAuth2 state is used after its time-to-live
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Authorization request expired",
            message=message,
            error_code=status.HTTP_400_BAD_REQUEST,
        )


class ExchangeFailed(ConduitException):
    """
    Exception raised when the service rejects the authorization code or returns an unusable token
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Authorization failed", message=message, error_code=status.HTTP_502_BAD_GATEWAY
        )


class ServiceUnreachable(ConduitException):
    """
    Exception raised when the service's token endpoint cannot be reached in time
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Service unavailable",
            message=message,
            error_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class ConnectionNotFound(ConduitException):
    """
    Exception raised when a connection is not found
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Connection not found", message=message, error_code=status.HTTP_404_NOT_FOUND
        )


class ConnectionNotActive(ConduitException):
    """
    Exception raised when a revoked or expired connection is used
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Connection not active", message=message, error_code=status.HTTP_409_CONFLICT
        )


class TokenRefreshFailed(ConduitException):
    """
    Exception raised when refreshing a connection's access token fails.
    The connection has been marked expired and needs to be re-authorized.
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Token refresh failed", message=message, error_code=status.HTTP_401_UNAUTHORIZED
        )


class SubscriptionNotFound(ConduitException):
    """
    Exception raised when a webhook arrives for an unknown subscription
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Not found", message=message, error_code=status.HTTP_404_NOT_FOUND
        )


class InvalidSubscription(ConduitException):
    """
    Exception raised when a subscription's filter, mapping rules or action config
    cannot be used
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Invalid subscription",
            message=message,
            error_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )


class VerificationFailed(ConduitException):
    """
    Exception raised when an inbound webhook signature does not verify.
    The title deliberately carries no detail about what was wrong.
    """

    def __init__(self, message: str | None = None):
        super().__init__(
            title="Unauthorized", message=message, error_code=status.HTTP_401_UNAUTHORIZED
        )


class SecurityViolation(ConduitException):
    """
    Exception raised at the platform boundary for rate limiting, invalid CSRF state
    and other rejected requests that must be audited.
    """

    def __init__(
        self,
        violation_type: str,
        message: str | None = None,
        error_code: int = status.HTTP_403_FORBIDDEN,
        retry_after: int | None = None,
    ):
        super().__init__(title="Request rejected", message=message, error_code=error_code)
        self.violation_type = violation_type
        self.retry_after = retry_after
