"""Error taxonomy shared by the store, the flow controller and the HTTP layer."""
from typing import Any, Optional


class BrokerError(Exception):
    """Base error rendered as ``{"error", "message", "authUrl"?}`` by the API."""

    status_code = 500
    error = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        error: Optional[str] = None,
        auth_url: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        self.auth_url = auth_url
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.auth_url:
            body["authUrl"] = self.auth_url
        body.update(self.extra)
        return body


class CustomerNotFound(BrokerError):
    status_code = 404
    error = "customer_not_found"


class Unauthenticated(BrokerError):
    status_code = 401
    error = "not_authenticated"


class Forbidden(BrokerError):
    """Session or id is fine but the stored credentials are not usable."""

    status_code = 403
    error = "forbidden"


class StorageError(BrokerError):
    """Backend failure in the customer store."""

    status_code = 500
    error = "internal_error"
