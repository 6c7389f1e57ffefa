"""
Domain exceptions raised by services and rendered by the API error handlers.

Every failure reaches the client as {"success": false, "error": message}
with the status code carried by the exception class.
"""


class StorefrontError(Exception):
    """Base class for errors that map to a client-visible response."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationFailed(StorefrontError):
    """Missing or invalid input."""
    status_code = 400


class SignatureMismatch(StorefrontError):
    """A gateway or identity-provider signature did not verify. Never retried."""
    status_code = 400


class AuthenticationFailed(StorefrontError):
    status_code = 401


class PermissionDenied(StorefrontError):
    status_code = 403


class NotFound(StorefrontError):
    status_code = 404


class UpstreamError(StorefrontError):
    """An external adapter (gateway, identity provider) failed."""
    status_code = 500

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service} request failed: {message}")
