"""
Errors - Typed failures raised by the Outblog, Shopify and storage clients

Clients raise one of these; the action boundary in sync_tools maps each
class to the message shown to the merchant via ERROR_MESSAGES.
"""

from typing import Optional


class OutblogSyncError(Exception):
    """Base class for every failure the sync service reports to a merchant."""

    def __init__(self, detail: str = "", user_message: Optional[str] = None):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail
        self.user_message = user_message


class InvalidCredential(OutblogSyncError):
    pass


class CredentialMissing(OutblogSyncError):
    pass


class NotFound(OutblogSyncError):
    pass


class RemoteRateLimited(OutblogSyncError):
    pass


class RemoteForbidden(OutblogSyncError):
    pass


class RemoteServerError(OutblogSyncError):
    pass


class RemoteValidationError(OutblogSyncError):
    """Field-level error reported by Shopify (userErrors)."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        prefix = f"{field}: " if field else ""
        super().__init__(message, user_message=f"Shopify API Error: {prefix}{message}")


class RemoteProtocolError(OutblogSyncError):
    pass


class RemoteEmptyResponse(OutblogSyncError):
    pass


class NetworkError(OutblogSyncError):
    pass


class RemoteTimeout(OutblogSyncError):
    pass


class PersistenceError(OutblogSyncError):
    pass


class Unauthorized(OutblogSyncError):
    pass


ERROR_MESSAGES = {
    InvalidCredential: "Invalid API key. Please check your Outblog API configuration.",
    CredentialMissing: "API key not configured",
    NotFound: "Not found",
    RemoteRateLimited: "Rate limit exceeded. Please try again in a few minutes.",
    RemoteForbidden: "API access forbidden. Please check your subscription.",
    RemoteServerError: "Server error. Please try again later.",
    RemoteValidationError: "Shopify API Error",
    RemoteProtocolError: "Unexpected response from remote service. Please try again.",
    RemoteEmptyResponse: "Shopify API returned no article data. Please try again.",
    NetworkError: "Network error. Please check your connection and try again.",
    RemoteTimeout: "Request timed out. Please try again.",
    PersistenceError: "Database error. Please try again in a moment.",
    Unauthorized: "Authentication error. Please refresh the page and try again.",
}


def get_user_message(error: OutblogSyncError) -> str:
    """Message shown to the merchant for a typed error."""
    if error.user_message:
        return error.user_message
    for error_class in type(error).__mro__:
        if error_class in ERROR_MESSAGES:
            return ERROR_MESSAGES[error_class]
    return str(error)
