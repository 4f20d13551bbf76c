"""Exceptions raised by the chat core and mapped to HTTP responses."""

from typing import Any, Dict, List, Optional


class ChatError(Exception):
    """Base class for all application errors."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to the JSON error body."""
        body = {
            "status": "error",
            "message": self.message,
            "error_code": self.error_code,
        }
        body.update(self._get_details())
        return body

    def _get_details(self) -> Dict[str, Any]:
        return {}


class WidgetNotFound(ChatError):
    status_code = 404
    error_code = "widget_not_found"

    def __init__(self, widget_id: str):
        super().__init__("Widget not found")
        self.widget_id = widget_id


class WidgetInactive(ChatError):
    status_code = 404
    error_code = "widget_inactive"

    def __init__(self, widget_id: str):
        super().__init__("Widget is not active")
        self.widget_id = widget_id


class DomainNotAllowed(ChatError):
    status_code = 403
    error_code = "domain_not_allowed"

    def __init__(self, widget_id: str, host: Optional[str]):
        super().__init__("Domain not allowed")
        self.widget_id = widget_id
        self.host = host


class SessionNotFound(ChatError):
    status_code = 404
    error_code = "session_not_found"

    def __init__(self, session_id: Any):
        super().__init__("Chat session not found or inactive")
        self.session_id = session_id


class SessionForbidden(ChatError):
    status_code = 403
    error_code = "session_forbidden"

    def __init__(self, session_id: Any):
        super().__init__("You do not have access to this chat session")
        self.session_id = session_id


class ValidationFailed(ChatError):
    """Raised when request data is invalid, with per-field messages."""

    status_code = 422
    error_code = "validation_failed"

    def __init__(
        self,
        message: str,
        errors: Optional[Dict[str, List[str]]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, error_code)
        self.errors = errors or {}

    def _get_details(self) -> Dict[str, Any]:
        return {"errors": self.errors} if self.errors else {}


class AuthenticationRequired(ChatError):
    status_code = 401
    error_code = "unauthenticated"

    def __init__(self, message: str = "Unauthorized user"):
        super().__init__(message)


class RateLimitExceeded(ChatError):
    """Raised when a caller exceeds its request budget."""

    status_code = 429
    error_code = "rate_limited"


class GenerationFailed(ChatError):
    """Raised by the generation collaborator; never returned to clients."""

    error_code = "generation_failed"


class RequestTimeout(ChatError):
    status_code = 408
    error_code = "request_timeout"

    def __init__(self, message: str = "Request timeout"):
        super().__init__(message)
