from typing import Any, Dict, Optional


class NotificationError(Exception):
    pass


class ValidationError(NotificationError):
    """Malformed or incomplete notification input, e.g. no recipient."""
    pass


class TransportError(NotificationError):
    """The email provider rejected or failed to deliver a message."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class RenderError(NotificationError):
    """A template payload is missing a required field."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StorageError(Exception):
    pass


class NotFoundError(StorageError):
    pass
