"""Parley exceptions.

Each error carries the HTTP status the API layer should answer with, so the
server can translate failures without scraping strings.
"""

from __future__ import annotations


class ParleyError(RuntimeError):
    """Base class for conversation service errors."""

    status = 500


class ValidationError(ParleyError):
    """Bad input (missing field, unknown kind, invalid config value)."""

    status = 400


class NotFoundError(ParleyError):
    """Unknown, closing or closed conversation id."""

    status = 404

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ConversationCancelledError(ParleyError):
    """A queued message was discarded because its conversation closed."""

    status = 409


class DriverError(ParleyError):
    """Failure reported by an underlying driver."""


class DriverInitError(DriverError):
    """Driver or session could not be created."""


class DriverSendError(DriverError):
    """A turn failed while sending or reading the reply."""


class ServiceUnavailableError(ParleyError):
    """The service is shutting down and no longer accepts work."""

    status = 503


class ParleyHTTPError(RuntimeError):
    """Non-2xx response from the conversation service (client side)."""

    def __init__(
        self,
        status: int,
        *,
        method: str,
        url: str,
        detail: str | None = None,
    ):
        self.status = int(status)
        self.method = method
        self.url = url
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        detail = (self.detail or "").strip()
        if detail:
            return f"HTTP {self.status} {self.method} {self.url}: {detail}"
        return f"HTTP {self.status} {self.method} {self.url}"
