"""Errors raised by the chess room client."""

from typing import Any


class ChessClientError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(ChessClientError):
    """Session bootstrap values are missing or invalid."""


# --- Transport ---
class ChannelError(ChessClientError):
    """A request on the channel did not get an `ok` reply."""


class ChannelReplyError(ChannelError):
    def __init__(self, event: str, response: Any) -> None:
        self.event = event
        self.response = response
        super().__init__(f"{event!r} replied with error: {response!r}")

    @property
    def reason(self) -> str:
        if isinstance(self.response, dict):
            return str(self.response.get("reason", self.response))
        return str(self.response)


class ChannelTimeout(ChannelError):
    def __init__(self, event: str, timeout: float) -> None:
        self.event = event
        self.timeout = timeout
        super().__init__(f"{event!r} got no reply within {timeout}s")


class ChannelClosed(ChannelError):
    """The socket is gone; pending and future requests fail with this."""


# --- Session ---
class JoinError(ChessClientError):
    """Joining the room failed. Fatal to the session."""


class QueryFailed(ChessClientError):
    def __init__(self, square: int, cause: Exception) -> None:
        self.square = square
        self.cause = cause
        super().__init__(f"valid moves lookup for square {square} failed: {cause}")


class MoveRejected(ChessClientError):
    def __init__(self, move: Any, reason: str) -> None:
        self.move = move
        self.reason = reason
        super().__init__(f"move {move} rejected: {reason}")


class DialogConflict(ChessClientError):
    """A dialog was opened while another one is still pending."""


class DeserializationError(ChessClientError):
    def __init__(self, what: str, cause: Exception) -> None:
        self.what = what
        self.cause = cause
        super().__init__(f"could not decode {what}: {cause}")
