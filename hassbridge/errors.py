"""Exception taxonomy shared by the session, projection and bridge layers."""

from __future__ import annotations

from typing import Optional


class HassBridgeError(RuntimeError):
    """Base class for every error raised by hassbridge."""


class ConfigError(HassBridgeError):
    """Environment configuration is missing or malformed."""


class TransportError(HassBridgeError):
    """The websocket failed or closed. Fatal for the session."""


class AuthError(HassBridgeError):
    """Home Assistant rejected the access token."""


class ProtocolError(HassBridgeError):
    """The hub broke the expected message sequence. Fatal for the session."""


class UnexpectedMessageKind(HassBridgeError):
    """A command was answered with something other than a ``result`` message."""

    def __init__(self, kind: Optional[str]) -> None:
        super().__init__(f"unexpected message after command: {kind!r}")
        self.kind = kind


class CommandFailed(HassBridgeError):
    """A ``result`` message arrived with ``success: false``."""

    def __init__(self, code: str = "", message: str = "") -> None:
        super().__init__(f"command result failed: {code or 'unknown_error'}: {message}")
        self.code = code
        self.message = message


class ArtworkFetchError(HassBridgeError):
    """Artwork could not be downloaded or stored. Never escapes the cache."""


class StatesFetchError(HassBridgeError):
    """The REST bulk state fetch failed."""
