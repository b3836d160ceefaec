"""Custom exceptions for configuration problems and battle operations."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Base exception for configuration errors with optional suggestions."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"[Configuration Error] {self.message}"
        if self.suggestion:
            msg += f"\n[Suggestion] {self.suggestion}"
        return msg


class APIKeyError(ConfigurationError):
    """Error when the judge API key is missing."""

    def __init__(self) -> None:
        super().__init__(
            "API key required for real judge calls",
            "Set OPENROUTER_API_KEY or add judge.api_key to the config file.",
        )


class ArenaError(Exception):
    """Base exception for battle and matchmaking operations.

    Attributes:
        message: Human readable description, safe to show to callers.
        status_code: HTTP status the REST layer answers with.
    """

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidRequestError(ArenaError):
    """Missing or invalid input. Never retried."""

    status_code = 400


class NotAuthenticatedError(ArenaError):
    """No verified caller identity was supplied."""

    status_code = 401


class NotAuthorizedError(ArenaError):
    """Caller is not allowed to act on this resource."""

    status_code = 403

    def __init__(self, message: str = "Caller is not a participant for this shard") -> None:
        super().__init__(message)


class NotFoundError(ArenaError):
    """Requested entity does not exist."""

    status_code = 404


class StateConflictError(ArenaError):
    """The entity is not in the state the operation expects."""

    status_code = 409


class EscrowUnavailableError(ArenaError):
    """Escrow ledger could not be reached; the caller may retry later."""

    status_code = 503
