from __future__ import annotations

from typing import Any, Optional


class BrokerError(RuntimeError):
    """Base class for every error an action can complete with."""


class MissingCredentialsError(BrokerError):
    """Raised when the required Salesforce env vars are not present."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__("Missing required environment variables: " + ", ".join(missing))


class AuthError(BrokerError):
    """Login failed, or the remote rejected the session token (401/403).

    ``retryable`` is only ever true for a 401 on a regular call; the engine
    absorbs those by logging in again and re-running the same action.
    """

    def __init__(self, message: str, *, status: Optional[int] = None, retryable: bool = False):
        self.status = status
        self.retryable = retryable
        super().__init__(message)


class RequestError(BrokerError):
    """Any other non-2xx status."""

    def __init__(self, status: int, detail: Any = None):
        self.status = status
        self.detail = detail
        msg = f"Bad Status: {status}"
        if detail:
            msg += f" {detail}"
        super().__init__(msg)


class DecodeError(BrokerError):
    """Body was declared as JSON but could not be parsed."""


class TransportError(BrokerError):
    """Connection-level failure; the requests exception is chained as __cause__."""
