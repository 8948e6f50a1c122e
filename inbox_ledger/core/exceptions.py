"""Error taxonomy for a sync run.

Only ``NotConnected`` and ``SourceUnavailable`` abort a sync; the other
conditions are folded into the ``SyncReport``.
"""
from typing import Optional


class InboxLedgerError(Exception):
    """Base class for every error raised by this package."""


class NotConnected(InboxLedgerError):
    """No valid bearer credential exists for the principal."""

    def __init__(self, principal_id: str, reason: str = "no valid credential"):
        self.principal_id = principal_id
        self.reason = reason
        super().__init__(f"[{principal_id}] not connected: {reason}")


class SourceError(InboxLedgerError):
    """Non-transient failure reported by the remote message API."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class SourceUnavailable(SourceError):
    """Transient failures exhausted the retry ceiling."""


class DecodeFailure(InboxLedgerError):
    def __init__(self, message_id: str, reason: str):
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"message {message_id}: {reason}")
