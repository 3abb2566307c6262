"""
Error taxonomy for the event → GitHub sync.

Every failure the sync can produce is a SyncError subclass tagged with a
``kind`` string, so the trigger endpoint can tell configuration problems
(operator action needed) apart from transient failures (retry later) and
conflicts (retry shortly).
"""

from typing import Any, Optional


class SyncError(Exception):
    """Base class for all sync failures."""
    
    kind = "internal"
    retryable = False
    
    def __init__(self, message: str, *, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details
    
    def to_dict(self) -> dict:
        """Structured form used by diagnostics and endpoint bodies."""
        data = {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            data["details"] = self.details
        return data


class ConfigurationError(SyncError, ValueError):
    """Missing or malformed credentials or target location."""
    
    kind = "configuration"


class AuthenticationError(SyncError):
    """The remote authority rejected the signed assertion or the token."""
    
    kind = "authentication"


class TransientNetworkError(SyncError):
    """Timeout, connection failure or a 5xx/rate-limit response."""
    
    kind = "transient"
    retryable = True


class ConflictError(SyncError):
    """The remote document changed between fetch and write."""
    
    kind = "conflict"
    retryable = True


class DecodeError(SyncError):
    """A remote response did not have the expected shape."""
    
    kind = "decode"
    
    def __init__(self, message: str, *, payload: Any = None):
        super().__init__(message, details={"payload": payload})
        self.payload = payload


class RemoteStoreError(SyncError):
    """Any other non-2xx response; carries the body verbatim."""
    
    kind = "remote"
    
    def __init__(self, message: str, *, status_code: int, body: str):
        super().__init__(
            f"{message} (HTTP {status_code}): {body}",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body
