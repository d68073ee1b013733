"""
Sync Error Kinds
Every failure that can end a run is one of these; each carries its context.
"""

from typing import Any, Dict


class SyncError(Exception):
    """Base class for errors that abort a sync run."""
    
    kind = 'sync_error'
    
    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Structured failure description."""
        return {'kind': self.kind, 'message': self.message, **self.context}


class ConfigurationError(SyncError):
    """Required configuration or credentials are missing."""
    kind = 'configuration_error'


class InvalidWindow(SyncError):
    """The since override cannot be parsed or lies in the future."""
    kind = 'invalid_window'


class AuthFailed(SyncError):
    """Jira rejected the credentials. Never retried."""
    kind = 'auth_failed'


class FetchFailed(SyncError):
    """A page could not be fetched after exhausting retries."""
    kind = 'fetch_failed'


class StageWriteFailed(SyncError):
    """Appending rows to the stage table failed."""
    kind = 'stage_write_failed'


class MergeFailed(SyncError):
    """The stage-to-target merge failed and was rolled back."""
    kind = 'merge_failed'


class RunCancelled(SyncError):
    """A stop was requested between pages."""
    kind = 'cancelled'
