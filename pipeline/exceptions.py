"""
Error taxonomy for the Contribot pipeline.

Callers switch on these types rather than inspecting error messages:
- AuthenticationFailed is fatal and aborts a run
- ResourceCeilingExceeded pauses a run with a resumption cursor
- everything else is isolated to the item being processed
"""

from enum import Enum
from typing import Optional


class ContribotError(Exception):
    """Base exception for pipeline failures."""


class AuthenticationFailed(ContribotError):
    """Raised when GitHub rejects the credential (HTTP 401/403)."""


class RateLimitExceeded(ContribotError):
    """Raised when GitHub keeps answering 429 after the retry budget is spent."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFound(ContribotError):
    """Raised when a repository or issue does not exist (or is not visible)."""


class TransientNetworkFailure(ContribotError):
    """Raised when transport-level retries (DNS, connection, timeout) are exhausted."""


class GitHubApiError(ContribotError):
    """Raised for any other non-success response from GitHub."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CeilingKind(str, Enum):
    """Hard external limits that force a run to pause."""

    REQUEST_BUDGET = "request_budget"
    STORAGE_CONNECTIONS = "storage_connections"


class ResourceCeilingExceeded(ContribotError):
    """
    Raised by the gateway or the record store when a hard external limit is hit.

    The orchestrator checkpoints and pauses on this error instead of
    counting it against the current item.
    """

    def __init__(self, message: str, kind: CeilingKind):
        super().__init__(message)
        self.kind = kind


class StorageError(ContribotError):
    """Raised when a record store operation fails for a non-ceiling reason."""


class ValidationError(ContribotError):
    """Base class for malformed input (adapter payloads, model output)."""


class SourceFormatError(ValidationError):
    """Raised when a curated-list entry cannot be normalized."""


class SummarizerOutputError(ValidationError):
    """Raised when the LLM reply cannot be turned into an annotation."""
