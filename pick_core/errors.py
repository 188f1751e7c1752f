"""Exception taxonomy shared by the engine, the backends and the API."""
from __future__ import annotations


class PickError(Exception):
    """Base class for every error raised by pick_core."""


class SnapshotFetchError(PickError):
    """The aggregate snapshot could not be fetched; callers fall back to zeros."""


class CommitError(PickError):
    """A session's answers could not be committed. Never fatal for the participant."""


class TransportError(CommitError):
    """Network-level failure talking to the aggregate store. Retryable."""


class CommitConflictError(CommitError):
    """The idempotency key was already used with a different payload."""


class ResultNotFoundError(PickError):
    """No result rule matched and the rule set declares no default."""


class MalformedSessionDataError(PickError):
    """Locally persisted session data is corrupt and was discarded."""


class IncompleteSessionError(PickError):
    """A required question has no answer yet."""


class InvalidAnswerError(PickError, ValueError):
    pass


class NavigationError(PickError):
    pass


class SessionStateError(PickError):
    """Illegal session phase or status transition."""


class StatsEngineError(PickError):
    pass


class UnknownTestError(PickError, KeyError):
    pass
