class RepostGuardError(Exception):
    """Base error for the repost-detection engine."""


class NotInitialized(RepostGuardError):
    """Raised when the history store is used before init() or after close()."""


class CorruptPersistedState(RepostGuardError):
    """Raised when the persisted history snapshot cannot be parsed."""


class OracleUnavailable(RepostGuardError):
    """Raised when a message existence check could not complete.

    This is a soft failure: it says nothing about whether the message was deleted.
    """


class InvalidConfiguration(RepostGuardError):
    """Raised when a threshold or retention window is not strictly positive."""


class StorePersistenceError(RepostGuardError):
    """Raised when flushing the history snapshot failed or timed out."""
