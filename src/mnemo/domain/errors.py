"""
Error taxonomy for mnemo.

Integrity errors (NotFound, Conflict, InvalidState) are raised synchronously to
the immediate caller. ExternalInconsistency and CorruptedDocument are normally
handled where they occur and only logged.
"""


class MnemoError(Exception):
    """Base class for all mnemo errors."""


class NotFoundError(MnemoError):
    """A card, queue, orphan or schedule referenced by id/path does not exist."""


class ConflictError(MnemoError):
    """The operation would duplicate or overwrite existing data."""


class InvalidStateError(MnemoError):
    """The operation is not permitted in the current session state."""


class ExternalInconsistencyError(MnemoError):
    """The vault no longer contains an item the core still references."""


class PersistenceError(MnemoError):
    """Writing the document failed after all retries."""


class CorruptedDocumentError(MnemoError):
    """The persisted document failed structural validation."""
