from __future__ import annotations


class JournalError(Exception):
    """Base class for errors raised by the journal stores."""


class ValidationError(JournalError):
    """A request is missing something it must carry, such as the upload file."""


class NotFoundError(JournalError, LookupError):
    """No audio row matched the given id."""


class StoreError(JournalError):
    """The metadata store or the blob store failed to complete an operation."""


class BlobCleanupError(JournalError):
    """A blob could not be removed after its metadata row was deleted.

    Only ever logged; the metadata deletion has already succeeded.
    """
