"""Exception types raised by the ingestion and enrichment engine.

Per-item failures (one folder, one message, one candidate, one enrichment
fetch) are recorded and skipped by their callers. Only connection-level and
internal faults are allowed to fail a background job.
"""

from __future__ import annotations


class JobTrackerError(Exception):
    """Base exception for all job tracker errors."""


class MailboxConnectionError(JobTrackerError):
    """Raised when the mailbox cannot be reached or refuses authentication.

    Covers network failures, TLS verification failures and rejected logins.
    The message is short and safe to show to users; it never contains the
    password.
    """


class FolderFetchError(JobTrackerError):
    """Raised when a single folder cannot be opened or searched.

    Attributes:
        folder: Name of the folder that was skipped.
    """

    def __init__(self, folder: str, message: str):
        super().__init__(f"{folder}: {message}")
        self.folder = folder


class ClassificationError(JobTrackerError):
    """Raised when a classifier fails on one message. The message is discarded."""


class ImportWriteError(JobTrackerError):
    """Raised when one candidate cannot be written during an import.

    Attributes:
        item_type: The candidate's type (application, statusUpdate, response).
    """

    def __init__(self, message: str, item_type: str | None = None):
        super().__init__(message)
        self.item_type = item_type


class EnrichmentFetchError(JobTrackerError):
    """Raised when a job posting cannot be fetched.

    Attributes:
        url: The URL that was requested.
        status_code: HTTP status code, when the server answered at all.
    """

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class JobNotFound(JobTrackerError):
    """Raised when a background job id is unknown or has been purged."""


class JobCancelled(JobTrackerError):
    """Raised inside a job body at a checkpoint once cancellation was requested."""


class CredentialNotFound(JobTrackerError):
    """Raised when a mailbox credential id does not exist."""


class CredentialError(JobTrackerError):
    """Raised when a stored mailbox secret cannot be opened."""
