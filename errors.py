"""Domain exceptions.

Each maps to one HTTP status in ``main.py``; nothing here knows about FastAPI.
"""
from __future__ import annotations

from typing import Optional


class TalentHubError(Exception):
    """Base class for errors scoped to a single user action."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FormatError(TalentHubError, ValueError):
    """Uploaded CSV does not have the expected shape."""

    def __init__(self, message: str, line: Optional[int] = None):
        if line is not None:
            message = f"Line {line}: {message}"
        super().__init__(message)
        self.line = line


class DocumentNotFound(TalentHubError):
    status_code = 404

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"No document {doc_id!r} in {collection}")
        self.collection = collection
        self.doc_id = doc_id


class ProfileRequired(TalentHubError):
    status_code = 403

    def __init__(self):
        super().__init__("Complete your profile first")


class NotAuthorized(TalentHubError):
    status_code = 403


class ActionInFlight(TalentHubError):
    """The same action is already running for this caller."""

    status_code = 409

    def __init__(self, key: tuple):
        super().__init__("This action is already in progress")
        self.key = key


class AlreadyApplied(TalentHubError):
    status_code = 409

    def __init__(self, job_id: str):
        super().__init__("You have already applied to this job")
        self.job_id = job_id


class JobClosed(TalentHubError):
    status_code = 409

    def __init__(self, job_id: str):
        super().__init__("This job is no longer accepting applications")
        self.job_id = job_id


class InvalidTransition(TalentHubError):
    status_code = 409


class ImportAborted(TalentHubError):
    """Persisting an imported row failed; earlier rows stay committed."""

    status_code = 503

    def __init__(self, processed: int, total: int, cause: BaseException):
        super().__init__(
            f"Import stopped after {processed} of {total} jobs: {cause}"
        )
        self.processed = processed
        self.total = total
        self.cause = cause
