"""User-triggered writes.

Every action performs its primary mutation first and then appends one activity
record. If the mutation fails nothing is recorded; if only the activity insert
fails the mutation stands and the failure is logged.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import models
import schemas
from csv_import import ImportProgress, import_drafts
from errors import (
    ActionInFlight,
    AlreadyApplied,
    DocumentNotFound,
    InvalidTransition,
    JobClosed,
    ProfileRequired,
)

logger = structlog.get_logger(__name__)


class InFlightGuard:
    """Rejects a second trigger of an action while the first is still running."""

    def __init__(self):
        self._keys = set()

    def is_held(self, key: tuple) -> bool:
        return key in self._keys

    @contextmanager
    def hold(self, key: tuple) -> Iterator[None]:
        if key in self._keys:
            logger.info("Duplicate action rejected", action=key[0])
            raise ActionInFlight(key)
        self._keys.add(key)
        try:
            yield
        finally:
            self._keys.discard(key)


guard = InFlightGuard()


def record_activity(db: Session, type: str, message: str, data: Optional[Dict[str, Any]] = None) -> Optional[str]:
    try:
        return crud.create_document(
            db,
            "activities",
            {"type": type, "message": message, "data": data or {}},
        )
    except SQLAlchemyError:
        logger.error("Activity not recorded", activity_type=type, exc_info=True)
        return None


# --- Jobs ---
def create_job(db: Session, job: schemas.JobFields, created_by: Optional[str] = None) -> str:
    job_id = crud.create_document(
        db,
        "jobs",
        {
            "client_name": job.client_name,
            "position_name": job.position_name,
            "location": job.location,
            "exp_min": job.exp_min,
            "exp_max": job.exp_max,
            "tech_stack": list(job.tech_stack),
            "domain": job.domain,
            "number_of_positions": job.number_of_positions,
            "status": "active",
            "created_by": created_by,
        },
    )
    logger.info("Job created", job_id=job_id, client_name=job.client_name)
    record_activity(
        db,
        "new_job",
        f"Position: {job.position_name} was just posted",
        {"jobId": job_id, "positionName": job.position_name, "clientName": job.client_name},
    )
    return job_id


def set_job_status(db: Session, job_id: str, status: str) -> str:
    job = crud.get_job(db, job_id)
    if job is None:
        raise DocumentNotFound("jobs", job_id)
    position_name = job.position_name
    crud.update_document(db, "jobs", job_id, {"status": status})
    logger.info("Job status changed", job_id=job_id, status=status)
    record_activity(
        db,
        "new_job",
        f"Position: {position_name} was {'activated' if status == 'active' else 'deactivated'}",
        {"jobId": job_id, "positionName": position_name},
    )
    return status


def toggle_job_status(db: Session, job_id: str) -> str:
    job = crud.get_job(db, job_id)
    if job is None:
        raise DocumentNotFound("jobs", job_id)
    return set_job_status(db, job_id, "inactive" if job.status == "active" else "active")


def delete_job_cascade(db: Session, job_id: str) -> int:
    """Delete a job's applications, then the job. Returns applications removed."""
    job = crud.get_job(db, job_id)
    if job is None:
        raise DocumentNotFound("jobs", job_id)
    position_name, client_name = job.position_name, job.client_name

    removed = crud.delete_where(db, "applications", job_id=job_id)
    crud.delete_document(db, "jobs", job_id)
    logger.info("Job deleted", job_id=job_id, applications_removed=removed)

    record_activity(
        db,
        "new_job",
        f"Position: {position_name} at {client_name} was removed",
        {"jobId": job_id, "positionName": position_name, "applicationsRemoved": removed, "deleted": True},
    )
    return removed


def import_jobs(
    db: Session,
    drafts: List[schemas.JobDraft],
    created_by: Optional[str] = None,
    on_progress: Optional[Callable[[ImportProgress], None]] = None,
) -> List[str]:
    """Persist parsed drafts in order; raises ImportAborted on the first failure."""
    job_ids: List[str] = []

    def persist(draft: schemas.JobDraft) -> str:
        data = draft.model_dump(exclude={"total_applications"})
        data["created_by"] = created_by
        job_id = crud.create_document(db, "jobs", data)
        job_ids.append(job_id)
        return job_id

    for progress in import_drafts(drafts, persist):
        logger.info("Import progress", processed=progress.processed, total=progress.total)
        if on_progress is not None:
            on_progress(progress)
    return job_ids


# --- Candidates ---
def save_profile(db: Session, identity: schemas.Identity, profile: schemas.UserProfileCreate,
                 admin_emails: Optional[List[str]] = None) -> models.User:
    """Create or update the caller's User document from the onboarding form."""
    fields = profile.model_dump()
    existing = crud.get_user(db, identity.id)
    if existing is not None:
        crud.update_document(db, "users", identity.id, fields)
        return crud.get_user(db, identity.id)

    is_admin = bool(identity.email) and identity.email in (admin_emails or [])
    crud.create_document(
        db,
        "users",
        {
            "id": identity.id,
            "name": identity.name,
            "email": identity.email,
            "avatar_src": identity.avatar_url,
            "is_admin": is_admin,
            **fields,
        },
    )
    logger.info("User onboarded", user_id=identity.id, is_admin=is_admin)
    record_activity(
        db,
        "new_user",
        f"{identity.name or identity.email or 'A new user'} joined",
        {"userId": identity.id, "userName": identity.name},
    )
    return crud.get_user(db, identity.id)


def apply_to_job(db: Session, user_id: str, job_id: str) -> str:
    user = crud.get_user(db, user_id)
    if user is None:
        raise ProfileRequired()
    job = crud.get_job(db, job_id)
    if job is None:
        raise DocumentNotFound("jobs", job_id)
    if job.status != "active":
        raise JobClosed(job_id)
    if crud.find_application(db, user_id, job_id) is not None:
        raise AlreadyApplied(job_id)
    position_name = job.position_name

    application_id = crud.create_document(
        db,
        "applications",
        {"user_id": user_id, "job_id": job_id, "status": "pending"},
    )
    logger.info("Application submitted", application_id=application_id, job_id=job_id, user_id=user_id)
    record_activity(
        db,
        "new_application",
        f"New application for {position_name}",
        {"userId": user_id, "jobId": job_id, "userName": user.name, "positionName": position_name},
    )
    return application_id


# --- Admin ---
def set_admin(db: Session, user_id: str, make_admin: bool, granted_by: Optional[str] = None) -> None:
    if crud.get_user(db, user_id) is None:
        raise DocumentNotFound("users", user_id)
    crud.update_document(db, "users", user_id, {"is_admin": make_admin})
    logger.info("Admin flag changed", user_id=user_id, is_admin=make_admin, granted_by=granted_by)
    record_activity(
        db,
        "admin_granted" if make_admin else "admin_revoked",
        f"Admin status {'granted to' if make_admin else 'revoked from'} user",
        {"userId": user_id, "changedBy": granted_by},
    )


def decide_application(db: Session, application_id: str, status: str) -> str:
    """Move an application to ``accepted`` or ``rejected``; pending is never re-entered."""
    if status not in ("accepted", "rejected"):
        raise InvalidTransition(f"Applications cannot move to {status!r}")
    application = crud.get_document(db, "applications", application_id)
    if application is None:
        raise DocumentNotFound("applications", application_id)
    if application.status == status:
        return status
    crud.update_document(db, "applications", application_id, {"status": status})
    logger.info("Application decided", application_id=application_id, status=status)
    return status
