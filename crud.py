from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
import schemas
from errors import DocumentNotFound
from subscriptions import Query, hub

logger = structlog.get_logger(__name__)

COLLECTIONS = {
    "users": models.User,
    "jobs": models.Job,
    "applications": models.Application,
    "activities": models.Activity,
}


def _model(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


def _commit(db: Session, collection: str) -> None:
    """Commit the pending write and let live subscribers know."""
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("Write failed", collection=collection, exc_info=True)
        raise
    hub.notify(collection)


# --- Document store contract ---
def get_document(db: Session, collection: str, doc_id: str):
    return db.get(_model(collection), doc_id)


def create_document(db: Session, collection: str, data: Mapping[str, Any]) -> str:
    document = _model(collection)(**data)
    db.add(document)
    _commit(db, collection)
    return document.id


def update_document(db: Session, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
    document = get_document(db, collection, doc_id)
    if document is None:
        raise DocumentNotFound(collection, doc_id)
    for key, value in partial.items():
        setattr(document, key, value)
    _commit(db, collection)


def delete_document(db: Session, collection: str, doc_id: str) -> None:
    document = get_document(db, collection, doc_id)
    if document is None:
        raise DocumentNotFound(collection, doc_id)
    db.delete(document)
    _commit(db, collection)


def delete_where(db: Session, collection: str, **equals: Any) -> int:
    model = _model(collection)
    deleted = (
        db.query(model)
        .filter_by(**equals)
        .delete(synchronize_session=False)
    )
    _commit(db, collection)
    return deleted


def run_query(db: Session, query: Query) -> list:
    model = _model(query.collection)
    q = db.query(model).filter_by(**query.where)
    if query.order_by:
        column = getattr(model, query.order_by)
        q = q.order_by(column.desc() if query.descending else column.asc())
    if query.limit is not None:
        q = q.limit(query.limit)
    return q.all()


def count(db: Session, collection: str, **equals: Any) -> int:
    return db.query(func.count()).select_from(_model(collection)).filter_by(**equals).scalar()


def count_by(db: Session, collection: str, field: str, values: Optional[Iterable[Any]] = None) -> Dict[Any, int]:
    """Number of documents per distinct ``field`` value, in one grouped query.

    Values with no documents are reported as 0 when ``values`` is given.
    """
    model = _model(collection)
    column = getattr(model, field)
    q = db.query(column, func.count()).group_by(column)
    wanted = None
    if values is not None:
        wanted = list(values)
        if not wanted:
            return {}
        q = q.filter(column.in_(wanted))
    counts = {key: total for key, total in q.all()}
    if wanted is not None:
        return {key: counts.get(key, 0) for key in wanted}
    return counts


# --- Users ---
def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.get(models.User, user_id)


def list_users(db: Session) -> List[schemas.User]:
    users = run_query(db, Query("users", order_by="created_at", descending=True))
    return [schemas.User.model_validate(user) for user in users]


# --- Jobs ---
def get_job(db: Session, job_id: str) -> Optional[models.Job]:
    return db.get(models.Job, job_id)


def _with_counts(db: Session, jobs: List[models.Job]) -> List[schemas.JobPosting]:
    counts = count_by(db, "applications", "job_id", [job.id for job in jobs])
    postings = []
    for job in jobs:
        posting = schemas.JobPosting.model_validate(job)
        posting.total_applications = counts.get(job.id, 0)
        postings.append(posting)
    return postings


def list_jobs(db: Session, status: Optional[str] = None) -> List[schemas.JobPosting]:
    where = {"status": status} if status else {}
    jobs = run_query(db, Query("jobs", where=where, order_by="created_at", descending=True))
    return _with_counts(db, jobs)


def list_active_jobs(db: Session) -> List[schemas.JobPosting]:
    return list_jobs(db, status="active")


# --- Applications ---
def find_application(db: Session, user_id: str, job_id: str) -> Optional[models.Application]:
    return (
        db.query(models.Application)
        .filter(models.Application.user_id == user_id, models.Application.job_id == job_id)
        .first()
    )


def applied_job_ids(db: Session, user_id: str) -> set:
    rows = db.query(models.Application.job_id).filter(models.Application.user_id == user_id).all()
    return {job_id for (job_id,) in rows}


def list_applications(db: Session) -> List[schemas.Application]:
    """All applications, newest first, each joined with its candidate and job."""
    applications = run_query(db, Query("applications", order_by="applied_at", descending=True))
    user_ids = {a.user_id for a in applications}
    job_ids = {a.job_id for a in applications}
    users = {u.id: u for u in db.query(models.User).filter(models.User.id.in_(user_ids))} if user_ids else {}
    jobs = {j.id: j for j in db.query(models.Job).filter(models.Job.id.in_(job_ids))} if job_ids else {}

    joined = []
    for application in applications:
        user = users.get(application.user_id)
        job = jobs.get(application.job_id)
        joined.append(
            schemas.Application(
                id=application.id,
                user_id=application.user_id,
                job_id=application.job_id,
                applied_at=application.applied_at,
                status=application.status,
                user=schemas.ApplicantSummary.model_validate(user) if user else None,
                job=schemas.JobSummary.model_validate(job) if job else None,
            )
        )
    return joined


# --- Activities ---
def recent_activities(db: Session, limit: int) -> List[schemas.Activity]:
    activities = run_query(db, Query("activities", order_by="timestamp", descending=True, limit=limit))
    return [schemas.Activity.model_validate(activity) for activity in activities]


def dashboard_stats(db: Session) -> schemas.DashboardStats:
    return schemas.DashboardStats(
        total_users=count(db, "users", is_admin=False),
        active_jobs=count(db, "jobs", status="active"),
        applications=count(db, "applications"),
    )


def created_since(postings: Iterable[schemas.JobPosting], since: datetime) -> List[schemas.JobPosting]:
    return [p for p in postings if _as_aware(p.created_at) > since]


def _as_aware(moment: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out; stored values are UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
