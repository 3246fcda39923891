import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import (
    FastAPI,
    Depends,
    HTTPException,
    UploadFile,
    File,
    Request,
    Response,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
import structlog

import actions
import crud
import models
import schemas
from auth import (
    LOCAL_IDENTITY,
    get_current_identity,
    get_current_user,
    get_optional_identity,
    require_admin,
    verify_token,
)
from csv_import import parse_jobs_csv
from database import create_db_and_tables, get_db
from errors import ImportAborted, NotAuthorized, TalentHubError
from filtering import ALL, APPLICATION_FILTER, JOB_FILTER, USER_FILTER, FilterSpec
from live_view import FilterParams, LiveView
from observability import METRICS_NAMESPACE, init_observability, metric_scope
from request_id_middleware import RequestIdMiddleware
from settings import Settings, get_settings
from streams import StreamManager
from subscriptions import hub
from views import VIEWS


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)

# Create DB tables on startup
create_db_and_tables()

app = FastAPI(
    title="TalentHub",
    description="Backend API for the TalentHub recruiting platform",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)

streams = StreamManager(hub, page_size=get_settings().rows_per_page)


# --- Error handling --- #
@app.exception_handler(TalentHubError)
async def talenthub_error_handler(request: Request, exc: TalentHubError):
    logger.info("Action rejected", error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Data store operation failed", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "The data store is unavailable, please try again"},
    )


# --- Helpers --- #
def _dump(item) -> Dict:
    return item.model_dump(by_alias=True, mode="json")


def _list_view(
    items: List,
    spec: FilterSpec,
    q: str,
    facets: Dict[str, str],
    page: int,
    page_size: int,
) -> schemas.ListView:
    """Filter a one-off snapshot exactly like a live view would."""
    live = LiveView(spec)
    live.apply_snapshot(items)
    live.update(query=q, facets=facets)
    return schemas.ListView(
        items=[_dump(item) for item in live.page(page, page_size)],
        total=len(live.visible),
        page=page,
        pages=live.pages(page_size),
        query=live.params.query,
        facets=live.selected(),
        facet_options=live.all_facet_options(),
    )


def _route_for(user: Optional[models.User]) -> str:
    if user is None:
        return "signup"
    return "admin" if user.is_admin else "candidate"


# --- Health --- #
@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"status": "ok"}


# --- Session Endpoints --- #
@app.get("/session", response_model=schemas.SessionInfo, tags=["Auth"])
def get_session(
    identity: Optional[schemas.Identity] = Depends(get_optional_identity),
    db: Session = Depends(get_db),
):
    """Who is calling and which area of the app they belong in."""
    if identity is None:
        return schemas.SessionInfo(route="anonymous")
    user = crud.get_user(db, identity.id)
    return schemas.SessionInfo(
        identity=identity,
        user=schemas.User.model_validate(user) if user else None,
        route=_route_for(user),
    )


@app.post("/session/sign-out", status_code=status.HTTP_204_NO_CONTENT, tags=["Auth"])
async def sign_out(identity: schemas.Identity = Depends(get_current_identity)):
    """Tear down every live stream held by the caller."""
    closed = streams.close_owner(identity.id)
    logger.info("Signed out", user_id=identity.id, streams_closed=closed)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- User Profile Endpoints --- #
@app.post("/profile", response_model=schemas.User, tags=["User Profile"])
async def save_profile_endpoint(
    profile: schemas.UserProfileCreate,
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    with actions.guard.hold(("profile", identity.id)):
        user = await run_in_threadpool(actions.save_profile, db, identity, profile, settings.admin_emails)
    return schemas.User.model_validate(user)


@app.get("/profile", response_model=schemas.User, tags=["User Profile"])
def get_profile_endpoint(
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    user = crud.get_user(db, identity.id)
    if user is None:
        return Response(status_code=204, headers={"X-Profile-Status": "no_profile_found"})
    return schemas.User.model_validate(user)


# --- Job Board --- #
@app.get("/jobs", response_model=schemas.JobBoard, tags=["Jobs"])
def job_board(
    q: str = "",
    view: schemas.BoardView = "all",
    page: int = 1,
    identity: Optional[schemas.Identity] = Depends(get_optional_identity),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Active jobs, newest first, with the all / new / applied tabs."""
    postings = crud.list_active_jobs(db)
    applied = crud.applied_job_ids(db, identity.id) if identity else set()
    since = datetime.now(timezone.utc) - timedelta(hours=settings.new_job_window_hours)
    recent = crud.created_since(postings, since)

    if view == "new":
        scoped = recent
    elif view == "applied":
        scoped = [p for p in postings if p.id in applied]
    else:
        scoped = postings

    listing = _list_view(scoped, JOB_FILTER, q, {}, page, settings.rows_per_page)
    for item in listing.items:
        item["experience"] = (
            f"{item['expMin']}+ years" if not item["expMax"] else f"{item['expMin']}-{item['expMax']} years"
        )
        item["applied"] = item["id"] in applied
    return schemas.JobBoard(
        **listing.model_dump(),
        view=view,
        tab_counts={
            "all": len(postings),
            "new": len(recent),
            "applied": len([p for p in postings if p.id in applied]),
        },
    )


@app.post("/jobs/{job_id}/apply", status_code=status.HTTP_201_CREATED, tags=["Jobs"])
async def apply_endpoint(
    job_id: str,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user_id = user.id
    with actions.guard.hold(("apply", user_id, job_id)):
        application_id = await run_in_threadpool(actions.apply_to_job, db, user_id, job_id)
    return {"id": application_id, "jobId": job_id, "status": "pending"}


# --- Admin: Dashboard --- #
@app.get("/admin/dashboard", response_model=schemas.Dashboard, tags=["Admin"])
def admin_dashboard(
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return schemas.Dashboard(
        stats=crud.dashboard_stats(db),
        recent_activities=crud.recent_activities(db, settings.recent_activity_limit),
    )


# --- Admin: Jobs --- #
@app.get("/admin/jobs", response_model=schemas.ListView, tags=["Admin"])
def admin_jobs(
    q: str = "",
    company: str = ALL,
    position: str = ALL,
    page: int = 1,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    postings = crud.list_jobs(db)
    return _list_view(
        postings, JOB_FILTER, q, {"company": company, "position": position}, page, settings.rows_per_page
    )


@app.post("/admin/jobs", status_code=status.HTTP_201_CREATED, tags=["Admin"])
async def create_job_endpoint(
    job: schemas.JobCreate,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    admin_id = admin.id
    with actions.guard.hold(("create_job", admin_id)):
        job_id = await run_in_threadpool(actions.create_job, db, job, admin_id)
    return {"id": job_id}


@app.post("/admin/jobs/{job_id}/toggle-status", tags=["Admin"])
async def toggle_job_status_endpoint(
    job_id: str,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with actions.guard.hold(("job_status", job_id)):
        new_status = await run_in_threadpool(actions.toggle_job_status, db, job_id)
    return {"id": job_id, "status": new_status}


@app.delete("/admin/jobs/{job_id}", tags=["Admin"])
async def delete_job_endpoint(
    job_id: str,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    logger.info("Deleting job", job_id=job_id, admin_id=admin.id)
    with actions.guard.hold(("delete_job", job_id)):
        removed = await run_in_threadpool(actions.delete_job_cascade, db, job_id)
    return {"status": "deleted", "jobId": job_id, "applicationsRemoved": removed}


@metric_scope
async def run_job_import(
    db: Session,
    drafts: List[schemas.JobDraft],
    created_by: str,
    metrics=None,
) -> schemas.ImportResult:
    """Persist parsed drafts, reporting how far the import got."""
    metrics.set_namespace(METRICS_NAMESPACE)
    metrics.set_property("created_by", created_by)
    total = len(drafts)
    try:
        job_ids = await run_in_threadpool(actions.import_jobs, db, drafts, created_by)
    except ImportAborted as exc:
        metrics.put_metric("jobs_imported", exc.processed, "Count")
        metrics.put_metric("jobs_import_failed", 1, "Count")
        return schemas.ImportResult(
            status="failed", total=exc.total, processed=exc.processed, error=exc.message
        )
    metrics.put_metric("jobs_imported", len(job_ids), "Count")
    logger.info("Import finished", total=total, created_by=created_by)
    return schemas.ImportResult(status="completed", total=total, processed=len(job_ids), job_ids=job_ids)


@app.post("/admin/jobs/import", response_model=schemas.ImportResult, tags=["Admin"])
async def import_jobs_endpoint(
    file: UploadFile = File(...),
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Bulk-create jobs from a CSV file with the fixed import header row."""
    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a CSV file only.")
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")

    # Rejected before anything is written
    drafts = parse_jobs_csv(text)

    admin_id = admin.id
    with actions.guard.hold(("import", admin_id)):
        result = await run_job_import(db, drafts, admin_id)
    if result.status == "failed":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=result.model_dump(by_alias=True),
        )
    return result


# --- Admin: Users --- #
@app.get("/admin/users", response_model=schemas.ListView, tags=["Admin"])
def admin_users(
    q: str = "",
    page: int = 1,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return _list_view(crud.list_users(db), USER_FILTER, q, {}, page, settings.rows_per_page)


@app.put("/admin/users/{user_id}/admin", tags=["Admin"])
async def set_admin_endpoint(
    user_id: str,
    update: schemas.AdminUpdate,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    admin_id = admin.id
    with actions.guard.hold(("admin_flag", user_id)):
        await run_in_threadpool(actions.set_admin, db, user_id, update.is_admin, admin_id)
    return {"id": user_id, "isAdmin": update.is_admin}


# --- Admin: Applications --- #
@app.get("/admin/applications", response_model=schemas.ListView, tags=["Admin"])
def admin_applications(
    q: str = "",
    company: str = ALL,
    position: str = ALL,
    page: int = 1,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return _list_view(
        crud.list_applications(db),
        APPLICATION_FILTER,
        q,
        {"company": company, "position": position},
        page,
        settings.rows_per_page,
    )


@app.put("/admin/applications/{application_id}/status", tags=["Admin"])
async def decide_application_endpoint(
    application_id: str,
    decision: schemas.ApplicationDecision,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with actions.guard.hold(("decide", application_id)):
        new_status = await run_in_threadpool(actions.decide_application, db, application_id, decision.status)
    return {"id": application_id, "status": new_status}


# --- SSE Endpoints --- #
@app.get("/stream/{view_name}", tags=["Live"])
async def stream_view(
    view_name: str,
    request: Request,
    token: Optional[str] = None,
    q: str = "",
    company: str = ALL,
    position: str = ALL,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Server-sent snapshots of a listing, re-sent after every relevant write.

    EventSource cannot set headers, so the id token travels as a query param.
    The public job board may be followed without one.
    """
    view = VIEWS.get(view_name)
    if view is None:
        raise HTTPException(status_code=404, detail=f"Unknown view: {view_name}")

    identity: Optional[schemas.Identity] = None
    if token:
        identity = verify_token(token)
    elif not settings.auth_enabled:
        identity = LOCAL_IDENTITY
    elif view.admin_only:
        logger.warning("SSE 401: No token provided while auth is enabled")
        raise HTTPException(401, "No token provided")

    if view.admin_only:
        user = crud.get_user(db, identity.id)
        if user is None or not user.is_admin:
            raise NotAuthorized("Administrator access required")

    # Reconciled against the first snapshot once it is loaded
    facets = {name: value for name, value in (("company", company), ("position", position)) if value != ALL}
    params = FilterParams(query=q, facets=facets if view.spec.facets else {})
    owner = identity.id if identity else f"anon-{uuid.uuid4().hex}"
    stream = await streams.open(owner, view, params)

    async def event_generator():
        yield {"event": "stream", "data": stream.id}
        try:
            while True:
                message = await stream.queue.get()
                if await request.is_disconnected():
                    logger.info("SSE client disconnected", stream_id=stream.id)
                    break
                yield message
        except asyncio.CancelledError:
            logger.info("SSE connection cancelled", stream_id=stream.id)
        finally:
            streams.close(stream.id)

    return EventSourceResponse(event_generator())


@app.patch("/stream/{stream_id}/filters", tags=["Live"])
async def update_stream_filters(
    stream_id: str,
    update: schemas.FilterUpdate,
    identity: schemas.Identity = Depends(get_current_identity),
):
    stream = streams.update_filters(stream_id, identity.id, query=update.query, facets=update.facets)
    if stream is None:
        raise HTTPException(status_code=404, detail="Stream not found")
    return {
        "streamId": stream_id,
        "query": stream.live.params.query,
        "facets": stream.live.selected(),
        "total": len(stream.live.visible),
    }


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
