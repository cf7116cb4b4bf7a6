import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from db import create_db_and_tables, get_storage
from errors import InvalidState, NotFound, StorageUnavailable
from models import Project
from schemas import (
    AdjustRequest,
    CommentRequest,
    CommitRequest,
    CommitResponse,
    LogEditRequest,
    LogResponse,
    LoginRequest,
    ManualLogCreate,
    ModificationResponse,
    PresetStart,
    ProjectCreate,
    ProjectOrderUpdate,
    TimersResponse,
    TimerView,
    UserCreate,
    UserResponse,
)
from service import TrackerService
from stats import calculate_weekly_history, generate_admin_stats, group_movements
from storage import Storage
from time_value import format_hms, parse_date_key, today_key
from timer_state import TimerState

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_service(storage: Storage = Depends(get_storage)) -> TrackerService:
    return TrackerService(storage)


def to_http_error(e: Exception) -> HTTPException:
    """Map tracker errors onto HTTP status codes."""
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidState):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StorageUnavailable):
        return HTTPException(status_code=503, detail="Storage unavailable, will retry")
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.exception(f"Unexpected error: {e}")
    return HTTPException(status_code=500, detail=str(e))


def build_timers_response(service: TrackerService, user_id: str) -> TimersResponse:
    now = service.clock()
    timers, result = service.load_timers(user_id, now)
    names = service.storage.project_names()
    views = [_timer_view(timers, pid, names, now) for pid in sorted(r.project_id for r in timers.records())]
    total = timers.total_display_seconds(now)
    return TimersResponse(
        user_id=user_id,
        now=now,
        total_seconds=total,
        total_display=format_hms(total),
        corrections=len(result.corrections),
        timers=views,
    )


def _timer_view(timers: TimerState, project_id: str, names: dict[str, str], now: int) -> TimerView:
    record = timers.get(project_id)
    seconds = timers.display_seconds(project_id, now)
    return TimerView(
        project_id=project_id,
        project_name=names.get(project_id),
        base_seconds=record.base_seconds,
        running_since=record.running_since,
        display_seconds=seconds,
        display=format_hms(seconds),
        is_running=record.running_since is not None,
        session_comment=record.session_comment,
        is_hidden_for_user=record.is_hidden_for_user,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    create_db_and_tables()
    logger.info("Database initialized")
    yield


# Create FastAPI app
app = FastAPI(title="Project Time Tracker API", version="1.0.0", lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Browser tabs and the extension popup call from other origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "online"}


# ---- Users ----

@app.post("/users", response_model=UserResponse)
def register_user(request: UserCreate, service: TrackerService = Depends(get_service)):
    logger.info(f"Register request for {request.username}")
    try:
        return service.register_user(request.username, request.password, request.role, request.avatar_seed)
    except (InvalidState, StorageUnavailable) as e:
        raise to_http_error(e) from e


@app.get("/users", response_model=list[UserResponse])
def list_users(service: TrackerService = Depends(get_service)):
    try:
        return service.storage.list_users()
    except StorageUnavailable as e:
        raise to_http_error(e) from e


@app.post("/auth/login", response_model=UserResponse)
def login(request: LoginRequest, service: TrackerService = Depends(get_service)):
    logger.info(f"Login request for {request.username}")
    try:
        user = service.login(request.username, request.password)
    except StorageUnavailable as e:
        raise to_http_error(e) from e
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


@app.put("/users/{user_id}/project-order", response_model=UserResponse)
def update_project_order(user_id: str, request: ProjectOrderUpdate, service: TrackerService = Depends(get_service)):
    try:
        return service.set_project_order(user_id, request.project_order)
    except (InvalidState, NotFound, StorageUnavailable) as e:
        raise to_http_error(e) from e


# ---- Projects ----

@app.post("/projects", response_model=Project)
def create_project(request: ProjectCreate, service: TrackerService = Depends(get_service)):
    try:
        return service.create_project(
            request.creator_id, request.name, request.category, request.color, request.is_global
        )
    except (InvalidState, StorageUnavailable) as e:
        raise to_http_error(e) from e


@app.get("/projects", response_model=list[Project])
def list_projects(user_id: str | None = Query(None), service: TrackerService = Depends(get_service)):
    try:
        return service.storage.list_projects(user_id)
    except StorageUnavailable as e:
        raise to_http_error(e) from e


@app.post("/projects/{project_id}/deactivate", response_model=Project)
def deactivate_project(project_id: str, service: TrackerService = Depends(get_service)):
    logger.info(f"Deactivate project {project_id}")
    try:
        return service.deactivate_project(project_id)
    except (InvalidState, NotFound, StorageUnavailable) as e:
        raise to_http_error(e) from e


# ---- Timers ----

@app.get("/users/{user_id}/timers", response_model=TimersResponse)
def get_timers(user_id: str, service: TrackerService = Depends(get_service)):
    try:
        service.require_user(user_id)
        return build_timers_response(service, user_id)
    except (InvalidState, StorageUnavailable) as e:
        raise to_http_error(e) from e


@app.get("/users/{user_id}/timers/{project_id}/seconds")
def get_display_seconds(user_id: str, project_id: str, service: TrackerService = Depends(get_service)):
    try:
        seconds = service.get_display_seconds(user_id, project_id)
    except (InvalidState, StorageUnavailable) as e:
        raise to_http_error(e) from e
    return {"project_id": project_id, "seconds": seconds, "display": format_hms(seconds)}


def _timer_action(service: TrackerService, user_id: str, action) -> TimersResponse:
    try:
        action()
        return build_timers_response(service, user_id)
    except (InvalidState, StorageUnavailable) as e:
        raise to_http_error(e) from e


@app.post("/users/{user_id}/timers/{project_id}/start", response_model=TimersResponse)
def start_timer(user_id: str, project_id: str, service: TrackerService = Depends(get_service)):
    return _timer_action(service, user_id, lambda: service.start(user_id, project_id))


@app.post("/users/{user_id}/timers/{project_id}/stop", response_model=TimersResponse)
def stop_timer(user_id: str, project_id: str, service: TrackerService = Depends(get_service)):
    return _timer_action(service, user_id, lambda: service.stop(user_id, project_id))


@app.post("/users/{user_id}/timers/{project_id}/preset", response_model=TimersResponse)
def start_with_preset(user_id: str, project_id: str, request: PresetStart, service: TrackerService = Depends(get_service)):
    return _timer_action(
        service, user_id, lambda: service.start_with_preset(user_id, project_id, request.initial_seconds)
    )


@app.post("/users/{user_id}/timers/{project_id}/adjust", response_model=TimersResponse)
def adjust_timer(user_id: str, project_id: str, request: AdjustRequest, service: TrackerService = Depends(get_service)):
    return _timer_action(service, user_id, lambda: service.adjust(user_id, project_id, request.delta_seconds))


@app.post("/users/{user_id}/timers/{project_id}/reset", response_model=TimersResponse)
def reset_timer(user_id: str, project_id: str, service: TrackerService = Depends(get_service)):
    return _timer_action(service, user_id, lambda: service.reset(user_id, project_id))


@app.post("/users/{user_id}/timers/{project_id}/comment", response_model=TimersResponse)
def set_comment(user_id: str, project_id: str, request: CommentRequest, service: TrackerService = Depends(get_service)):
    return _timer_action(service, user_id, lambda: service.set_comment(user_id, project_id, request.comment))


@app.post("/users/{user_id}/timers/{project_id}/hide", response_model=TimersResponse)
def hide_timer(user_id: str, project_id: str, hidden: bool = Query(True), service: TrackerService = Depends(get_service)):
    return _timer_action(service, user_id, lambda: service.set_hidden(user_id, project_id, hidden))


# ---- Daily commit ----

@app.post("/users/{user_id}/commit", response_model=CommitResponse)
def commit_daily(user_id: str, request: CommitRequest | None = None, service: TrackerService = Depends(get_service)):
    """Commit accrued time into the daily log now."""
    day = request.day if request else None
    logger.info(f"Manual commit request for {user_id} (day: {day or 'today'})")
    try:
        outcome = service.commit_daily(user_id, day)
    except (InvalidState, StorageUnavailable) as e:
        logger.error(f"Commit failed for {user_id}: {e}")
        raise to_http_error(e) from e
    entries = [LogResponse.model_validate(e) for e in outcome.new_log_entries]
    return CommitResponse(ok=True, day=outcome.day, count=len(entries), entries=entries)


@app.post("/users/{user_id}/rollover", response_model=CommitResponse | None)
def rollover(user_id: str, service: TrackerService = Depends(get_service)):
    try:
        service.require_user(user_id)
        outcome = service.rollover_if_needed(user_id)
    except (InvalidState, StorageUnavailable) as e:
        raise to_http_error(e) from e
    if outcome is None:
        return None
    entries = [LogResponse.model_validate(e) for e in outcome.new_log_entries]
    return CommitResponse(ok=True, day=outcome.day, count=len(entries), entries=entries)


# ---- Logs ----

@app.get("/logs", response_model=list[LogResponse])
def get_logs(user_id: str | None = Query(None), service: TrackerService = Depends(get_service)):
    """Logs for one user, or for everyone when user_id is omitted (admin view)."""
    logger.info(f"Logs request - user: {user_id or 'ALL'}")
    try:
        return service.storage.get_logs(user_id)
    except StorageUnavailable as e:
        raise to_http_error(e) from e


@app.post("/logs/manual", response_model=LogResponse)
def add_manual_log(request: ManualLogCreate, service: TrackerService = Depends(get_service)):
    try:
        return service.add_manual_entry(
            request.user_id, request.project_id, request.date, request.duration_seconds, request.kind, request.comment
        )
    except (InvalidState, ValueError, StorageUnavailable) as e:
        raise to_http_error(e) from e


@app.put("/logs/{log_id}", response_model=ModificationResponse)
def edit_log(log_id: str, request: LogEditRequest, service: TrackerService = Depends(get_service)):
    logger.info(f"Edit request for log {log_id} by {request.edited_by}")
    try:
        return service.edit_log(log_id, request.duration_seconds, request.date, request.comment, request.edited_by)
    except (NotFound, InvalidState, ValueError, StorageUnavailable) as e:
        raise to_http_error(e) from e


@app.get("/logs/{log_id}/history", response_model=list[ModificationResponse])
def get_log_history(log_id: str, service: TrackerService = Depends(get_service)):
    try:
        return service.log_history(log_id)
    except (NotFound, StorageUnavailable) as e:
        raise to_http_error(e) from e


# ---- Admin ----

@app.get("/admin/stats")
def admin_stats(
    project_id: str | None = Query(None),
    today: str | None = Query(None, description="Last day of the daily load chart (YYYY-MM-DD)"),
    service: TrackerService = Depends(get_service),
):
    try:
        day = parse_date_key(today or today_key(service.clock()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD") from e
    try:
        return generate_admin_stats(service.storage, day, project_id)
    except StorageUnavailable as e:
        raise to_http_error(e) from e


@app.get("/admin/users/{user_id}/weekly")
def weekly_history(user_id: str, service: TrackerService = Depends(get_service)):
    try:
        service.require_user(user_id)
        return calculate_weekly_history(service.storage.get_logs(user_id), user_id)
    except (InvalidState, StorageUnavailable) as e:
        raise to_http_error(e) from e


@app.get("/admin/movements")
def movements(
    user_id: str | None = Query(None),
    project_id: str | None = Query(None),
    date_from: str | None = Query(None),
    date_to: str | None = Query(None),
    service: TrackerService = Depends(get_service),
):
    try:
        logs = service.storage.get_logs()
    except StorageUnavailable as e:
        raise to_http_error(e) from e
    return group_movements(logs, user_id, project_id, date_from, date_to)
