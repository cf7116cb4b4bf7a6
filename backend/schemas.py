import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlmodel import SQLModel

from models import DailyLogEntry, LogKind, Role, UserProjectState
from time_value import parse_date_key, parse_hms


def _validate_date_key(v: str) -> str:
    try:
        parse_date_key(v)
    except ValueError as e:
        raise ValueError("Date must be in YYYY-MM-DD format") from e
    return v


# ---- Raw row normalization ----
#
# Rows written by other clients can carry strings, nulls or missing fields.
# Everything passes through here before the core sees it.

def parse_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    return int(number) if math.isfinite(number) else default


def parse_epoch_ms(value: Any) -> int | None:
    """Epoch milliseconds from an int, a numeric string or an ISO timestamp; None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value > 0 else None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none", "undefined"):
        return None
    try:
        number = float(text)
    except ValueError:
        pass
    else:
        return int(number) if math.isfinite(number) and number > 0 else None
    try:
        return int(datetime.fromisoformat(text).timestamp() * 1000)
    except ValueError:
        return None


def parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _parse_comment(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() and text != "null" else None


def normalize_state_row(raw: dict[str, Any]) -> UserProjectState:
    """Build a UserProjectState from a raw row, accepting snake_case or camelCase keys."""

    def pick(*keys):
        for key in keys:
            if key in raw:
                return raw[key]
        return None

    return UserProjectState(
        user_id=str(pick("user_id", "userId")),
        project_id=str(pick("project_id", "projectId", "id")),
        base_seconds=max(0, parse_int(pick("base_seconds", "current_day_seconds", "currentDaySeconds"))),
        running_since=parse_epoch_ms(pick("running_since", "runningSince")),
        session_comment=_parse_comment(pick("session_comment", "sessionComment")),
        is_hidden_for_user=parse_flag(pick("is_hidden_for_user", "hidden_by_user", "isHiddenForUser")),
    )


def normalize_log_row(raw: dict[str, Any]) -> DailyLogEntry:
    raw_kind = raw.get("kind") or raw.get("status") or LogKind.NORMAL
    if isinstance(raw_kind, LogKind):
        kind = raw_kind
    else:
        try:
            kind = LogKind(str(raw_kind).upper())
        except ValueError:
            kind = LogKind.NORMAL  # Legacy rows carried billing status here
    entry = DailyLogEntry(
        user_id=str(raw.get("user_id") or raw.get("userId")),
        project_id=str(raw.get("project_id") or raw.get("projectId")),
        project_name=str(raw.get("project_name") or raw.get("projectName") or ""),
        date=str(raw.get("date") or raw.get("date_str") or ""),
        duration_seconds=max(0, parse_int(raw.get("duration_seconds", raw.get("durationSeconds")))),
        kind=kind,
        comment=_parse_comment(raw.get("comment")),
    )
    if raw.get("id"):
        entry.id = str(raw["id"])
    if isinstance(raw.get("created_at"), datetime):
        entry.created_at = raw["created_at"]
    return entry


# ---- Requests ----

class UserCreate(BaseModel):
    username: str
    password: str
    role: Role = Role.OPERATOR
    avatar_seed: str | None = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Username is required")
        return v


class LoginRequest(BaseModel):
    username: str
    password: str


class ProjectOrderUpdate(BaseModel):
    project_order: list[str]


class ProjectCreate(BaseModel):
    creator_id: str
    name: str
    category: str = "General"
    color: str = "vibrant-blue"
    is_global: bool = False

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Project name is required")
        return v


class PresetStart(BaseModel):
    initial_seconds: int | None = Field(default=None, ge=0)
    initial_hms: str | None = None  # HH:MM or HH:MM:SS

    @model_validator(mode="after")
    def resolve_initial(self):
        if self.initial_seconds is None:
            if self.initial_hms is None:
                raise ValueError("Either initial_seconds or initial_hms is required")
            self.initial_seconds = parse_hms(self.initial_hms)
        return self


class AdjustRequest(BaseModel):
    delta_seconds: int


class CommentRequest(BaseModel):
    comment: str | None = None


class CommitRequest(BaseModel):
    day: str | None = None

    @field_validator("day")
    @classmethod
    def validate_day(cls, v):
        return v if v is None else _validate_date_key(v)


class ManualLogCreate(BaseModel):
    user_id: str
    project_id: str
    date: str
    duration_seconds: int = Field(gt=0)
    kind: LogKind = LogKind.MANUAL
    comment: str | None = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return _validate_date_key(v)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v):
        if v == LogKind.NORMAL:
            raise ValueError("NORMAL entries are only produced by the daily commit")
        return v


class LogEditRequest(BaseModel):
    duration_seconds: int = Field(gt=0)
    date: str
    comment: str | None = None
    edited_by: str

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return _validate_date_key(v)


# ---- Responses ----

class UserResponse(SQLModel):
    id: str
    username: str
    role: Role
    avatar_seed: str | None = None
    last_login_at: datetime | None = None
    project_order: list[str] = []


class TimerView(BaseModel):
    project_id: str
    project_name: str | None = None
    base_seconds: int
    running_since: int | None = None
    display_seconds: int
    display: str
    is_running: bool
    session_comment: str | None = None
    is_hidden_for_user: bool = False


class TimersResponse(BaseModel):
    user_id: str
    now: int
    total_seconds: int
    total_display: str
    corrections: int
    timers: list[TimerView]


class LogResponse(SQLModel):
    id: str
    user_id: str
    project_id: str
    project_name: str
    date: str
    duration_seconds: int
    kind: LogKind
    comment: str | None = None
    created_at: datetime


class CommitResponse(BaseModel):
    ok: bool
    day: str
    count: int
    entries: list[LogResponse]


class ModificationResponse(SQLModel):
    id: str
    log_id: str
    modified_at: datetime
    modified_by_user_id: str
    old_duration_seconds: int
    new_duration_seconds: int
    old_date: str
    new_date: str
    old_comment: str | None = None
    new_comment: str | None = None
