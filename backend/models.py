import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Column
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return uuid.uuid4().hex


class Role(str, Enum):
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"


class LogKind(str, Enum):
    NORMAL = "NORMAL"
    PRESET = "PRESET"
    MANUAL = "MANUAL"


class User(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    username: str = Field(index=True, unique=True)
    password: str  # Plaintext, compared as-is on login
    role: Role = Field(default=Role.OPERATOR)
    avatar_seed: str | None = Field(default=None)
    last_login_at: datetime | None = Field(default=None)
    project_order: list[str] = Field(default_factory=list, sa_column=Column(JSON))


class Project(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    creator_id: str | None = Field(default=None, index=True)
    name: str
    category: str = Field(default="General")
    color: str = Field(default="vibrant-blue")
    is_global: bool = Field(default=False)
    is_active: bool = Field(default=True, index=True)


class UserProjectState(SQLModel, table=True):
    """Mutable timer record for one (user, project) pair."""

    user_id: str = Field(primary_key=True)
    project_id: str = Field(primary_key=True)
    base_seconds: int = Field(default=0)
    running_since: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))  # epoch ms
    session_comment: str | None = Field(default=None)
    is_hidden_for_user: bool = Field(default=False)

    @property
    def is_running(self) -> bool:
        return self.running_since is not None

    def copy_record(self) -> "UserProjectState":
        # model_copy would share the SQLAlchemy instance state
        return UserProjectState(
            user_id=self.user_id,
            project_id=self.project_id,
            base_seconds=self.base_seconds,
            running_since=self.running_since,
            session_comment=self.session_comment,
            is_hidden_for_user=self.is_hidden_for_user,
        )

    def same_values(self, other: "UserProjectState") -> bool:
        return (
            self.base_seconds == other.base_seconds
            and self.running_since == other.running_since
            and self.session_comment == other.session_comment
            and self.is_hidden_for_user == other.is_hidden_for_user
        )


class DailyLogEntry(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    project_id: str = Field(index=True)
    project_name: str  # Snapshot of the project name at commit time
    date: str = Field(index=True)  # YYYY-MM-DD format
    duration_seconds: int
    kind: LogKind = Field(default=LogKind.NORMAL)
    comment: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def copy_record(self) -> "DailyLogEntry":
        return DailyLogEntry(
            id=self.id,
            user_id=self.user_id,
            project_id=self.project_id,
            project_name=self.project_name,
            date=self.date,
            duration_seconds=self.duration_seconds,
            kind=self.kind,
            comment=self.comment,
            created_at=self.created_at,
        )


class LogModificationRecord(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    log_id: str = Field(index=True)
    modified_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    modified_by_user_id: str
    old_duration_seconds: int
    new_duration_seconds: int
    old_date: str
    new_date: str
    old_comment: str | None = Field(default=None)
    new_comment: str | None = Field(default=None)


class DayMarker(SQLModel, table=True):
    """Last calendar day whose accrued time has been committed for a user."""

    user_id: str = Field(primary_key=True)
    last_day: str  # YYYY-MM-DD format
