"""Relational storage behind the tracker core.

Each call opens its own short-lived session, so one ``Storage`` can be shared
between request handlers and the background poller. Rows are passed through
the normalization boundary in ``schemas`` before being handed to callers.
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterable

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from errors import InvalidState, NotFound, StorageUnavailable
from models import (
    DailyLogEntry,
    DayMarker,
    LogModificationRecord,
    Project,
    Role,
    User,
    UserProjectState,
)
from schemas import normalize_log_row, normalize_state_row

logger = logging.getLogger(__name__)

_LOG_FIELDS = {"duration_seconds", "date", "comment", "project_name", "kind"}


class Storage:
    def __init__(self, engine):
        self.engine = engine

    @contextmanager
    def _session(self):
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except IntegrityError as e:
            raise InvalidState(f"Constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.warning(f"Storage call failed: {e}")
            raise StorageUnavailable(str(e)) from e

    # ---- Users ----

    def create_user(self, user: User) -> User:
        with self._session() as session:
            session.add(user)
            session.commit()
            return user

    def get_user(self, user_id: str) -> User | None:
        with self._session() as session:
            return session.get(User, user_id)

    def get_user_by_username(self, username: str) -> User | None:
        with self._session() as session:
            key = username.strip().lower()
            return session.exec(select(User).where(func.lower(User.username) == key)).first()

    def list_users(self) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).order_by(User.username)).all())

    def update_user(self, user_id: str, fields: dict[str, Any]) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found")
            for key, value in fields.items():
                setattr(user, key, value)
            session.add(user)
            session.commit()
            return user

    # ---- Projects ----

    def create_project(self, project: Project) -> Project:
        with self._session() as session:
            session.add(project)
            session.commit()
            return project

    def get_project(self, project_id: str) -> Project | None:
        with self._session() as session:
            return session.get(Project, project_id)

    def list_projects(self, user_id: str | None = None) -> list[Project]:
        """Projects visible to user_id: active ones, their own, or everything for admins."""
        with self._session() as session:
            projects = session.exec(select(Project).order_by(Project.name)).all()
            if user_id is None:
                return list(projects)
            user = session.get(User, user_id)
            if user is not None and user.role == Role.ADMIN:
                return list(projects)
            return [p for p in projects if p.is_active or p.creator_id == user_id]

    def project_names(self) -> dict[str, str]:
        with self._session() as session:
            return {p.id: p.name for p in session.exec(select(Project)).all()}

    def update_project(self, project_id: str, fields: dict[str, Any]) -> Project:
        with self._session() as session:
            project = session.get(Project, project_id)
            if project is None:
                raise NotFound(f"Project {project_id} not found")
            for key, value in fields.items():
                setattr(project, key, value)
            session.add(project)
            session.commit()
            return project

    # ---- Timer records ----

    def get_user_project_states(self, user_id: str) -> list[UserProjectState]:
        with self._session() as session:
            rows = session.exec(
                select(UserProjectState)
                .where(UserProjectState.user_id == user_id)
                .order_by(UserProjectState.project_id)
            ).all()
            return [normalize_state_row(row.model_dump()) for row in rows]

    def put_user_project_state(self, state: UserProjectState) -> None:
        self.put_user_project_states([state])

    def put_user_project_states(self, states: Iterable[UserProjectState]) -> None:
        """Upsert keyed by (user_id, project_id); last write wins per row."""
        with self._session() as session:
            for state in states:
                session.merge(state.copy_record())
            session.commit()

    # ---- Logs ----

    def get_logs(self, user_id: str | None = None) -> list[DailyLogEntry]:
        with self._session() as session:
            query = select(DailyLogEntry)
            if user_id is not None:
                query = query.where(DailyLogEntry.user_id == user_id)
            rows = session.exec(query.order_by(DailyLogEntry.created_at.desc())).all()
            return [normalize_log_row(row.model_dump()) for row in rows]

    def get_log(self, log_id: str) -> DailyLogEntry | None:
        with self._session() as session:
            row = session.get(DailyLogEntry, log_id)
            return normalize_log_row(row.model_dump()) if row else None

    def put_log(self, entry: DailyLogEntry) -> None:
        """Insert only; an existing id is a constraint violation."""
        with self._session() as session:
            session.add(entry.copy_record())
            session.commit()

    def _apply_log_fields(self, session: Session, log_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - _LOG_FIELDS
        if unknown:
            raise InvalidState(f"Log fields not editable: {sorted(unknown)}")
        entry = session.get(DailyLogEntry, log_id)
        if entry is None:
            raise NotFound(f"Log {log_id} not found")
        for key, value in fields.items():
            setattr(entry, key, value)
        session.add(entry)

    def update_log(self, log_id: str, fields: dict[str, Any]) -> None:
        with self._session() as session:
            self._apply_log_fields(session, log_id, fields)
            session.commit()

    def get_log_modification_history(self, log_id: str) -> list[LogModificationRecord]:
        with self._session() as session:
            return list(
                session.exec(
                    select(LogModificationRecord)
                    .where(LogModificationRecord.log_id == log_id)
                    .order_by(LogModificationRecord.modified_at)
                ).all()
            )

    def put_log_modification_record(self, record: LogModificationRecord) -> None:
        with self._session() as session:
            session.add(record)
            session.commit()

    def record_log_edit(self, log_id: str, fields: dict[str, Any], record: LogModificationRecord) -> None:
        """Update the entry and append its audit record in one transaction."""
        with self._session() as session:
            self._apply_log_fields(session, log_id, fields)
            session.add(record)
            session.commit()

    # ---- Daily commit ----

    def get_day_marker(self, user_id: str) -> str | None:
        with self._session() as session:
            marker = session.get(DayMarker, user_id)
            return marker.last_day if marker else None

    def init_day_marker(self, user_id: str, day: str) -> bool:
        """Create the marker if absent. Returns False when another writer got there first."""
        try:
            with self._session() as session:
                session.add(DayMarker(user_id=user_id, last_day=day))
                session.commit()
        except InvalidState:
            return False
        return True

    def _guarded_write(self, session: Session, state: UserProjectState, read: UserProjectState) -> bool:
        """Write state only if the row still holds the values it was read with."""
        table = UserProjectState
        running_clause = (
            table.running_since.is_(None) if read.running_since is None else table.running_since == read.running_since
        )
        result = session.execute(
            update(table)
            .where(table.user_id == state.user_id)
            .where(table.project_id == state.project_id)
            .where(table.base_seconds == read.base_seconds)
            .where(running_clause)
            .values(
                base_seconds=state.base_seconds,
                running_since=state.running_since,
                session_comment=state.session_comment,
                is_hidden_for_user=state.is_hidden_for_user,
            )
        )
        return result.rowcount == 1

    def commit_day(
        self,
        user_id: str,
        entries: Iterable[DailyLogEntry],
        cleared: Iterable[UserProjectState],
        expected_marker: str | None = None,
        new_marker: str | None = None,
        read_states: Iterable[UserProjectState] | None = None,
    ) -> bool:
        """Insert entries and write cleared records atomically.

        With ``new_marker`` the day marker is advanced from ``expected_marker``
        in the same transaction. With ``read_states`` each cleared record is
        only written if its row still has the base and running values it was
        read with. If either check fails nothing is written and False is
        returned, so two commits racing over the same accrued time log it once.
        """
        read = {s.project_id: s for s in read_states or ()}
        with self._session() as session:
            if new_marker is not None:
                result = session.execute(
                    update(DayMarker)
                    .where(DayMarker.user_id == user_id)
                    .where(DayMarker.last_day == expected_marker)
                    .values(last_day=new_marker)
                )
                if result.rowcount != 1:
                    session.rollback()
                    return False
            for state in cleared:
                if state.project_id in read:
                    if not self._guarded_write(session, state, read[state.project_id]):
                        session.rollback()
                        return False
                else:
                    session.merge(state.copy_record())
            for entry in entries:
                session.add(entry.copy_record())
            session.commit()
            return True
