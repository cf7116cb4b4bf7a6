"""Turning accrued timer seconds into daily log entries."""
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from models import DailyLogEntry, LogKind, UserProjectState
from time_value import ms_to_datetime
from timer_state import TimerState

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    day: str
    new_log_entries: list[DailyLogEntry] = field(default_factory=list)
    cleared_projects: list[UserProjectState] = field(default_factory=list)
    states: list[UserProjectState] = field(default_factory=list)  # every record after the commit

    @property
    def total_seconds(self) -> int:
        return sum(e.duration_seconds for e in self.new_log_entries)


def commit(
    user_id: str,
    projects: Sequence[UserProjectState],
    today: str,
    project_names: Mapping[str, str] | None = None,
    now: int = 0,
) -> CommitResult:
    """Stop every running timer, log each non-zero base and zero it.

    ``cleared_projects`` holds every record that differs from the input and
    must be written back once the entries are stored.
    """
    project_names = project_names or {}
    before = {p.project_id: p for p in projects}
    timers = TimerState(user_id, projects)
    timers.stop_all(now)

    result = CommitResult(day=today)
    for record in timers.records():
        if record.base_seconds > 0:
            result.new_log_entries.append(
                DailyLogEntry(
                    user_id=user_id,
                    project_id=record.project_id,
                    project_name=project_names.get(record.project_id, record.project_id),
                    date=today,
                    duration_seconds=record.base_seconds,
                    kind=LogKind.NORMAL,
                    comment=record.session_comment,
                    created_at=ms_to_datetime(now),
                )
            )
            record.base_seconds = 0
            record.session_comment = None
        if not record.same_values(before[record.project_id]):
            result.cleared_projects.append(record)
    result.states = timers.records()
    return result


def manual_entry(
    user_id: str,
    project_id: str,
    project_name: str,
    day: str,
    duration_seconds: int,
    comment: str | None = None,
    now: int = 0,
    kind: LogKind = LogKind.MANUAL,
) -> DailyLogEntry:
    """Build a log entry for an arbitrary day without touching any timer."""
    if duration_seconds <= 0:
        raise ValueError(f"Log duration must be positive, got {duration_seconds}")
    return DailyLogEntry(
        user_id=user_id,
        project_id=project_id,
        project_name=project_name,
        date=day,
        duration_seconds=int(duration_seconds),
        kind=kind,
        comment=comment or None,
        created_at=ms_to_datetime(now),
    )


def preset_entry(
    user_id: str,
    project_id: str,
    project_name: str,
    day: str,
    duration_seconds: int,
    comment: str | None = None,
    now: int = 0,
) -> DailyLogEntry:
    return manual_entry(user_id, project_id, project_name, day, duration_seconds, comment, now, kind=LogKind.PRESET)


@dataclass(frozen=True)
class RolloverDecision:
    due: bool
    commit_day: str | None
    new_marker: str


def check_rollover(last_day: str | None, today: str) -> RolloverDecision:
    """Decide whether the day marker is behind today.

    Time accrued before the boundary belongs to the marker's day, so that is
    the day the entries are dated with. A marker ahead of today (clock moved
    backwards) is left alone.
    """
    if last_day is None or last_day >= today:
        return RolloverDecision(due=False, commit_day=None, new_marker=last_day or today)
    return RolloverDecision(due=True, commit_day=last_day, new_marker=today)
