"""Per-user timer records and the start/stop/adjust/reset mutations on them.

Every mutation keeps at most one record running and returns the records it
changed so the caller can persist them. Nothing here performs I/O.
"""
import logging
from collections.abc import Iterable

from errors import InvalidState
from models import UserProjectState
from session_clock import compute_display_seconds, fold_elapsed

logger = logging.getLogger(__name__)


class TimerState:
    def __init__(self, user_id: str, states: Iterable[UserProjectState] = ()):
        self.user_id = user_id
        self._records: dict[str, UserProjectState] = {}
        for state in states:
            if state.user_id != user_id:
                raise InvalidState(f"Record for user {state.user_id} passed to timers of {user_id}")
            self._records[state.project_id] = state.copy_record()

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> list[UserProjectState]:
        return list(self._records.values())

    def get(self, project_id: str) -> UserProjectState:
        try:
            return self._records[project_id]
        except KeyError:
            raise InvalidState(f"Unknown project {project_id} for user {self.user_id}") from None

    def ensure(self, project_id: str) -> UserProjectState:
        """Return the record for project_id, creating an idle one on first interaction."""
        record = self._records.get(project_id)
        if record is None:
            record = UserProjectState(user_id=self.user_id, project_id=project_id)
            self._records[project_id] = record
        return record

    def running(self) -> list[UserProjectState]:
        return [r for r in self._records.values() if r.running_since is not None]

    # ---- Reads ----

    def display_seconds(self, project_id: str, now: int) -> int:
        record = self.get(project_id)
        return compute_display_seconds(record.base_seconds, record.running_since, now)

    def displays(self, now: int) -> dict[str, int]:
        return {
            pid: compute_display_seconds(r.base_seconds, r.running_since, now)
            for pid, r in self._records.items()
        }

    def total_display_seconds(self, now: int) -> int:
        return sum(self.displays(now).values())

    # ---- Mutations ----

    def _stop(self, record: UserProjectState, now: int) -> bool:
        if record.running_since is None:
            return False
        record.base_seconds = fold_elapsed(record.base_seconds, record.running_since, now)
        record.running_since = None
        return True

    def _stop_others(self, project_id: str, now: int) -> list[UserProjectState]:
        stopped = []
        for pid, record in self._records.items():
            if pid != project_id and self._stop(record, now):
                stopped.append(record)
        return stopped

    def start_timer(self, project_id: str, now: int) -> list[UserProjectState]:
        """Resume project_id at now, stopping whatever else is running.

        Starting a timer that is already running leaves it untouched.
        """
        target = self.get(project_id)
        changed = self._stop_others(project_id, now)
        if target.running_since is None:
            target.running_since = now
            changed.append(target)
        logger.debug(f"start {self.user_id}/{project_id}: {len(changed)} records changed")
        return changed

    def stop_timer(self, project_id: str, now: int) -> list[UserProjectState]:
        target = self.get(project_id)
        if not self._stop(target, now):
            return []
        logger.debug(f"stop {self.user_id}/{project_id}: base now {target.base_seconds}s")
        return [target]

    def stop_all(self, now: int) -> list[UserProjectState]:
        return [r for r in self._records.values() if self._stop(r, now)]

    def start_with_preset(self, project_id: str, initial_seconds: int, now: int) -> list[UserProjectState]:
        """Start project_id with its base replaced by initial_seconds."""
        target = self.get(project_id)
        changed = self._stop_others(project_id, now)
        target.base_seconds = max(0, int(initial_seconds))
        target.running_since = now
        changed.append(target)
        logger.debug(f"preset start {self.user_id}/{project_id} at {target.base_seconds}s")
        return changed

    def adjust_timer(self, project_id: str, delta_seconds: int) -> list[UserProjectState]:
        # Applies to the banked base only; a running session keeps accruing on top.
        target = self.get(project_id)
        new_base = max(0, target.base_seconds + int(delta_seconds))
        if new_base == target.base_seconds:
            return []
        target.base_seconds = new_base
        return [target]

    def reset_timer(self, project_id: str) -> list[UserProjectState]:
        target = self.get(project_id)
        if target.base_seconds == 0 and target.running_since is None:
            return []
        target.base_seconds = 0
        target.running_since = None
        logger.debug(f"reset {self.user_id}/{project_id}")
        return [target]

    def set_comment(self, project_id: str, text: str | None) -> list[UserProjectState]:
        target = self.get(project_id)
        comment = text if text and text.strip() else None
        if comment == target.session_comment:
            return []
        target.session_comment = comment
        return [target]

    def set_hidden(self, project_id: str, hidden: bool) -> list[UserProjectState]:
        target = self.get(project_id)
        if target.is_hidden_for_user == hidden:
            return []
        target.is_hidden_for_user = hidden
        return [target]
