"""Tracker operations exposed to the HTTP layer, the poller and scripts.

Every timer mutation follows the same path: read the user's records, reconcile
them, apply the operation locally, then write back both the reconciliation
corrections and the records the operation changed.
"""
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from daily_log import CommitResult, check_rollover, commit, manual_entry, preset_entry
from errors import InvalidState, StorageUnavailable
from log_audit import LogEditAuditor
from models import DailyLogEntry, LogKind, LogModificationRecord, Project, Role, User, UserProjectState
from reconcile import ReconcileResult, reconcile
from storage import Storage
from time_value import now_ms, today_key
from timer_state import TimerState

logger = logging.getLogger(__name__)

# Read-compute-write rounds before a contended manual commit gives up
COMMIT_ATTEMPTS = 3


class TrackerService:
    def __init__(self, storage: Storage, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.clock = clock
        self.auditor = LogEditAuditor(storage, clock)

    # ---- Lookups ----

    def require_user(self, user_id: str) -> User:
        user = self.storage.get_user(user_id)
        if user is None:
            raise InvalidState(f"Unknown user {user_id}")
        return user

    def require_project(self, project_id: str) -> Project:
        project = self.storage.get_project(project_id)
        if project is None:
            raise InvalidState(f"Unknown project {project_id}")
        return project

    # ---- Users and projects ----

    def register_user(self, username: str, password: str, role: Role = Role.OPERATOR, avatar_seed: str | None = None) -> User:
        if self.storage.get_user_by_username(username) is not None:
            raise InvalidState(f"Username {username} already taken")
        user = User(username=username, password=password, role=role, avatar_seed=avatar_seed or username.lower())
        logger.info(f"Registering user {username} ({role.value})")
        return self.storage.create_user(user)

    def login(self, username: str, password: str) -> User | None:
        user = self.storage.get_user_by_username(username)
        if user is None or user.password != password:
            logger.info(f"Failed login for {username}")
            return None
        return self.storage.update_user(user.id, {"last_login_at": datetime.now(UTC)})

    def set_project_order(self, user_id: str, project_order: list[str]) -> User:
        self.require_user(user_id)
        return self.storage.update_user(user_id, {"project_order": list(project_order)})

    def create_project(self, creator_id: str, name: str, category: str, color: str, is_global: bool) -> Project:
        self.require_user(creator_id)
        project = Project(creator_id=creator_id, name=name, category=category, color=color, is_global=is_global)
        logger.info(f"Project {name} created by {creator_id}")
        return self.storage.create_project(project)

    def deactivate_project(self, project_id: str) -> Project:
        self.require_project(project_id)
        return self.storage.update_project(project_id, {"is_active": False})

    # ---- Timers ----

    def load_timers(self, user_id: str, now: int) -> tuple[TimerState, ReconcileResult]:
        """Read and reconcile the user's records, persisting any corrections."""
        snapshot = self.storage.get_user_project_states(user_id)
        result = reconcile(snapshot, now)
        if result.corrections:
            self.storage.put_user_project_states(result.corrections)
        return TimerState(user_id, result.states), result

    def get_display_seconds(self, user_id: str, project_id: str, now: int | None = None) -> int:
        now = self.clock() if now is None else now
        snapshot = self.storage.get_user_project_states(user_id)
        if not snapshot:
            self.require_user(user_id)
        result = reconcile(snapshot, now)
        if project_id in result.display_seconds:
            return result.display_seconds[project_id]
        self.require_project(project_id)
        return 0

    def _mutate(self, user_id: str, project_id: str, operation) -> list[UserProjectState]:
        self.require_user(user_id)
        self.require_project(project_id)
        now = self.clock()
        snapshot = self.storage.get_user_project_states(user_id)
        result = reconcile(snapshot, now)
        timers = TimerState(user_id, result.states)
        timers.ensure(project_id)
        changed = operation(timers, now)

        touched = {r.project_id for r in result.corrections} | {r.project_id for r in changed}
        if touched:
            self.storage.put_user_project_states([timers.get(pid) for pid in sorted(touched)])
        return changed

    def start(self, user_id: str, project_id: str) -> list[UserProjectState]:
        logger.info(f"Start timer {project_id} for {user_id}")
        return self._mutate(user_id, project_id, lambda t, now: t.start_timer(project_id, now))

    def stop(self, user_id: str, project_id: str) -> list[UserProjectState]:
        logger.info(f"Stop timer {project_id} for {user_id}")
        return self._mutate(user_id, project_id, lambda t, now: t.stop_timer(project_id, now))

    def start_with_preset(self, user_id: str, project_id: str, initial_seconds: int) -> list[UserProjectState]:
        logger.info(f"Start timer {project_id} for {user_id} with preset {initial_seconds}s")
        return self._mutate(
            user_id, project_id, lambda t, now: t.start_with_preset(project_id, initial_seconds, now)
        )

    def adjust(self, user_id: str, project_id: str, delta_seconds: int) -> list[UserProjectState]:
        logger.info(f"Adjust timer {project_id} for {user_id} by {delta_seconds}s")
        return self._mutate(user_id, project_id, lambda t, now: t.adjust_timer(project_id, delta_seconds))

    def reset(self, user_id: str, project_id: str) -> list[UserProjectState]:
        logger.info(f"Reset timer {project_id} for {user_id}")
        return self._mutate(user_id, project_id, lambda t, now: t.reset_timer(project_id))

    def set_comment(self, user_id: str, project_id: str, comment: str | None) -> list[UserProjectState]:
        return self._mutate(user_id, project_id, lambda t, now: t.set_comment(project_id, comment))

    def set_hidden(self, user_id: str, project_id: str, hidden: bool) -> list[UserProjectState]:
        return self._mutate(user_id, project_id, lambda t, now: t.set_hidden(project_id, hidden))

    # ---- Daily commit ----

    def _commit(
        self, user_id: str, day: str, now: int
    ) -> tuple[CommitResult, list[UserProjectState], list[UserProjectState]]:
        snapshot = self.storage.get_user_project_states(user_id)
        result = reconcile(snapshot, now)
        outcome = commit(user_id, result.states, day, self.storage.project_names(), now)
        final = {s.project_id: s for s in outcome.states}
        touched = {r.project_id for r in result.corrections} | {r.project_id for r in outcome.cleared_projects}
        return outcome, [final[pid] for pid in sorted(touched)], snapshot

    def commit_daily(self, user_id: str, day: str | None = None) -> CommitResult:
        """Commit accrued time now ("sync now"), dated today unless day is given.

        Records are only cleared in the same transaction that stores the
        entries, so a failed commit leaves the accrued time in place. If the
        records change between the read and the write (another tab committed
        or started a timer) the commit is recomputed from a fresh read.
        """
        self.require_user(user_id)
        now = self.clock()
        day = day or today_key(now)
        for _ in range(COMMIT_ATTEMPTS):
            outcome, writes, snapshot = self._commit(user_id, day, now)
            if self.storage.commit_day(user_id, outcome.new_log_entries, writes, read_states=snapshot):
                break
            logger.info(f"Timers for {user_id} changed during commit, re-reading")
        else:
            raise StorageUnavailable(f"Timers for {user_id} kept changing during commit")
        logger.info(
            f"Committed {len(outcome.new_log_entries)} entries ({outcome.total_seconds}s) "
            f"for {user_id} on {day}"
        )
        return outcome

    def rollover_if_needed(self, user_id: str) -> CommitResult | None:
        """Commit the previous day's time once the calendar day has changed.

        The marker compare-and-set runs in the commit transaction, so calling
        this repeatedly, or from several clients, commits at most once per day.
        """
        now = self.clock()
        today = today_key(now)
        marker = self.storage.get_day_marker(user_id)
        if marker is None:
            self.storage.init_day_marker(user_id, today)
            return None

        decision = check_rollover(marker, today)
        if not decision.due:
            return None

        outcome, writes, snapshot = self._commit(user_id, decision.commit_day, now)
        applied = self.storage.commit_day(
            user_id,
            outcome.new_log_entries,
            writes,
            expected_marker=marker,
            new_marker=decision.new_marker,
            read_states=snapshot,
        )
        if not applied:
            logger.info(f"Rollover for {user_id} from {marker} lost a race with another writer, next check retries")
            return None
        logger.info(
            f"Day rollover for {user_id}: {marker} -> {today}, "
            f"{len(outcome.new_log_entries)} entries committed"
        )
        return outcome

    # ---- Logs ----

    def add_manual_entry(
        self,
        user_id: str,
        project_id: str,
        day: str,
        duration_seconds: int,
        kind: LogKind = LogKind.MANUAL,
        comment: str | None = None,
    ) -> DailyLogEntry:
        self.require_user(user_id)
        project = self.require_project(project_id)
        build = preset_entry if kind == LogKind.PRESET else manual_entry
        entry = build(user_id, project_id, project.name, day, duration_seconds, comment, self.clock())
        self.storage.put_log(entry)
        logger.info(f"{kind.value} entry of {duration_seconds}s for {user_id}/{project_id} on {day}")
        return entry

    def edit_log(
        self,
        log_id: str,
        new_duration: int,
        new_date: str,
        new_comment: str | None,
        edited_by: str,
    ) -> LogModificationRecord:
        self.require_user(edited_by)
        return self.auditor.edit_log(log_id, new_duration, new_date, new_comment, edited_by)

    def log_history(self, log_id: str) -> list[LogModificationRecord]:
        return self.auditor.history(log_id)
