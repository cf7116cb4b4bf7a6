"""In-place edits of committed log entries with an append-only audit trail."""
import logging

from errors import NotFound
from models import DailyLogEntry, LogModificationRecord
from time_value import ms_to_datetime, now_ms

logger = logging.getLogger(__name__)


def build_modification(
    entry: DailyLogEntry,
    new_duration: int,
    new_date: str,
    new_comment: str | None,
    edited_by: str,
    now: int,
) -> LogModificationRecord:
    return LogModificationRecord(
        log_id=entry.id,
        modified_at=ms_to_datetime(now),
        modified_by_user_id=edited_by,
        old_duration_seconds=entry.duration_seconds,
        new_duration_seconds=new_duration,
        old_date=entry.date,
        new_date=new_date,
        old_comment=entry.comment,
        new_comment=new_comment,
    )


class LogEditAuditor:
    def __init__(self, storage, clock=now_ms):
        self.storage = storage
        self.clock = clock

    def edit_log(
        self,
        log_id: str,
        new_duration: int,
        new_date: str,
        new_comment: str | None,
        edited_by: str,
    ) -> LogModificationRecord:
        """Overwrite duration/date/comment on a log entry and record the change.

        Concurrent edits are not ordered: the entry keeps the last write, and
        every edit still gets its own audit record.
        """
        if new_duration <= 0:
            raise ValueError(f"Log duration must be positive, got {new_duration}")
        entry = self.storage.get_log(log_id)
        if entry is None:
            raise NotFound(f"Log {log_id} not found")

        new_comment = new_comment or None
        record = build_modification(entry, new_duration, new_date, new_comment, edited_by, self.clock())
        self.storage.record_log_edit(
            log_id,
            {"duration_seconds": new_duration, "date": new_date, "comment": new_comment},
            record,
        )
        logger.info(
            f"Log {log_id} edited by {edited_by}: "
            f"{entry.duration_seconds}s/{entry.date} -> {new_duration}s/{new_date}"
        )
        return record

    def history(self, log_id: str) -> list[LogModificationRecord]:
        if self.storage.get_log(log_id) is None:
            raise NotFound(f"Log {log_id} not found")
        return self.storage.get_log_modification_history(log_id)
