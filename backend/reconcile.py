"""Restore the single-running-timer rule on a snapshot read from storage.

Several clients (tabs, the extension popup, the background poller) write the
same rows without coordination, so a fresh snapshot can contain more than one
running record. Exactly one survives:

* the record with the earliest ``running_since`` wins;
* equal timestamps fall back to snapshot order;
* every other running record is stopped without crediting its elapsed time.
"""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from models import UserProjectState
from session_clock import compute_display_seconds

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    states: list[UserProjectState]
    corrections: list[UserProjectState] = field(default_factory=list)
    display_seconds: dict[str, int] = field(default_factory=dict)
    winner: str | None = None

    @property
    def needs_write(self) -> bool:
        return bool(self.corrections)


def pick_winner(running: Sequence[UserProjectState]) -> UserProjectState:
    # min() keeps the first of equal keys, so ties resolve by snapshot order
    return min(running, key=lambda r: r.running_since)


def reconcile(snapshot: Sequence[UserProjectState], now: int) -> ReconcileResult:
    """Normalize snapshot so at most one record is running.

    ``now`` is evaluated once by the caller and shared by every record in the
    pass. The input records are not modified.
    """
    states = [s.copy_record() for s in snapshot]
    running = [s for s in states if s.running_since is not None]

    corrections: list[UserProjectState] = []
    winner = None
    if running:
        winner = pick_winner(running)
        for record in running:
            if record is winner:
                continue
            record.running_since = None
            corrections.append(record)

    if corrections:
        logger.warning(
            f"{len(running)} running timers found for user {winner.user_id}; "
            f"kept {winner.project_id}, stopped {[c.project_id for c in corrections]}"
        )

    display = {
        s.project_id: compute_display_seconds(s.base_seconds, s.running_since, now)
        for s in states
    }
    return ReconcileResult(
        states=states,
        corrections=corrections,
        display_seconds=display,
        winner=winner.project_id if winner else None,
    )
