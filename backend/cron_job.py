"""Commit yesterday's accrued time for every user - can be run as a daily cron job."""
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from db import create_db_and_tables, engine
from errors import StorageUnavailable
from service import TrackerService
from storage import Storage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_rollover(service: TrackerService) -> dict:
    """Run the day rollover for every user. Users already rolled over today are skipped."""
    committed = {}
    failed = []
    for user in service.storage.list_users():
        try:
            outcome = service.rollover_if_needed(user.id)
        except StorageUnavailable as e:
            logger.warning(f"Rollover failed for {user.username}: {e}")
            failed.append(user.username)
            continue
        if outcome is not None:
            committed[user.username] = len(outcome.new_log_entries)
    return {"committed": committed, "failed": failed}


if __name__ == "__main__":
    create_db_and_tables()
    result = run_rollover(TrackerService(Storage(engine)))

    for username, count in result["committed"].items():
        print(f"SUCCESS: {count} entries committed for {username}")
    if result["failed"]:
        print(f"ERROR: rollover failed for {', '.join(result['failed'])}")
        sys.exit(1)
    sys.exit(0)
