from datetime import date, timedelta

import config
from db import engine
from models import LogKind, Role
from service import TrackerService
from storage import Storage

# (day offset, project index, seconds, kind)
SAMPLE_LOGS = [
    (0, 0, 3600, LogKind.NORMAL),
    (0, 2, 2700, LogKind.NORMAL),
    (-1, 1, 7200, LogKind.NORMAL),
    (-1, 3, 900, LogKind.MANUAL),
    (-2, 0, 4500, LogKind.NORMAL),
    (-2, 2, 1800, LogKind.PRESET),
    (-3, 1, 5400, LogKind.NORMAL),
    (-4, 3, 1200, LogKind.MANUAL),
]

SAMPLE_PROJECTS = [
    ("Phoenix Rebrand", "Design", "vibrant-red", True),
    ("Internal Audit", "Finance", "vibrant-blue", True),
    ("Market Strategy", "Marketing", "vibrant-green", False),
    ("Client Portal", "Development", "vibrant-purple", False),
]


def seed_database():
    """Seed the database with the default admin, a demo operator and sample logs."""
    service = TrackerService(Storage(engine))
    storage = service.storage

    # Check if data already exists
    if storage.get_user_by_username(config.DEFAULT_ADMIN_USERNAME):
        print("Database already has data, skipping seed.")
        return

    service.register_user(config.DEFAULT_ADMIN_USERNAME, config.DEFAULT_ADMIN_PASSWORD, Role.ADMIN, "admin-default")
    operator = service.register_user("grobas", "grobas", Role.OPERATOR)

    projects = [
        service.create_project(operator.id, name, category, color, is_global)
        for name, category, color, is_global in SAMPLE_PROJECTS
    ]

    today = date.today()
    for offset, index, seconds, kind in SAMPLE_LOGS:
        day = (today + timedelta(days=offset)).isoformat()
        if kind == LogKind.NORMAL:
            service.adjust(operator.id, projects[index].id, seconds)
            service.commit_daily(operator.id, day)
        else:
            service.add_manual_entry(operator.id, projects[index].id, day, seconds, kind)

    print(f"Seeded database with {len(projects)} projects and {len(SAMPLE_LOGS)} sample logs.")


if __name__ == "__main__":
    from db import create_db_and_tables

    create_db_and_tables()
    seed_database()
