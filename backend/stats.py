"""Aggregated statistics over committed logs for the admin views."""
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional

from models import DailyLogEntry, Project, User
from storage import Storage
from time_value import format_hm, format_hms, parse_date_key


def _total(logs: List[DailyLogEntry]) -> int:
    return sum(log.duration_seconds for log in logs)


def calculate_global_stats(logs: List[DailyLogEntry], users: List[User], projects: List[Project]) -> dict:
    total_seconds = _total(logs)
    return {
        "total_seconds": total_seconds,
        "total_hours": round(total_seconds / 3600, 1),
        "active_users": len(users),
        "global_projects": sum(1 for p in projects if p.is_global),
        "private_projects": sum(1 for p in projects if not p.is_global),
    }


def calculate_operator_stats(logs: List[DailyLogEntry], users: List[User]) -> List[dict]:
    """
    Total committed time per user, busiest first.

    Users with no logs are still listed with zero.
    """
    seconds_by_user = defaultdict(int)
    projects_by_user = defaultdict(set)
    for log in logs:
        seconds_by_user[log.user_id] += log.duration_seconds
        projects_by_user[log.user_id].add(log.project_id)

    rows = [
        {
            "user_id": user.id,
            "username": user.username,
            "total_seconds": seconds_by_user[user.id],
            "total_display": format_hms(seconds_by_user[user.id]),
            "projects_worked": len(projects_by_user[user.id]),
        }
        for user in users
    ]
    return sorted(rows, key=lambda r: r["total_seconds"], reverse=True)


def calculate_project_detail(project: Project, logs: List[DailyLogEntry], users: List[User]) -> dict:
    """Total time on one project with a per-user breakdown (users with time only)."""
    project_logs = [log for log in logs if log.project_id == project.id]
    total_seconds = _total(project_logs)

    seconds_by_user = defaultdict(int)
    for log in project_logs:
        seconds_by_user[log.user_id] += log.duration_seconds

    breakdown = [
        {
            "user_id": user.id,
            "username": user.username,
            "seconds": seconds_by_user[user.id],
            "percent": round(seconds_by_user[user.id] / total_seconds * 100, 1) if total_seconds else 0.0,
        }
        for user in users
        if seconds_by_user[user.id] > 0
    ]
    breakdown.sort(key=lambda r: r["seconds"], reverse=True)
    return {
        "project_id": project.id,
        "name": project.name,
        "total_seconds": total_seconds,
        "total_display": format_hms(total_seconds),
        "users": breakdown,
    }


def calculate_daily_load(logs: List[DailyLogEntry], today: date, days: int = 7) -> List[dict]:
    """Committed hours per day for the last `days` days, oldest first."""
    seconds_by_day = defaultdict(int)
    for log in logs:
        seconds_by_day[log.date] += log.duration_seconds

    rows = []
    for offset in range(days - 1, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        rows.append({"date": day, "seconds": seconds_by_day[day], "hours": round(seconds_by_day[day] / 3600, 2)})
    return rows


def calculate_project_distribution(logs: List[DailyLogEntry], projects: List[Project]) -> List[dict]:
    total_seconds = _total(logs)
    seconds_by_project = defaultdict(int)
    for log in logs:
        seconds_by_project[log.project_id] += log.duration_seconds

    rows = [
        {
            "project_id": p.id,
            "name": p.name,
            "color": p.color,
            "seconds": seconds_by_project[p.id],
            "percent": round(seconds_by_project[p.id] / total_seconds * 100, 1) if total_seconds else 0.0,
        }
        for p in projects
        if seconds_by_project[p.id] > 0
    ]
    return sorted(rows, key=lambda r: r["seconds"], reverse=True)


def calculate_weekly_history(logs: List[DailyLogEntry], user_id: str) -> List[dict]:
    """
    Group one user's logs by ISO week, newest week first.

    Logs with an unparseable date are skipped.
    """
    weeks: Dict[str, dict] = {}
    for log in logs:
        if log.user_id != user_id:
            continue
        try:
            day = parse_date_key(log.date)
        except ValueError:
            continue
        year, week_num, _ = day.isocalendar()
        key = f"{year}-W{week_num:02d}"
        week = weeks.setdefault(key, {"week": key, "year": year, "week_num": week_num, "total_seconds": 0, "projects": defaultdict(int)})
        week["total_seconds"] += log.duration_seconds
        week["projects"][log.project_name] += log.duration_seconds

    history = []
    for key in sorted(weeks, reverse=True):
        week = weeks[key]
        week["projects"] = dict(week["projects"])
        week["total_display"] = format_hm(week["total_seconds"])
        history.append(week)
    return history


def group_movements(
    logs: List[DailyLogEntry],
    user_id: Optional[str] = None,
    project_id: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> List[dict]:
    """Group log rows by (date, project, user) with their summed duration, newest date first."""
    groups: Dict[tuple, dict] = {}
    for log in logs:
        if user_id and log.user_id != user_id:
            continue
        if project_id and log.project_id != project_id:
            continue
        if date_from and log.date < date_from:
            continue
        if date_to and log.date > date_to:
            continue
        key = (log.date, log.project_id, log.user_id)
        if key not in groups:
            groups[key] = {
                "key": f"{log.date}_{log.project_id}_{log.user_id}",
                "date": log.date,
                "project_id": log.project_id,
                "project_name": log.project_name,
                "user_id": log.user_id,
                "total_seconds": 0,
                "entries": [],
            }
        groups[key]["total_seconds"] += log.duration_seconds
        groups[key]["entries"].append(
            {"id": log.id, "duration_seconds": log.duration_seconds, "kind": log.kind.value, "comment": log.comment}
        )
    return sorted(groups.values(), key=lambda g: g["date"], reverse=True)


def generate_admin_stats(storage: Storage, today: date, project_id: Optional[str] = None) -> dict:
    """
    Build the admin dashboard payload from storage.

    Args:
        storage: Storage client
        today: Last day included in the daily load chart
        project_id: Project to break down per user (defaults to the first listed)
    """
    users = storage.list_users()
    projects = storage.list_projects()
    logs = storage.get_logs()

    selected = next((p for p in projects if p.id == project_id), None) if project_id else (projects[0] if projects else None)
    return {
        "global": calculate_global_stats(logs, users, projects),
        "operators": calculate_operator_stats(logs, users),
        "daily_load": calculate_daily_load(logs, today),
        "project_distribution": calculate_project_distribution(logs, projects),
        "project_detail": calculate_project_detail(selected, logs, users) if selected else None,
    }
