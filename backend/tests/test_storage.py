import pytest
from sqlmodel import create_engine

from conftest import make_state
from daily_log import manual_entry
from errors import InvalidState, StorageUnavailable
from models import LogKind, LogModificationRecord, Project, Role, User
from schemas import normalize_log_row, normalize_state_row, parse_epoch_ms, parse_int
from storage import Storage

NOW = 1_717_243_200_000


def test_state_upsert_last_write_wins(storage):
    storage.put_user_project_state(make_state("p1", 10, NOW))
    storage.put_user_project_state(make_state("p1", 25))

    states = storage.get_user_project_states("u1")
    assert len(states) == 1
    assert states[0].base_seconds == 25
    assert states[0].running_since is None


def test_states_are_scoped_to_user(storage):
    storage.put_user_project_states([make_state("p1", 1), make_state("p1", 2, user_id="u2")])
    assert [s.base_seconds for s in storage.get_user_project_states("u2")] == [2]


def test_normalize_state_row_legacy_fields():
    state = normalize_state_row(
        {
            "userId": "u1",
            "id": "p1",
            "current_day_seconds": "120",
            "running_since": "not a time",
            "session_comment": "null",
            "hidden_by_user": "1",
        }
    )
    assert state.user_id == "u1"
    assert state.project_id == "p1"
    assert state.base_seconds == 120
    assert state.running_since is None
    assert state.session_comment is None
    assert state.is_hidden_for_user is True


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1717243200000", 1_717_243_200_000),
        ("2024-06-01T12:00:00+00:00", 1_717_243_200_000),
        ("null", None),
        ("", None),
        (0, None),
        ("inf", None),
        ("1e999", None),
        ("nan", None),
        (float("inf"), None),
        (-5.0, None),
    ],
)
def test_normalize_running_since(raw, expected):
    state = normalize_state_row({"user_id": "u1", "project_id": "p1", "running_since": raw})
    assert state.running_since == expected


@pytest.mark.parametrize(
    "raw,expected",
    [("42", 42), (" 7.9 ", 7), (12, 12), ("abc", 0), ("inf", 0), ("1e999", 0), ("nan", 0), (float("-inf"), 0), (True, 0)],
)
def test_parse_int(raw, expected):
    assert parse_int(raw) == expected


def test_parse_epoch_ms_infinite_float():
    assert parse_epoch_ms(float("inf")) is None
    assert parse_epoch_ms(1_717_243_200_000.0) == 1_717_243_200_000


def test_normalize_infinite_base_defaults_to_zero():
    state = normalize_state_row({"user_id": "u1", "project_id": "p1", "base_seconds": "1e999"})
    assert state.base_seconds == 0


def test_normalize_negative_base_is_clamped():
    state = normalize_state_row({"user_id": "u1", "project_id": "p1", "base_seconds": -40})
    assert state.base_seconds == 0


def test_normalize_log_row_legacy_status():
    entry = normalize_log_row(
        {
            "userId": "u1",
            "projectId": "p1",
            "projectName": "Phoenix Rebrand",
            "date": "2024-05-31",
            "durationSeconds": "90",
            "status": "Billable",
        }
    )
    assert entry.kind == LogKind.NORMAL
    assert entry.duration_seconds == 90
    assert entry.project_name == "Phoenix Rebrand"


def test_normalize_log_row_kind_case_insensitive():
    entry = normalize_log_row({"user_id": "u1", "project_id": "p1", "date": "2024-05-31", "kind": "manual"})
    assert entry.kind == LogKind.MANUAL


def test_put_log_twice_is_rejected(storage):
    entry = manual_entry("u1", "p1", "Phoenix Rebrand", "2024-05-31", 60, None, NOW)
    storage.put_log(entry)
    with pytest.raises(InvalidState):
        storage.put_log(entry)
    assert len(storage.get_logs("u1")) == 1


def test_record_log_edit_rejects_unknown_fields(storage):
    entry = manual_entry("u1", "p1", "Phoenix Rebrand", "2024-05-31", 60, None, NOW)
    storage.put_log(entry)
    record = LogModificationRecord(
        log_id=entry.id,
        modified_by_user_id="admin",
        old_duration_seconds=60,
        new_duration_seconds=60,
        old_date="2024-05-31",
        new_date="2024-05-31",
    )
    with pytest.raises(InvalidState):
        storage.record_log_edit(entry.id, {"user_id": "someone-else"}, record)
    assert storage.get_log_modification_history(entry.id) == []


def test_commit_day_writes_entries_and_clears(storage):
    storage.put_user_project_state(make_state("p1", 300))
    entry = manual_entry("u1", "p1", "Phoenix Rebrand", "2024-06-01", 300, None, NOW)

    assert storage.commit_day("u1", [entry], [make_state("p1", 0)])
    assert storage.get_user_project_states("u1")[0].base_seconds == 0
    assert len(storage.get_logs("u1")) == 1


def test_commit_day_marker_compare_and_set(storage):
    assert storage.init_day_marker("u1", "2024-05-31")
    assert not storage.init_day_marker("u1", "2024-06-01")

    first = manual_entry("u1", "p1", "Phoenix Rebrand", "2024-05-31", 300, None, NOW)
    second = manual_entry("u1", "p1", "Phoenix Rebrand", "2024-05-31", 300, None, NOW)
    assert storage.commit_day("u1", [first], [], expected_marker="2024-05-31", new_marker="2024-06-01")
    assert not storage.commit_day("u1", [second], [], expected_marker="2024-05-31", new_marker="2024-06-01")

    assert storage.get_day_marker("u1") == "2024-06-01"
    assert [log.id for log in storage.get_logs("u1")] == [first.id]


def test_unreachable_database_raises_storage_unavailable(tmp_path):
    broken = Storage(create_engine(f"sqlite:///{tmp_path / 'missing' / 'tracker.db'}"))
    with pytest.raises(StorageUnavailable):
        broken.get_user_project_states("u1")


def test_username_lookup_is_case_insensitive(storage):
    storage.create_user(User(username="Grobas", password="pw"))
    assert storage.get_user_by_username("grobas").username == "Grobas"
    assert storage.get_user_by_username("nobody") is None


def test_inactive_projects_visible_to_creator_and_admin(storage):
    creator = storage.create_user(User(username="ana", password="pw"))
    other = storage.create_user(User(username="ben", password="pw"))
    admin = storage.create_user(User(username="Admin", password="pw", role=Role.ADMIN))
    project = storage.create_project(Project(creator_id=creator.id, name="Old", is_active=False))
    storage.create_project(Project(creator_id=creator.id, name="Live"))

    assert [p.name for p in storage.list_projects(other.id)] == ["Live"]
    assert project.id in {p.id for p in storage.list_projects(creator.id)}
    assert len(storage.list_projects(admin.id)) == 2


def test_commit_day_rejects_stale_read(storage):
    read = make_state("p1", 300)
    storage.put_user_project_state(read)
    storage.put_user_project_state(make_state("p1", 450))  # another writer accrued more
    entry = manual_entry("u1", "p1", "Phoenix Rebrand", "2024-06-01", 300, None, NOW)

    assert not storage.commit_day("u1", [entry], [make_state("p1", 0)], read_states=[read])
    assert storage.get_user_project_states("u1")[0].base_seconds == 450
    assert storage.get_logs("u1") == []


def test_commit_day_guarded_write_matches_running_record(storage):
    read = make_state("p1", 100, NOW)
    storage.put_user_project_state(read)
    entry = manual_entry("u1", "p1", "Phoenix Rebrand", "2024-06-01", 160, None, NOW)

    assert storage.commit_day("u1", [entry], [make_state("p1", 0)], read_states=[read])
    state = storage.get_user_project_states("u1")[0]
    assert (state.base_seconds, state.running_since) == (0, None)
    assert len(storage.get_logs("u1")) == 1
