import json

import pytest

from reposync.errors import SessionError
from reposync.memory import MemoryStore


def test_session_round_trip_survives_reload(tmp_path):
    store = MemoryStore(tmp_path)
    session_id = store.open_session()
    store.append_action(session_id, "set_project_path", {"project_path": "/srv/site"})
    store.append_action(session_id, "sync_repository", {"project_path": "/srv/site"}, {"success": False, "error": "boom"})
    store.close_session(session_id, description="done")

    reloaded = MemoryStore(tmp_path)
    session = reloaded.get_session(session_id)

    assert session.status == "completed"
    assert [a.type for a in session.actions] == ["set_project_path", "sync_repository"]
    assert session.summary.actions_count == 2
    assert session.summary.success_count == 1
    assert session.summary.failure_count == 1
    assert session.summary.description == "done"
    assert reloaded.stats()["total_sessions"] == 1


def test_action_defaults_to_success(memory):
    session_id = memory.open_session()
    action = memory.append_action(session_id, "set_project_path")
    assert action.result == {"success": True}
    assert action.id.startswith("action_")


def test_append_to_closed_session_is_rejected(memory):
    session_id = memory.open_session()
    memory.close_session(session_id)
    with pytest.raises(SessionError):
        memory.append_action(session_id, "sync_repository")


def test_append_to_unknown_session_is_rejected(memory):
    with pytest.raises(SessionError):
        memory.append_action("session_missing", "sync_repository")


def test_corrupt_memory_file_is_treated_as_empty(tmp_path):
    (tmp_path / "git_sync_agent.json").write_text("{not json", encoding="utf-8")
    store = MemoryStore(tmp_path)
    assert store.sessions() == []

    store.open_session()
    data = json.loads((tmp_path / "git_sync_agent.json").read_text(encoding="utf-8"))
    assert data["agent_name"] == "git_sync_agent"
    assert len(data["sessions"]) == 1


def test_agent_name_selects_the_file(tmp_path):
    MemoryStore(tmp_path, agent_name="laptop").open_session()
    assert (tmp_path / "laptop.json").exists()
    assert MemoryStore(tmp_path).sessions() == []


def test_find_conflicts_touching_returns_overlap_in_discovery_order(memory):
    first = memory.open_session()
    memory.append_action(first, "merge_conflict", {}, {"success": False, "conflicted_files": ["a.py", "b.py"]})
    memory.close_session(first)
    second = memory.open_session()
    memory.append_action(second, "merge_conflict", {}, {"success": False, "conflicted_files": ["c.py"]})
    memory.append_action(second, "merge_conflict", {}, {"success": False, "conflicted_files": ["b.py"]})

    matches = memory.find_conflicts_touching(["b.py", "c.py"])

    assert [(m.session_id, m.files) for m in matches] == [
        (first, ["b.py"]),
        (second, ["c.py"]),
        (second, ["b.py"]),
    ]
    assert memory.find_conflicts_touching([]) == []
    assert memory.find_conflicts_touching(["z.py"]) == []


def test_last_successful_sync_is_per_project(memory):
    session_id = memory.open_session()
    memory.append_action(session_id, "sync_repository", {"project_path": "/a"}, {"success": True})
    later = memory.append_action(session_id, "auto_sync", {"project_path": "/a"}, {"success": True})
    memory.append_action(session_id, "sync_repository", {"project_path": "/a"}, {"success": False})
    memory.append_action(session_id, "sync_repository", {"project_path": "/b"}, {"success": True})

    assert memory.last_successful_sync("/a").id == later.id
    assert memory.last_successful_sync("/c") is None


def test_search_is_case_insensitive(memory):
    session_id = memory.open_session()
    memory.append_action(session_id, "sync_repository", {"project_path": "/srv/Blog"})
    memory.append_action(session_id, "sync_repository", {"project_path": "/srv/shop"})

    hits = memory.search("blog")
    assert len(hits) == 1
    assert hits[0]["session_id"] == session_id


def test_stats_and_success_rate(memory):
    assert memory.success_rate() == 100
    session_id = memory.open_session()
    memory.append_action(session_id, "sync_repository", {}, {"success": True})
    memory.append_action(session_id, "sync_repository", {}, {"success": False})

    stats = memory.stats()
    assert stats["total_actions"] == 2
    assert stats["actions_stored"] == 2
    assert stats["success_rate"] == 50
    assert stats["last_failure"] is not None


def test_retention_prunes_oldest_completed_sessions(tmp_path):
    store = MemoryStore(tmp_path, max_sessions=2)
    ids = []
    for _ in range(3):
        session_id = store.open_session()
        ids.append(session_id)
        store.close_session(session_id)

    assert [s.id for s in store.sessions()] == ids[1:]


def test_recent_sessions_newest_first(memory):
    first = memory.open_session()
    memory.close_session(first)
    second = memory.open_session()

    assert [s.id for s in memory.recent_sessions(1)] == [second]


def test_reload_preserves_every_action_field(tmp_path):
    store = MemoryStore(tmp_path)
    session_id = store.open_session()
    written = [
        store.append_action(session_id, "auto_sync", {"project_path": "/srv/site"}, {"success": True, "n": i})
        for i in range(5)
    ]

    reloaded = MemoryStore(tmp_path).get_session(session_id).actions

    assert [(a.id, a.type, a.timestamp, a.result) for a in reloaded] == [
        (a.id, a.type, a.timestamp, a.result) for a in written
    ]


def test_new_conflict_matches_single_earlier_conflict(memory):
    earlier = memory.open_session()
    action = memory.append_action(earlier, "merge_conflict", {}, {"success": False, "conflicted_files": ["x.txt"]})

    matches = memory.find_conflicts_touching(["x.txt", "y.txt"])

    assert len(matches) == 1
    assert matches[0].session_id == earlier
    assert matches[0].timestamp == action.timestamp
    assert matches[0].files == ["x.txt"]


def test_session_left_open_by_a_dead_process_is_closed_on_next_open(tmp_path):
    crashed = MemoryStore(tmp_path)
    stale = crashed.open_session()
    last = crashed.append_action(stale, "sync_repository", {"project_path": "/srv/site"})

    restarted = MemoryStore(tmp_path)
    fresh = restarted.open_session()

    open_sessions = [s.id for s in MemoryStore(tmp_path).sessions() if s.is_open]
    assert open_sessions == [fresh]

    old = restarted.get_session(stale)
    assert old.status == "completed"
    assert old.end_time == last.timestamp
    assert old.summary.actions_count == 1
    assert old.summary.description.startswith("abandoned")
    assert restarted.stats()["total_sessions"] == 1
