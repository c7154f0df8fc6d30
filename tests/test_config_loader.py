from pathlib import Path

from reposync.config_loader import _deep_merge, load_config


def test_defaults_load_from_packaged_yaml(monkeypatch):
    monkeypatch.delenv("REPOSYNC_CONFIG", raising=False)
    config = load_config()

    assert config.sync.interval_minutes == 10
    assert config.sync.max_push_retries == 3
    assert "CONFLICT" in config.sync.conflict_markers
    assert config.memory.agent_name == "git_sync_agent"
    assert config.memory_dir == Path("~/.reposync/memory").expanduser()
    assert config.reporting.enabled is True


def test_user_file_overrides_only_what_it_names(tmp_path):
    user = tmp_path / "config.yaml"
    user.write_text("sync:\n  interval_minutes: 1\nmemory:\n  agent_name: laptop\n", encoding="utf-8")

    config = load_config(user)

    assert config.sync.interval_minutes == 1
    assert config.sync.max_push_retries == 3
    assert config.memory.agent_name == "laptop"
    assert config.memory.directory == "~/.reposync/memory"


def test_env_variable_points_at_user_file(tmp_path, monkeypatch):
    user = tmp_path / "config.yaml"
    user.write_text("reporting:\n  enabled: false\n", encoding="utf-8")
    monkeypatch.setenv("REPOSYNC_CONFIG", str(user))

    assert load_config().reporting.enabled is False


def test_missing_user_file_falls_back_to_defaults(tmp_path):
    assert load_config(tmp_path / "nope.yaml").sync.interval_minutes == 10


def test_deep_merge_does_not_mutate_base():
    base = {"sync": {"a": 1, "b": 2}}
    merged = _deep_merge(base, {"sync": {"b": 3}})
    assert merged == {"sync": {"a": 1, "b": 3}}
    assert base == {"sync": {"a": 1, "b": 2}}
