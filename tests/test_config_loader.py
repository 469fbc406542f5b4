"""Tests for config_loader and config_schema."""

from __future__ import annotations

from pathlib import Path

import pytest

from sync_bot import config_loader
from sync_bot.commands import Strategy
from sync_bot.config_loader import (
    ConfigError,
    _deep_merge,
    _get_project_config_dir,
    clear_config_cache,
    get_config,
    load_config,
    set_config,
)
from sync_bot.config_schema import LoggingConfig, SyncBotConfig


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point the user config dir at an empty temp dir and clear SYNCBOT_* env."""
    user_dir = tmp_path / "home" / ".sync-bot"
    monkeypatch.setattr(config_loader, "_get_user_config_dir", lambda: user_dir)
    for var in list(config_loader.ENV_MAPPING) + [config_loader.CONFIG_PATH_ENV]:
        monkeypatch.delenv(var, raising=False)
    clear_config_cache()
    yield user_dir
    clear_config_cache()


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_merge(self):
        base = {"outer": {"a": 1, "b": 2}}
        override = {"outer": {"b": 3, "c": 4}}
        assert _deep_merge(base, override) == {"outer": {"a": 1, "b": 3, "c": 4}}

    def test_list_replacement(self):
        assert _deep_merge({"items": [1, 2, 3]}, {"items": [4]}) == {"items": [4]}

    def test_base_unchanged(self):
        base = {"a": 1}
        _deep_merge(base, {"a": 2})
        assert base == {"a": 1}


class TestDefaults:
    def test_defaults(self, tmp_path):
        cfg = load_config(project_path=tmp_path)
        assert cfg.server.port == 8765
        assert cfg.sync.default_strategy is Strategy.MERGE
        assert cfg.sync.conflict_side == "theirs"
        assert cfg.sync.clone_attempts == 3
        assert cfg.sync.pr_create_attempts == 5
        assert cfg.dispatch.courtesy_comment == "/check-cla"
        assert cfg.clone_base() == "https://gitee.com"

    def test_invalid_log_level(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")

    def test_log_level_is_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"


class TestDiscovery:
    def test_project_config_found_upward(self, tmp_path):
        write(tmp_path / "proj" / ".sync-bot" / "config.toml", "[server]\nport = 9000\n")
        nested = tmp_path / "proj" / "a" / "b"
        nested.mkdir(parents=True)

        assert _get_project_config_dir(nested) == tmp_path / "proj" / ".sync-bot"
        assert load_config(project_path=nested).server.port == 9000

    def test_project_overrides_user(self, tmp_path, isolated_home):
        write(isolated_home / "config.toml", "[server]\nport = 9001\nhost = '127.0.0.1'\n")
        write(tmp_path / "proj" / ".sync-bot" / "config.toml", "[server]\nport = 9002\n")

        cfg = load_config(project_path=tmp_path / "proj")
        assert cfg.server.port == 9002
        assert cfg.server.host == "127.0.0.1"

    def test_invalid_user_config_warns(self, tmp_path, isolated_home):
        write(isolated_home / "config.toml", "not = [valid")
        with pytest.warns(UserWarning, match="Skipping invalid user config"):
            cfg = load_config(project_path=tmp_path)
        assert cfg.server.port == 8765

    def test_explicit_path(self, tmp_path):
        path = write(tmp_path / "custom.toml", "[sync]\ndefault_strategy = 'pick'\n")
        assert load_config(config_path=path).sync.default_strategy is Strategy.PICK

    def test_config_path_env(self, tmp_path, monkeypatch):
        path = write(tmp_path / "env.toml", "[forge]\nhost = 'gitee.example'\n")
        monkeypatch.setenv("SYNCBOT_CONFIG", str(path))
        cfg = load_config(project_path=tmp_path)
        assert cfg.forge.host == "gitee.example"
        assert cfg.clone_base() == "https://gitee.example"

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(config_path=tmp_path / "nope.toml")

    def test_validation_error(self, tmp_path):
        path = write(tmp_path / "bad.toml", "[sync]\nconflict_side = 'both'\n")
        with pytest.raises(ConfigError, match="validation failed"):
            load_config(config_path=path)


class TestEnvOverlay:
    def test_env_wins(self, tmp_path, monkeypatch):
        path = write(tmp_path / "c.toml", "[server]\nport = 9000\n")
        monkeypatch.setenv("SYNCBOT_PORT", "9100")
        monkeypatch.setenv("SYNCBOT_DEFAULT_STRATEGY", "pick")
        monkeypatch.setenv("SYNCBOT_WAIT_FOR_BRANCH", "false")

        cfg = load_config(config_path=path)
        assert cfg.server.port == 9100
        assert cfg.sync.default_strategy is Strategy.PICK
        assert cfg.sync.wait_for_branch is False

    def test_skip_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SYNCBOT_PORT", "9100")
        assert load_config(project_path=tmp_path, skip_env=True).server.port == 8765


def test_large_repo_entries():
    cfg = SyncBotConfig.model_validate(
        {"large_repos": [{"owner": "openeuler", "repo": "kernel", "fork_owner": "overflow"}]}
    )
    (entry,) = cfg.large_repos
    assert entry.fork_owner == "overflow"
    assert entry.skip_refresh is True


def test_get_config_caches(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    first = get_config()
    assert get_config() is first
    custom = SyncBotConfig()
    set_config(custom)
    assert get_config() is custom
    assert get_config(force_reload=True) is not custom
