"""
Tests for app.config - configuration from environment, config.json and defaults.
"""

from __future__ import annotations

import dataclasses
import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from app.config import Config, _get, _resolve_base_dir, load_config


@pytest.fixture
def base(tmp_path, monkeypatch):
    monkeypatch.setenv("PRUNEWATCH_BASE_DIR", str(tmp_path))
    return tmp_path


class TestResolveBaseDir:
    """Tests for _resolve_base_dir"""

    def test_default_under_home(self, monkeypatch):
        """Test that the default state dir is ~/.prunewatch"""
        monkeypatch.delenv("PRUNEWATCH_BASE_DIR", raising=False)
        assert _resolve_base_dir() == Path.home() / ".prunewatch"

    def test_env_override(self, base):
        """Test that PRUNEWATCH_BASE_DIR wins"""
        assert _resolve_base_dir() == base


class TestGet:
    """Tests for _get helper function"""

    def test_env_int(self):
        """Test _get coerces an integer from the environment"""
        with patch.dict(os.environ, {"PRUNEWATCH_KEY": "200"}):
            assert _get({"key": 100}, "key", 50) == 200

    def test_env_float(self):
        """Test _get coerces a float from the environment"""
        with patch.dict(os.environ, {"PRUNEWATCH_KEY": "2.5"}):
            assert _get({}, "key", 1.0) == 2.5

    def test_env_bad_number_falls_back(self):
        """Test that an unparsable number falls back to the default"""
        with patch.dict(os.environ, {"PRUNEWATCH_KEY": "lots"}):
            assert _get({"key": 7}, "key", 5) == 5

    def test_json_then_default(self, monkeypatch):
        """Test that the JSON value is used before the default"""
        monkeypatch.delenv("PRUNEWATCH_KEY", raising=False)
        assert _get({"key": "json"}, "key", "default") == "json"
        assert _get({}, "key", "default") == "default"


class TestLoadConfig:
    """Tests for load_config"""

    def test_defaults(self, base):
        """Test the default layout under the state directory"""
        cfg = load_config()
        assert isinstance(cfg, Config)
        assert cfg.db_path == base / "prunewatch.db"
        assert cfg.usage_log_path == base / "usage.log"
        assert cfg.offset_path == base / "usage.offset"
        assert cfg.pid_file == base / "watch.pid"
        assert cfg.watch_log_file == base / "watch.log"
        assert cfg.shim_dir == base / "bin"
        assert cfg.aliases_path == base / "aliases"
        assert cfg.tick_interval_sec == 30.0
        assert cfg.max_lines_per_tick == 10_000
        assert cfg.stop_timeout_sec == 10.0

    def test_json_file(self, base):
        """Test that config.json values are applied"""
        (base / "config.json").write_text(json.dumps({"tick_interval_sec": 5, "db_path": "x.db"}), encoding="utf-8")
        cfg = load_config()
        assert cfg.tick_interval_sec == 5.0
        assert cfg.db_path == base / "x.db"

    def test_env_beats_json(self, base, monkeypatch):
        """Test that environment variables override config.json"""
        (base / "config.json").write_text(json.dumps({"max_lines_per_tick": 50}), encoding="utf-8")
        monkeypatch.setenv("PRUNEWATCH_MAX_LINES_PER_TICK", "75")
        assert load_config().max_lines_per_tick == 75

    def test_absolute_path_kept(self, base, monkeypatch):
        """Test that an absolute path is used as given"""
        monkeypatch.setenv("PRUNEWATCH_PID_FILE", "/run/prunewatch.pid")
        assert load_config().pid_file == Path("/run/prunewatch.pid")

    def test_broken_json_uses_defaults(self, base):
        """Test that an unreadable config.json is ignored"""
        (base / "config.json").write_text("{not json", encoding="utf-8")
        assert load_config().tick_interval_sec == 30.0

    def test_frozen(self, base):
        """Test that Config is immutable"""
        cfg = load_config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.tick_interval_sec = 1.0  # type: ignore[misc]


class TestPositiveNumbers:
    """Tests for numeric settings that must be greater than zero"""

    @pytest.mark.parametrize("raw", ["0", "-5", "nope"])
    def test_bad_interval_from_env_uses_default(self, base, monkeypatch, raw):
        """Test that a zero, negative or unparsable tick interval falls back to 30s"""
        monkeypatch.setenv("PRUNEWATCH_TICK_INTERVAL_SEC", raw)
        assert load_config().tick_interval_sec == 30.0

    def test_bad_values_from_json_use_defaults(self, base):
        """Test that config.json cannot set non-positive or non-numeric limits"""
        (base / "config.json").write_text(
            json.dumps({"tick_interval_sec": 0, "max_lines_per_tick": -1, "stop_timeout_sec": "soon"}),
            encoding="utf-8",
        )
        cfg = load_config()
        assert cfg.tick_interval_sec == 30.0
        assert cfg.max_lines_per_tick == 10_000
        assert cfg.stop_timeout_sec == 10.0

    def test_positive_value_kept(self, base, monkeypatch):
        """Test that a valid positive interval is used"""
        monkeypatch.setenv("PRUNEWATCH_TICK_INTERVAL_SEC", "0.5")
        assert load_config().tick_interval_sec == 0.5
