from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import yaml  # type: ignore

from gcalsync.config import AppConfig, load_config, read_env_config
from gcalsync.errors import LocalStoreAccessError
from gcalsync.state import State


def _write_yaml(p: Path, data: dict[str, Any]) -> None:
    p.write_text(yaml.safe_dump(data, sort_keys=True), encoding="utf-8")


def test_config_precedence_file_env_cli(tmp_path, monkeypatch) -> None:
    cfg_yaml = {
        "caldav": {
            "base_url": "https://cloud.example.com",
            "username": "nc_user",
            "calendar_home": "/remote.php/dav/calendars/nc_user",
        },
        "google": {"token_store": "/data/google_token.json"},
        "sync": {"time_window_days": 730, "dry_run": True, "calendar_prefix": "G: "},
        "logging": {"level": "INFO", "json": True},
        "state": {"db_path": "/data/state.sqlite"},
        "runtime": {"lock_path": "/tmp/gcalsync.lock"},
    }
    path = tmp_path / "config.yaml"
    _write_yaml(path, cfg_yaml)

    monkeypatch.setenv("GCALSYNC__logging__level", "DEBUG")
    monkeypatch.setenv("GCALSYNC__sync__dry_run", "false")
    monkeypatch.setenv("GCALSYNC__sync__correlation_window_days", "730")

    overrides = {"logging": {"level": "ERROR"}, "sync": {"time_window_days": 365}}

    cfg: AppConfig = load_config(file_path=str(path), cli_overrides=overrides)
    assert cfg.caldav is not None
    assert cfg.caldav.base_url == "https://cloud.example.com"
    assert cfg.caldav.calendar_home == "/remote.php/dav/calendars/nc_user/"
    assert cfg.logging.level == "ERROR"  # CLI wins over ENV and file
    assert cfg.logging.as_json is True
    assert cfg.sync.dry_run is False  # ENV wins over file
    assert cfg.sync.correlation_window_days == 730
    assert cfg.sync.time_window_days == 365
    assert cfg.sync.calendar_prefix == "G: "
    assert cfg.google.token_store == "/data/google_token.json"


def test_config_defaults_without_file(tmp_path) -> None:
    cfg = load_config(file_path=str(tmp_path / "missing.yaml"))
    assert cfg.caldav is None
    assert cfg.sync.calendar_prefix == "GCal: "
    assert cfg.sync.time_window_days == 365
    assert cfg.sync.correlation_window_days == 365
    assert cfg.sync.page_size == 250
    assert cfg.sync.default_reminder_minutes == 10
    assert cfg.sync.max_retries == 0
    assert cfg.state.db_path.endswith("gcalsync/state.sqlite")


@pytest.mark.parametrize(
    "overrides",
    [
        {"sync": {"page_size": 5000}},
        {"logging": {"level": "LOUD"}},
        {"caldav": {"base_url": "cloud.example.com", "username": "u", "calendar_home": "/c/"}},
        {"caldav": {"base_url": "https://c", "username": "u", "calendar_home": "c/"}},
    ],
)
def test_invalid_config_rejected(tmp_path, overrides) -> None:
    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(file_path=str(tmp_path / "none.yaml"), cli_overrides=overrides)


def test_env_coercion(monkeypatch) -> None:
    monkeypatch.setenv("GCALSYNC__sync__page_size", "100")
    monkeypatch.setenv("GCALSYNC__sync__backoff_initial_sec", "0.5")
    monkeypatch.setenv("GCALSYNC__caldav__verify_tls", "no")
    env = read_env_config()
    assert env["sync"] == {"page_size": 100, "backoff_initial_sec": 0.5}
    assert env["caldav"] == {"verify_tls": False}


def test_env_text_fields_are_not_coerced(monkeypatch) -> None:
    monkeypatch.setenv("GCALSYNC__caldav__base_url", "https://cloud.example.com")
    monkeypatch.setenv("GCALSYNC__caldav__username", "1001")
    monkeypatch.setenv("GCALSYNC__caldav__app_password", "12345678")
    monkeypatch.setenv("GCALSYNC__caldav__calendar_home", "/remote.php/dav/calendars/1001/")
    monkeypatch.setenv("GCALSYNC__sync__calendar_prefix", "Google, ")
    monkeypatch.setenv("GCALSYNC__sync__default_tz", "yes")
    monkeypatch.setenv("GCALSYNC__logging__json", "true")

    env = read_env_config()

    assert env["caldav"]["app_password"] == "12345678"
    assert env["caldav"]["username"] == "1001"
    assert env["sync"] == {"calendar_prefix": "Google, ", "default_tz": "yes"}
    assert env["logging"] == {"json": True}
    cfg = AppConfig.model_validate(env)
    assert cfg.caldav is not None and cfg.caldav.app_password == "12345678"
    assert cfg.sync.calendar_prefix == "Google, "


def test_state_tokens(tmp_path) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        assert st.get_token("primary") is None
        st.save_token("primary", "tok-1")
        st.save_token("work@example.com", "tok-w")
        assert st.get_token("primary") == "tok-1"
        st.save_token("primary", "tok-2")
        assert st.get_token("primary") == "tok-2"
        assert st.tokens() == {"primary": "tok-2", "work@example.com": "tok-w"}
        st.reset_token("primary")
        assert st.get_token("primary") is None


def test_state_persists_across_instances(tmp_path) -> None:
    db = str(tmp_path / "nested" / "state.sqlite")
    when = datetime(2024, 5, 1, 8, 30, tzinfo=UTC)
    with State(db) as st:
        st.save_token("primary", "tok-1")
        st.set_last_sync(when)
    with State(db) as st:
        assert st.get_token("primary") == "tok-1"
        assert st.get_last_sync() == when


def test_state_reset_all(tmp_path) -> None:
    with State(str(tmp_path / "state.sqlite")) as st:
        st.save_token("a", "1")
        st.set_last_sync()
        st.reset_all()
        assert st.tokens() == {}
        assert st.get_last_sync() is None


def test_state_unwritable_location(tmp_path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(LocalStoreAccessError):
        State(str(blocker / "state.sqlite"))


def test_state_closed_access(tmp_path) -> None:
    st = State(str(tmp_path / "state.sqlite"))
    st.close()
    with pytest.raises(LocalStoreAccessError):
        st.get_token("primary")
