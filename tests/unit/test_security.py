import os
import stat
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from gcalsync.config import load_config
from gcalsync.state import State
from gcalsync.store.base import CalendarHandle, TimeWindow
from gcalsync.store.caldav import CalDAVStore
from gcalsync.utils.http import create_client

CONFIG_YAML = """
caldav:
  base_url: https://example.com
  username: test
  calendar_home: /remote.php/dav/calendars/test
"""


@pytest.fixture
def captured_reports() -> list[str]:
    return []


@pytest.fixture
def caldav_store(captured_reports: list[str]) -> CalDAVStore:
    def handler(request: httpx.Request) -> httpx.Response:
        captured_reports.append(request.content.decode("utf-8"))
        return httpx.Response(
            207,
            text='<?xml version="1.0" encoding="utf-8"?>'
            '<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav"/>',
        )

    return CalDAVStore(
        base_url="https://cloud.example.com",
        username="user",
        app_password="pass",
        calendar_home="/remote.php/dav/calendars/user/",
        transport=httpx.MockTransport(handler),
    )


def test_caldav_xml_injection_prevention(caldav_store: CalDAVStore, captured_reports) -> None:
    """Remote ids cannot break out of the text-match element."""
    malicious_id = (
        'event</c:text-match></c:prop-filter></c:comp-filter><c:comp-filter name="VTODO">'
        '<c:prop-filter name="SUMMARY"><c:text-match>INJECTED'
    )
    cal = CalendarHandle(name="GCal: Work", ref="/remote.php/dav/calendars/user/work/")
    window = TimeWindow.around(30, now=datetime(2024, 6, 1, tzinfo=UTC))

    assert caldav_store.find_event_by_correlation(malicious_id, cal, window) is None

    (body,) = captured_reports
    assert "&lt;/c:text-match&gt;" in body
    assert '<c:comp-filter name="VTODO">' not in body
    assert "INJECTED" in body


def test_caldav_special_characters_handled(caldav_store: CalDAVStore, captured_reports) -> None:
    cal = CalendarHandle(name="GCal: Work", ref="/remote.php/dav/calendars/user/work/")
    window = TimeWindow.around(30, now=datetime(2024, 6, 1, tzinfo=UTC))

    caldav_store.find_event_by_correlation("event&id<and>tags", cal, window)

    (body,) = captured_reports
    assert "[gcal_id:event&amp;id&lt;and&gt;tags]" in body


def test_ssl_verification_production_protection(monkeypatch) -> None:
    monkeypatch.setenv("GCALSYNC_ENVIRONMENT", "production")
    with pytest.raises(ValueError, match="cannot be disabled in production"):
        create_client(timeout=10.0, verify=False)


@pytest.mark.parametrize("environment", ["development", "test", None])
def test_ssl_verification_may_be_disabled_elsewhere(monkeypatch, environment) -> None:
    if environment is None:
        monkeypatch.delenv("GCALSYNC_ENVIRONMENT", raising=False)
    else:
        monkeypatch.setenv("GCALSYNC_ENVIRONMENT", environment)
    client = create_client(timeout=10.0, verify=False)
    assert client is not None
    client.close()


def test_ssl_verification_enabled_always_works(monkeypatch) -> None:
    monkeypatch.setenv("GCALSYNC_ENVIRONMENT", "production")
    client = create_client(timeout=10.0, verify=True)
    assert client is not None
    client.close()


def test_config_path_validation_prevents_traversal(tmp_path) -> None:
    unsafe_path = tmp_path / ".." / ".." / ".." / ".." / ".." / ".." / "etc" / "passwd"
    with pytest.raises(ValueError, match="is outside allowed directories"):
        load_config(file_path=unsafe_path)


def test_config_path_validation_allows_current_directory(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    config_file = tmp_path / "config.yaml"
    config_file.write_text(CONFIG_YAML)

    config = load_config(file_path=str(config_file))
    assert config.caldav is not None
    assert config.caldav.calendar_home == "/remote.php/dav/calendars/test/"


def test_config_path_validation_allows_temp_directory() -> None:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as tf:
        tf.write(CONFIG_YAML)
        temp_config_path = tf.name

    try:
        config = load_config(file_path=temp_config_path)
        assert config.caldav is not None
        assert config.caldav.base_url == "https://example.com"
    finally:
        os.unlink(temp_config_path)


def test_config_path_validation_blocks_system_files(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    dangerous_paths = [
        "/etc/shadow",
        "/proc/version",
        "/sys/devices",
        "../../../../../../etc/passwd",
    ]
    for dangerous_path in dangerous_paths:
        with pytest.raises(ValueError, match="is outside allowed directories"):
            load_config(file_path=dangerous_path)


def test_database_permissions_set_on_creation(tmp_path) -> None:
    db_path = tmp_path / "test.db"
    State(str(db_path)).close()

    permissions = stat.filemode(db_path.stat().st_mode)
    assert permissions.endswith("rw-------"), f"Expected rw------- permissions, got {permissions}"


def test_database_permissions_existing_file_upgrade(tmp_path) -> None:
    db_path = tmp_path / "existing.db"
    db_path.write_text("")
    db_path.chmod(0o644)

    State(str(db_path)).close()

    assert stat.filemode(db_path.stat().st_mode).endswith("rw-------")


def test_database_permissions_graceful_error_handling(tmp_path) -> None:
    db_path = tmp_path / "test.db"

    def failing_chmod(self, mode):
        raise OSError("Operation not permitted")

    with patch.object(Path, "chmod", failing_chmod):
        with patch("logging.Logger.warning") as mock_log:
            state = State(str(db_path))
            mock_log.assert_called_once()

    state.save_token("test", "token123")
    assert state.get_token("test") == "token123"
    state.close()


def test_database_non_writable_file_warning(tmp_path) -> None:
    db_path = tmp_path / "test.db"
    db_path.write_text("")

    def no_write_access(path, mode):
        return not (mode == os.W_OK and str(path) == str(db_path))

    with patch("os.access", no_write_access):
        with patch("logging.Logger.warning") as mock_log:
            State(str(db_path)).close()
            mock_log.assert_called_once()
