"""Tests for custom_code_sync.lifespan: session startup/shutdown lifecycle.

Tests the session_lifespan() async context manager which:
- Loads config from env vars, YAML fallbacks and host overrides
- Optionally configures logging
- Opens the session and applies queued edit events in the background
- Creates a RemoteClient when a token and project id are known
- Fails fast on config errors
"""

import asyncio
from unittest.mock import patch

import pytest

from custom_code_sync.config import save_project_metadata
from custom_code_sync.core.client import RemoteClient
from custom_code_sync.lifespan import session_lifespan
from custom_code_sync.sync.models import (
    EditEvent,
    EditType,
    ProjectMetadata,
    SessionState,
)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """No .env, no YAML files and no sync env vars."""
    for name in (
        "FLUTTERFLOW_API_TOKEN",
        "FLUTTERFLOW_API_URL",
        "CUSTOM_CODE_SYNC_STATE_DIR",
        "CUSTOM_CODE_SYNC_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    with (
        patch("custom_code_sync.lifespan.load_dotenv"),
        patch(
            "custom_code_sync.lifespan.discover_config_files",
            return_value=[],
        ),
    ):
        yield


# -------------------------------------------------------------------------
# Startup
# -------------------------------------------------------------------------


class TestSessionLifespanStartup:
    async def test_local_only_session(self, mock_project):
        async with session_lifespan(mock_project) as ctx:
            assert ctx["session"].state == SessionState.EDITING
            assert ctx["client"] is None
            assert ctx["config"].state_dir == ".vscode"

        assert (mock_project / ".vscode" / "file_map.json").exists()

    async def test_client_created_from_metadata(self, mock_project):
        save_project_metadata(
            mock_project, ProjectMetadata(project_id="proj-123", branch_name="dev")
        )

        async with session_lifespan(
            mock_project, {"api_token": "tok"}
        ) as ctx:
            client = ctx["client"]
            assert isinstance(client, RemoteClient)
            assert client.project_id == "proj-123"
            assert client.branch_name == "dev"

    async def test_no_client_without_project_id(self, mock_project):
        async with session_lifespan(mock_project, {"api_token": "tok"}) as ctx:
            assert ctx["client"] is None

    async def test_yaml_fallbacks_applied(self, mock_project, tmp_path):
        config_file = tmp_path / "config.yml"
        with (
            patch(
                "custom_code_sync.lifespan.discover_config_files",
                return_value=[config_file],
            ),
            patch(
                "custom_code_sync.lifespan.load_hierarchical_config",
                return_value={"tracking": {"state_dir": ".sync"}},
            ),
        ):
            async with session_lifespan(mock_project) as ctx:
                assert ctx["config"].state_dir == ".sync"

        assert (mock_project / ".sync" / "file_map.json").exists()

    async def test_overrides_beat_yaml(self, mock_project, tmp_path):
        with (
            patch(
                "custom_code_sync.lifespan.discover_config_files",
                return_value=[tmp_path / "config.yml"],
            ),
            patch(
                "custom_code_sync.lifespan.load_hierarchical_config",
                return_value={"tracking": {"state_dir": ".sync"}},
            ),
        ):
            async with session_lifespan(
                mock_project, {"state_dir": ".host"}
            ) as ctx:
                assert ctx["config"].state_dir == ".host"

    async def test_logging_configured_when_requested(self, mock_project, tmp_path):
        with (
            patch(
                "custom_code_sync.lifespan.discover_config_files",
                return_value=[tmp_path / "config.yml"],
            ),
            patch(
                "custom_code_sync.lifespan.load_hierarchical_config",
                return_value={"logging": {"level": "DEBUG", "format": "json"}},
            ),
            patch("custom_code_sync.lifespan.setup_logging") as mock_setup,
        ):
            async with session_lifespan(mock_project, logging_mode="extension"):
                pass

        mock_setup.assert_called_once_with(
            mode="extension",
            debug=False,
            log_file=None,
            debug_format="json",
            level="DEBUG",
        )

    async def test_starter_config_written_when_requested(
        self, mock_project, tmp_path
    ):
        starter = tmp_path / "config.yml"
        with patch(
            "custom_code_sync.lifespan.ensure_config", return_value=starter
        ) as mock_ensure:
            async with session_lifespan(mock_project, create_config=True) as ctx:
                assert ctx["session"].state == SessionState.EDITING

        mock_ensure.assert_called_once_with()

    async def test_starter_config_not_written_by_default(self, mock_project):
        with patch("custom_code_sync.lifespan.ensure_config") as mock_ensure:
            async with session_lifespan(mock_project):
                pass
        mock_ensure.assert_not_called()

    async def test_logging_left_to_host_by_default(self, mock_project):
        with patch("custom_code_sync.lifespan.setup_logging") as mock_setup:
            async with session_lifespan(mock_project):
                pass
        mock_setup.assert_not_called()


# -------------------------------------------------------------------------
# Startup failures
# -------------------------------------------------------------------------


class TestSessionLifespanFailures:
    async def test_invalid_config_raises_runtime_error(self, mock_project):
        with pytest.raises(RuntimeError, match="Configuration error"):
            async with session_lifespan(mock_project, {"api_url": "nope"}):
                pass

    async def test_invalid_yaml_section_raises_runtime_error(
        self, mock_project, tmp_path
    ):
        with (
            patch(
                "custom_code_sync.lifespan.discover_config_files",
                return_value=[tmp_path / "config.yml"],
            ),
            patch(
                "custom_code_sync.lifespan.load_hierarchical_config",
                return_value={"tracking": {"snapshot_read_retries": 0}},
            ),
        ):
            with pytest.raises(RuntimeError, match="Configuration error"):
                async with session_lifespan(mock_project):
                    pass

    async def test_unreadable_snapshot_yields_error_session(
        self, mock_project, caplog
    ):
        state = mock_project / ".vscode"
        state.mkdir()
        (state / "file_map.json").write_text("{}")

        with patch(
            "custom_code_sync.sync.state.SnapshotStore._read_json",
            side_effect=PermissionError("locked"),
        ):
            async with session_lifespan(mock_project) as ctx:
                assert ctx["session"].state == SessionState.ERROR

        assert "started in ERROR" in caplog.text


# -------------------------------------------------------------------------
# Event loop
# -------------------------------------------------------------------------


class TestSessionLifespanEvents:
    async def test_events_applied_in_background(self, mock_project):
        added = mock_project / "lib/custom_code/actions/added.dart"

        async with session_lifespan(mock_project) as ctx:
            session = ctx["session"]
            added.write_text("void added() {}\n")
            session.submit(
                EditEvent(file_path=str(added), edit_type=EditType.ADD)
            )
            for _ in range(200):
                if session.tracker.get("added.dart") is not None:
                    break
                await asyncio.sleep(0.01)

            record = session.tracker.get("added.dart")
            assert record is not None
            assert record.is_new

    async def test_queued_events_applied_before_shutdown(self, mock_project):
        added = mock_project / "lib/custom_code/actions/late_action.dart"

        async with session_lifespan(mock_project) as ctx:
            session = ctx["session"]
            added.write_text("void lateAction() {}\n")
            session.submit(
                EditEvent(file_path=str(added), edit_type=EditType.ADD)
            )

        assert session.pending == 0
        assert session.tracker.get("late_action.dart") is not None
