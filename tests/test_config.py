"""Tests for custom_code_sync.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the session
bootstrap path: validate_config(), load_config() and the project
metadata file.
"""

import json
import logging

import pytest

from custom_code_sync.config import (
    DEFAULT_API_URL,
    Config,
    load_config,
    load_project_metadata,
    metadata_path,
    save_project_metadata,
    validate_config,
)
from custom_code_sync.sync.models import ProjectMetadata

ENV_VARS = (
    "FLUTTERFLOW_API_TOKEN",
    "FLUTTERFLOW_API_URL",
    "CUSTOM_CODE_SYNC_STATE_DIR",
    "CUSTOM_CODE_SYNC_DEBUG",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config(): URL format and numeric range checks."""

    def test_defaults_are_valid(self):
        config = Config()
        validate_config(config)  # should not raise
        assert config.api_url == DEFAULT_API_URL

    def test_invalid_url_no_scheme(self):
        config = Config(api_url="api.example.com")
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(config)

    def test_invalid_url_ftp_scheme(self):
        with pytest.raises(ValueError, match="must start with"):
            validate_config(Config(api_url="ftp://api.example.com"))

    def test_empty_host(self):
        with pytest.raises(ValueError, match="must include a hostname"):
            validate_config(Config(api_url="https://"))

    def test_trailing_slash_stripped(self):
        config = Config(api_url="https://api.example.com/v1/")
        validate_config(config)
        assert config.api_url == "https://api.example.com/v1"

    def test_whitespace_url_stripped_before_scheme_check(self):
        config = Config(api_url="  https://api.example.com  ")
        validate_config(config)
        assert config.api_url == "https://api.example.com"

    def test_plain_http_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="custom_code_sync.config"):
            validate_config(Config(api_url="http://localhost:8080"))
        assert "plain HTTP" in caplog.text

    def test_https_no_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="custom_code_sync.config"):
            validate_config(Config())
        assert "plain HTTP" not in caplog.text

    @pytest.mark.parametrize("state_dir", ["", "   ", "/abs/state"])
    def test_invalid_state_dir(self, state_dir):
        with pytest.raises(ValueError, match="Invalid state directory"):
            validate_config(Config(state_dir=state_dir))

    def test_state_dir_whitespace_stripped(self):
        config = Config(state_dir=" .sync ")
        validate_config(config)
        assert config.state_dir == ".sync"

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_non_positive_timeout(self, timeout):
        with pytest.raises(ValueError, match="Invalid timeout"):
            validate_config(Config(timeout=timeout))

    @pytest.mark.parametrize("retries", [0, 11])
    def test_snapshot_retries_out_of_range(self, retries):
        with pytest.raises(ValueError, match="snapshot_read_retries"):
            validate_config(Config(snapshot_read_retries=retries))

    @pytest.mark.parametrize("retries", [1, 10])
    def test_snapshot_retries_bounds_valid(self, retries):
        validate_config(Config(snapshot_read_retries=retries))

    def test_negative_retry_delay(self):
        with pytest.raises(ValueError, match="must not be negative"):
            validate_config(Config(snapshot_retry_base_delay=-0.1))

    @pytest.mark.parametrize("threshold", [0.0, 1.5])
    def test_similarity_threshold_out_of_range(self, threshold):
        with pytest.raises(ValueError, match="similarity_threshold"):
            validate_config(Config(similarity_threshold=threshold))

    def test_similarity_threshold_one_valid(self):
        validate_config(Config(similarity_threshold=1.0))


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config(): CLI > env > YAML > default precedence."""

    def test_defaults(self, clean_env):
        config = load_config()
        assert config.api_token == ""
        assert config.api_url == DEFAULT_API_URL
        assert config.state_dir == ".vscode"
        assert config.timeout == 60.0
        assert config.similarity_threshold == 0.7
        assert config.debug is False

    def test_missing_token_logged(self, clean_env, caplog):
        with caplog.at_level(logging.INFO, logger="custom_code_sync.config"):
            load_config()
        assert "No API token configured" in caplog.text

    def test_load_from_env_vars(self, clean_env):
        clean_env.setenv("FLUTTERFLOW_API_TOKEN", " env-token ")
        clean_env.setenv("FLUTTERFLOW_API_URL", "https://env.example.com/")
        clean_env.setenv("CUSTOM_CODE_SYNC_STATE_DIR", ".env-state")

        config = load_config()

        assert config.api_token == "env-token"
        assert config.api_url == "https://env.example.com"
        assert config.state_dir == ".env-state"

    def test_cli_args_override_env(self, clean_env):
        clean_env.setenv("FLUTTERFLOW_API_TOKEN", "env-token")
        clean_env.setenv("FLUTTERFLOW_API_URL", "https://env.example.com")

        config = load_config(
            api_token="cli-token",
            api_url="https://cli.example.com",
            state_dir=".cli-state",
        )

        assert config.api_token == "cli-token"
        assert config.api_url == "https://cli.example.com"
        assert config.state_dir == ".cli-state"

    def test_invalid_url_via_load(self, clean_env):
        clean_env.setenv("FLUTTERFLOW_API_URL", "not-a-url")
        with pytest.raises(ValueError, match="Invalid API URL"):
            load_config()

    @pytest.mark.parametrize("value", ["true", "1", "yes", "ON"])
    def test_debug_truthy_values(self, clean_env, value):
        clean_env.setenv("CUSTOM_CODE_SYNC_DEBUG", value)
        assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", ""])
    def test_debug_falsy_values(self, clean_env, value):
        clean_env.setenv("CUSTOM_CODE_SYNC_DEBUG", value)
        assert load_config(yaml_fallbacks={"debug": True}).debug is False

    def test_cli_debug_overrides_env(self, clean_env):
        clean_env.setenv("CUSTOM_CODE_SYNC_DEBUG", "false")
        assert load_config(debug=True).debug is True


class TestYamlFallbacks:
    """Tests for the yaml_fallbacks layer of load_config()."""

    def test_yaml_fallback_used_when_no_env_or_cli(self, clean_env):
        config = load_config(
            yaml_fallbacks={
                "api_token": "yaml-token",
                "api_url": "https://yaml.example.com",
                "state_dir": ".yaml-state",
                "debug": True,
            }
        )
        assert config.api_token == "yaml-token"
        assert config.api_url == "https://yaml.example.com"
        assert config.state_dir == ".yaml-state"
        assert config.debug is True

    def test_env_var_overrides_yaml_fallback(self, clean_env):
        clean_env.setenv("FLUTTERFLOW_API_TOKEN", "env-token")
        config = load_config(yaml_fallbacks={"api_token": "yaml-token"})
        assert config.api_token == "env-token"

    def test_cli_overrides_env_and_yaml(self, clean_env):
        clean_env.setenv("CUSTOM_CODE_SYNC_STATE_DIR", ".env-state")
        config = load_config(
            state_dir=".cli-state", yaml_fallbacks={"state_dir": ".yaml-state"}
        )
        assert config.state_dir == ".cli-state"

    def test_numeric_fields_from_yaml(self, clean_env):
        config = load_config(
            yaml_fallbacks={
                "timeout": 5,
                "snapshot_read_retries": 5,
                "snapshot_retry_base_delay": 0.25,
                "similarity_threshold": 0.9,
            }
        )
        assert config.timeout == 5.0
        assert config.snapshot_read_retries == 5
        assert config.snapshot_retry_base_delay == 0.25
        assert config.similarity_threshold == 0.9

    def test_invalid_numeric_fallback_rejected(self, clean_env):
        with pytest.raises(ValueError, match="snapshot_read_retries"):
            load_config(yaml_fallbacks={"snapshot_read_retries": 0})

    def test_empty_yaml_fallbacks_same_as_none(self, clean_env):
        assert load_config(yaml_fallbacks={}) == load_config()


# -------------------------------------------------------------------------
# Project metadata
# -------------------------------------------------------------------------


class TestProjectMetadata:
    """Tests for load_project_metadata() and save_project_metadata()."""

    def test_missing_file_is_empty(self, tmp_path):
        assert load_project_metadata(tmp_path) == ProjectMetadata()

    def test_round_trip(self, tmp_path):
        metadata = ProjectMetadata(project_id="proj-123", branch_name="dev")

        path = save_project_metadata(tmp_path, metadata)

        assert path == tmp_path / ".vscode" / "ff_metadata.json"
        assert load_project_metadata(tmp_path) == metadata

    def test_none_fields_omitted(self, tmp_path):
        save_project_metadata(tmp_path, ProjectMetadata(project_id="p"))
        data = json.loads(metadata_path(tmp_path).read_text())
        assert data == {"project_id": "p", "branch_name": ""}

    def test_custom_state_dir(self, tmp_path):
        metadata = ProjectMetadata(project_id="p", initial_file="lib/main.dart")
        save_project_metadata(tmp_path, metadata, state_dir=".sync")

        assert (tmp_path / ".sync" / "ff_metadata.json").exists()
        assert load_project_metadata(tmp_path, ".sync") == metadata

    def test_corrupt_file_is_empty(self, tmp_path, caplog):
        path = metadata_path(tmp_path)
        path.parent.mkdir()
        path.write_text("{nope")

        assert load_project_metadata(tmp_path) == ProjectMetadata()
        assert "Could not read" in caplog.text
