"""Configuration for a custom code sync session.

Reads remote API settings and tracking options from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    FLUTTERFLOW_API_TOKEN: Bearer token for the remote API (required for
        push and pull, not for local tracking)
    FLUTTERFLOW_API_URL: Remote API base URL (optional)
    CUSTOM_CODE_SYNC_STATE_DIR: State directory relative to the project
        root (optional, default: .vscode)
    CUSTOM_CODE_SYNC_DEBUG: Enable debug logging (optional)

Also provides read/write of the per-checkout project metadata file
(``<state_dir>/ff_metadata.json``).
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

if TYPE_CHECKING:
    from .sync.models import ProjectMetadata

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.flutterflow.io/v1"
DEFAULT_STATE_DIR = ".vscode"
METADATA_FILENAME = "ff_metadata.json"


@dataclass
class Config:
    api_token: str = ""
    api_url: str = DEFAULT_API_URL
    timeout: float = 60.0
    state_dir: str = DEFAULT_STATE_DIR
    snapshot_read_retries: int = 3
    snapshot_retry_base_delay: float = 0.1
    similarity_threshold: float = 0.7
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL format is invalid or a numeric setting is
            out of range.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    state_dir = config.state_dir.strip()
    if not state_dir or Path(state_dir).is_absolute():
        raise ValueError(
            f"Invalid state directory '{config.state_dir}': must be a "
            "non-empty path relative to the project root"
        )
    config.state_dir = state_dir

    if config.timeout <= 0:
        raise ValueError(f"Invalid timeout {config.timeout}: must be positive")

    if not (1 <= config.snapshot_read_retries <= 10):
        raise ValueError(
            f"Invalid snapshot_read_retries {config.snapshot_read_retries}: "
            "must be a number between 1 and 10"
        )

    if config.snapshot_retry_base_delay < 0:
        raise ValueError(
            f"Invalid snapshot_retry_base_delay {config.snapshot_retry_base_delay}: "
            "must not be negative"
        )

    if not (0.0 < config.similarity_threshold <= 1.0):
        raise ValueError(
            f"Invalid similarity_threshold {config.similarity_threshold}: "
            "must be greater than 0 and at most 1"
        )

    if config.api_url.startswith("http://"):
        logger.warning(
            "WARNING: API URL uses plain HTTP; the token is sent unencrypted."
        )


def load_config(
    api_token: str | None = None,
    api_url: str | None = None,
    state_dir: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        api_token: Override API token.
        api_url: Override API base URL.
        state_dir: Override state directory.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flattened values from the YAML ``remote`` and
            ``tracking`` sections, used when CLI arg and env var are unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is invalid after checking all sources.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default ---

    final_token = (
        api_token or os.getenv("FLUTTERFLOW_API_TOKEN") or fb.get("api_token") or ""
    ).strip()

    final_url = (
        api_url
        or os.getenv("FLUTTERFLOW_API_URL")
        or fb.get("api_url")
        or DEFAULT_API_URL
    )

    final_state_dir = (
        state_dir
        or os.getenv("CUSTOM_CODE_SYNC_STATE_DIR")
        or fb.get("state_dir")
        or DEFAULT_STATE_DIR
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("CUSTOM_CODE_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug.lower() in ("true", "1", "yes", "on")
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: YAML > default ---

    config = Config(
        api_token=final_token,
        api_url=final_url,
        timeout=float(fb.get("timeout", 60.0)),
        state_dir=final_state_dir,
        snapshot_read_retries=int(fb.get("snapshot_read_retries", 3)),
        snapshot_retry_base_delay=float(
            fb.get("snapshot_retry_base_delay", 0.1)
        ),
        similarity_threshold=float(fb.get("similarity_threshold", 0.7)),
        debug=final_debug,
    )

    validate_config(config)

    if not config.api_token:
        logger.info(
            "No API token configured; push and pull are unavailable. "
            "Set FLUTTERFLOW_API_TOKEN to enable them."
        )

    return config


# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------


def metadata_path(root: Path, state_dir: str = DEFAULT_STATE_DIR) -> Path:
    return root / state_dir / METADATA_FILENAME


def load_project_metadata(
    root: Path, state_dir: str = DEFAULT_STATE_DIR
) -> "ProjectMetadata":
    """Read the project metadata of a checkout.

    Returns empty metadata when the file is missing or unreadable.
    """
    # Import here to avoid circular imports (sync imports config)
    from .sync.models import ProjectMetadata

    path = metadata_path(root, state_dir)
    if not path.exists():
        return ProjectMetadata()
    try:
        with open(path, encoding="utf-8") as fh:
            return ProjectMetadata.model_validate(json.load(fh))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return ProjectMetadata()


def save_project_metadata(
    root: Path,
    metadata: "ProjectMetadata",
    state_dir: str = DEFAULT_STATE_DIR,
) -> Path:
    path = metadata_path(root, state_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(metadata.model_dump(exclude_none=True), indent=2),
        encoding="utf-8",
    )
    return path
