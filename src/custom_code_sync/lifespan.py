"""Startup and shutdown of a sync session for an editor host."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .config import load_config
from .config_loader import (
    discover_config_files,
    ensure_config,
    load_hierarchical_config,
)
from .config_schema import UnifiedConfig, build_config, to_fallbacks
from .core.client import RemoteClient
from .logger import setup_logging
from .sync.declarations import DeclarationExtractor
from .sync.session import open_session

logger = logging.getLogger(__name__)


@asynccontextmanager
async def session_lifespan(
    root: Path,
    config_overrides: dict[str, Any] | None = None,
    *,
    logging_mode: str | None = None,
    create_config: bool = False,
    extractor: DeclarationExtractor | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage session startup and shutdown.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Write a starter config file first when ``create_config`` is set and none exists
    - Load YAML config files if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Configure logging when ``logging_mode`` is given
    - Open the session and start applying edit events
    - Create a RemoteClient if a token and project id are known

    On shutdown:
    - Stop the event loop after the events already queued

    Args:
        root: Project root directory.
        config_overrides: Optional dict with config values from the host
            (api_token, api_url, state_dir, debug).
        logging_mode: "cli" or "extension" to call setup_logging(); None
            leaves logging to the host.
        create_config: Write a commented starter config file with
            ensure_config() when no config file exists yet.
        extractor: Declaration extractor passed to the tracker.

    Yields:
        Dict with 'session', 'client' (None when push and pull are
        unavailable) and 'config' keys.

    Raises:
        RuntimeError: If the configuration is invalid.
    """
    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        if create_config:
            ensure_config()

        unified = UnifiedConfig()
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            logger.info("Config file: %s", config_files[0])

        overrides = config_overrides or {}
        config = load_config(
            api_token=overrides.get("api_token"),
            api_url=overrides.get("api_url"),
            state_dir=overrides.get("state_dir"),
            debug=overrides.get("debug", False),
            yaml_fallbacks=to_fallbacks(unified),
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise RuntimeError(f"Configuration error: {e}") from e

    if logging_mode:
        setup_logging(
            mode=logging_mode,
            debug=config.debug,
            log_file=unified.logging.file,
            debug_format=unified.logging.format,
            level=unified.logging.level,
        )

    session = await open_session(Path(root), config, extractor=extractor)
    if session.last_error is not None:
        logger.error(
            "Session for %s started in ERROR: %s", root, session.last_error
        )

    client: RemoteClient | None = None
    if config.api_token and session.metadata.project_id:
        client = RemoteClient(
            config, session.metadata.project_id, session.metadata.branch_name
        )
    else:
        logger.info("Push and pull unavailable: API token or project id missing")

    runner = asyncio.create_task(session.run())
    try:
        yield {"session": session, "client": client, "config": config}
    finally:
        session.close()
        await runner
        logger.info("Session for %s closed", root)
