"""Unified configuration schema for custom_code_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the remote API, change tracking, and logging.  Includes an
adapter that flattens a ``UnifiedConfig`` into the fallback dict accepted
by ``config.load_config()``.

Usage:
    from custom_code_sync.config_schema import build_config, to_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote project server settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    api_url: str | None = Field(
        default=None, description="Remote API base URL"
    )
    api_token: str | None = Field(
        default=None, description="Bearer token for the remote API"
    )
    timeout: float = Field(
        default=60.0,
        gt=0,
        description="Request timeout in seconds",
    )

    model_config = {"frozen": True}


class TrackingConfig(BaseModel):
    """Local change tracking settings."""

    state_dir: str | None = Field(
        default=None,
        description="State directory relative to the project root",
    )
    snapshot_read_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts when reading the persisted snapshot (1-10)",
    )
    snapshot_retry_base_delay: float = Field(
        default=0.1,
        ge=0,
        description="Delay before the first snapshot read retry, doubled each retry",
    )
    similarity_threshold: float = Field(
        default=0.7,
        gt=0,
        le=1,
        description="Minimum body similarity for an inferred function rename",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            None keeps the mode default.
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()`` (zero-config)
    is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def to_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the ``remote`` and ``tracking`` sections for ``load_config()``.

    ``None`` values are left out so they never shadow built-in defaults.
    """
    merged = {
        **unified.remote.model_dump(),
        **unified.tracking.model_dump(),
    }
    return {k: v for k, v in merged.items() if v is not None}
