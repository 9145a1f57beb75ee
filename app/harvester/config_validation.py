from __future__ import annotations

from typing import Literal
from urllib.parse import urlparse

from . import config
from .config import RunConfig
from .logging_utils import _harvest_event
from .utils import log_line

Entrypoint = Literal["cli", "tests"]


class ConfigError(ValueError):
    """Raised when run parameters are missing or malformed."""

    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message)
        self.field = field


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, field: str, stage: str | None
) -> None:
    _harvest_event(
        "error",
        phase="config",
        context="run_validation",
        field=field,
        entrypoint=entrypoint,
        stage=stage,
    )
    stage_fragment = f", stage={stage}" if stage else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{stage_fragment})")
    raise ConfigError(message, field=field)


def validate_run_config(run_config: RunConfig, *, entrypoint: Entrypoint = "cli") -> RunConfig:
    """Validate ``run_config`` before any phase starts.

    Raises ``ConfigError`` on the first blocking problem. Returns the config
    unchanged so callers can chain construction and validation.
    """

    stage = run_config.stage or None

    parsed = urlparse(run_config.base_url or "")
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        _raise_config_error(
            "base URL must be an absolute http(s) address.",
            entrypoint=entrypoint,
            field="base_url",
            stage=stage,
        )

    if run_config.max_id < 1:
        _raise_config_error(
            "maximum catalog ID must be a positive integer.",
            entrypoint=entrypoint,
            field="max_id",
            stage=stage,
        )

    if run_config.max_concurrent < 1:
        _raise_config_error(
            "maximum concurrent operations must be a positive integer.",
            entrypoint=entrypoint,
            field="max_concurrent",
            stage=stage,
        )

    if run_config.stage not in config.STAGES:
        _raise_config_error(
            f"stage must be one of {', '.join(config.STAGES)}.",
            entrypoint=entrypoint,
            field="stage",
            stage=stage,
        )

    if not run_config.collection.strip():
        _raise_config_error(
            "collection name must not be empty.",
            entrypoint=entrypoint,
            field="collection",
            stage=stage,
        )

    if run_config.request_timeout <= 0:
        _raise_config_error(
            "request timeout must be greater than zero.",
            entrypoint=entrypoint,
            field="request_timeout",
            stage=stage,
        )

    if run_config.max_run_seconds is not None and run_config.max_run_seconds <= 0:
        _raise_config_error(
            "maximum run duration must be greater than zero when set.",
            entrypoint=entrypoint,
            field="max_run_seconds",
            stage=stage,
        )

    if "{id}" not in run_config.item_path_template:
        _raise_config_error(
            "item path template must contain an {id} placeholder.",
            entrypoint=entrypoint,
            field="item_path_template",
            stage=stage,
        )

    if run_config.max_concurrent > run_config.max_id:
        _harvest_event(
            "state",
            phase="config",
            context="run_validation",
            kind="concurrency_exceeds_range",
            max_concurrent=run_config.max_concurrent,
            max_id=run_config.max_id,
            entrypoint=entrypoint,
        )

    return run_config


__all__ = ["ConfigError", "Entrypoint", "validate_run_config"]
