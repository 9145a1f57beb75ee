"""Command-line entry point for running harvest stages."""
from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from . import config
from .artifact_downloader import ArtifactDownloader
from .catalog_store import CatalogStore, StoreInitError
from .config import RunConfig
from .config_validation import ConfigError, validate_run_config
from .orchestrator import DownloadDirError, Orchestrator, default_progress
from .record_fetcher import RecordFetcher
from .utils import log_line, setup_run_logger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Harvest catalog records by sequential ID and download their artifacts. "
            "Every option falls back to its HARVEST_* environment variable."
        ),
    )
    parser.add_argument("--base-url", help="Catalog server base address (HARVEST_BASE_URL).")
    parser.add_argument("--max-id", type=int, help="Highest catalog ID to process (HARVEST_MAX_ID).")
    parser.add_argument(
        "--max-conn",
        type=int,
        dest="max_concurrent",
        help="Maximum parallel indexing/download operations (HARVEST_MAX_CONN).",
    )
    parser.add_argument(
        "--stage",
        choices=list(config.STAGES),
        help="Which phases to run (HARVEST_STAGE).",
    )
    parser.add_argument("--data-dir", type=Path, help="Directory for the catalog DB, logs and run files.")
    parser.add_argument("--collection", help="Logical catalog name; selects <data-dir>/<collection>.db.")
    parser.add_argument("--download-dir", type=Path, help="Where artifacts are written.")
    parser.add_argument("--request-timeout", type=int, help="Per-request timeout in seconds.")
    parser.add_argument(
        "--max-run-seconds",
        type=float,
        help="Stop dispatching new IDs after this many seconds; in-flight work still finishes.",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    return parser


def build_run_config(args: argparse.Namespace, environ: Optional[Dict[str, str]] = None) -> RunConfig:
    """Merge command-line flags over the environment-derived defaults."""

    run_config = RunConfig.from_env(environ)
    overrides: Dict[str, Any] = {}
    for name in (
        "base_url",
        "max_id",
        "max_concurrent",
        "stage",
        "data_dir",
        "collection",
        "download_dir",
        "request_timeout",
        "max_run_seconds",
    ):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    if overrides:
        run_config = dataclasses.replace(run_config, **overrides)
    return run_config


def main(argv: Sequence[str] | None = None, *, environ: Optional[Dict[str, str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    run_config = build_run_config(args, environ)
    try:
        validate_run_config(run_config, entrypoint="cli")
    except ConfigError as exc:
        parser.error(str(exc))

    setup_run_logger(Path(run_config.data_dir) / "logs")
    log_line(
        f"[RUN] stage={run_config.stage} max_id={run_config.max_id} "
        f"max_concurrent={run_config.max_concurrent} collection={run_config.collection}"
    )

    log_line("Initializing the index.")
    store = CatalogStore(run_config.db_path)
    try:
        store.initialize()
    except StoreInitError as exc:
        log_line(f"[RUN] cannot init index: {exc}")
        return 1

    try:
        orchestrator = Orchestrator(
            run_config,
            store,
            RecordFetcher.from_config(run_config),
            ArtifactDownloader.from_config(run_config),
            progress_factory=None if args.no_progress else default_progress,
        )
        orchestrator.run()
    except DownloadDirError as exc:
        log_line(f"[RUN] {exc}")
        return 1
    finally:
        store.close()

    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_run_config", "main"]
