"""Configuration constants and run parameters for the catalog harvester."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DATA_DIR: Path = Path(os.getenv("HARVEST_DATA_DIR", "."))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "harvest.log"
RUNS_DIR: Path = DATA_DIR / "runs"

DEFAULT_COLLECTION: str = "maps"
DEFAULT_DOWNLOAD_DIR_NAME: str = "maps"

# Where the item page and the artifact link live relative to the base URL.
ITEM_PATH_TEMPLATE: str = os.getenv("HARVEST_ITEM_PATH_TEMPLATE", "/maps/{id}/")
ARTIFACT_PATH_MARKER: str = os.getenv("HARVEST_ARTIFACT_PATH_MARKER", "/maps/download/")

STAGES: tuple[str, ...] = ("index", "download", "both", "update")

REQUEST_TIMEOUT_S: int = int(os.getenv("HARVEST_REQUEST_TIMEOUT_S", "60"))
STORE_TIMEOUT_S: float = float(os.getenv("HARVEST_STORE_TIMEOUT_S", "30"))
DOWNLOAD_CHUNK_BYTES: int = 8192

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
}


def _env_int(environ: Mapping[str, str], name: str) -> Optional[int]:
    """Return ``environ[name]`` as an int, ``None`` when unset or malformed."""

    raw = (environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _env_float(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


@dataclass(frozen=True)
class RunConfig:
    """Immutable run parameters, built once at startup."""

    base_url: str
    max_id: int
    max_concurrent: int
    stage: str
    collection: str = DEFAULT_COLLECTION
    data_dir: Path = field(default_factory=lambda: DATA_DIR)
    download_dir: Optional[Path] = None
    request_timeout: int = REQUEST_TIMEOUT_S
    max_run_seconds: Optional[float] = None
    item_path_template: str = ITEM_PATH_TEMPLATE
    artifact_path_marker: str = ARTIFACT_PATH_MARKER

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / f"{self.collection}.db"

    @property
    def resolved_download_dir(self) -> Path:
        if self.download_dir is not None:
            return Path(self.download_dir)
        return Path(self.data_dir) / DEFAULT_DOWNLOAD_DIR_NAME

    @property
    def runs_dir(self) -> Path:
        return Path(self.data_dir) / "runs"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RunConfig":
        """Build a config from ``HARVEST_*`` environment variables.

        Malformed numbers become ``0`` so that validation reports them rather
        than this constructor raising.
        """

        env = os.environ if environ is None else environ
        download_dir = (env.get("HARVEST_DOWNLOAD_DIR") or "").strip()
        data_dir = (env.get("HARVEST_DATA_DIR") or "").strip()
        return cls(
            base_url=(env.get("HARVEST_BASE_URL") or "").strip(),
            max_id=_env_int(env, "HARVEST_MAX_ID") or 0,
            max_concurrent=_env_int(env, "HARVEST_MAX_CONN") or 0,
            stage=(env.get("HARVEST_STAGE") or "").strip().lower(),
            collection=(env.get("HARVEST_COLLECTION") or DEFAULT_COLLECTION).strip(),
            data_dir=Path(data_dir) if data_dir else DATA_DIR,
            download_dir=Path(download_dir) if download_dir else None,
            request_timeout=_env_int(env, "HARVEST_REQUEST_TIMEOUT_S") or REQUEST_TIMEOUT_S,
            max_run_seconds=_env_float(env, "HARVEST_MAX_RUN_SECONDS"),
        )


__all__ = ["RunConfig", "STAGES", "COMMON_HEADERS"]
