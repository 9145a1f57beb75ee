from __future__ import annotations

import contextlib
import urllib.parse
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import requests

from . import config
from .config import RunConfig
from .error_codes import ErrorCode, classify_http_status
from .logging_utils import _harvest_event
from .records import Record
from .utils import log_line


class TransferErrorKind(str, Enum):
    NETWORK = "network"
    IO_WRITE = "io_write"


class TransferError(Exception):
    def __init__(
        self,
        kind: TransferErrorKind,
        message: str,
        *,
        record_id: int,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.record_id = record_id
        self.http_status = http_status

    @property
    def error_code(self) -> str:
        if self.kind is TransferErrorKind.IO_WRITE:
            return ErrorCode.IO_WRITE
        if self.http_status is not None and self.http_status >= 400:
            return classify_http_status(self.http_status)
        return ErrorCode.NETWORK


@dataclass
class TransferResult:
    path: Path
    bytes_written: int
    status_code: Optional[int]


def _redact_url(url: str) -> str:
    try:
        parsed = urllib.parse.urlparse(url)
        return urllib.parse.urlunparse(parsed._replace(query=""))
    except Exception:
        return url


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def artifact_path(destination_dir: Path, record: Record) -> Path:
    """Return the local file path for ``record``'s artifact."""

    return Path(destination_dir) / str(record.id)


class ArtifactDownloader:
    """Stream record artifacts to local storage."""

    def __init__(
        self,
        *,
        session: Optional[Any] = None,
        timeout: int = config.REQUEST_TIMEOUT_S,
        chunk_size: int = config.DOWNLOAD_CHUNK_BYTES,
    ) -> None:
        if session is None:
            session = requests.Session()
            session.headers.update(config.COMMON_HEADERS)
        self.session = session
        self.timeout = timeout
        self.chunk_size = chunk_size

    @classmethod
    def from_config(cls, run_config: RunConfig, *, session: Optional[Any] = None) -> "ArtifactDownloader":
        return cls(session=session, timeout=run_config.request_timeout)

    def transfer(self, record: Record, destination_dir: Path) -> TransferResult:
        """Copy the artifact behind ``record.artifact_url`` into ``destination_dir``.

        The destination file is removed again if the transfer fails part way.
        """

        if not record.artifact_url:
            raise TransferError(
                TransferErrorKind.NETWORK,
                f"record {record.id} has no artifact URL",
                record_id=record.id,
            )

        dest_path = artifact_path(destination_dir, record)
        safe_url = _redact_url(record.artifact_url)
        status: Optional[int] = None

        try:
            with self.session.get(record.artifact_url, stream=True, timeout=self.timeout) as resp:
                status = resp.status_code
                resp.raise_for_status()
                bytes_written = 0
                with dest_path.open("wb") as handle:
                    for chunk in resp.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        handle.write(chunk)
                        bytes_written += len(chunk)
        except requests.HTTPError as exc:
            _discard(dest_path)
            status = getattr(exc.response, "status_code", status)
            raise TransferError(
                TransferErrorKind.NETWORK,
                f"HTTP {status} for {safe_url}",
                record_id=record.id,
                http_status=status,
            ) from exc
        except requests.RequestException as exc:
            _discard(dest_path)
            raise TransferError(
                TransferErrorKind.NETWORK,
                str(exc),
                record_id=record.id,
                http_status=status,
            ) from exc
        except OSError as exc:
            _discard(dest_path)
            raise TransferError(
                TransferErrorKind.IO_WRITE,
                f"cannot write {dest_path}: {exc}",
                record_id=record.id,
            ) from exc

        _harvest_event(
            "transfer",
            phase="download",
            id=record.id,
            status="ok",
            http_status=status,
            bytes=bytes_written,
        )
        log_line(
            f"[HARVEST][TRANSFER] id={record.id} url={safe_url} status={status or 'unknown'} bytes={bytes_written}"
        )
        return TransferResult(path=dest_path, bytes_written=bytes_written, status_code=status)


__all__ = [
    "ArtifactDownloader",
    "TransferError",
    "TransferErrorKind",
    "TransferResult",
    "artifact_path",
]
