"""Fetch a catalog item page and turn it into a ``Record``.

The page layout follows the classic catalog listing: every ``.listentry``
block carries lines such as ``by <author>``, ``Size: ...``, ``Category: ...``
and a link to the artifact. A page whose entries point back at the item
listing instead of carrying metadata means the item is absent.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from . import config
from .config import RunConfig
from .error_codes import ErrorCode, classify_http_status
from .records import Record


class FetchErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_CONTENT = "invalid_content"
    NETWORK = "network"


_KIND_TO_ERROR_CODE = {
    FetchErrorKind.NOT_FOUND: ErrorCode.NOT_FOUND,
    FetchErrorKind.INVALID_CONTENT: ErrorCode.INVALID_CONTENT,
    FetchErrorKind.NETWORK: ErrorCode.NETWORK,
}


class FetchError(Exception):
    def __init__(
        self,
        kind: FetchErrorKind,
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
        if (
            self.kind is FetchErrorKind.NETWORK
            and self.http_status is not None
            and self.http_status >= 400
        ):
            return classify_http_status(self.http_status)
        return _KIND_TO_ERROR_CODE[self.kind]


# (prefix, field) pairs checked in order against each page line.
_FIELD_PREFIXES = (
    ("by ", "author"),
    ("Size: ", "size"),
    ("Category: ", "category"),
    ("Submitted: ", "upload_date"),
    ("Rating: ", "rating"),
)


def _absolute_url(base_url: str, link: str) -> str:
    if link.lower().startswith(("http://", "https://")):
        return link
    if link.startswith("/"):
        return base_url.rstrip("/") + link
    return urljoin(base_url.rstrip("/") + "/", link)


def _split_lines(value: str) -> List[str]:
    return [line.strip() for line in value.splitlines() if line.strip()]


def extract_entry_lines(html: str) -> List[str]:
    """Return the trimmed, non-empty text and link lines of every list entry."""

    soup = BeautifulSoup(html, "html5lib")
    lines: List[str] = []
    for entry in soup.select(".listentry"):
        lines.extend(_split_lines(entry.get_text()))
        anchor = entry.find("a")
        href = anchor.get("href") if anchor is not None else None
        if href:
            lines.extend(_split_lines(str(href)))
    return lines


def parse_record(
    record_id: int,
    html: str,
    *,
    base_url: str,
    item_path_prefix: str,
    artifact_path_marker: str,
) -> Record:
    """Parse an item page into a ``Record`` or raise ``FetchError``."""

    lines = extract_entry_lines(html)
    if not lines or item_path_prefix in lines[0]:
        raise FetchError(
            FetchErrorKind.NOT_FOUND,
            f"item {record_id} missing on the server",
            record_id=record_id,
        )

    record = Record(id=record_id, name=lines[0])
    for line in lines[1:]:
        for prefix, field_name in _FIELD_PREFIXES:
            if prefix in line:
                value = line.replace(prefix, "", 1)
                if field_name == "author":
                    value = value.replace("<br />", "", 1).strip()
                setattr(record, field_name, value)
                break
        else:
            if "Downloads: " in line:
                raw_count = line.replace("Downloads: ", "", 1).strip()
                try:
                    record.download_count = int(raw_count.replace(",", ""))
                except ValueError as exc:
                    raise FetchError(
                        FetchErrorKind.INVALID_CONTENT,
                        f"cannot parse download count {raw_count!r}",
                        record_id=record_id,
                    ) from exc
            elif artifact_path_marker in line:
                record.artifact_url = _absolute_url(base_url, line)

    if not record.artifact_url:
        raise FetchError(
            FetchErrorKind.INVALID_CONTENT,
            f"item {record_id} page has no artifact link",
            record_id=record_id,
        )

    record.retrieved = False
    return record


class RecordFetcher:
    """Fetch item pages over HTTP using a shared ``requests.Session``."""

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[Any] = None,
        timeout: int = config.REQUEST_TIMEOUT_S,
        item_path_template: str = config.ITEM_PATH_TEMPLATE,
        artifact_path_marker: str = config.ARTIFACT_PATH_MARKER,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.item_path_template = item_path_template
        self.artifact_path_marker = artifact_path_marker
        if session is None:
            session = requests.Session()
            session.headers.update(config.COMMON_HEADERS)
        self.session = session

    @classmethod
    def from_config(cls, run_config: RunConfig, *, session: Optional[Any] = None) -> "RecordFetcher":
        return cls(
            run_config.base_url,
            session=session,
            timeout=run_config.request_timeout,
            item_path_template=run_config.item_path_template,
            artifact_path_marker=run_config.artifact_path_marker,
        )

    @property
    def item_path_prefix(self) -> str:
        return self.item_path_template.split("{id}", 1)[0]

    def item_url(self, record_id: int) -> str:
        return self.base_url + self.item_path_template.format(id=record_id)

    def fetch(self, record_id: int) -> Record:
        url = self.item_url(record_id)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(FetchErrorKind.NETWORK, str(exc), record_id=record_id) from exc

        status = response.status_code
        if status == 404:
            raise FetchError(
                FetchErrorKind.NOT_FOUND,
                f"cannot open the web page: status code {status}",
                record_id=record_id,
                http_status=status,
            )
        if status != 200:
            raise FetchError(
                FetchErrorKind.NETWORK,
                f"cannot open the web page: status code {status}",
                record_id=record_id,
                http_status=status,
            )

        content_type = response.headers.get("Content-Type", "")
        if not content_type.startswith("text/html"):
            raise FetchError(
                FetchErrorKind.INVALID_CONTENT,
                f"invalid web page: received {content_type or 'no content type'}",
                record_id=record_id,
                http_status=status,
            )

        return parse_record(
            record_id,
            response.text,
            base_url=self.base_url,
            item_path_prefix=self.item_path_prefix,
            artifact_path_marker=self.artifact_path_marker,
        )


__all__ = [
    "FetchError",
    "FetchErrorKind",
    "RecordFetcher",
    "extract_entry_lines",
    "parse_record",
]
