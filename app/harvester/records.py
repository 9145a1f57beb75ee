"""The catalog record entity."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

SENTINEL_ID = 0


@dataclass
class Record:
    id: int
    name: str = ""
    author: str = ""
    size: str = ""
    category: str = ""
    upload_date: str = ""
    rating: str = ""
    download_count: int = 0
    artifact_url: str = ""
    retrieved: bool = False

    @classmethod
    def from_row(cls, row: Any) -> "Record":
        """Build a record from a ``sqlite3.Row`` of the ``records`` table."""

        return cls(
            id=int(row["id"]),
            name=row["name"] or "",
            author=row["author"] or "",
            size=row["size"] or "",
            category=row["category"] or "",
            upload_date=row["upload_date"] or "",
            rating=row["rating"] or "",
            download_count=int(row["download_count"] or 0),
            artifact_url=row["artifact_url"] or "",
            retrieved=bool(row["retrieved"]),
        )


def sentinel_record() -> Record:
    """Return the fixed ``id = 0`` record written at initialisation."""

    return Record(
        id=SENTINEL_ID,
        name="Harvester Sentinel Record",
        author="catalog-harvester",
        size="0 MB",
        category="None",
        upload_date="",
        rating="",
        download_count=0,
        artifact_url="http://127.0.0.1/example",
        retrieved=True,
    )


__all__ = ["Record", "SENTINEL_ID", "sentinel_record"]
