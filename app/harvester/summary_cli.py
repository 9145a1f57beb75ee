from __future__ import annotations

"""CLI helper for printing catalog index/download counts."""

import argparse
from pathlib import Path
from typing import Sequence

from . import config
from .catalog_store import CatalogStore, StoreInitError


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the catalog summary CLI."""

    parser = argparse.ArgumentParser(
        description="Show index and download counts for a catalog collection.",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=config.DATA_DIR,
        help="Directory holding the catalog database.",
    )
    parser.add_argument(
        "--collection",
        default=config.DEFAULT_COLLECTION,
        help="Logical catalog name.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the catalog summary CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    db_path = Path(args.data_dir) / f"{args.collection}.db"
    if not db_path.exists():
        parser.error(f"Catalog {db_path} does not exist")

    store = CatalogStore(db_path)
    try:
        store.open_read_only()
        summary = store.summary()
    except StoreInitError as exc:
        parser.error(str(exc))
    finally:
        store.close()

    print(f"Catalog {args.collection} ({db_path})")
    print(f"  indexed: {summary.indexed}")
    print(f"  retrieved: {summary.retrieved}")
    print(f"  pending download: {summary.pending_download}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
