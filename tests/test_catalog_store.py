import sys
import threading
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.harvester import catalog_store, config, utils
from app.harvester.catalog_store import CatalogStore, StoreInitError, StoreWriteError
from app.harvester.records import SENTINEL_ID, Record


def _configure_temp_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setattr(config, "DATA_DIR", data_dir)
    monkeypatch.setattr(config, "LOG_DIR", data_dir / "logs")
    monkeypatch.setattr(config, "LOG_FILE", data_dir / "logs" / "harvest.log")
    monkeypatch.setattr(utils, "_LOGGER_INITIALISED", False)
    return data_dir


def _sample_record(record_id: int, **overrides) -> Record:
    fields = dict(
        id=record_id,
        name=f"Item {record_id}",
        author="someone",
        size="1.2 MB",
        category="Arena",
        upload_date="20 Nov 2019 21:13",
        rating="3 Good 0 Bad",
        download_count=42,
        artifact_url=f"https://catalog.example/maps/download/{record_id}",
    )
    fields.update(overrides)
    return Record(**fields)


def _row_count(store: CatalogStore, record_id: int) -> int:
    conn = store._connection
    return conn.execute("SELECT COUNT(*) FROM records WHERE id = ?", (record_id,)).fetchone()[0]


@pytest.fixture()
def store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)
    catalog = CatalogStore(data_dir / "maps.db")
    catalog.initialize()
    yield catalog
    catalog.close()


def test_initialize_seeds_sentinel(store: CatalogStore) -> None:
    assert store.db_path.is_file()
    assert store.exists(SENTINEL_ID)
    sentinel = store.read_by_id(SENTINEL_ID)
    assert sentinel.retrieved is True
    assert sentinel.artifact_url


def test_initialize_is_idempotent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)
    db_path = data_dir / "maps.db"

    with CatalogStore(db_path) as first:
        first.upsert_indexed(_sample_record(1))

    with CatalogStore(db_path) as second:
        assert _row_count(second, SENTINEL_ID) == 1
        assert second.exists(1)
        assert second.summary().total_rows == 2


def test_initialize_failure_raises_store_init_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)
    # A directory where the database file should be cannot be opened.
    blocked = data_dir / "maps.db"
    blocked.mkdir()

    with pytest.raises(StoreInitError):
        CatalogStore(blocked).initialize()


def test_operations_before_initialize_fail(tmp_path: Path) -> None:
    with pytest.raises(StoreInitError):
        CatalogStore(tmp_path / "never.db").exists(1)


def test_is_downloaded_treats_unknown_ids_as_satisfied(store: CatalogStore) -> None:
    assert store.is_downloaded(42) is True


def test_is_downloaded_tracks_retrieved_flag(store: CatalogStore) -> None:
    store.upsert_indexed(_sample_record(5))
    assert store.exists(5) is True
    assert store.is_downloaded(5) is False

    assert store.mark_retrieved(5) is True
    assert store.is_downloaded(5) is True
    assert store.read_by_id(5).retrieved is True


def test_upsert_indexed_duplicate_is_noop(store: CatalogStore, monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict] = []
    monkeypatch.setattr(catalog_store, "_harvest_event", lambda *args, **kwargs: events.append(kwargs))

    assert store.upsert_indexed(_sample_record(3)) is True
    assert store.upsert_indexed(_sample_record(3, name="Divergent")) is False

    assert _row_count(store, 3) == 1
    assert store.read_by_id(3).name == "Item 3"
    assert any(event.get("kind") == "duplicate_insert" for event in events)


def test_upsert_never_resets_retrieved(store: CatalogStore) -> None:
    store.upsert_indexed(_sample_record(8))
    store.mark_retrieved(8)

    store.upsert_indexed(_sample_record(8, retrieved=False))

    assert store.read_by_id(8).retrieved is True


def test_mark_retrieved_missing_record_is_noop(store: CatalogStore) -> None:
    assert store.mark_retrieved(999) is False
    assert store.exists(999) is False


def test_read_by_id_miss_returns_blank_record(store: CatalogStore) -> None:
    assert store.read_by_id(77) == Record(id=77)


def test_read_by_id_round_trips_fields(store: CatalogStore) -> None:
    record = _sample_record(11)
    store.upsert_indexed(record)

    assert store.read_by_id(11) == record


def test_write_failure_raises_store_write_error(store: CatalogStore) -> None:
    store._connection.execute("DROP TABLE records")

    with pytest.raises(StoreWriteError) as excinfo:
        store.upsert_indexed(_sample_record(2))
    assert excinfo.value.record_id == 2

    with pytest.raises(StoreWriteError):
        store.mark_retrieved(2)


def test_concurrent_duplicate_inserts_keep_one_row(store: CatalogStore) -> None:
    results: list[bool] = []
    barrier = threading.Barrier(8)

    def insert() -> None:
        barrier.wait(timeout=5)
        results.append(store.upsert_indexed(_sample_record(21)))

    threads = [threading.Thread(target=insert) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert results.count(True) == 1
    assert results.count(False) == 7
    assert _row_count(store, 21) == 1


def test_concurrent_writes_for_different_ids(store: CatalogStore) -> None:
    def insert(record_id: int) -> None:
        store.upsert_indexed(_sample_record(record_id))
        store.mark_retrieved(record_id)

    threads = [threading.Thread(target=insert, args=(i,)) for i in range(1, 21)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    summary = store.summary()
    assert summary.indexed == 20
    assert summary.retrieved == 20
    assert summary.pending_download == 0


def test_summary_excludes_sentinel(store: CatalogStore) -> None:
    store.upsert_indexed(_sample_record(1))
    store.upsert_indexed(_sample_record(2))
    store.mark_retrieved(1)

    summary = store.summary()
    assert summary.total_rows == 3
    assert summary.indexed == 2
    assert summary.retrieved == 1
    assert summary.pending_download == 1


def test_upsert_indexed_always_stores_not_retrieved(store: CatalogStore) -> None:
    assert store.upsert_indexed(_sample_record(30, retrieved=True)) is True

    assert store.read_by_id(30).retrieved is False
    assert store.is_downloaded(30) is False


def test_mark_retrieved_requires_artifact_url(store: CatalogStore) -> None:
    store.upsert_indexed(_sample_record(31, artifact_url=""))

    assert store.mark_retrieved(31) is False
    assert store.read_by_id(31).retrieved is False


def test_open_read_only_reads_without_seeding(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)
    db_path = data_dir / "maps.db"
    with CatalogStore(db_path) as writer:
        writer.upsert_indexed(_sample_record(1))

    reader = CatalogStore(db_path)
    reader.open_read_only()
    try:
        assert reader.exists(1)
        with pytest.raises(StoreWriteError):
            reader.upsert_indexed(_sample_record(2))
    finally:
        reader.close()


def test_open_read_only_missing_file_fails(tmp_path: Path) -> None:
    db_path = tmp_path / "absent.db"

    with pytest.raises(StoreInitError):
        CatalogStore(db_path).open_read_only()
    assert not db_path.exists()
