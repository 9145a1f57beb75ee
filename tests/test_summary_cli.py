import sqlite3
from pathlib import Path

import pytest

from app.harvester import summary_cli
from app.harvester.catalog_store import CatalogStore
from tests.test_catalog_store import _configure_temp_paths, _sample_record


def test_summary_cli_prints_counts(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)
    with CatalogStore(data_dir / "maps.db") as store:
        for record_id in (1, 2, 3):
            store.upsert_indexed(_sample_record(record_id))
        store.mark_retrieved(2)

    exit_code = summary_cli.main(["--data-dir", str(data_dir)])
    assert exit_code == 0

    out = capsys.readouterr().out
    assert "Catalog maps" in out
    assert "indexed: 3" in out
    assert "retrieved: 1" in out
    assert "pending download: 2" in out


def test_summary_cli_errors_for_unknown_collection(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)

    with pytest.raises(SystemExit) as excinfo:
        summary_cli.main(["--data-dir", str(data_dir), "--collection", "levels"])

    assert excinfo.value.code == 2
    err = capsys.readouterr().err
    assert "levels.db does not exist" in err


def test_summary_cli_does_not_write_to_catalog(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)
    db_path = data_dir / "maps.db"
    with CatalogStore(db_path) as store:
        store.upsert_indexed(_sample_record(1))
        with store._transaction() as conn:
            conn.execute("DELETE FROM records WHERE id = 0")

    exit_code = summary_cli.main(["--data-dir", str(data_dir)])

    assert exit_code == 0
    assert "indexed: 1" in capsys.readouterr().out
    conn = sqlite3.connect(db_path)
    try:
        assert conn.execute("SELECT COUNT(*) FROM records WHERE id = 0").fetchone()[0] == 0
    finally:
        conn.close()


def test_summary_cli_rejects_file_without_catalog_table(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    data_dir = _configure_temp_paths(tmp_path, monkeypatch)
    db_path = data_dir / "maps.db"
    sqlite3.connect(db_path).close()

    with pytest.raises(SystemExit) as excinfo:
        summary_cli.main(["--data-dir", str(data_dir)])

    assert excinfo.value.code == 2
    assert "cannot open catalog store" in capsys.readouterr().err
    conn = sqlite3.connect(db_path)
    try:
        tables = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    finally:
        conn.close()
    assert tables == []
