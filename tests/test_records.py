"""
Write-once ledger tests, run against both storage backends.
"""

import json
import threading

import pytest

from conftest import ADDRESS_A, ADDRESS_B, ManualClock, StepClock
from viphash.core.config import Settings
from viphash.core.records import FileRecordStore, SqliteRecordStore, open_record_store
from viphash.core.schema import SaveOutcome, Verdict


class TestWriteOnce:

    def test_second_save_is_rejected_and_first_verdict_kept(self, record_store_factory):
        store = record_store_factory(StepClock())

        assert store.save(ADDRESS_A, "alice", Verdict.GOOD) == SaveOutcome.CREATED
        assert store.save(ADDRESS_A, "alice", Verdict.BAD) == SaveOutcome.ALREADY_EXISTS

        record = store.get_by_reviewer(ADDRESS_A, "alice")
        assert record.verdict == Verdict.GOOD
        assert record.recorded_at == 1.0
        assert store.count() == 1

    def test_same_address_different_reviewers(self, record_store_factory):
        store = record_store_factory(StepClock())

        assert store.save(ADDRESS_A, "alice", Verdict.GOOD) == SaveOutcome.CREATED
        assert store.save(ADDRESS_A, "bob", Verdict.BAD) == SaveOutcome.CREATED
        assert store.count() == 2

    def test_lookup_miss_returns_none(self, record_store_factory):
        store = record_store_factory()
        assert store.get_by_reviewer(ADDRESS_A, "nobody") is None
        assert store.get_all_for_address(ADDRESS_A) == []

    def test_verdict_strings_are_accepted(self, record_store_factory):
        store = record_store_factory()
        store.save(ADDRESS_A, "alice", "false")
        assert store.get_by_reviewer(ADDRESS_A, "alice").verdict == Verdict.BAD

    @pytest.mark.parametrize("address,reviewer", [
        ("", "alice"),
        ("not-a-hash", "alice"),
        ("A" * 40, "alice"),
        (ADDRESS_A, ""),
        (ADDRESS_A, "   "),
        (ADDRESS_A, "../etc"),
    ])
    def test_malformed_keys_raise(self, record_store_factory, address, reviewer):
        store = record_store_factory()
        with pytest.raises(ValueError):
            store.save(address, reviewer, Verdict.GOOD)

    def test_concurrent_writers_one_winner(self, record_store_factory):
        store = record_store_factory()
        outcomes = []
        lock = threading.Lock()

        def mark(verdict):
            outcome = store.save(ADDRESS_A, "alice", verdict)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=mark, args=(Verdict.GOOD if i % 2 else Verdict.BAD,))
                   for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(SaveOutcome.CREATED) == 1
        assert outcomes.count(SaveOutcome.ALREADY_EXISTS) == 7
        assert store.count() == 1


class TestQueries:

    def test_all_for_address_in_insertion_order(self, record_store_factory):
        store = record_store_factory(StepClock())
        store.save(ADDRESS_A, "carol", Verdict.GOOD)
        store.save(ADDRESS_B, "alice", Verdict.GOOD)
        store.save(ADDRESS_A, "alice", Verdict.BAD)

        records = store.get_all_for_address(ADDRESS_A)
        assert [r.reviewer for r in records] == ["carol", "alice"]
        assert [r.verdict for r in records] == [Verdict.GOOD, Verdict.BAD]

    def test_records_after_is_exclusive_and_ascending(self, record_store_factory):
        store = record_store_factory(StepClock(start=1.0, step=2.0))
        for reviewer in ["r1", "r3", "r5", "r7"]:
            store.save(ADDRESS_A, reviewer, Verdict.GOOD)

        records = store.get_records_after(3.0)
        assert [r.recorded_at for r in records] == [5.0, 7.0]
        assert [r.reviewer for r in records] == ["r5", "r7"]

    def test_records_after_can_exclude_an_origin(self, record_store_factory):
        store = record_store_factory(StepClock())
        store.save(ADDRESS_A, "alice", Verdict.GOOD)
        store.save(ADDRESS_A, "bob", Verdict.GOOD, origin="origin")
        store.save(ADDRESS_A, "carol", Verdict.GOOD, origin="other")

        reviewers = [r.reviewer for r in store.get_records_after(0, exclude_origin="origin")]
        assert reviewers == ["alice", "carol"]
        assert len(store.get_records_after(0)) == 3

    def test_newest_timestamp(self, record_store_factory):
        store = record_store_factory(StepClock(start=10.0))
        assert store.newest_timestamp() is None
        store.save(ADDRESS_A, "alice", Verdict.GOOD)
        store.save(ADDRESS_B, "alice", Verdict.GOOD)
        assert store.newest_timestamp() == 11.0

    def test_recorded_at_grows_when_clock_steps_back(self, record_store_factory):
        clock = ManualClock(100.0)
        store = record_store_factory(clock)
        store.save(ADDRESS_A, "alice", Verdict.GOOD)

        clock.now = 50.0
        store.save(ADDRESS_A, "bob", Verdict.GOOD)

        assert store.get_by_reviewer(ADDRESS_A, "bob").recorded_at > 100.0
        assert [r.reviewer for r in store.get_records_after(100.0)] == ["bob"]

    def test_origin_is_kept(self, record_store_factory):
        store = record_store_factory()
        store.save(ADDRESS_A, "alice", Verdict.GOOD, origin="origin")
        assert store.get_by_reviewer(ADDRESS_A, "alice").origin == "origin"


class TestFileBackend:

    def test_record_file_layout(self, tmp_path):
        store = FileRecordStore(tmp_path / "records", clock=StepClock())
        store.save(ADDRESS_A, "alice", Verdict.GOOD)

        files = sorted(p.name for p in (tmp_path / "records").iterdir() if not p.name.startswith("."))
        assert files == [f"{ADDRESS_A}-alice"]
        data = json.loads((tmp_path / "records" / f"{ADDRESS_A}-alice").read_text())
        assert data == {
            "address": ADDRESS_A,
            "reviewer": "alice",
            "verdict": "true",
            "recorded_at": 1.0,
            "origin": None
        }

    def test_rejected_write_leaves_no_temp_files(self, tmp_path):
        store = FileRecordStore(tmp_path / "records")
        store.save(ADDRESS_A, "alice", Verdict.GOOD)
        store.save(ADDRESS_A, "alice", Verdict.BAD)
        names = [p.name for p in (tmp_path / "records").iterdir()]
        assert not any(name.startswith(".tmp-") for name in names)
        assert len([name for name in names if not name.startswith(".")]) == 1


class TestBackendSelection:

    def test_sqlite_by_default(self, tmp_path):
        store = open_record_store(Settings(home=tmp_path))
        assert isinstance(store, SqliteRecordStore)
        assert store.db_path == tmp_path / "viphash.db"

    def test_file_backend(self, tmp_path):
        store = open_record_store(Settings(home=tmp_path, store_backend="file"))
        assert isinstance(store, FileRecordStore)
        assert store.directory == tmp_path / "records"

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown store backend"):
            open_record_store(Settings(home=tmp_path, store_backend="redis"))
