"""
Tests for the per-user audit log engine.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from intake.codec import LOG_COLUMNS
from intake.exceptions import InvalidPrincipalError, StorageError
from intake.records import EventType, RequestContext, SearchFilters
from intake.services.audit_log import (
    AuditLog,
    PrincipalDirectory,
    ReadCache,
    validate_principal,
)
from intake.services.file_metadata import FileMetadata
from intake.storage import LocalStorage

from conftest import MemoryStore

BASE_TIME = datetime(2024, 11, 9, 12, 0, tzinfo=timezone.utc)


class TestPrincipalValidation:
    """Tests for principal identifiers."""

    @pytest.mark.parametrize("principal", ["alice", "bob.smith", "carol@example.com", "dev_user-2"])
    def test_valid(self, principal):
        assert validate_principal(principal) == principal

    @pytest.mark.parametrize("principal", ["", ".", "..", "a/b", "a\\b", "alice bob", "../etc"])
    def test_invalid(self, principal):
        with pytest.raises(InvalidPrincipalError):
            validate_principal(principal)


class TestWriteCoordinator:
    """Tests for appends."""

    @pytest.mark.asyncio
    async def test_first_write_creates_log_with_header(self, audit_log, memory_store, make_record):
        await audit_log.append(make_record())

        text = memory_store.objects["audit/alice.csv"]
        lines = text.splitlines()

        assert lines[0] == ",".join(LOG_COLUMNS)
        assert len(lines) == 2
        assert memory_store.calls == [("write_all", "audit/alice.csv")]

    @pytest.mark.asyncio
    async def test_later_writes_append_one_line(self, audit_log, memory_store, make_record):
        await audit_log.append(make_record(subject_name="one.txt"))
        await audit_log.append(make_record(subject_name="two.txt"))
        await audit_log.append(make_record(subject_name="three.txt"))

        lines = memory_store.objects["audit/alice.csv"].splitlines()

        assert len(lines) == 4
        assert lines[0].startswith("event_id,")
        assert memory_store.calls == [
            ("write_all", "audit/alice.csv"),
            ("append", "audit/alice.csv"),
            ("append", "audit/alice.csv"),
        ]

    @pytest.mark.asyncio
    async def test_physical_order_matches_write_order(self, audit_log, make_record):
        # Timestamps deliberately out of order: the log keeps append order
        for i, minutes in enumerate([5, 1, 3, 2, 4]):
            await audit_log.append(make_record(
                subject_name=f"file-{i}.txt",
                timestamp=BASE_TIME + timedelta(minutes=minutes),
            ))

        events = await audit_log.events_for("alice")

        assert [e.subject_name for e in events] == [f"file-{i}.txt" for i in range(5)]

    @pytest.mark.asyncio
    async def test_concurrent_writers_same_principal_are_serialized(self, make_record):
        store = MemoryStore(delay=0.01)
        log = AuditLog(store, "audit")
        records = [make_record(subject_name=f"file-{i}.txt") for i in range(10)]

        await asyncio.gather(*(log.append(r) for r in records))

        assert store.max_in_flight_by_path["audit/alice.csv"] == 1
        text = store.objects["audit/alice.csv"]
        assert text.count("event_id,event_type") == 1
        events = await log.events_for("alice")
        assert sorted(e.event_id for e in events) == sorted(r.event_id for r in records)

    @pytest.mark.asyncio
    async def test_concurrent_writers_different_principals_do_not_block(self, make_record):
        store = MemoryStore(delay=0.05)
        log = AuditLog(store, "audit")

        await asyncio.gather(
            log.append(make_record(principal="alice", actor="alice", subject_name="a.txt")),
            log.append(make_record(principal="bob", actor="bob", subject_name="b.txt")),
        )

        # Both slow writes were in flight at the same time
        assert store.max_in_flight == 2
        assert [e.subject_name for e in await log.events_for("alice")] == ["a.txt"]
        assert [e.subject_name for e in await log.events_for("bob")] == ["b.txt"]

    @pytest.mark.asyncio
    async def test_backend_failure_propagates(self, audit_log, memory_store, make_record):
        memory_store.failing.add("audit/alice.csv")

        with pytest.raises(StorageError):
            await audit_log.append(make_record())

        assert "audit/alice.csv" not in memory_store.objects

    @pytest.mark.asyncio
    async def test_invalid_principal_is_rejected_before_io(self, audit_log, memory_store, make_record):
        with pytest.raises(InvalidPrincipalError):
            await audit_log.append(make_record(principal="../escape"))

        assert memory_store.calls == []


class TestReadCache:
    """Tests for the decoded-event cache."""

    @pytest.mark.asyncio
    async def test_missing_log_reads_as_empty_and_is_not_cached(self, audit_log, memory_store):
        assert await audit_log.events_for("nobody") == ()
        assert not audit_log.cache.is_cached("nobody")
        assert memory_store.reads == 0

    @pytest.mark.asyncio
    async def test_hit_does_not_touch_backend(self, audit_log, memory_store, make_record):
        await audit_log.append(make_record())

        first = await audit_log.events_for("alice")
        second = await audit_log.events_for("alice")

        assert first == second
        assert memory_store.reads == 1

    @pytest.mark.asyncio
    async def test_read_after_write_sees_write(self, audit_log, make_record):
        await audit_log.append(make_record(subject_name="one.txt"))
        assert len(await audit_log.events_for("alice")) == 1

        await audit_log.append(make_record(subject_name="two.txt"))

        events = await audit_log.events_for("alice")
        assert [e.subject_name for e in events] == ["one.txt", "two.txt"]

    @pytest.mark.asyncio
    async def test_first_write_after_empty_read_is_visible(self, audit_log, make_record):
        assert await audit_log.events_for("alice") == ()

        await audit_log.append(make_record())

        assert len(await audit_log.events_for("alice")) == 1

    @pytest.mark.asyncio
    async def test_write_leaves_other_principals_cached(self, audit_log, memory_store, make_record):
        await audit_log.append(make_record(principal="alice", actor="alice"))
        await audit_log.append(make_record(principal="bob", actor="bob"))
        await audit_log.events_for("alice")
        await audit_log.events_for("bob")
        reads = memory_store.reads

        await audit_log.append(make_record(principal="alice", actor="alice", subject_name="new.txt"))

        assert audit_log.cache.is_cached("bob")
        assert not audit_log.cache.is_cached("alice")
        assert len(await audit_log.events_for("bob")) == 1
        assert memory_store.reads == reads

    @pytest.mark.asyncio
    async def test_load_overlapping_invalidation_is_not_kept(self, make_record):
        release = asyncio.Event()
        loads = []

        async def slow_loader(principal):
            loads.append(principal)
            await release.wait()
            return [make_record()]

        cache = ReadCache(slow_loader)
        pending = asyncio.create_task(cache.get("alice"))
        await asyncio.sleep(0)

        cache.invalidate("alice")
        release.set()

        assert len(await pending) == 1
        assert not cache.is_cached("alice")

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_entry(self, make_record):
        async def loader(principal):
            await asyncio.sleep(0.01)
            return [make_record()]

        cache = ReadCache(loader)
        first, second = await asyncio.gather(cache.get("alice"), cache.get("alice"))

        assert first is second
        assert cache.is_cached("alice")

    @pytest.mark.asyncio
    async def test_read_failure_is_not_cached(self, audit_log, memory_store, make_record):
        await audit_log.append(make_record())
        memory_store.failing.add("audit/alice.csv")

        with pytest.raises(StorageError):
            await audit_log.events_for("alice")

        memory_store.failing.clear()
        assert len(await audit_log.events_for("alice")) == 1


class TestPrincipalDirectory:
    """Tests for principal discovery."""

    @pytest.mark.asyncio
    async def test_lists_principals_and_skips_unrelated_files(self, memory_store):
        memory_store.objects.update({
            "audit/alice.csv": "",
            "audit/bob.smith.csv": "",
            "audit/notes.txt": "",
            "audit/archive/carol.csv": "",
            "audit/.csv": "",
            "other/dave.csv": "",
        })
        directory = PrincipalDirectory(memory_store, "audit")

        assert await directory.list_principals() == {"alice", "bob.smith"}

    @pytest.mark.asyncio
    async def test_empty_root(self, memory_store):
        directory = PrincipalDirectory(memory_store, "audit")

        assert await directory.list_principals() == set()

    def test_path_for(self, memory_store):
        directory = PrincipalDirectory(memory_store, "audit/")

        assert directory.path_for("alice") == "audit/alice.csv"


class TestAuditService:
    """Tests for upload/download recording."""

    @pytest.mark.asyncio
    async def test_record_upload(self, audit_log):
        metadata = FileMetadata(
            original_filename="report.pdf",
            stored_filename="2024-11-09T14-30-00_report_pdf",
            size=1024,
            content_type="application/pdf",
        )
        context = RequestContext(origin_address="10.0.0.1", client_descriptor="curl/8.0", session_token="s-1")

        record = await audit_log.record_upload("alice", metadata, context)

        assert record.event_type == EventType.UPLOAD.value
        assert record.actor == "alice"
        assert record.size_bytes == 1024
        assert record.session_token == "s-1"
        assert (await audit_log.events_for("alice"))[0] == record

    @pytest.mark.asyncio
    async def test_record_download_files_under_owner(self, audit_log):
        record = await audit_log.record_download(
            owner="alice",
            subject_name="report.pdf",
            storage_key="2024-11-09T14-30-00_report_pdf",
            actor="admin",
        )

        assert record.principal == "alice"
        assert record.actor == "admin"
        assert record.size_bytes is None
        assert await audit_log.list_principals() == {"alice"}

    @pytest.mark.asyncio
    async def test_record_failure_is_logged_and_raised(self, audit_log, memory_store, caplog):
        memory_store.failing.add("audit/alice.csv")

        with caplog.at_level(logging.ERROR, logger="intake.services.audit_log"):
            with pytest.raises(StorageError):
                await audit_log.record_download("alice", "report.pdf", "k1", "admin")

        assert "operation=download" in caplog.text
        assert "user=alice" in caplog.text
        assert "timestamp=" in caplog.text

    @pytest.mark.asyncio
    async def test_original_filename(self, audit_log, make_record):
        await audit_log.append(make_record(subject_name="Q3 Report.pdf", storage_key="stored-1"))

        assert await audit_log.original_filename("alice", "stored-1") == "Q3 Report.pdf"
        assert await audit_log.original_filename("alice", "unknown") == "unknown"
        assert await audit_log.original_filename("bob", "stored-1") == "stored-1"


class TestScenarios:
    """End-to-end engine scenarios."""

    @pytest.mark.asyncio
    async def test_upload_is_found_by_subject(self, audit_log, make_record):
        await audit_log.append(make_record(principal="alice", subject_name="report.pdf", size_bytes=1024))

        results = await audit_log.search(SearchFilters(subject_name_contains="report"))

        assert len(results) == 1
        assert results[0].principal == "alice"

    @pytest.mark.asyncio
    async def test_download_after_upload_sorts_first(self, audit_log, make_record):
        await audit_log.append(make_record(
            event_type=EventType.UPLOAD.value, storage_key="k1", timestamp=BASE_TIME
        ))
        await audit_log.append(make_record(
            event_type=EventType.DOWNLOAD.value, storage_key="k1", size_bytes=None,
            content_type=None, actor="admin", timestamp=BASE_TIME + timedelta(minutes=5)
        ))

        results = await audit_log.search(SearchFilters(principal_equals="alice"))

        assert [r.event_type for r in results] == ["DOWNLOAD", "UPLOAD"]
        assert {r.storage_key for r in results} == {"k1"}

    @pytest.mark.asyncio
    async def test_interleaved_writers_keep_per_principal_order(self, make_record):
        store = MemoryStore(delay=0.001)
        log = AuditLog(store, "audit")

        async def writer(principal):
            for i in range(10):
                await log.append(make_record(
                    principal=principal, actor=principal, subject_name=f"{principal}-{i}"
                ))

        await asyncio.gather(writer("alice"), writer("bob"), writer("carol"))

        for principal in ("alice", "bob", "carol"):
            events = await log.events_for(principal)
            assert [e.subject_name for e in events] == [f"{principal}-{i}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_concurrent_writers_on_disk(self, tmp_path, make_record):
        log = AuditLog(LocalStorage(), tmp_path / "audit")

        async def writer(principal):
            for i in range(20):
                await log.append(make_record(
                    principal=principal, actor=principal, subject_name=f"{principal}-{i}"
                ))

        await asyncio.gather(writer("alice"), writer("bob"))

        for principal in ("alice", "bob"):
            text = (tmp_path / "audit" / f"{principal}.csv").read_text(encoding="utf-8")
            lines = text.splitlines()
            assert len(lines) == 21
            assert all(len(line.split(",")) == len(LOG_COLUMNS) for line in lines)
            events = await log.events_for(principal)
            assert [e.subject_name for e in events] == [f"{principal}-{i}" for i in range(20)]
