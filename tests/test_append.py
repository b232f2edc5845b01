"""Tests for AppendEngine read-modify-write appends."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from line_drive_bridge.core.append import AppendEngine, AppendError, AppendReadError
from line_drive_bridge.core.locks import KeyedLock
from line_drive_bridge.core.models import Entry

LOG = "messages_2024-01-02.txt"


class TestSequentialAppends:
    def test_first_append_writes_header_and_entry(self, storage, root):
        ref = asyncio.run(AppendEngine(storage).append_entry(root, LOG, "one\n", header="HEADER\n"))
        assert ref.name == LOG
        assert storage.read_text(ref.id) == "HEADER\none\n"

    def test_entries_kept_in_call_order(self, storage, root):
        engine = AppendEngine(storage)

        async def run():
            for i in range(5):
                ref = await engine.append_entry(root, LOG, "entry {}\n".format(i), header="H\n")
            return ref

        ref = asyncio.run(run())
        expected = "H\n" + "".join("entry {}\n".format(i) for i in range(5))
        assert storage.read_text(ref.id) == expected
        assert storage.children(root.id) == [LOG]

    def test_header_only_on_creation(self, storage, root):
        engine = AppendEngine(storage)
        asyncio.run(engine.append_entry(root, LOG, "a\n", header="H\n"))
        ref = asyncio.run(engine.append_entry(root, LOG, "b\n", header="H\n"))
        assert storage.read_text(ref.id).count("H\n") == 1

    def test_entry_objects_are_rendered(self, storage, root):
        entry = Entry(timestamp=datetime(2024, 1, 1, 15, 30, tzinfo=timezone.utc), sender="U1", body="hi")
        ref = asyncio.run(AppendEngine(storage).append_entry(root, LOG, entry))
        assert storage.read_text(ref.id) == "[2024-01-02 00:30:00] U1\nhi\n\n"

    def test_existing_bytes_preserved(self, storage, root):
        original = "既存の内容\r\nwith CRLF\n".encode("utf-8")
        existing = asyncio.run(storage.create_file(root.id, LOG, original, "text/plain"))
        asyncio.run(AppendEngine(storage).append_entry(root, LOG, "new\n"))
        assert storage.files[existing.id].content == original + b"new\n"

    def test_oldest_duplicate_receives_append(self, storage, root):
        first = asyncio.run(storage.create_file(root.id, LOG, b"first\n", "text/plain"))
        second = asyncio.run(storage.create_file(root.id, LOG, b"second\n", "text/plain"))
        asyncio.run(AppendEngine(storage).append_entry(root, LOG, "x\n"))
        assert storage.read_text(first.id) == "first\nx\n"
        assert storage.read_text(second.id) == "second\n"


class TestFailures:
    def test_read_failure_aborts_without_writing(self, storage, root):
        existing = asyncio.run(storage.create_file(root.id, LOG, b"keep me\n", "text/plain"))
        storage.fail_next("get_content", status_code=500)
        with pytest.raises(AppendReadError):
            asyncio.run(AppendEngine(storage).append_entry(root, LOG, "lost?\n"))
        assert storage.read_text(existing.id) == "keep me\n"
        assert [c[0] for c in storage.calls].count("update_content") == 0

    def test_update_failure_raises_append_error(self, storage, root):
        asyncio.run(storage.create_file(root.id, LOG, b"a\n", "text/plain"))
        storage.fail_next("update_content", status_code=429)
        with pytest.raises(AppendError) as info:
            asyncio.run(AppendEngine(storage).append_entry(root, LOG, "b\n"))
        assert not isinstance(info.value, AppendReadError)

    def test_find_failure_raises_append_error(self, storage, root):
        storage.fail_next("find_files")
        with pytest.raises(AppendError):
            asyncio.run(AppendEngine(storage).append_entry(root, LOG, "b\n"))


class TestConcurrency:
    def test_concurrent_same_file_loses_nothing(self, slow_storage):
        root = slow_storage.containers[slow_storage.root_id].ref
        engine = AppendEngine(slow_storage)

        async def run():
            await asyncio.gather(
                *(engine.append_entry(root, LOG, "entry {}\n".format(i)) for i in range(20))
            )

        asyncio.run(run())
        files = [f for f in slow_storage.files.values() if f.ref.name == LOG]
        assert len(files) == 1
        lines = files[0].content.decode("utf-8").splitlines()
        assert sorted(lines) == sorted("entry {}".format(i) for i in range(20))

    def test_partitions_do_not_mix(self, slow_storage):
        root = slow_storage.containers[slow_storage.root_id].ref

        async def run():
            a = await slow_storage.create_container(root.id, "group_A")
            b = await slow_storage.create_container(root.id, "group_B")
            engine = AppendEngine(slow_storage)
            jobs = []
            for i in range(10):
                jobs.append(engine.append_entry(a, LOG, "A{}\n".format(i)))
                jobs.append(engine.append_entry(b, LOG, "B{}\n".format(i)))
            await asyncio.gather(*jobs)
            return a, b

        a, b = asyncio.run(run())
        by_parent = {f.ref.parent_id: f.content.decode("utf-8") for f in slow_storage.files.values()}
        assert set(by_parent) == {a.id, b.id}
        assert all(line.startswith("A") for line in by_parent[a.id].splitlines())
        assert all(line.startswith("B") for line in by_parent[b.id].splitlines())
        assert len(by_parent[a.id].splitlines()) == 10
        assert len(by_parent[b.id].splitlines()) == 10

    def test_lock_registry_is_emptied(self, storage, root):
        locks = KeyedLock()
        engine = AppendEngine(storage, locks=locks)
        asyncio.run(engine.append_entry(root, LOG, "a\n"))
        assert len(locks) == 0
