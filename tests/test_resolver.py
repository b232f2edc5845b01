"""Tests for PathResolver find-or-create semantics."""

from __future__ import annotations

import asyncio

import pytest

from line_drive_bridge.core.resolver import ContainerResolutionError, PathResolver


class TestEnsurePath:
    def test_creates_missing_segments(self, storage, root):
        leaf = asyncio.run(PathResolver(storage).ensure_path(root, ["group_G1", "2024-01-02"]))
        assert leaf.name == "2024-01-02"
        assert storage.children(root.id) == ["group_G1"]
        group_id = leaf.parent_id
        assert storage.containers[group_id].ref.name == "group_G1"

    def test_idempotent(self, storage, root):
        resolver = PathResolver(storage)
        first = asyncio.run(resolver.ensure_path(root, ["group_G1"]))
        second = asyncio.run(resolver.ensure_path(root, ["group_G1"]))
        assert first.id == second.id
        creates = [c for c in storage.calls if c[0] == "create_container"]
        assert len(creates) == 1

    def test_empty_segments_return_root(self, storage, root):
        assert asyncio.run(PathResolver(storage).ensure_path(root, [])) == root

    def test_empty_segment_rejected(self, storage, root):
        with pytest.raises(ContainerResolutionError):
            asyncio.run(PathResolver(storage).ensure_path(root, ["group_G1", ""]))

    def test_name_match_is_case_sensitive(self, storage, root):
        resolver = PathResolver(storage)
        lower = asyncio.run(resolver.ensure_path(root, ["group_g1"]))
        upper = asyncio.run(resolver.ensure_path(root, ["group_G1"]))
        assert lower.id != upper.id

    def test_match_is_scoped_to_parent(self, storage, root):
        resolver = PathResolver(storage)
        a = asyncio.run(resolver.ensure_path(root, ["group_A", "2024-01-02"]))
        b = asyncio.run(resolver.ensure_path(root, ["group_B", "2024-01-02"]))
        assert a.id != b.id

    def test_trashed_container_is_not_reused(self, storage, root):
        resolver = PathResolver(storage)
        old = asyncio.run(resolver.ensure_path(root, ["group_G1"]))
        storage.trash(old.id)
        new = asyncio.run(resolver.ensure_path(root, ["group_G1"]))
        assert new.id != old.id

    def test_oldest_duplicate_is_canonical(self, storage, root):
        first = asyncio.run(storage.create_container(root.id, "group_G1"))
        asyncio.run(storage.create_container(root.id, "group_G1"))
        found = asyncio.run(PathResolver(storage).ensure_path(root, ["group_G1"]))
        assert found.id == first.id

    def test_storage_failure_is_wrapped(self, storage, root):
        storage.fail_next("find_containers", status_code=503)
        with pytest.raises(ContainerResolutionError) as info:
            asyncio.run(PathResolver(storage).ensure_path(root, ["group_G1"]))
        assert info.value.name == "group_G1"
        assert "503" in str(info.value)


class TestEnsureDatedPath:
    def test_returns_group_and_date(self, storage, root):
        path = asyncio.run(PathResolver(storage).ensure_dated_path(root, "user_U1", "2024-01-02"))
        assert path.group.name == "user_U1"
        assert path.date.name == "2024-01-02"
        assert path.date.parent_id == path.group.id


class TestConcurrency:
    def test_concurrent_calls_create_one_container(self, slow_storage):
        root = slow_storage.containers[slow_storage.root_id].ref
        resolver = PathResolver(slow_storage)

        async def run():
            return await asyncio.gather(
                *(resolver.ensure_path(root, ["group_G1", "2024-01-02"]) for _ in range(10))
            )

        leaves = asyncio.run(run())
        assert len({leaf.id for leaf in leaves}) == 1
        assert slow_storage.children(root.id) == ["group_G1"]
        creates = [c for c in slow_storage.calls if c[0] == "create_container"]
        assert len(creates) == 2
