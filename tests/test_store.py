# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the local entity store backends (memory, sqlite)
"""

import pytest

from archon.core.config import ArchonConfig
from archon.core.exceptions import ConcurrentUpdateError, ConfigError, NotFoundError
from archon.store import (
    Entity,
    InMemoryEntityStore,
    RemoteEntityStore,
    SQLiteEntityStore,
    create_store,
)


@pytest.fixture(params=["memory", "sqlite"])
def entity_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryEntityStore()
    return SQLiteEntityStore(tmp_path / "archon.db")


@pytest.mark.asyncio
async def test_create_and_get(entity_store):
    record = await entity_store.create(Entity.WORKFLOW, {"name": "triage"})

    assert record["id"]
    assert record["created_date"]
    assert record["updated_date"]

    loaded = await entity_store.get(Entity.WORKFLOW, record["id"])
    assert loaded == record
    assert await entity_store.get(Entity.WORKFLOW, "missing") is None


@pytest.mark.asyncio
async def test_explicit_id_is_kept(entity_store):
    record = await entity_store.create("Agent", {"id": "agent-1", "name": "Researcher"})

    assert record["id"] == "agent-1"
    assert (await entity_store.get(Entity.AGENT, "agent-1"))["name"] == "Researcher"


@pytest.mark.asyncio
async def test_filter_sort_limit(entity_store):
    for number in (2, 3, 1):
        await entity_store.create(
            Entity.WORKFLOW_VERSION, {"workflow_id": "wf", "version_number": number}
        )
    await entity_store.create(Entity.WORKFLOW_VERSION, {"workflow_id": "other", "version_number": 9})

    records = await entity_store.filter(
        Entity.WORKFLOW_VERSION, {"workflow_id": "wf"}, sort="-version_number"
    )
    assert [r["version_number"] for r in records] == [3, 2, 1]

    records = await entity_store.filter(
        Entity.WORKFLOW_VERSION, {"workflow_id": "wf"}, sort="version_number", limit=2
    )
    assert [r["version_number"] for r in records] == [1, 2]

    assert len(await entity_store.filter(Entity.WORKFLOW_VERSION)) == 4


@pytest.mark.asyncio
async def test_update_with_expected(entity_store):
    record = await entity_store.create(Entity.WORKFLOW_BRANCH, {"head_version_id": "v1"})

    updated = await entity_store.update(
        Entity.WORKFLOW_BRANCH,
        record["id"],
        {"head_version_id": "v2"},
        expected={"head_version_id": "v1"},
    )
    assert updated["head_version_id"] == "v2"
    assert updated["id"] == record["id"]

    with pytest.raises(ConcurrentUpdateError) as exc_info:
        await entity_store.update(
            Entity.WORKFLOW_BRANCH,
            record["id"],
            {"head_version_id": "v3"},
            expected={"head_version_id": "v1"},
        )
    assert exc_info.value.details["actual"] == "v2"

    current = await entity_store.get(Entity.WORKFLOW_BRANCH, record["id"])
    assert current["head_version_id"] == "v2"


@pytest.mark.asyncio
async def test_update_missing(entity_store):
    with pytest.raises(NotFoundError):
        await entity_store.update(Entity.WORKFLOW, "missing", {"status": "draft"})


@pytest.mark.asyncio
async def test_delete(entity_store):
    record = await entity_store.create(Entity.RUN, {"status": "pending"})

    assert await entity_store.delete(Entity.RUN, record["id"]) is True
    assert await entity_store.delete(Entity.RUN, record["id"]) is False
    assert await entity_store.get(Entity.RUN, record["id"]) is None


@pytest.mark.asyncio
async def test_require(entity_store):
    with pytest.raises(NotFoundError, match="Workflow not found"):
        await entity_store.require(Entity.WORKFLOW, "missing")


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    store = InMemoryEntityStore()
    record = await store.create(Entity.WORKFLOW, {"tags": ["a"]})
    record["tags"].append("b")

    assert (await store.get(Entity.WORKFLOW, record["id"]))["tags"] == ["a"]


@pytest.mark.asyncio
async def test_sqlite_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "archon.db"
    record = await SQLiteEntityStore(path).create(Entity.WORKFLOW, {"name": "triage"})

    reopened = SQLiteEntityStore(path)
    assert (await reopened.get(Entity.WORKFLOW, record["id"]))["name"] == "triage"


def test_create_store_backends(tmp_path):
    config = ArchonConfig()
    assert isinstance(create_store(config), InMemoryEntityStore)

    config = ArchonConfig(store={"backend": "sqlite", "sqlite_path": str(tmp_path / "a.db")})
    assert isinstance(create_store(config), SQLiteEntityStore)

    config = ArchonConfig(store={"backend": "remote", "base_url": "https://api.example.com"})
    assert isinstance(create_store(config), RemoteEntityStore)


def test_remote_store_requires_url():
    with pytest.raises(ConfigError):
        create_store(ArchonConfig(store={"backend": "remote"}))
