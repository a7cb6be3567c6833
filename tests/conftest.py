# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Archon - Test Configuration
"""

import os

os.environ.setdefault("ARCHON_NO_FILE_LOGS", "true")

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from archon.core.audit import AuditLog
from archon.core.config import ArchonConfig
from archon.core.pipeline import PipelineRunner
from archon.core.versioning import VersionManager
from archon.server import create_app
from archon.store import InMemoryEntityStore


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def versions(store) -> VersionManager:
    return VersionManager(store, audit=AuditLog(store))


@pytest.fixture
def runner(store) -> PipelineRunner:
    return PipelineRunner(store, audit=AuditLog(store))


@pytest.fixture
def config() -> ArchonConfig:
    return ArchonConfig()


@pytest.fixture
async def client(store, config) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to an app over the test store."""
    app = create_app(store=store, config=config)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def base_spec() -> dict:
    """Two agents in sequence."""
    return {
        "nodes": [
            {
                "id": "n1",
                "type": "agent",
                "label": "Researcher",
                "config": {"agent_id": "agent-research"},
                "position": {"x": 0, "y": 0},
            },
            {
                "id": "n2",
                "type": "agent",
                "label": "Writer",
                "config": {"agent_id": "agent-writer"},
                "position": {"x": 200, "y": 0},
            },
        ],
        "edges": [{"from": "n1", "to": "n2"}],
        "collaboration_strategy": "sequential",
    }


@pytest.fixture
def sample_agents(store):
    """Register the agents referenced by ``base_spec``."""

    async def create():
        for agent_id in ("agent-research", "agent-writer"):
            await store.create("Agent", {"id": agent_id, "name": agent_id})

    return create
