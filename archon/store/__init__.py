# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Entity store backends"""

import logging
from typing import Optional

from ..core.config import ArchonConfig, get_config
from ..core.exceptions import ConfigError
from ..core.retry import RetryPolicy
from .base import Entity, EntityStore
from .memory import InMemoryEntityStore
from .remote import RemoteEntityStore
from .sqlite import SQLiteEntityStore

logger = logging.getLogger("archon.store")

__all__ = [
    "Entity",
    "EntityStore",
    "InMemoryEntityStore",
    "SQLiteEntityStore",
    "RemoteEntityStore",
    "create_store",
]


def create_store(config: Optional[ArchonConfig] = None) -> EntityStore:
    """Build the backend named by ``config.store.backend``."""
    config = config or get_config()
    backend = config.store.backend

    if backend == "memory":
        store: EntityStore = InMemoryEntityStore()
    elif backend == "sqlite":
        store = SQLiteEntityStore(config.sqlite_path)
    elif backend == "remote":
        if not config.store.base_url:
            raise ConfigError(
                "Remote store requires store.base_url",
                hint="Set ARCHON_STORE_URL or store.base_url in .archon.yaml",
            )
        store = RemoteEntityStore(
            config.store.base_url,
            api_key=config.store.api_key,
            timeout=config.store.timeout,
            retry_policy=RetryPolicy.from_config(config.store),
        )
    else:
        raise ConfigError(f"Unknown store backend: {backend}")

    logger.info(f"Using {store.name} entity store")
    return store

