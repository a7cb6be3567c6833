# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""In-process entity store for tests and single-node use."""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from ..core.exceptions import NotFoundError
from .base import (
    EntityName,
    EntityStore,
    apply_changes,
    check_expected,
    entity_name,
    matches,
    prepare_record,
    sort_records,
)

logger = logging.getLogger("archon.store.memory")


class InMemoryEntityStore(EntityStore):
    """Dictionary-backed store. One asyncio lock serializes writes."""

    name = "memory"

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _table(self, entity: EntityName) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(entity_name(entity), {})

    async def create(self, entity: EntityName, data: Dict[str, Any]) -> Dict[str, Any]:
        record = prepare_record(data)
        async with self._lock:
            self._table(entity)[record["id"]] = record
        return copy.deepcopy(record)

    async def get(self, entity: EntityName, entity_id: str) -> Optional[Dict[str, Any]]:
        record = self._table(entity).get(entity_id)
        return copy.deepcopy(record) if record is not None else None

    async def filter(
        self,
        entity: EntityName,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        records = [r for r in self._table(entity).values() if matches(r, query)]
        records = sort_records(records, sort)
        if limit is not None:
            records = records[:limit]
        return copy.deepcopy(records)

    async def update(
        self,
        entity: EntityName,
        entity_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        name = entity_name(entity)
        async with self._lock:
            table = self._table(entity)
            record = table.get(entity_id)
            if record is None:
                raise NotFoundError(f"{name} not found", entity=name, entity_id=entity_id)
            check_expected(name, entity_id, record, expected)
            table[entity_id] = apply_changes(record, changes)
            return copy.deepcopy(table[entity_id])

    async def delete(self, entity: EntityName, entity_id: str) -> bool:
        async with self._lock:
            return self._table(entity).pop(entity_id, None) is not None

    def count(self, entity: EntityName) -> int:
        return len(self._table(entity))
