# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Entity store contract.

Records are plain JSON-compatible dictionaries keyed by ``id``. Every
backend stamps ``created_date``/``updated_date`` and honours the optional
``expected`` compare-and-swap precondition on update.
"""

import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..core.exceptions import ConcurrentUpdateError, NotFoundError


class Entity(str, Enum):
    """Entity kinds held by the store"""

    WORKFLOW = "Workflow"
    WORKFLOW_VERSION = "WorkflowVersion"
    WORKFLOW_BRANCH = "WorkflowBranch"
    CI_PIPELINE = "CIPipeline"
    RUN = "Run"
    DEPLOYMENT_ENVIRONMENT = "DeploymentEnvironment"
    AGENT = "Agent"
    AUDIT = "Audit"


EntityName = Union[Entity, str]


def entity_name(entity: EntityName) -> str:
    return entity.value if isinstance(entity, Entity) else str(entity)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


# ==========================================================================
# Record helpers shared by backends
# ==========================================================================


def prepare_record(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy ``data`` and stamp id and timestamps."""
    record = copy.deepcopy(data)
    if not record.get("id"):
        record["id"] = new_id()
    now = utc_now()
    record.setdefault("created_date", now)
    record["updated_date"] = now
    return record


def matches(record: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """Equality match on every key of ``query``"""
    if not query:
        return True
    return all(record.get(key) == value for key, value in query.items())


def sort_records(records: List[Dict[str, Any]], sort: Optional[str]) -> List[Dict[str, Any]]:
    """Sort by ``field`` or ``-field`` (descending). Missing values sort first."""
    if not sort:
        return records
    descending = sort.startswith("-")
    field = sort.lstrip("-")

    def key(record):
        value = record.get(field)
        return (value is not None, value if value is not None else 0)

    return sorted(records, key=key, reverse=descending)


def check_expected(
    entity: str, entity_id: str, record: Dict[str, Any], expected: Optional[Dict[str, Any]]
):
    """Raise ConcurrentUpdateError when ``record`` no longer matches ``expected``."""
    if not expected:
        return
    for key, value in expected.items():
        if record.get(key) != value:
            raise ConcurrentUpdateError(
                f"{entity} {entity_id} was modified concurrently",
                entity=entity,
                entity_id=entity_id,
                expected=expected,
                details={"field": key, "expected": value, "actual": record.get(key)},
            )


def apply_changes(record: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    updated = copy.deepcopy(record)
    updated.update(copy.deepcopy(changes))
    updated["id"] = record["id"]
    updated["updated_date"] = utc_now()
    return updated


# ==========================================================================
# Store interface
# ==========================================================================


class EntityStore(ABC):
    """
    Abstract entity store.

    Usage:
        record = await store.create(Entity.WORKFLOW, {"name": "triage"})
        await store.update(Entity.WORKFLOW, record["id"], {"status": "draft"},
                           expected={"version": "1.0.0"})
    """

    name = "abstract"

    @abstractmethod
    async def create(self, entity: EntityName, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it with id and timestamps."""

    @abstractmethod
    async def get(self, entity: EntityName, entity_id: str) -> Optional[Dict[str, Any]]:
        """Return the record or None."""

    @abstractmethod
    async def filter(
        self,
        entity: EntityName,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return records matching ``query`` (field equality)."""

    @abstractmethod
    async def update(
        self,
        entity: EntityName,
        entity_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Merge ``changes`` into a record.

        Raises:
            NotFoundError: If the record does not exist
            ConcurrentUpdateError: If ``expected`` fields do not match
        """

    @abstractmethod
    async def delete(self, entity: EntityName, entity_id: str) -> bool:
        """Delete a record. Returns False when it did not exist."""

    async def require(self, entity: EntityName, entity_id: str) -> Dict[str, Any]:
        """Like ``get`` but raises NotFoundError"""
        record = await self.get(entity, entity_id)
        if record is None:
            name = entity_name(entity)
            raise NotFoundError(
                f"{name} not found", entity=name, entity_id=entity_id
            )
        return record

    async def close(self):
        """Release backend resources"""
