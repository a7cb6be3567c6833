# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Append-only audit trail backed by the entity store."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..store.base import Entity, EntityStore

logger = logging.getLogger("archon.audit")


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditLog:
    """Writes one Audit record per state-changing operation."""

    def __init__(self, store: EntityStore):
        self.store = store

    async def record(
        self,
        action: str,
        entity: str,
        entity_id: Optional[str],
        actor: Optional[str],
        severity: AuditSeverity = AuditSeverity.INFO,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        severity_value = severity.value if isinstance(severity, AuditSeverity) else severity
        data: Dict[str, Any] = {
            "action": action,
            "entity": entity,
            "entity_id": entity_id,
            "actor": actor,
            "severity": severity_value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": metadata or {},
        }
        if before is not None:
            data["before"] = before
        if after is not None:
            data["after"] = after

        record = await self.store.create(Entity.AUDIT, data)
        logger.debug(f"Audit {action} on {entity}/{entity_id} by {actor}")
        return record
