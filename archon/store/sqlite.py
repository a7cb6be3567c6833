# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Archon SQLite Entity Store

Persists records as JSON documents in a single ``entities`` table.
Compare-and-swap updates run inside ``BEGIN IMMEDIATE`` transactions so a
concurrent writer cannot slip between the read and the write.
"""

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.exceptions import NotFoundError, StoreError
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

logger = logging.getLogger("archon.store.sqlite")


class SQLiteEntityStore(EntityStore):
    """
    SQLite-based entity store.

    Usage:
        store = SQLiteEntityStore(Path("~/.archon/data/archon.db").expanduser())
        record = await store.create(Entity.WORKFLOW, {"name": "triage"})
    """

    name = "sqlite"

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database schema"""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS entities (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_date TEXT NOT NULL,
                    updated_date TEXT NOT NULL,
                    UNIQUE (entity, id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_entities_entity
                ON entities(entity)
            """)

    @contextmanager
    def _connect(self):
        """Autocommit connection; transactions are opened explicitly"""
        try:
            conn = sqlite3.connect(str(self.db_path), isolation_level=None, timeout=30)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}", cause=e)
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"Database operation failed: {e}", cause=e)
        finally:
            conn.close()

    # ==========================================================================
    # Sync implementations (run in a worker thread)
    # ==========================================================================

    def _create(self, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record = prepare_record(data)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO entities (entity, id, data, created_date, updated_date)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    name,
                    record["id"],
                    json.dumps(record),
                    record["created_date"],
                    record["updated_date"],
                ),
            )
        return record

    def _get(self, name: str, entity_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM entities WHERE entity = ? AND id = ?",
                (name, entity_id),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def _filter(
        self,
        name: str,
        query: Optional[Dict[str, Any]],
        sort: Optional[str],
        limit: Optional[int],
    ) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM entities WHERE entity = ? ORDER BY seq",
                (name,),
            ).fetchall()

        records = [json.loads(row[0]) for row in rows]
        records = sort_records([r for r in records if matches(r, query)], sort)
        if limit is not None:
            records = records[:limit]
        return records

    def _update(
        self,
        name: str,
        entity_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT data FROM entities WHERE entity = ? AND id = ?",
                    (name, entity_id),
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"{name} not found", entity=name, entity_id=entity_id)

                record = json.loads(row[0])
                check_expected(name, entity_id, record, expected)
                updated = apply_changes(record, changes)

                conn.execute(
                    """
                    UPDATE entities SET data = ?, updated_date = ?
                    WHERE entity = ? AND id = ?
                    """,
                    (json.dumps(updated), updated["updated_date"], name, entity_id),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return updated

    def _delete(self, name: str, entity_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM entities WHERE entity = ? AND id = ?",
                (name, entity_id),
            )
            return cursor.rowcount > 0

    # ==========================================================================
    # Async interface
    # ==========================================================================

    async def create(self, entity: EntityName, data: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._create, entity_name(entity), data)

    async def get(self, entity: EntityName, entity_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get, entity_name(entity), entity_id)

    async def filter(
        self,
        entity: EntityName,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._filter, entity_name(entity), query, sort, limit)

    async def update(
        self,
        entity: EntityName,
        entity_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(
            self._update, entity_name(entity), entity_id, changes, expected
        )

    async def delete(self, entity: EntityName, entity_id: str) -> bool:
        return await asyncio.to_thread(self._delete, entity_name(entity), entity_id)
