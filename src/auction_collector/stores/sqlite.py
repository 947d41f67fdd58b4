"""
SQLite Checkpoint Store — one row per scope key.

Each save is a single INSERT OR REPLACE committed immediately, which makes
the record replacement atomic for concurrent readers.
"""

import json
import logging
import sqlite3
import time
from pathlib import Path

from auction_collector.core.checkpoint import AuditEntry, Checkpoint
from auction_collector.core.errors import CheckpointCorrupted

logger = logging.getLogger(__name__)


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS checkpoints (
    scope_key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scope_key TEXT NOT NULL,
    action TEXT NOT NULL,
    reason TEXT,
    actor TEXT,
    previous TEXT,
    at REAL NOT NULL
);
"""

UPSERT_SQL = """
INSERT OR REPLACE INTO checkpoints (scope_key, data, updated_at)
VALUES (?, ?, ?)
"""

INSERT_AUDIT_SQL = """
INSERT INTO audit_log (scope_key, action, reason, actor, previous, at)
VALUES (?, ?, ?, ?, ?, ?)
"""


class SQLiteCheckpointStore:
    """
    Stores checkpoints in a SQLite database.

    Checkpoint bodies are stored as JSON strings; the audit log keeps the
    checkpoint that an operator reset replaced.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.executescript(CREATE_TABLES_SQL)
        self.conn.commit()

    def _decode(self, scope_key: str, raw: str) -> Checkpoint:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CheckpointCorrupted(f"Checkpoint {scope_key} is not valid JSON: {e}") from e
        return Checkpoint.from_dict(data)

    async def load(self, scope_key: str) -> Checkpoint:
        row = self.conn.execute(
            "SELECT data FROM checkpoints WHERE scope_key = ?", (scope_key,)
        ).fetchone()
        if row is None:
            return Checkpoint(scope_key=scope_key)
        return self._decode(scope_key, row[0])

    async def save(self, checkpoint: Checkpoint) -> None:
        with self.conn:
            self.conn.execute(
                UPSERT_SQL,
                (checkpoint.scope_key, json.dumps(checkpoint.to_dict()), time.time()),
            )

    async def delete(self, scope_key: str) -> bool:
        with self.conn:
            cursor = self.conn.execute("DELETE FROM checkpoints WHERE scope_key = ?", (scope_key,))
        return cursor.rowcount > 0

    async def list_checkpoints(self) -> list[Checkpoint]:
        checkpoints = []
        for scope_key, raw in self.conn.execute(
            "SELECT scope_key, data FROM checkpoints ORDER BY scope_key"
        ):
            try:
                checkpoints.append(self._decode(scope_key, raw))
            except CheckpointCorrupted as e:
                logger.warning(f"Skipping checkpoint {scope_key}: {e}")
        return checkpoints

    async def append_audit(self, entry: AuditEntry) -> None:
        with self.conn:
            self.conn.execute(
                INSERT_AUDIT_SQL,
                (
                    entry.scope_key,
                    entry.action,
                    entry.reason,
                    entry.actor,
                    json.dumps(entry.previous) if entry.previous is not None else None,
                    entry.at,
                ),
            )

    async def audit_log(self, scope_key: str | None = None) -> list[AuditEntry]:
        query = "SELECT scope_key, action, reason, actor, previous, at FROM audit_log"
        params: tuple = ()
        if scope_key is not None:
            query += " WHERE scope_key = ?"
            params = (scope_key,)
        query += " ORDER BY id"

        return [
            AuditEntry(
                scope_key=row[0],
                action=row[1],
                reason=row[2] or "",
                actor=row[3] or "operator",
                previous=json.loads(row[4]) if row[4] else None,
                at=row[5],
            )
            for row in self.conn.execute(query, params)
        ]

    async def close(self) -> None:
        self.conn.close()
        logger.info(f"[SQLite] Checkpoint store closed: {self.db_path}")
