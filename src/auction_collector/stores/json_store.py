"""
JSON Checkpoint Store — all checkpoints in one JSON document.

The document is rewritten through a temporary file and os.replace, so a
crash mid-write leaves the previous version intact.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

import aiofiles

from auction_collector.core.checkpoint import AuditEntry, Checkpoint
from auction_collector.core.errors import CheckpointCorrupted

logger = logging.getLogger(__name__)


class JSONCheckpointStore:
    """
    Persists checkpoints and the audit log to a single JSON file.

    File structure:
        {
          "checkpoints": {"bmw:all:2012-latest": {...}},
          "audit": [{...}]
        }
    """

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._records: dict[str, dict] = {}
        self._audit: list[dict] = []
        # One writer at a time; the temp file path is shared
        self._lock = asyncio.Lock()
        self._load_file()

    def _load_file(self) -> None:
        """Read the document from disk if it exists."""
        if not self.path.exists() or self.path.stat().st_size == 0:
            return

        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise CheckpointCorrupted(f"Checkpoint file {self.path} is not valid JSON: {e}") from e

        self._records = dict(data.get("checkpoints", {}))
        self._audit = list(data.get("audit", []))
        logger.info(f"Loaded {len(self._records)} checkpoints from {self.path}")

    async def _commit(self, records: dict[str, dict], audit: list[dict]) -> None:
        """Write `records` and `audit` to disk, then make them the live state.

        Must be called with the lock held. If the write fails the in-memory
        state is left untouched.
        """
        document = json.dumps({"checkpoints": records, "audit": audit}, indent=2)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(document)
        os.replace(tmp_path, self.path)
        self._records = records
        self._audit = audit

    async def load(self, scope_key: str) -> Checkpoint:
        data = self._records.get(scope_key)
        if data is None:
            return Checkpoint(scope_key=scope_key)
        return Checkpoint.from_dict(data)

    async def save(self, checkpoint: Checkpoint) -> None:
        async with self._lock:
            records = {**self._records, checkpoint.scope_key: checkpoint.to_dict()}
            await self._commit(records, self._audit)
        logger.debug(f"[JSON] Saved checkpoint {checkpoint.scope_key}")

    async def delete(self, scope_key: str) -> bool:
        async with self._lock:
            if scope_key not in self._records:
                return False
            records = {k: v for k, v in self._records.items() if k != scope_key}
            await self._commit(records, self._audit)
        return True

    async def list_checkpoints(self) -> list[Checkpoint]:
        checkpoints = []
        for scope_key, data in list(self._records.items()):
            try:
                checkpoints.append(Checkpoint.from_dict(data))
            except CheckpointCorrupted as e:
                logger.warning(f"Skipping checkpoint {scope_key}: {e}")
        return checkpoints

    async def append_audit(self, entry: AuditEntry) -> None:
        async with self._lock:
            await self._commit(self._records, [*self._audit, entry.to_dict()])

    async def audit_log(self, scope_key: str | None = None) -> list[AuditEntry]:
        return [
            AuditEntry.from_dict(e)
            for e in self._audit
            if scope_key is None or e.get("scope_key") == scope_key
        ]

    async def close(self) -> None:
        pass
