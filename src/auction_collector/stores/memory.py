"""
In-memory checkpoint store. Nothing survives the process; used for tests
and dry runs.
"""

import logging

from auction_collector.core.checkpoint import AuditEntry, Checkpoint
from auction_collector.core.errors import CheckpointCorrupted

logger = logging.getLogger(__name__)


class MemoryCheckpointStore:
    """Keeps serialized checkpoints in a dict keyed by scope key."""

    def __init__(self):
        self._records: dict[str, dict] = {}
        self._audit: list[AuditEntry] = []

    async def load(self, scope_key: str) -> Checkpoint:
        data = self._records.get(scope_key)
        if data is None:
            return Checkpoint(scope_key=scope_key)
        return Checkpoint.from_dict(data)

    async def save(self, checkpoint: Checkpoint) -> None:
        self._records[checkpoint.scope_key] = checkpoint.to_dict()

    async def delete(self, scope_key: str) -> bool:
        return self._records.pop(scope_key, None) is not None

    async def list_checkpoints(self) -> list[Checkpoint]:
        checkpoints = []
        for scope_key, data in list(self._records.items()):
            try:
                checkpoints.append(Checkpoint.from_dict(data))
            except CheckpointCorrupted as e:
                logger.warning(f"Skipping checkpoint {scope_key}: {e}")
        return checkpoints

    async def append_audit(self, entry: AuditEntry) -> None:
        self._audit.append(entry)

    async def audit_log(self, scope_key: str | None = None) -> list[AuditEntry]:
        return [e for e in self._audit if scope_key is None or e.scope_key == scope_key]

    async def close(self) -> None:
        pass
