"""
CheckpointStore Protocol — Base interface for checkpoint persistence.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from auction_collector.core.checkpoint import AuditEntry, Checkpoint


@runtime_checkable
class CheckpointStore(Protocol):
    """
    Protocol that all checkpoint stores must implement.

    Every save replaces the whole record for its scope key as one unit, and
    every load returns an independent copy, so readers never observe a
    half-applied page.
    """

    async def load(self, scope_key: str) -> Checkpoint:
        """Return the stored Checkpoint, or a zero-valued one if none exists."""
        ...

    async def save(self, checkpoint: Checkpoint) -> None:
        """Atomically replace the record for checkpoint.scope_key."""
        ...

    async def delete(self, scope_key: str) -> bool:
        """Remove a record. Returns True if one existed."""
        ...

    async def list_checkpoints(self) -> list[Checkpoint]:
        """All readable records. Corrupt ones are skipped with a warning."""
        ...

    async def append_audit(self, entry: AuditEntry) -> None:
        """Persist an audit entry for an operator action."""
        ...

    async def audit_log(self, scope_key: str | None = None) -> list[AuditEntry]:
        """Audit entries, oldest first, optionally for one scope key."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
