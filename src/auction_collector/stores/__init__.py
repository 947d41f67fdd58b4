"""Checkpoint persistence backends."""

from auction_collector.stores.base import CheckpointStore
from auction_collector.stores.json_store import JSONCheckpointStore
from auction_collector.stores.memory import MemoryCheckpointStore
from auction_collector.stores.sqlite import SQLiteCheckpointStore


def get_store(kind: str, path: str | None = None) -> CheckpointStore:
    """Factory function to create a checkpoint store by kind."""
    from pathlib import Path

    match kind:
        case "memory":
            return MemoryCheckpointStore()
        case "json":
            return JSONCheckpointStore(path=Path(path or "data/checkpoints.json"))
        case "sqlite":
            return SQLiteCheckpointStore(db_path=Path(path or "data/checkpoints.db"))
        case _:
            raise ValueError(f"Unknown store kind: {kind!r}. Use 'memory', 'json', or 'sqlite'.")


__all__ = [
    "CheckpointStore",
    "MemoryCheckpointStore",
    "JSONCheckpointStore",
    "SQLiteCheckpointStore",
    "get_store",
]
