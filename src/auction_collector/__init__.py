"""
Auction Collector - Scheduled Copart/IAAI sale history collection.

Walks a prioritized backlog of make/model jobs against both auction
providers, checkpointing every page so collection resumes after restarts.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "CollectorRuntime":
        from auction_collector.core.runtime import CollectorRuntime

        return CollectorRuntime
    if name == "CollectionJob":
        from auction_collector.models.job import CollectionJob

        return CollectionJob
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["CollectorRuntime", "CollectionJob", "__version__"]
