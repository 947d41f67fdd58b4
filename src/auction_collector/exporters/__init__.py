"""Export backends for collected sale records."""

from auction_collector.exporters.base import Exporter
from auction_collector.exporters.jsonl import JSONLinesExporter
from auction_collector.exporters.sqlite import SQLiteExporter


def get_exporter(format_name: str, output_dir: str) -> Exporter:
    """Factory function to create an exporter by format name."""
    from pathlib import Path

    out = Path(output_dir)
    match format_name:
        case "jsonl":
            return JSONLinesExporter(output_dir=out)
        case "sqlite":
            return SQLiteExporter(db_path=out / "sales.db")
        case _:
            raise ValueError(f"Unknown export format: {format_name!r}. Use 'jsonl' or 'sqlite'.")


__all__ = ["Exporter", "JSONLinesExporter", "SQLiteExporter", "get_exporter"]
