"""
JSON Lines Exporter — appends sale records to per-provider .jsonl files.

Each record id is written at most once per output directory, so a page
collected again after a crash or restart does not produce duplicate lines.
"""

import json
import logging
from pathlib import Path

import aiofiles

from auction_collector.models.sale import SaleRecord

logger = logging.getLogger(__name__)


class JSONLinesExporter:
    """
    Appends SaleRecord objects as JSON lines.

    Output structure:
        output_dir/
        ├── copart.jsonl
        └── iaai.jsonl
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.count = 0
        self.skipped = 0
        self._seen: set[str] = self._load_ids()

    def _load_ids(self) -> set[str]:
        """Collect the ids already present in existing output files."""
        seen = set()
        for path in sorted(self.output_dir.glob("*.jsonl")):
            with open(path) as f:
                for line_no, line in enumerate(f, 1):
                    if not line.strip():
                        continue
                    try:
                        seen.add(json.loads(line)["id"])
                    except (json.JSONDecodeError, KeyError, TypeError):
                        logger.warning(f"[JSONL] Ignoring unreadable line {line_no} in {path.name}")
        if seen:
            logger.info(f"[JSONL] {len(seen)} records already exported in {self.output_dir}")
        return seen

    async def export(self, records: list[SaleRecord]) -> None:
        """Append the records of a page not yet written to the provider's file."""
        by_provider: dict[str, dict[str, SaleRecord]] = {}
        for record in records:
            if record.id in self._seen:
                self.skipped += 1
                continue
            page = by_provider.setdefault(record.provider, {})
            if record.id in page:
                self.skipped += 1
            page[record.id] = record

        written = 0
        for provider, page in by_provider.items():
            lines = [json.dumps(record.to_dict()) for record in page.values()]
            async with aiofiles.open(self.output_dir / f"{provider}.jsonl", "a") as f:
                await f.write("\n".join(lines) + "\n")
            # Only ids that reached the file count as exported
            self._seen.update(page)
            written += len(lines)

        self.count += written
        logger.debug(f"[JSONL] Exported {written} of {len(records)} records")

    async def finalize(self) -> None:
        """Log export summary."""
        logger.info(
            f"[JSONL] Export complete: {self.count} records exported to {self.output_dir} "
            f"({self.skipped} duplicates skipped)"
        )
