"""
Example: Collect one make's sale history to JSON Lines.

Usage:
    export APICAR_API_KEY=your_key_here
    python examples/collect_make.py
"""

import asyncio
from pathlib import Path

from auction_collector import CollectorRuntime
from auction_collector.core.config import CollectorSettings
from auction_collector.exporters.jsonl import JSONLinesExporter


async def main():
    # Configure JSONL exporter
    output_dir = Path("./collection_output")
    exporter = JSONLinesExporter(output_dir=output_dir)

    # Checkpoints go to ./data/checkpoints.json, so rerunning resumes
    settings = CollectorSettings.from_env(store="json", pages_per_run=10)
    runtime = CollectorRuntime.build(settings, exporters=[exporter])

    # Queue BMW ahead of the backlog and collect until it is done
    result = await runtime.scheduler.start_make("BMW", year_from=2020)
    await runtime.scheduler.start()
    try:
        while result.job.id in runtime.queue or runtime.scheduler.state.current_job:
            await asyncio.sleep(1)
        await runtime.scheduler.stop(wait=True)
        progress = await runtime.reporter.vehicle_progress()
    finally:
        await runtime.aclose()

    for row in progress:
        if row["make"] == "BMW":
            print(f"\n✅ {result.job.label}: {row['total_records']} records in {output_dir.absolute()}")


if __name__ == "__main__":
    asyncio.run(main())
