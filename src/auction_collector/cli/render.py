"""Rich renderables for CLI status output."""

import time

from rich.console import Group
from rich.table import Table
from rich.text import Text

ACTIVITY_STYLES = {
    "active": "green",
    "completed": "cyan",
    "stalled": "yellow",
    "attention": "bold red",
    "paused": "white",
    "pending": "dim",
}


def _ago(timestamp: float | None) -> str:
    if not timestamp:
        return "-"
    seconds = int(time.time() - timestamp)
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def render_status(status: dict) -> Group:
    """Scheduler headline plus the per-make progress table."""
    current = status.get("current_job")
    last = status.get("last_processed_job")
    headline = Text.assemble(
        ("Scheduler: ", "bold"),
        (status["phase"].upper(), "green" if status["running"] else "red"),
        f" | Queue: {status['queue_length']}",
        f" | Current: {current['id'] if current else '-'}",
        f" | Last: {last['id'] if last else '-'} ({_ago(status.get('last_processed_at'))})",
    )

    table = Table(title="Per-make progress")
    table.add_column("Make")
    table.add_column("Records", justify="right")
    table.add_column("Copart", justify="right")
    table.add_column("IAAI", justify="right")
    table.add_column("Progress", justify="right")
    table.add_column("Activity")
    for row in status["per_make_progress"]:
        style = ACTIVITY_STYLES.get(row["activity"], "")
        table.add_row(
            row["make"],
            str(row["total_records"]),
            str(row["copart_records"]),
            str(row["iaai_records"]),
            f"{row['percent_complete']:.1f}%",
            Text(row["activity"], style=style),
        )
    return Group(headline, table)


def render_jobs(jobs: list[dict]) -> Table:
    """One row per job with provider cursors."""
    table = Table(title="Collection jobs")
    table.add_column("Job")
    table.add_column("Priority", justify="right")
    table.add_column("Copart page", justify="right")
    table.add_column("IAAI page", justify="right")
    table.add_column("Records", justify="right")
    table.add_column("Last collected")
    table.add_column("Activity")

    for job in jobs:
        providers = job["providers"]

        def cursor(name: str) -> str:
            p = providers.get(name, {})
            return "done" if p.get("completed") else str(p.get("last_page", 0))

        table.add_row(
            job["id"],
            str(job["priority"]),
            cursor("copart"),
            cursor("iaai"),
            str(job["total_records_collected"]),
            _ago(job["last_collected_at"]),
            Text(job["activity"], style=ACTIVITY_STYLES.get(job["activity"], "")),
        )
    return table
