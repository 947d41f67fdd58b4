"""
Static priority catalog of makes collected around the clock.

Tier 1 holds high-value luxury brands, tier 2 popular mainstream brands
and tier 3 the long tail collected for catalog completion.
"""

import json
import logging
from pathlib import Path

from auction_collector.models.job import (
    DEFAULT_YEAR_FROM,
    PRIORITY_CATALOG,
    PRIORITY_LUXURY,
    PRIORITY_MAINSTREAM,
    CollectionJob,
)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG: dict[int, list[str]] = {
    PRIORITY_LUXURY: ["BMW", "Mercedes-Benz", "Audi", "Tesla", "Porsche"],
    PRIORITY_MAINSTREAM: ["Toyota", "Honda", "Ford", "Chevrolet", "Nissan", "Hyundai", "Kia"],
    PRIORITY_CATALOG: [
        "Lexus",
        "Jeep",
        "Dodge",
        "Mazda",
        "Volkswagen",
        "Subaru",
        "Mitsubishi",
        "Infiniti",
    ],
}


def default_catalog(
    year_from: int = DEFAULT_YEAR_FROM,
    year_to: int | None = None,
    refresh_interval: float | None = None,
) -> list[CollectionJob]:
    """Build the built-in catalog in priority order."""
    return [
        CollectionJob(
            make=make,
            year_from=year_from,
            year_to=year_to,
            priority=priority,
            refresh_interval=refresh_interval,
        )
        for priority, makes in sorted(DEFAULT_CATALOG.items())
        for make in makes
    ]


def load_catalog(path: Path) -> list[CollectionJob]:
    """
    Load a catalog from a JSON file.

    The file holds a list of job objects:
        [{"make": "BMW", "priority": 1, "model": "X5", "refresh_interval": 86400}]
    """
    with open(path) as f:
        entries = json.load(f)

    if not isinstance(entries, list):
        raise ValueError(f"Catalog {path} must contain a JSON list")

    jobs = [CollectionJob.from_dict(entry) for entry in entries]
    logger.info(f"Loaded {len(jobs)} catalog entries from {path}")
    return jobs
