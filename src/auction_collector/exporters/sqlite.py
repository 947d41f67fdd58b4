"""
SQLite Exporter — writes sale records to a `sales_history` table.

This is a lightweight default sink. Deployments with their own sales
database plug in an Exporter that writes there instead.
"""

import json
import logging
import sqlite3
from pathlib import Path

from auction_collector.models.sale import SaleRecord

logger = logging.getLogger(__name__)


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sales_history (
    id TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    site INTEGER NOT NULL,
    lot_id INTEGER,
    vin TEXT,
    make TEXT,
    model TEXT,
    year INTEGER,
    sale_date TEXT,
    sale_status TEXT,
    purchase_price REAL,
    odometer INTEGER,
    damage TEXT,
    location TEXT,
    metadata TEXT
)
"""

INSERT_SQL = """
INSERT OR REPLACE INTO sales_history
(id, provider, site, lot_id, vin, make, model, year, sale_date, sale_status,
 purchase_price, odometer, damage, location, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class SQLiteExporter:
    """
    Exports SaleRecord objects to a SQLite database.

    Re-delivered pages overwrite the same rows (primary key is the record id).
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.execute(CREATE_TABLE_SQL)
        self.conn.commit()
        self.count = 0

    async def export(self, records: list[SaleRecord]) -> None:
        """Write one page of records in a single transaction."""
        with self.conn:
            self.conn.executemany(
                INSERT_SQL,
                [
                    (
                        r.id,
                        r.provider,
                        r.site,
                        r.lot_id,
                        r.vin,
                        r.make,
                        r.model,
                        r.year,
                        r.sale_date,
                        r.sale_status,
                        r.purchase_price,
                        r.odometer,
                        r.damage,
                        r.location,
                        json.dumps(r.metadata),
                    )
                    for r in records
                ],
            )
        self.count += len(records)

    async def finalize(self) -> None:
        """Close the connection."""
        self.conn.close()
        logger.info(f"[SQLite] Export complete: {self.count} records exported to {self.db_path}")
