"""
Sale Record Model — normalized auction sale rows.

Provider payloads are normalized into this structure before they are
handed to exporters.
"""

from dataclasses import asdict, dataclass, field


def _as_int(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_float(value) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class SaleRecord:
    """
    One vehicle sale collected from an auction provider.

    `id` is unique across providers: '{provider}:{lot_id or vin}'.
    """

    id: str
    provider: str
    site: int
    lot_id: int | None = None
    vin: str | None = None
    make: str | None = None
    model: str | None = None
    year: int | None = None
    sale_date: str | None = None
    sale_status: str | None = None
    purchase_price: float | None = None
    odometer: int | None = None
    damage: str | None = None
    location: str | None = None
    metadata: dict = field(default_factory=dict)  # raw provider row

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_api(cls, provider: str, site: int, raw: dict) -> "SaleRecord":
        """
        Normalize one APICAR history row.

        Raises:
            ValueError: if the row carries neither a lot id nor a VIN.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Sale row is not an object: {type(raw).__name__}")

        lot_id = _as_int(raw.get("lot_id") or raw.get("lotId"))
        vin = raw.get("vin") or None
        if lot_id is None and not vin:
            raise ValueError("Sale row has neither lot_id nor vin")

        return cls(
            id=f"{provider}:{lot_id if lot_id is not None else vin}",
            provider=provider,
            site=_as_int(raw.get("site")) or site,
            lot_id=lot_id,
            vin=vin,
            make=raw.get("make"),
            model=raw.get("model"),
            year=_as_int(raw.get("year")),
            sale_date=raw.get("sale_date"),
            sale_status=raw.get("sale_status"),
            purchase_price=_as_float(raw.get("purchase_price")),
            odometer=_as_int(raw.get("vehicle_mileage") or raw.get("odometer")),
            damage=raw.get("vehicle_damage") or raw.get("damage_pr"),
            location=raw.get("auction_location") or raw.get("location"),
            metadata=raw,
        )
