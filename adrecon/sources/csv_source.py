"""Sales records from local CSV exports (``orders.csv`` / ``messages.csv``)."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pandas as pd

from adrecon.schema import MessageRecord, OrderRecord
from adrecon.sources.base import SalesSource, SalesSourceError
from adrecon.sources.values import clean_id, parse_amount, parse_date

ORDER_COLUMNS = ["date", "ad_id", "amount", "country"]
MESSAGE_COLUMNS = ["date", "ad_id"]


def _read_frame(path: Path, required: List[str]) -> pd.DataFrame:
    if not path.exists():
        return pd.DataFrame(columns=required)
    try:
        df = pd.read_csv(path, dtype=str).fillna("")
    except Exception as exc:
        raise SalesSourceError(f"Cannot read {path}: {exc}") from exc
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SalesSourceError(
            f"{path.name} is missing required columns: {', '.join(missing)}. "
            f"Required: {', '.join(required)}"
        )
    return df


class CsvSalesSource(SalesSource):
    """A directory holding ``orders.csv`` and/or ``messages.csv``."""

    def __init__(self, directory: str | Path, name: str = "") -> None:
        self.directory = Path(directory)
        self.name = name or self.directory.name

    def read_orders(self) -> List[OrderRecord]:
        df = _read_frame(self.directory / "orders.csv", ORDER_COLUMNS)
        has_product = "product" in df.columns
        return [
            OrderRecord(
                order_date=parse_date(r["date"]),
                raw_ad_id=clean_id(r["ad_id"]),
                amount=parse_amount(r["amount"]),
                country=str(r["country"]).strip(),
                product=str(r["product"]).strip() if has_product else "",
            )
            for r in df.to_dict(orient="records")
        ]

    def read_messages(self) -> List[MessageRecord]:
        df = _read_frame(self.directory / "messages.csv", MESSAGE_COLUMNS)
        has_country = "country" in df.columns
        return [
            MessageRecord(
                event_date=parse_date(r["date"]),
                raw_ad_id=clean_id(r["ad_id"]),
                country=(str(r["country"]).strip() if has_country else "") or self.name,
            )
            for r in df.to_dict(orient="records")
        ]
