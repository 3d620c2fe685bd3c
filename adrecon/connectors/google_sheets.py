"""Google Sheets connector: read sales spreadsheets and push report tables."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

try:
    import gspread  # type: ignore
except Exception:  # pragma: no cover
    gspread = None

try:
    from google.oauth2.service_account import Credentials  # type: ignore
except Exception:  # pragma: no cover
    Credentials = None

from adrecon.config import SalesConfig, SourceConfig
from adrecon.schema import MessageRecord, OrderRecord
from adrecon.sources.base import SalesSource, SalesSourceError
from adrecon.sources.values import cell, clean_id, parse_amount, parse_date

logger = logging.getLogger(__name__)

READ_SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
WRITE_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


class GoogleSheetsConfigError(RuntimeError):
    pass


def _resolve_creds_path() -> str:
    path = os.environ.get("ADRECON_GOOGLE_CREDS_JSON") or os.environ.get(
        "GOOGLE_APPLICATION_CREDENTIALS"
    )
    if not path:
        raise GoogleSheetsConfigError(
            "Google credentials not configured. Set ADRECON_GOOGLE_CREDS_JSON or "
            "GOOGLE_APPLICATION_CREDENTIALS to a Service Account JSON path."
        )
    if not Path(path).exists():
        raise GoogleSheetsConfigError(f"Credential file not found: {path}")
    return path


def get_client(scopes: Sequence[str] = READ_SCOPES):
    """Authorized gspread client from the service account file."""
    creds_path = _resolve_creds_path()
    if gspread is None or Credentials is None:
        raise GoogleSheetsConfigError(
            "Google Sheets dependencies missing. Install gspread and google-auth, "
            "then retry."
        )
    creds = Credentials.from_service_account_file(creds_path, scopes=list(scopes))
    return gspread.authorize(creds)


class SheetsSalesSource(SalesSource):
    """One sales spreadsheet with an orders and a messages worksheet.

    The first row of each worksheet is a header and is skipped.
    """

    def __init__(self, source: SourceConfig, sales: Optional[SalesConfig] = None, client=None):
        self.source = source
        self.name = source.name or source.id
        self.sales = sales or SalesConfig()
        self._client = client
        self._spreadsheet = None

    def _open(self):
        if self._spreadsheet is None:
            client = self._client or get_client()
            try:
                self._spreadsheet = client.open_by_key(self.source.id)
            except Exception as exc:
                raise SalesSourceError(
                    f"Cannot open spreadsheet {self.source.id}: {exc}"
                ) from exc
        return self._spreadsheet

    def _rows(self, worksheet: str) -> List[list]:
        sh = self._open()
        try:
            ws = sh.worksheet(worksheet)
        except Exception as exc:
            if gspread is not None and isinstance(exc, gspread.exceptions.WorksheetNotFound):
                logger.info("%s: worksheet %s not found", self.name, worksheet)
                return []
            raise SalesSourceError(f"Cannot read worksheet {worksheet}: {exc}") from exc
        # raw numbers; dates keep their displayed text
        values = ws.get_all_values(
            value_render_option="UNFORMATTED_VALUE",
            date_time_render_option="FORMATTED_STRING",
        )
        return values[1:]

    def read_orders(self) -> List[OrderRecord]:
        cols = self.sales.order_columns
        out: List[OrderRecord] = []
        for row in self._rows(self.sales.orders_worksheet):
            if not any(str(v).strip() for v in row):
                continue
            out.append(
                OrderRecord(
                    order_date=parse_date(cell(row, cols.date)),
                    raw_ad_id=clean_id(cell(row, cols.post_id)),
                    amount=parse_amount(cell(row, cols.amount)),
                    country=str(cell(row, cols.country)).strip(),
                    product=str(cell(row, cols.product)).strip(),
                )
            )
        return out

    def read_messages(self) -> List[MessageRecord]:
        cols = self.sales.message_columns
        out: List[MessageRecord] = []
        for row in self._rows(self.sales.messages_worksheet):
            if not any(str(v).strip() for v in row):
                continue
            # message sheets carry no country column; the spreadsheet name stands in
            out.append(
                MessageRecord(
                    event_date=parse_date(cell(row, cols.date)),
                    raw_ad_id=clean_id(cell(row, cols.post_id)),
                    country=self.name,
                )
            )
        return out


def push_frame(spreadsheet_id: str, worksheet: str, df: pd.DataFrame, client=None) -> int:
    """Replace a worksheet's contents with *df*, creating the tab if needed.

    Returns the number of data rows written.
    """
    client = client or get_client(WRITE_SCOPES)
    sh = client.open_by_key(spreadsheet_id)

    df = df.fillna("")
    values: List[List[str]] = [list(df.columns)] + df.astype(str).values.tolist()
    try:
        ws = sh.worksheet(worksheet)
    except Exception as exc:
        if gspread is None or not isinstance(exc, gspread.exceptions.WorksheetNotFound):
            raise
        logger.info("Creating worksheet %s", worksheet)
        ws = sh.add_worksheet(
            title=worksheet, rows=max(len(values), 1), cols=max(len(df.columns), 1)
        )
    ws.clear()
    ws.update("A1", values)
    return len(df)


def push_tabular_file(spreadsheet_id: str, worksheet: str, input_path: str) -> int:
    """Push CSV/TSV to a worksheet. Returns number of data rows uploaded."""
    client = get_client(WRITE_SCOPES)

    p = Path(input_path)
    if p.suffix.lower() == ".tsv":
        df = pd.read_csv(p, sep="\t", dtype=str).fillna("")
    else:
        df = pd.read_csv(p, dtype=str).fillna("")
    return push_frame(spreadsheet_id, worksheet, df, client=client)
