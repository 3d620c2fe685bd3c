from adrecon.sources.base import SalesSource, SalesSourceError, collect_records
from adrecon.sources.csv_source import CsvSalesSource

__all__ = ["SalesSource", "SalesSourceError", "CsvSalesSource", "collect_records"]
