"""Sales source interface and multi-source collection."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Tuple

from adrecon.normalize import matches_country_filter
from adrecon.schema import MessageRecord, OrderRecord

logger = logging.getLogger(__name__)


class SalesSourceError(RuntimeError):
    """A sales source could not be read."""


class SalesSource(ABC):
    """Where order and message records come from (a spreadsheet, a CSV dir)."""

    name: str = ""

    @abstractmethod
    def read_orders(self) -> List[OrderRecord]:
        """Return every order record in the source."""

    @abstractmethod
    def read_messages(self) -> List[MessageRecord]:
        """Return every message record in the source."""


def collect_records(
    sources: Iterable[SalesSource],
    country_filter: str = "",
) -> Tuple[List[OrderRecord], List[MessageRecord], List[str]]:
    """Read all sources; returns ``(orders, messages, errors)``.

    Sources whose name does not contain *country_filter* are skipped. A
    failing source is reported in *errors* and the rest are still read.
    """
    orders: List[OrderRecord] = []
    messages: List[MessageRecord] = []
    errors: List[str] = []

    for source in sources:
        if not matches_country_filter(source.name, country_filter):
            logger.debug("Skipping source %s for filter %s", source.name, country_filter)
            continue
        try:
            src_orders = source.read_orders()
            src_messages = source.read_messages()
        except Exception as exc:
            logger.warning("Sales source %s failed: %s", source.name, exc)
            errors.append(f"{source.name}: {exc}")
            continue
        logger.info(
            "Source %s: %d orders, %d messages",
            source.name,
            len(src_orders),
            len(src_messages),
        )
        orders.extend(src_orders)
        messages.extend(src_messages)

    return orders, messages, errors
