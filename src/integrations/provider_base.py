"""
Abstract payment provider interface - all platform adapters implement this.
Adapters only fetch and normalize; they never write to the database and never
retry. HTTP/SDK errors propagate to the caller unchanged.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Optional

from dateutil.parser import isoparse

from src.utils.timezone import ensure_utc
from src.schemas.canonical import (
    FetchParams,
    NormalizedCustomer,
    NormalizedSubscription,
    NormalizedTransaction,
)

# Page fetcher: (cursor, page_size) -> (records, next_cursor or None)
PageFetcher = Callable[[Optional[str], int], Awaitable[tuple[list, Optional[str]]]]

DEFAULT_PAGE_SIZE = 100


def to_minor_units(value: Any) -> int:
    """
    Convert a decimal major-unit amount to integer minor units.
    Goes through Decimal(str(value)) so 29.90 becomes 2990, not 2989.
    """
    if value is None or value == "":
        return 0
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a platform timestamp into an aware UTC datetime.
    Accepts ISO-8601 strings, epoch milliseconds (Hotmart) and datetimes.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        parsed = isoparse(str(value))
    return ensure_utc(parsed)


def from_unix(seconds: Optional[int]) -> Optional[datetime]:
    """Convert a Unix timestamp in seconds (Stripe) to an aware UTC datetime."""
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class PaymentProviderBase(ABC):
    """Abstract base class for payment platform adapters."""

    name: str = ""
    slug: str = ""

    @abstractmethod
    async def fetch_subscriptions(self, params: FetchParams) -> list[NormalizedSubscription]:
        """Fetch subscriptions created inside the params window."""
        ...

    @abstractmethod
    async def fetch_transactions(self, params: FetchParams) -> list[NormalizedTransaction]:
        """Fetch payments created inside the params window."""
        ...

    @abstractmethod
    async def fetch_customers(self, params: FetchParams) -> list[NormalizedCustomer]:
        """Fetch customers created inside the params window."""
        ...

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True if the configured credentials authenticate. Never raises."""
        ...

    async def _collect(self, params: FetchParams, fetch_page: PageFetcher) -> list:
        """
        Follow the platform's native cursor until it runs out or params.limit
        records have been collected.
        """
        limit = params.limit
        cursor = params.cursor
        records: list = []

        while True:
            page_size = DEFAULT_PAGE_SIZE
            if limit is not None:
                page_size = min(DEFAULT_PAGE_SIZE, limit - len(records))
            page, cursor = await fetch_page(cursor, page_size)
            records.extend(page)
            if not cursor or not page:
                break
            if limit is not None and len(records) >= limit:
                break

        if limit is not None:
            return records[:limit]
        return records
