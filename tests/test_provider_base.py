"""
Tests for src/integrations/provider_base.py - shared conversion helpers and
cursor pagination.
"""
from datetime import datetime, timezone, timedelta

import pytest

from src.integrations.provider_base import (
    DEFAULT_PAGE_SIZE,
    PaymentProviderBase,
    from_unix,
    parse_datetime,
    to_minor_units,
)
from src.schemas.canonical import FetchParams


class _PagedProvider(PaymentProviderBase):
    """Concrete adapter over an in-memory list, for exercising _collect."""

    name = "Paged"
    slug = "paged"

    def __init__(self, total: int):
        self.records = [{"id": f"r{i}"} for i in range(total)]
        self.calls: list[tuple] = []

    async def fetch_page(self, cursor, page_size):
        self.calls.append((cursor, page_size))
        start = int(cursor) if cursor else 0
        page = self.records[start:start + page_size]
        end = start + len(page)
        return page, (str(end) if end < len(self.records) else None)

    async def fetch_subscriptions(self, params):
        return await self._collect(params, self.fetch_page)

    async def fetch_transactions(self, params):
        return []

    async def fetch_customers(self, params):
        return []

    async def test_connection(self):
        return True


class TestToMinorUnits:
    def test_decimal_amount_converts_exactly(self):
        assert to_minor_units(29.90) == 2990

    def test_string_amount(self):
        assert to_minor_units("197.00") == 19700

    def test_rounds_half_up(self):
        assert to_minor_units("0.005") == 1
        assert to_minor_units(10.125) == 1013

    def test_integer_major_units(self):
        assert to_minor_units(50) == 5000

    def test_none_and_empty_are_zero(self):
        assert to_minor_units(None) == 0
        assert to_minor_units("") == 0


class TestParseDatetime:
    def test_iso_string_with_offset_is_converted_to_utc(self):
        parsed = parse_datetime("2026-03-01T12:00:00-03:00")
        assert parsed == datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc)

    def test_naive_iso_string_is_taken_as_utc(self):
        parsed = parse_datetime("2026-03-01T12:00:00")
        assert parsed.tzinfo is not None
        assert parsed.hour == 12

    def test_epoch_milliseconds(self):
        parsed = parse_datetime(1767225600000)
        assert parsed == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_datetime_passthrough(self):
        value = datetime(2026, 1, 1, 10, tzinfo=timezone(timedelta(hours=2)))
        assert parse_datetime(value) == datetime(2026, 1, 1, 8, tzinfo=timezone.utc)

    def test_empty_values(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None


class TestFromUnix:
    def test_seconds(self):
        assert from_unix(1767225600) == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_missing(self):
        assert from_unix(None) is None
        assert from_unix(0) is None


class TestCollect:
    async def test_follows_cursor_until_exhausted(self):
        provider = _PagedProvider(total=250)
        records = await provider.fetch_subscriptions(FetchParams())
        assert len(records) == 250
        assert [c[0] for c in provider.calls] == [None, "100", "200"]

    async def test_stops_at_limit(self):
        provider = _PagedProvider(total=250)
        records = await provider.fetch_subscriptions(FetchParams(limit=120))
        assert len(records) == 120
        # Second page only asks for what is still needed
        assert provider.calls == [(None, DEFAULT_PAGE_SIZE), ("100", 20)]

    async def test_small_limit_single_page(self):
        provider = _PagedProvider(total=250)
        records = await provider.fetch_subscriptions(FetchParams(limit=5))
        assert [r["id"] for r in records] == ["r0", "r1", "r2", "r3", "r4"]
        assert len(provider.calls) == 1

    async def test_starts_from_given_cursor(self):
        provider = _PagedProvider(total=150)
        records = await provider.fetch_subscriptions(FetchParams(cursor="100"))
        assert len(records) == 50
        assert provider.calls[0][0] == "100"

    async def test_empty_source(self):
        provider = _PagedProvider(total=0)
        assert await provider.fetch_subscriptions(FetchParams()) == []

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            FetchParams(limit=0)
