"""Tests for cursor pagination."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from syncengine.services.paginator import (
    CursorPaginator,
    PageNumberCursor,
    SearchAfterCursor,
    StartingAfterCursor,
    _epoch_ms,
)
from syncengine.services.rate_limiter import RateLimiter
from syncengine.services.retry import RetryPolicy

QUICK = RetryPolicy(max_attempts=3, initial_delay_ms=1, max_delay_ms=1)


def _limiter() -> RateLimiter:
    return RateLimiter(10_000, burst_size=100)


def _items(prefix: str, count: int) -> list[dict]:
    return [{"id": f"{prefix}{i}"} for i in range(count)]


class TestStartingAfterPagination:
    """Tests for id-cursor listings."""

    @pytest.mark.asyncio
    async def test_pages_in_cursor_order(self):
        pages = {
            None: {"data": _items("a", 2), "has_more": True},
            "a1": {"data": _items("b", 2), "has_more": True},
            "b1": {"data": _items("c", 1), "has_more": False},
        }
        seen_cursors = []

        async def fetch_page(cursor, page_size):
            seen_cursors.append(cursor)
            return pages[cursor]

        paginator = CursorPaginator(fetch_page, StartingAfterCursor(), _limiter(), QUICK, page_size=2)
        items = await paginator.collect()

        assert [item["id"] for item in items] == ["a0", "a1", "b0", "b1", "c0"]
        assert seen_cursors == [None, "a1", "b1"]
        assert paginator.pages_fetched == 3
        assert not paginator.truncated

    @pytest.mark.asyncio
    async def test_stops_on_has_more_false(self):
        fetch_page = AsyncMock(return_value={"data": _items("a", 2), "has_more": False})

        paginator = CursorPaginator(fetch_page, StartingAfterCursor(), _limiter(), QUICK, page_size=2)
        items = await paginator.collect()

        assert len(items) == 2
        fetch_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self):
        fetch_page = AsyncMock(
            side_effect=[{"data": _items("a", 2), "has_more": True}, {"data": [], "has_more": True}]
        )

        paginator = CursorPaginator(fetch_page, StartingAfterCursor(), _limiter(), QUICK, page_size=2)
        items = await paginator.collect()

        assert len(items) == 2
        assert fetch_page.await_count == 2

    @pytest.mark.asyncio
    async def test_stops_on_short_page(self):
        """A page shorter than page_size ends pagination even if has_more is set."""
        fetch_page = AsyncMock(return_value={"data": _items("a", 3), "has_more": True})

        paginator = CursorPaginator(fetch_page, StartingAfterCursor(), _limiter(), QUICK, page_size=10)
        await paginator.collect()

        fetch_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_max_pages_truncates(self):
        counter = {"n": 0}

        async def fetch_page(cursor, page_size):
            counter["n"] += 1
            return {"data": _items(f"p{counter['n']}-", page_size), "has_more": True}

        paginator = CursorPaginator(
            fetch_page, StartingAfterCursor(), _limiter(), QUICK, page_size=2, max_pages=3
        )
        items = await paginator.collect()

        assert len(items) == 6
        assert counter["n"] == 3
        assert paginator.truncated

    @pytest.mark.asyncio
    async def test_retries_failed_page(self):
        fetch_page = AsyncMock(
            side_effect=[RuntimeError("blip"), {"data": _items("a", 1), "has_more": False}]
        )

        paginator = CursorPaginator(fetch_page, StartingAfterCursor(), _limiter(), QUICK, page_size=2)
        items = await paginator.collect()

        assert len(items) == 1
        assert fetch_page.await_count == 2

    @pytest.mark.asyncio
    async def test_checkpoint_callback(self):
        async def fetch_page(cursor, page_size):
            return {"data": _items(f"{cursor}-", page_size), "has_more": True}

        on_checkpoint = AsyncMock()
        paginator = CursorPaginator(
            fetch_page,
            StartingAfterCursor(),
            _limiter(),
            QUICK,
            page_size=1,
            max_pages=5,
            checkpoint_every=2,
            on_checkpoint=on_checkpoint,
        )
        await paginator.collect()

        assert [c.args[1] for c in on_checkpoint.await_args_list] == [2, 4]

    @pytest.mark.asyncio
    async def test_resumes_from_start_cursor(self):
        fetch_page = AsyncMock(return_value={"data": [], "has_more": False})

        paginator = CursorPaginator(fetch_page, StartingAfterCursor(), _limiter(), QUICK)
        await paginator.collect(start_cursor="pi_123")

        assert fetch_page.await_args.args[0] == "pi_123"


class TestPageNumberCursor:
    """Tests for page-numbered listings."""

    @pytest.mark.asyncio
    async def test_walks_until_total_pages(self):
        requested = []

        async def fetch_page(cursor, page_size):
            page = cursor or 1
            requested.append(page)
            return {
                "transaction_details": _items(f"p{page}-", page_size),
                "page": page,
                "total_pages": 3,
            }

        paginator = CursorPaginator(fetch_page, PageNumberCursor(), _limiter(), QUICK, page_size=2)
        items = await paginator.collect()

        assert requested == [1, 2, 3]
        assert len(items) == 6

    def test_exhausted_without_totals(self):
        scheme = PageNumberCursor()
        assert not scheme.exhausted({}, [{"id": 1}])


class TestSearchAfterCursor:
    """Tests for the compound [timestamp, id] cursor."""

    def test_uses_supplied_pair(self):
        scheme = SearchAfterCursor()
        items = [{"id": "c1", "searchAfter": [1700000000000, "c1"]}]

        assert scheme.next_cursor({}, items, None) == [1700000000000, "c1"]

    def test_synthesizes_from_date_added(self):
        scheme = SearchAfterCursor()
        items = [{"id": "c9", "dateAdded": "2024-01-18T10:00:00.000Z"}]

        expected = int(datetime(2024, 1, 18, 10, tzinfo=UTC).timestamp() * 1000)
        assert scheme.next_cursor({}, items, None) == [expected, "c9"]

    def test_synthesizes_from_clock_when_date_missing(self):
        now = datetime(2025, 6, 1, tzinfo=UTC)
        scheme = SearchAfterCursor(now=lambda: now)
        items = [{"id": "c2", "searchAfter": ["only-one"]}]

        assert scheme.next_cursor({}, items, None) == [int(now.timestamp() * 1000), "c2"]

    @pytest.mark.asyncio
    async def test_next_request_carries_synthesized_cursor(self):
        requested = []

        async def fetch_page(cursor, page_size):
            requested.append(cursor)
            if cursor is None:
                return {"contacts": [{"id": "x1", "dateAdded": "2024-01-01T00:00:00Z"}]}
            return {"contacts": []}

        paginator = CursorPaginator(fetch_page, SearchAfterCursor(), _limiter(), QUICK, page_size=1)
        await paginator.collect()

        assert requested[1] == [_epoch_ms("2024-01-01T00:00:00Z"), "x1"]

    def test_epoch_ms(self):
        assert _epoch_ms(None) is None
        assert _epoch_ms("garbage") is None
        assert _epoch_ms(1234) == 1234
        assert _epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=UTC)) == 1000
