"""Cursor pagination over external listing endpoints."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from syncengine.services.rate_limiter import RateLimiter
from syncengine.services.retry import STANDARD, RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

# fetch_page(cursor, page_size) -> raw JSON response of one page
FetchPage = Callable[[Any, int], Awaitable[dict[str, Any]]]
OnCheckpoint = Callable[[Any, int], Awaitable[None]]


@dataclass
class Page:
    """One fetched page, with the cursor that requests the page after it."""

    number: int
    items: list[dict[str, Any]]
    next_cursor: Any = None
    exhausted: bool = False


class CursorScheme:
    """How one provider exposes items, exhaustion and the next cursor."""

    items_key = "data"

    def items(self, response: dict[str, Any]) -> list[dict[str, Any]]:
        return list(response.get(self.items_key) or [])

    def exhausted(self, response: dict[str, Any], items: list[dict[str, Any]]) -> bool:
        return False

    def next_cursor(
        self, response: dict[str, Any], items: list[dict[str, Any]], cursor: Any
    ) -> Any:
        raise NotImplementedError


class StartingAfterCursor(CursorScheme):
    """Id cursor: {data, has_more}; next page uses starting_after=<last id>."""

    def exhausted(self, response: dict[str, Any], items: list[dict[str, Any]]) -> bool:
        return not response.get("has_more", False)

    def next_cursor(
        self, response: dict[str, Any], items: list[dict[str, Any]], cursor: Any
    ) -> Any:
        return items[-1]["id"] if items else cursor


class PageNumberCursor(CursorScheme):
    """Page-number cursor: {page, total_pages}; next page is page + 1."""

    def __init__(self, items_key: str = "transaction_details"):
        self.items_key = items_key

    def exhausted(self, response: dict[str, Any], items: list[dict[str, Any]]) -> bool:
        page = response.get("page")
        total_pages = response.get("total_pages")
        if page is None or total_pages is None:
            return False
        return int(page) >= int(total_pages)

    def next_cursor(
        self, response: dict[str, Any], items: list[dict[str, Any]], cursor: Any
    ) -> Any:
        current = response.get("page") or cursor or 1
        return int(current) + 1


def _epoch_ms(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


class SearchAfterCursor(CursorScheme):
    """
    Compound cursor [timestamp, id] taken from the last item of a page.

    When the provider does not supply the pair on the item it is synthesized
    from the item's dateAdded (epoch ms, wall clock if absent) and its id.
    """

    items_key = "contacts"

    def __init__(self, now: Callable[[], datetime] = lambda: datetime.now(UTC)):
        self._now = now

    def next_cursor(
        self, response: dict[str, Any], items: list[dict[str, Any]], cursor: Any
    ) -> Any:
        if not items:
            return cursor
        last = items[-1]
        supplied = last.get("searchAfter")
        if isinstance(supplied, list) and len(supplied) >= 2:
            return supplied

        timestamp = _epoch_ms(last.get("dateAdded"))
        if timestamp is None:
            timestamp = int(self._now().timestamp() * 1000)
        return [timestamp, last.get("id")]


@dataclass
class CursorPaginator:
    """
    Drives one listing endpoint page by page.

    Every network call goes through retry_with_backoff wrapping the source's
    RateLimiter. Stops at the first empty page, the scheme's exhaustion
    signal, the first page shorter than page_size, or max_pages (a warning,
    not a failure; `truncated` is set).
    """

    fetch_page: FetchPage
    scheme: CursorScheme
    limiter: RateLimiter
    retry_policy: RetryPolicy = STANDARD
    page_size: int = 100
    max_pages: int = 100
    checkpoint_every: int = 0
    on_checkpoint: OnCheckpoint | None = None
    label: str = "source"

    pages_fetched: int = field(default=0, init=False)
    items_fetched: int = field(default=0, init=False)
    truncated: bool = field(default=False, init=False)
    cursor: Any = field(default=None, init=False)

    async def _fetch(self, cursor: Any) -> dict[str, Any]:
        return await retry_with_backoff(
            lambda: self.limiter.execute(lambda: self.fetch_page(cursor, self.page_size)),
            self.retry_policy,
        )

    async def pages(self, start_cursor: Any = None) -> AsyncIterator[Page]:
        """Yield pages strictly in cursor order."""
        self.cursor = start_cursor
        self.pages_fetched = 0
        self.items_fetched = 0
        self.truncated = False

        while self.pages_fetched < self.max_pages:
            response = await self._fetch(self.cursor)
            items = self.scheme.items(response)
            self.pages_fetched += 1

            if not items:
                logger.info(f"{self.label}: page {self.pages_fetched} empty, done")
                return

            self.items_fetched += len(items)
            exhausted = self.scheme.exhausted(response, items) or len(items) < self.page_size
            next_cursor = self.scheme.next_cursor(response, items, self.cursor)
            logger.info(
                f"{self.label}: page {self.pages_fetched} -> {len(items)} items "
                f"(total: {self.items_fetched})"
            )

            yield Page(
                number=self.pages_fetched,
                items=items,
                next_cursor=next_cursor,
                exhausted=exhausted,
            )
            self.cursor = next_cursor

            if exhausted:
                return

            if (
                self.on_checkpoint is not None
                and self.checkpoint_every > 0
                and self.pages_fetched % self.checkpoint_every == 0
            ):
                await self.on_checkpoint(self.cursor, self.pages_fetched)

        self.truncated = True
        logger.warning(
            f"{self.label}: reached page limit of {self.max_pages} before exhaustion "
            f"({self.items_fetched} items fetched)"
        )

    async def collect(self, start_cursor: Any = None) -> list[dict[str, Any]]:
        """Fetch every page and return all items in order."""
        collected: list[dict[str, Any]] = []
        async for page in self.pages(start_cursor):
            collected.extend(page.items)
        return collected
