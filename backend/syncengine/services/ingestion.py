"""Sync jobs: pull each external source into the local store."""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from syncengine.config import get_settings
from syncengine.models import Contact, Invoice, SyncRun, SyncRunStatus, SyncSource, Transaction
from syncengine.services.paginator import (
    CursorPaginator,
    CursorScheme,
    FetchPage,
    PageNumberCursor,
    SearchAfterCursor,
    StartingAfterCursor,
)
from syncengine.services.providers import (
    CRMClient,
    MessagingClient,
    PaymentsPrimaryClient,
    PaymentsSecondaryClient,
    ProviderError,
    ProviderNotConfiguredError,
)
from syncengine.services.rate_limiter import RateLimiter, get_rate_limiter
from syncengine.services.retry import RETRYABLE_ERRORS, STANDARD, RetryPolicy, retry_with_backoff
from syncengine.services.store import upsert_rows
from syncengine.services.sync_runs import InvalidRunTransition, SyncRunLedger
from syncengine.services.sync_state import SyncStateTracker, as_utc

logger = logging.getLogger(__name__)
settings = get_settings()

COUNT_FIELDS: dict[SyncSource, str] = {
    SyncSource.PAYMENTS_PRIMARY: "synced_transactions",
    SyncSource.PAYMENTS_SECONDARY: "synced_transactions",
    SyncSource.INVOICES: "synced_invoices",
    SyncSource.CRM: "synced_contacts",
    SyncSource.MESSAGING: "synced_contacts",
}

# Authorization failures (401/403) match none of these and fail fast.
JOB_RETRY_POLICIES: dict[SyncSource, RetryPolicy] = {
    SyncSource.PAYMENTS_PRIMARY: STANDARD.with_retryable(
        RETRYABLE_ERRORS["NETWORK"], RETRYABLE_ERRORS["HTTP"]
    ),
    SyncSource.INVOICES: STANDARD.with_retryable(
        RETRYABLE_ERRORS["NETWORK"], RETRYABLE_ERRORS["HTTP"]
    ),
    SyncSource.PAYMENTS_SECONDARY: STANDARD.with_retryable(
        RETRYABLE_ERRORS["NETWORK"], RETRYABLE_ERRORS["HTTP"]
    ),
    SyncSource.CRM: STANDARD.with_retryable(
        RETRYABLE_ERRORS["NETWORK"], RETRYABLE_ERRORS["HTTP"], RETRYABLE_ERRORS["CRM"]
    ),
    SyncSource.MESSAGING: STANDARD.with_retryable(
        RETRYABLE_ERRORS["NETWORK"], RETRYABLE_ERRORS["HTTP"], RETRYABLE_ERRORS["MESSAGING"]
    ),
}

# Serializes the lease check-and-create step per source within this process
_source_locks: dict[str, asyncio.Lock] = {}


def _source_lock(source: SyncSource) -> asyncio.Lock:
    return _source_locks.setdefault(source.value, asyncio.Lock())


class SyncInProgressError(Exception):
    """Raised when a source already has an active, non-stale run."""

    def __init__(self, source: SyncSource, run_id: uuid.UUID):
        super().__init__(f"A {source.value} sync is already in progress (run {run_id})")
        self.source = source
        self.run_id = run_id


class SyncJobError(Exception):
    """A sync job failed; already upserted records were kept."""

    def __init__(
        self,
        message: str,
        source: SyncSource,
        run_id: uuid.UUID | None = None,
        processed: int = 0,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.source = source
        self.run_id = run_id
        self.processed = processed
        self.status_code = status_code


@dataclass
class SyncOutcome:
    """Result of one sync invocation."""

    source: SyncSource
    run_id: uuid.UUID
    status: str
    synced: int
    fetched: int
    skipped: int
    pages_fetched: int
    truncated: bool
    duration_ms: int
    stats: dict[str, Any] = field(default_factory=dict)
    continuation: dict[str, Any] | None = None

    @property
    def count_field(self) -> str:
        return COUNT_FIELDS[self.source]


@dataclass
class _RunContext:
    """Mutable progress of the run being executed."""

    run_id: uuid.UUID
    source: SyncSource
    started_at: datetime
    window_start: datetime | None
    window_end: datetime | None
    fetch_all: bool
    checkpoint: dict[str, Any] = field(default_factory=dict)
    synced: int = 0
    fetched: int = 0
    skipped: int = 0
    pages: int = 0
    truncated: bool = False
    oldest_seen: datetime | None = None
    stats: dict[str, Any] = field(default_factory=dict)
    continuation: dict[str, Any] | None = None

    def counters(self) -> dict[str, int]:
        return {
            "total_fetched": self.fetched,
            "total_inserted": self.synced,
            "total_skipped": self.skipped,
        }

    def saw(self, created_at: datetime | None) -> None:
        if created_at and (self.oldest_seen is None or created_at < self.oldest_seen):
            self.oldest_seen = created_at


class SyncService:
    """
    Runs sync jobs for every source.

    Each job records itself in the SyncRun ledger, drives a CursorPaginator
    (network calls paced by the source's RateLimiter and wrapped in
    retry_with_backoff), upserts every page as it arrives, and finally
    merges the covered range into SyncState.
    """

    def __init__(
        self,
        db: AsyncSession,
        payments_primary: PaymentsPrimaryClient | None = None,
        payments_secondary: PaymentsSecondaryClient | None = None,
        crm: CRMClient | None = None,
        messaging: MessagingClient | None = None,
        limiters: dict[SyncSource, RateLimiter] | None = None,
        retry_policies: dict[SyncSource, RetryPolicy] | None = None,
    ):
        self.db = db
        self.payments_primary = payments_primary or PaymentsPrimaryClient()
        self.payments_secondary = payments_secondary or PaymentsSecondaryClient()
        self.crm = crm or CRMClient()
        self.messaging = messaging or MessagingClient()
        self.limiters = limiters or {}
        self.retry_policies = retry_policies or JOB_RETRY_POLICIES
        self.ledger = SyncRunLedger(db)
        self.tracker = SyncStateTracker(db)

        self._handlers: dict[SyncSource, Callable] = {
            SyncSource.PAYMENTS_PRIMARY: self._sync_payments_primary,
            SyncSource.INVOICES: self._sync_invoices,
            SyncSource.PAYMENTS_SECONDARY: self._sync_payments_secondary,
            SyncSource.CRM: self._sync_crm,
            SyncSource.MESSAGING: self._sync_messaging,
        }

    # ------------------------------------------------------------------
    # Parsing / transforms
    # ------------------------------------------------------------------

    def _parse_datetime(self, value: Any) -> datetime | None:
        """Parse epoch seconds or an ISO 8601 string into an aware UTC datetime."""
        if value is None or value == "":
            return None
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=UTC)
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            # Offsets without a colon, e.g. 2024-01-18T10:30:00+0000
            try:
                parsed = datetime.strptime(str(value), "%Y-%m-%dT%H:%M:%S%z")
            except ValueError:
                return None
        return as_utc(parsed)

    def _to_minor_units(self, value: Any) -> int | None:
        if value is None or value == "":
            return None
        try:
            return round(abs(float(value)) * 100)
        except (TypeError, ValueError):
            return None

    def _transform_payment_intent(self, record: dict) -> dict | None:
        """Primary-provider payment intent -> transactions row."""
        external_id = record.get("id")
        if not external_id:
            return None

        customer = record.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer
        email = record.get("receipt_email")
        if not email and isinstance(customer, dict):
            email = customer.get("email")

        return {
            "source": SyncSource.PAYMENTS_PRIMARY.value,
            "external_id": external_id,
            "customer_email": email.strip().lower() if email else None,
            "external_customer_id": customer_id,
            "amount": record.get("amount"),
            "currency": record.get("currency"),
            "status": record.get("status"),
            "external_created_at": self._parse_datetime(record.get("created")),
            "raw": record,
        }

    def _transform_invoice(self, record: dict) -> dict | None:
        external_id = record.get("id")
        if not external_id:
            return None

        customer = record.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer
        email = record.get("customer_email")

        return {
            "external_id": external_id,
            "external_customer_id": customer_id,
            "customer_email": email.strip().lower() if email else None,
            "amount_due": record.get("amount_due"),
            "amount_paid": record.get("amount_paid"),
            "currency": record.get("currency"),
            "status": record.get("status"),
            "external_created_at": self._parse_datetime(record.get("created")),
            "raw": record,
        }

    def _transform_secondary_transaction(self, record: dict) -> dict | None:
        """Secondary-provider transaction detail -> transactions row."""
        info = record.get("transaction_info") or {}
        external_id = info.get("transaction_id")
        if not external_id:
            return None

        payer = record.get("payer_info") or info.get("payer_info") or {}
        email = payer.get("email_address")
        amount = info.get("transaction_amount") or {}

        return {
            "source": SyncSource.PAYMENTS_SECONDARY.value,
            "external_id": external_id,
            "customer_email": email.strip().lower() if email else None,
            "external_customer_id": payer.get("account_id"),
            "amount": self._to_minor_units(amount.get("value")),
            "currency": (amount.get("currency_code") or "").lower() or None,
            "status": info.get("transaction_status"),
            "external_created_at": self._parse_datetime(info.get("transaction_initiation_date")),
            "raw": record,
        }

    def _transform_crm_contact(self, record: dict) -> dict | None:
        external_id = record.get("id")
        if not external_id:
            return None

        email = record.get("email")
        full_name = record.get("contactName") or " ".join(
            part for part in (record.get("firstName"), record.get("lastName")) if part
        )

        return {
            "source": SyncSource.CRM.value,
            "external_id": external_id,
            "email": email.strip().lower() if email else None,
            "phone": record.get("phone"),
            "full_name": full_name or None,
            "tags": list(record.get("tags") or []),
            "external_created_at": self._parse_datetime(record.get("dateAdded")),
            "raw": record,
        }

    def _transform_subscriber(self, record: dict, looked_up_email: str) -> dict | None:
        external_id = record.get("id")
        if not external_id:
            return None

        full_name = " ".join(
            part for part in (record.get("first_name"), record.get("last_name")) if part
        ) or record.get("name")
        tags = [tag.get("name") if isinstance(tag, dict) else tag for tag in record.get("tags") or []]
        email = record.get("email") or looked_up_email

        return {
            "source": SyncSource.MESSAGING.value,
            "external_id": str(external_id),
            "email": email.strip().lower() if email else None,
            "phone": record.get("phone") or record.get("whatsapp_phone"),
            "full_name": full_name or None,
            "tags": tags,
            "external_created_at": self._parse_datetime(record.get("subscribed")),
            "raw": record,
        }

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _limiter(self, source: SyncSource) -> RateLimiter:
        return self.limiters.get(source) or get_rate_limiter(source)

    def _paginator(
        self,
        ctx: _RunContext,
        source: SyncSource,
        fetch_page: FetchPage,
        scheme: CursorScheme,
        max_pages: int | None = None,
    ) -> CursorPaginator:
        async def on_checkpoint(cursor: Any, pages: int) -> None:
            ctx.checkpoint = {**ctx.checkpoint, "cursor": cursor, "pages": ctx.pages + pages}
            await self.ledger.save_checkpoint(ctx.run_id, ctx.checkpoint, ctx.counters())
            logger.info(f"{source.value}: checkpoint saved after {pages} pages")

        return CursorPaginator(
            fetch_page=fetch_page,
            scheme=scheme,
            limiter=self._limiter(source),
            retry_policy=self.retry_policies[source],
            page_size=settings.page_size,
            max_pages=max_pages or settings.max_pages,
            checkpoint_every=settings.checkpoint_every_pages,
            on_checkpoint=on_checkpoint,
            label=source.value,
        )

    async def _drain_into(
        self,
        ctx: _RunContext,
        paginator: CursorPaginator,
        model: type,
        conflict_keys: list[str],
        transform: Callable[[dict], dict | None],
        start_cursor: Any = None,
    ) -> None:
        """Fetch every page and upsert it before asking for the next one."""
        try:
            async for page in paginator.pages(start_cursor):
                rows = []
                for record in page.items:
                    values = transform(record)
                    if values is None:
                        ctx.skipped += 1
                        continue
                    ctx.saw(values.get("external_created_at"))
                    rows.append(values)

                ctx.fetched += len(page.items)
                ctx.synced += await upsert_rows(self.db, model, rows, conflict_keys)
        finally:
            ctx.pages += paginator.pages_fetched
            ctx.truncated = ctx.truncated or paginator.truncated

    def _resume_cursor(self, ctx: _RunContext) -> Any:
        return ctx.checkpoint.get("cursor")

    # ------------------------------------------------------------------
    # Source jobs
    # ------------------------------------------------------------------

    async def _sync_payments_primary(self, ctx: _RunContext) -> None:
        start, end = (None, None) if ctx.fetch_all else (ctx.window_start, ctx.window_end)

        async def fetch_page(cursor: Any, page_size: int) -> dict[str, Any]:
            return await self.payments_primary.list_payment_intents(
                starting_after=cursor, limit=page_size, created_gte=start, created_lte=end
            )

        paginator = self._paginator(ctx, SyncSource.PAYMENTS_PRIMARY, fetch_page, StartingAfterCursor())
        await self._drain_into(
            ctx,
            paginator,
            Transaction,
            ["source", "external_id"],
            self._transform_payment_intent,
            start_cursor=self._resume_cursor(ctx),
        )

    async def _sync_invoices(self, ctx: _RunContext) -> None:
        start, end = (None, None) if ctx.fetch_all else (ctx.window_start, ctx.window_end)

        async def fetch_page(cursor: Any, page_size: int) -> dict[str, Any]:
            return await self.payments_primary.list_invoices(
                starting_after=cursor, limit=page_size, created_gte=start, created_lte=end
            )

        paginator = self._paginator(ctx, SyncSource.INVOICES, fetch_page, StartingAfterCursor())
        await self._drain_into(
            ctx,
            paginator,
            Invoice,
            ["external_id"],
            self._transform_invoice,
            start_cursor=self._resume_cursor(ctx),
        )

    def date_chunks(self, start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
        """Split [start, end] into windows the secondary provider accepts."""
        chunks: list[tuple[datetime, datetime]] = []
        span = timedelta(days=settings.secondary_chunk_days)
        current = start
        while current < end:
            chunk_end = min(current + span, end)
            chunks.append((current, chunk_end))
            current = chunk_end + timedelta(seconds=1)
        return chunks

    async def _sync_payments_secondary(self, ctx: _RunContext) -> None:
        chunks = self.date_chunks(ctx.window_start, ctx.window_end)
        first = int(ctx.checkpoint.get("chunk_index", 0))
        last = min(first + settings.secondary_max_chunks_per_invocation, len(chunks))
        logger.info(
            f"payments-secondary: {len(chunks)} chunks, processing {first + 1}..{last}"
        )

        for index in range(first, last):
            chunk_start, chunk_end = chunks[index]

            async def fetch_page(cursor: Any, page_size: int, _s=chunk_start, _e=chunk_end) -> dict[str, Any]:
                return await self.payments_secondary.search_transactions(
                    _s, _e, page=cursor or 1, page_size=page_size
                )

            paginator = self._paginator(
                ctx, SyncSource.PAYMENTS_SECONDARY, fetch_page, PageNumberCursor()
            )
            await self._drain_into(
                ctx,
                paginator,
                Transaction,
                ["source", "external_id"],
                self._transform_secondary_transaction,
            )
            ctx.checkpoint = {"chunk_index": index + 1, "chunks_total": len(chunks)}
            await self.ledger.save_checkpoint(ctx.run_id, ctx.checkpoint, ctx.counters())

        ctx.stats["chunks_total"] = len(chunks)
        if last < len(chunks):
            ctx.continuation = {
                "sync_run_id": str(ctx.run_id),
                "chunk_index": last,
                "chunks_total": len(chunks),
                "total_synced": ctx.synced,
            }

    async def _sync_crm(self, ctx: _RunContext) -> None:
        async def fetch_page(cursor: Any, page_size: int) -> dict[str, Any]:
            return await self.crm.search_contacts(search_after=cursor, page_limit=page_size)

        paginator = self._paginator(
            ctx,
            SyncSource.CRM,
            fetch_page,
            SearchAfterCursor(),
            max_pages=settings.crm_max_pages,
        )
        await self._drain_into(
            ctx,
            paginator,
            Contact,
            ["source", "external_id"],
            self._transform_crm_contact,
            start_cursor=self._resume_cursor(ctx),
        )

    async def _emails_missing_subscriber(self, limit: int) -> list[str]:
        known = select(Contact.email).where(
            Contact.source == SyncSource.MESSAGING.value, Contact.email.is_not(None)
        )
        result = await self.db.execute(
            select(Contact.email)
            .where(
                Contact.source == SyncSource.CRM.value,
                Contact.email.is_not(None),
                Contact.email.not_in(known),
            )
            .distinct()
            .order_by(Contact.email)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _sync_messaging(self, ctx: _RunContext) -> None:
        """
        Look up CRM contacts on the messaging platform one email at a time.

        Lookups that still fail after retries are skipped; authorization
        failures abort the run.
        """
        emails = await self._emails_missing_subscriber(settings.messaging_lookups_per_run)
        limiter = self._limiter(SyncSource.MESSAGING)
        policy = self.retry_policies[SyncSource.MESSAGING]
        ctx.stats["emails_searched"] = len(emails)
        logger.info(f"messaging: looking up {len(emails)} contacts without a subscriber")

        rows: list[dict[str, Any]] = []
        for email in emails:
            try:
                subscriber = await retry_with_backoff(
                    lambda: limiter.execute(lambda: self.messaging.find_subscriber_by_email(email)),
                    policy,
                )
            except ProviderError as e:
                if e.is_authorization_error or isinstance(e, ProviderNotConfiguredError):
                    raise
                logger.warning(f"messaging: lookup failed for {email}: {e}")
                ctx.skipped += 1
                continue

            ctx.pages += 1
            if subscriber is None:
                ctx.skipped += 1
                continue

            values = self._transform_subscriber(subscriber, email)
            if values is None:
                ctx.skipped += 1
                continue
            ctx.fetched += 1
            rows.append(values)

            if len(rows) >= settings.page_size:
                ctx.synced += await upsert_rows(self.db, Contact, rows, ["source", "external_id"])
                rows = []

        ctx.synced += await upsert_rows(self.db, Contact, rows, ["source", "external_id"])

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def default_window(
        self, source: SyncSource, now: datetime | None = None
    ) -> tuple[datetime, datetime]:
        """Incremental window: from the end of known coverage (or a lookback) to now."""
        now = now or datetime.now(UTC)
        state = await self.tracker.read(source.value)
        start = as_utc(state.fresh_until) if state and state.fresh_until else None
        if start is None or start > now:
            start = now - timedelta(hours=settings.default_lookback_hours)
        return start, now

    async def _resolve_window(
        self,
        source: SyncSource,
        start_date: datetime | None,
        end_date: datetime | None,
        fetch_all: bool,
    ) -> tuple[datetime | None, datetime | None]:
        now = datetime.now(UTC)
        start, end = as_utc(start_date), as_utc(end_date)

        if source == SyncSource.PAYMENTS_SECONDARY:
            # Always a bounded window, clamped to the provider's history limit
            earliest = now - timedelta(days=settings.secondary_history_days)
            if fetch_all and start is None:
                start = earliest
            if start is None:
                start, _ = await self.default_window(source, now)
            if start < earliest:
                logger.warning(f"payments-secondary: clamping start {start} to {earliest}")
                start = earliest
            return start, end or now

        if fetch_all or source in (SyncSource.CRM, SyncSource.MESSAGING):
            return start, end
        if start is None:
            start, _ = await self.default_window(source, now)
        return start, end or now

    async def _acquire_run(
        self,
        source: SyncSource,
        metadata: dict[str, Any],
        force: bool,
        continuation: dict[str, Any] | None,
    ) -> SyncRun:
        """Start a new run (subject to the per-source lease) or resume one."""
        if continuation:
            run = await self.ledger.get(uuid.UUID(str(continuation["sync_run_id"])))
            if run is None or run.source != source.value:
                raise InvalidRunTransition(f"No {source.value} run to continue")
            if run.is_terminal:
                raise InvalidRunTransition(
                    f"Sync run {run.id} is {run.status} and cannot be continued"
                )
            if run.status != SyncRunStatus.RUNNING:
                await self.ledger.mark_running(run.id)
            return run

        async with _source_lock(source):
            if not force:
                active = await self.ledger.active_runs(
                    source.value, younger_than_minutes=settings.stuck_run_timeout_minutes
                )
                if active:
                    raise SyncInProgressError(source, active[0].id)
            return await self.ledger.start(source.value, metadata)

    def _coverage_range(self, ctx: _RunContext) -> tuple[datetime | None, datetime | None]:
        """The interval this run proved synchronized."""
        if ctx.source == SyncSource.MESSAGING:
            return None, None

        range_end = ctx.window_end or as_utc(ctx.started_at)
        if ctx.truncated:
            # Listings are newest first; only the part actually walked is covered.
            return ctx.oldest_seen, range_end
        return ctx.window_start or ctx.oldest_seen, range_end

    async def run(
        self,
        source: SyncSource,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        force: bool = False,
        fetch_all: bool = False,
        continuation: dict[str, Any] | None = None,
    ) -> SyncOutcome:
        """
        Execute one sync invocation for `source`.

        Raises SyncInProgressError when the lease is held, InvalidRunTransition
        for a bad continuation and SyncJobError when the job itself fails.
        """
        started = time.monotonic()
        source = SyncSource(source)

        meta: dict[str, Any] = {}
        if continuation:
            existing = await self.ledger.get(uuid.UUID(str(continuation["sync_run_id"])))
            meta = (existing.run_metadata if existing else None) or {}
            fetch_all = bool(meta.get("fetchAll", fetch_all))

        if meta.get("startDate") or meta.get("endDate"):
            # Resume on the exact window the run started with; re-resolving
            # against a later clock would shift the chunk boundaries.
            window_start = self._parse_datetime(meta.get("startDate"))
            window_end = self._parse_datetime(meta.get("endDate"))
        else:
            window_start, window_end = await self._resolve_window(
                source, start_date, end_date, fetch_all
            )
        metadata = {
            "fetchAll": fetch_all,
            "force": force,
            "startDate": window_start.isoformat() if window_start else None,
            "endDate": window_end.isoformat() if window_end else None,
        }

        run = await self._acquire_run(source, metadata, force, continuation)
        run_id = run.id
        ctx = _RunContext(
            run_id=run_id,
            source=source,
            started_at=run.started_at,
            window_start=window_start,
            window_end=window_end,
            fetch_all=fetch_all,
            checkpoint=dict(run.checkpoint or {}),
        )
        if continuation:
            ctx.synced = int(continuation.get("total_synced", run.total_inserted or 0))
            ctx.fetched = run.total_fetched or 0
            ctx.skipped = run.total_skipped or 0
            if "chunk_index" in continuation:
                ctx.checkpoint["chunk_index"] = int(continuation["chunk_index"])

        logger.info(f"Starting {source.value} sync (run {run_id}): {window_start} -> {window_end}")

        try:
            await self._handlers[source](ctx)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"{source.value} sync failed after {ctx.synced} records: {message}", exc_info=True)
            await self.db.rollback()
            await self.ledger.fail(run_id, message, ctx.counters())
            await self.tracker.record_failure(source.value, message)

            status_code = 500
            if isinstance(e, ProviderError) and not isinstance(e, ProviderNotConfiguredError):
                status_code = 502
            raise SyncJobError(
                message,
                source=source,
                run_id=run_id,
                processed=ctx.synced,
                status_code=status_code,
            ) from e

        duration_ms = int((time.monotonic() - started) * 1000)
        stats = {
            **ctx.stats,
            "pages_fetched": ctx.pages,
            "truncated": ctx.truncated,
            "total_fetched": ctx.fetched,
            "total_skipped": ctx.skipped,
        }

        if ctx.continuation:
            await self.ledger.mark_continuing(run_id, ctx.checkpoint, ctx.counters())
            status = SyncRunStatus.CONTINUING.value
        else:
            await self.ledger.complete(run_id, ctx.counters(), {**metadata, **stats})
            range_start, range_end = self._coverage_range(ctx)
            await self.tracker.record_success(
                source.value,
                run_id=run_id,
                status=SyncRunStatus.COMPLETED.value,
                meta={COUNT_FIELDS[source]: ctx.synced, **stats},
                range_start=range_start,
                range_end=range_end,
            )
            status = SyncRunStatus.COMPLETED.value

        logger.info(f"{source.value} sync {status}: {ctx.synced} records in {duration_ms}ms")
        return SyncOutcome(
            source=source,
            run_id=run_id,
            status=status,
            synced=ctx.synced,
            fetched=ctx.fetched,
            skipped=ctx.skipped,
            pages_fetched=ctx.pages,
            truncated=ctx.truncated,
            duration_ms=duration_ms,
            stats=stats,
            continuation=ctx.continuation,
        )
