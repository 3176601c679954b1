# src/sluice/engine/collector.py
"""StatefulApiCollector: concurrent, paginated, rate-aware collection.

One collector execution fetches every page of every input item and writes
each non-empty page to the raw store. Items run concurrently on a bounded
worker pool; the pages of one item run strictly in order on one worker.

Failure handling is per item. A failed page fetch is retried when its kind
is retryable, then handed to the strategy as a FetchAttemptResult. Only
skip-item and abort-item contain a failure; every other disposition fails
the whole stage once in-flight items have drained.

Threading model:
    dispatcher (caller thread)   iterates inputs, waits for a free slot, submits
    workers (ThreadPoolExecutor) page loop per item, retry sleeps, store writes;
                                 each runs in a copy of the dispatcher's contextvars
    shared                       ApiClient + limiter, RawDataStore engine, tally lock
"""

from __future__ import annotations

import contextvars
import json
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx

from sluice.contracts.enums import CollectorStatus, Disposition, StatusClass
from sluice.contracts.errors import (
    ClientError,
    CollectionAborted,
    CollectorError,
    NotFoundError,
    RateLimitedError,
    ResponseParseError,
    RetryExhausted,
    ServerError,
    SkipThresholdExceeded,
    TransportError,
)
from sluice.contracts.results import CollectorResult, FetchAttemptResult, SkipRecord
from sluice.core.canonical import canonical_json
from sluice.engine.pagination import PageNumberPager, Pager
from sluice.engine.retry import MaxRetriesExceeded, RetryManager
from sluice.engine.strategy import CollectorStrategy, RequestScope
from sluice.plugins.clients.http import parse_retry_after, preview_body

if TYPE_CHECKING:
    from sluice.contracts.config import RetryConfig
    from sluice.contracts.context import TaskContext
    from sluice.plugins.clients.http import ApiClient, ApiRequest

InputT = TypeVar("InputT")

# How often a dispatcher waiting for a free worker re-checks cancellation
_SLOT_POLL_SECONDS = 0.1

_UNSET: Any = object()


@dataclass
class _Tally:
    processed: int = 0
    pages: int = 0
    records: int = 0
    skipped: list[SkipRecord] = field(default_factory=list)
    interrupted: bool = False
    fatal: BaseException | None = None


class StatefulApiCollector(Generic[InputT]):
    """Collects one upstream resource kind into one raw table.

    Args:
        ctx: Task context (store, logger, cancellation, runtime config)
        table: Raw table kind or name (`jobs` or `_raw_jobs`)
        client: Authenticated client; its limiter spaces every request
        strategy: Request building, parsing and classification
        inputs: Items to collect, or None for one synthetic input
        pager: Pagination strategy (default: page-number, short page ends)
        params: Raw-store namespace (default: ctx.params)
        page_size: Items per page (default: ctx.config.page_size)
        max_workers: Concurrent items (default: ctx.config.max_workers)
        retry: Retry behavior (default: ctx.config.retry)
        identity: Maps an input to the value that identifies it in the raw
            store and in skip records (default: the whole input)
        input_state: Maps an input to extra state stored with each of its
            pages, outside the key (default: nothing stored)
        max_skip_ratio: Fail the stage above this skipped fraction
            (default: ctx.config.max_skip_ratio; None disables)

    Example:
        result = StatefulApiCollector(
            ctx,
            table="github_api_jobs",
            client=client,
            strategy=CollectorStrategy("repos/{{ params.name }}/actions/runs/{{ input.id }}/jobs", items_path="jobs"),
            inputs=CursorIterator(ctx.db, select(runs.c.id), lambda row: SimpleRun(id=row["id"])),
        ).execute()
    """

    def __init__(
        self,
        ctx: TaskContext,
        *,
        table: str,
        client: ApiClient,
        strategy: CollectorStrategy[InputT],
        inputs: Iterable[InputT] | None = None,
        pager: Pager | None = None,
        params: Mapping[str, Any] | None = None,
        page_size: int | None = None,
        max_workers: int | None = None,
        retry: RetryConfig | None = None,
        identity: Callable[[InputT], Any] | None = None,
        input_state: Callable[[InputT], Any] | None = None,
        max_skip_ratio: float | None = _UNSET,
    ) -> None:
        self._ctx = ctx
        self._table = table
        self._client = client
        self._strategy = strategy
        self._inputs = inputs
        self._pager = pager or PageNumberPager()
        self._params = params if params is not None else ctx.params
        self._page_size = page_size or ctx.config.page_size
        self._max_workers = max_workers or ctx.config.max_workers
        self._identity = identity
        self._input_state = input_state
        self._max_skip_ratio = ctx.config.max_skip_ratio if max_skip_ratio is _UNSET else max_skip_ratio
        self._retry = RetryManager(retry or ctx.config.retry, cancel_event=ctx.cancel_event)
        self._preview_limit = ctx.config.body_preview_bytes
        self._lock = threading.Lock()
        self._tally = _Tally()
        self._log = ctx.logger.bind(table=table)

    # === Execution ===

    def execute(self) -> CollectorResult:
        """Collect every input.

        Returns:
            CollectorResult with status completed, partial or cancelled

        Raises:
            PersistenceError: The raw store failed
            CollectionAborted: A strategy escalated a page outcome to abort-all
            SkipThresholdExceeded: Too many items were skipped
        """
        start = time.perf_counter()
        self._tally = _Tally()
        raw = self._ctx.store.ensure_table(self._table)
        if self._ctx.full_sync:
            # A forced full sync re-collects from scratch; nothing from earlier runs survives
            purged = self._ctx.store.delete(raw.name, self._params)
            self._log.info("Raw pages purged for full sync", deleted=purged)
        abort = threading.Event()
        slots = threading.BoundedSemaphore(self._max_workers)
        synthetic = self._inputs is None
        inputs: Iterable[Any] = [None] if synthetic else self._inputs  # type: ignore[assignment]

        self._log.info("Collector started", workers=self._max_workers, page_size=self._page_size)

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix=f"collect-{raw.name}") as pool:
            try:
                for item in inputs:
                    if not self._acquire_slot(slots, abort):
                        break
                    future = pool.submit(contextvars.copy_context().run, self._guarded, item, synthetic, abort)
                    future.add_done_callback(lambda _: slots.release())
            except BaseException:
                # The input iterator itself failed; stop in-flight items early
                abort.set()
                raise

        tally = self._tally
        if tally.fatal is not None:
            raise tally.fatal

        result = CollectorResult(
            table=raw.name,
            processed=tally.processed,
            skipped=tuple(tally.skipped),
            pages=tally.pages,
            records=tally.records,
            status=self._status(tally),
            elapsed_seconds=time.perf_counter() - start,
        )

        if not result.cancelled:
            self._check_skip_ratio(result)

        self._log.info(
            "Collector finished",
            status=str(result.status),
            processed=result.processed,
            skipped=result.skipped_count,
            pages=result.pages,
            records=result.records,
            elapsed_seconds=round(result.elapsed_seconds, 3),
        )
        return result

    def _status(self, tally: _Tally) -> CollectorStatus:
        if tally.interrupted:
            return CollectorStatus.CANCELLED
        if tally.skipped:
            return CollectorStatus.PARTIAL
        return CollectorStatus.COMPLETED

    def _check_skip_ratio(self, result: CollectorResult) -> None:
        if self._max_skip_ratio is None or result.total_items == 0:
            return
        if result.skipped_count / result.total_items > self._max_skip_ratio:
            raise SkipThresholdExceeded(skipped=result.skipped_count, total=result.total_items, threshold=self._max_skip_ratio)

    def _stopping(self, abort: threading.Event) -> bool:
        if self._ctx.cancel_event.is_set():
            with self._lock:
                self._tally.interrupted = True
            return True
        return abort.is_set()

    def _acquire_slot(self, slots: threading.BoundedSemaphore, abort: threading.Event) -> bool:
        while True:
            if self._stopping(abort):
                return False
            if slots.acquire(timeout=_SLOT_POLL_SECONDS):
                return True

    def _guarded(self, item: Any, synthetic: bool, abort: threading.Event) -> None:
        try:
            self._collect_item(item, synthetic, abort)
        except Exception as e:
            with self._lock:
                if self._tally.fatal is None:
                    self._tally.fatal = e
            abort.set()

    # === One item ===

    def _collect_item(self, item: Any, synthetic: bool, abort: threading.Event) -> None:
        stored_input = None if synthetic else (self._identity(item) if self._identity else item)
        key = None if synthetic else canonical_json(stored_input)
        snapshot = self._input_state(item) if self._input_state and not synthetic else None
        state = self._pager.first(self._page_size)

        while True:
            if self._stopping(abort):
                return

            request = self._strategy.build_request(RequestScope(self._params, item, state), self._pager)
            result, body = self._fetch(request, item, key, state.number)
            disposition = self._strategy.classify_response(result)

            if not result.ok:
                if self._ctx.cancel_event.is_set():
                    # Retrying was cut short by cancellation; the item is neither done nor skipped
                    with self._lock:
                        self._tally.interrupted = True
                    return
                self._contain(disposition, result, synthetic)
                return

            if disposition == Disposition.ABORT_ALL:
                raise CollectionAborted(f"Strategy aborted collection at {result.url}", item=item)
            if disposition == Disposition.SKIP_ITEM:
                self._record_skip(result, synthetic)
                return

            if not result.items:
                # An empty page ends the sequence and is not stored
                self._finish_item(stored_input, keep_through=state.number - 1)
                return

            self._persist(stored_input, state.number, result, snapshot)

            if disposition == Disposition.ABORT_ITEM:
                self._finish_item(stored_input, keep_through=None)
                return

            next_state = self._pager.next(state, result.response, body, result.items)  # type: ignore[arg-type]
            if next_state is None:
                self._finish_item(stored_input, keep_through=state.number)
                return
            state = next_state

    def _contain(self, disposition: Disposition, result: FetchAttemptResult, synthetic: bool) -> None:
        """Apply the strategy's decision about a failed fetch."""
        if disposition == Disposition.SKIP_ITEM:
            self._record_skip(result, synthetic)
            return
        if disposition == Disposition.ABORT_ITEM:
            self._log.info(
                "Item stopped by strategy",
                item=result.item_key,
                url=result.url,
                status_code=result.status_code,
                reason=str(result.error),
            )
            self._finish_item(None, keep_through=None)
            return
        # continue on a failed fetch, or abort-all
        raise CollectionAborted(
            f"Collection of {self._table} aborted: {result.error}",
            item=result.item,
            cause=result.error,
        )

    def _finish_item(self, stored_input: Any, *, keep_through: int | None) -> None:
        """Count an item as processed; prune trailing pages when its sequence ended naturally."""
        if keep_through is not None:
            self._ctx.store.prune_pages(self._table, self._params, stored_input, keep_through)
        with self._lock:
            self._tally.processed += 1
        self._ctx.increment_progress()

    def _persist(self, stored_input: Any, page: int, result: FetchAttemptResult, snapshot: Any) -> None:
        payload = json.dumps(list(result.items), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        self._ctx.store.upsert(self._table, self._params, stored_input, page, payload, url=result.url, input_state=snapshot)
        with self._lock:
            self._tally.pages += 1
            self._tally.records += len(result.items)

    def _record_skip(self, result: FetchAttemptResult, synthetic: bool) -> None:
        reason = self._strategy.skip_reason(result)
        error = result.error
        record = SkipRecord(
            item=None if synthetic else result.item,
            item_key=result.item_key,
            reason=reason,
            kind=error.kind if error is not None else "strategy",
            status_code=result.status_code,
            url=result.url,
        )
        with self._lock:
            self._tally.skipped.append(record)
        self._log.warning(
            "Item skipped",
            item=record.item_key if record.attributed else "<unattributed>",
            url=record.url,
            status_code=record.status_code,
            kind=record.kind,
            reason=reason,
        )

    # === One page ===

    def _fetch(self, request: ApiRequest, item: Any, key: str | None, page: int) -> tuple[FetchAttemptResult, Any]:
        """Fetch and parse one page; every expected failure becomes a result, never an exception."""
        url = self._client.resolve_url(request.url)
        attempts = 0

        def attempt() -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return self._send(request, item, url)

        def on_retry(attempt_number: int, error: BaseException) -> None:
            self._log.debug("Retrying page", item=key, url=url, attempt=attempt_number, error=str(error))

        try:
            response = self._retry.execute_with_retry(
                attempt,
                is_retryable=lambda e: isinstance(e, CollectorError) and e.retryable,
                on_retry=on_retry,
            )
        except MaxRetriesExceeded as e:
            assert isinstance(e.last_error, CollectorError)  # only CollectorErrors are retried
            exhausted = RetryExhausted(attempts=e.attempts, last_error=e.last_error)
            return self._failure(exhausted, item, key, page, url, attempts), None
        except CollectorError as e:
            return self._failure(e, item, key, page, url, attempts), None

        try:
            parsed = self._strategy.parse_response(response)
        except ResponseParseError as e:
            e.item = item
            e.url = url
            e.status_code = response.status_code
            e.body = preview_body(response.text, self._preview_limit)
            return self._failure(e, item, key, page, url, attempts, response=response), None

        result = FetchAttemptResult(
            item=item,
            item_key=key,
            page=page,
            url=url,
            status_class=StatusClass.SUCCESS,
            status_code=response.status_code,
            response=response,
            attempts=attempts,
            items=tuple(parsed.items),
        )
        return result, parsed.body

    def _send(self, request: ApiRequest, item: Any, url: str) -> httpx.Response:
        """One attempt: send, and turn anything but a 2xx into a typed CollectorError."""
        try:
            response = self._client.send(request, cancel_event=self._ctx.cancel_event)
        except httpx.TransportError as e:
            raise TransportError(f"{type(e).__name__} calling {url}: {e}", item=item, url=url) from e

        status = response.status_code
        if 200 <= status < 300:
            return response

        details: dict[str, Any] = {
            "item": item,
            "url": url,
            "status_code": status,
            "body": preview_body(response.text, self._preview_limit),
        }
        message = f"HTTP {status} calling {url}"
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None and self._client.limiter is not None:
                self._client.limiter.defer(retry_after)
            raise RateLimitedError(message, retry_after=retry_after, **details)
        if status >= 500:
            raise ServerError(message, **details)
        if status == 404:
            raise NotFoundError(message, **details)
        raise ClientError(message, **details)

    def _failure(
        self,
        error: CollectorError,
        item: Any,
        key: str | None,
        page: int,
        url: str,
        attempts: int,
        *,
        response: httpx.Response | None = None,
    ) -> FetchAttemptResult:
        if isinstance(error, TransportError) or (isinstance(error, RetryExhausted) and isinstance(error.last_error, TransportError)):
            status_class = StatusClass.TRANSPORT_ERROR
        elif error.status_code is not None:
            status_class = StatusClass.from_status_code(error.status_code)
        else:
            status_class = StatusClass.TRANSPORT_ERROR
        return FetchAttemptResult(
            item=item,
            item_key=key,
            page=page,
            url=error.url or url,
            status_class=status_class,
            status_code=error.status_code,
            body=error.body,
            response=response,
            error=error,
            attempts=attempts,
        )
