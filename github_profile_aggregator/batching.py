"""Fan-out/fan-in of batched queries.

Identifiers are split into fixed-size chunks, every chunk is queried on its
own worker thread, and the per-chunk outcomes are stitched back together by
chunk index so the caller sees its original order regardless of which query
finished first. A single failing chunk fails the whole fetch.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from .errors import BatchCancelledError, BatchFetchError, FetchCancelledError
from .models import Chunk, ChunkOutcome, UserRecord

logger = logging.getLogger(__name__)

# How often the executor re-checks the token while batches are in flight
POLL_INTERVAL = 0.05

BatchQuery = Callable[[Chunk, "CancellationToken"], Iterable[UserRecord]]


def plan_batches(identifiers: Sequence, max_batch_size: int) -> list[Chunk]:
    """Partition identifiers into contiguous chunks of at most max_batch_size."""
    if max_batch_size < 1:
        raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
    items = list(identifiers)
    return [
        Chunk(index=index, start=start, items=tuple(items[start : start + max_batch_size]))
        for index, start in enumerate(range(0, len(items), max_batch_size))
    ]


class CancellationToken:
    """Cancel signal shared by every batch of one fetch.

    Fires when cancel() is called or when the optional timeout (seconds from
    construction) runs out.
    """

    def __init__(self, timeout: float | None = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.deadline_exceeded

    def remaining(self) -> float | None:
        """Seconds left before the deadline, None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds, waking early on cancellation. Returns cancelled."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(seconds)
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelledError("fetch was cancelled")
        if self.deadline_exceeded:
            raise FetchCancelledError("fetch deadline exceeded")


def _run_chunk(chunk: Chunk, query: BatchQuery, token: CancellationToken) -> ChunkOutcome:
    try:
        token.raise_if_cancelled()
        records = list(query(chunk, token))
    except Exception as e:
        logger.warning("Batch %d-%d failed: %s: %s", chunk.start, chunk.end, type(e).__name__, e)
        return ChunkOutcome(chunk.index, chunk.start, chunk.end, error=e)
    logger.debug("Batch %d-%d returned %d records", chunk.start, chunk.end, len(records))
    return ChunkOutcome(chunk.index, chunk.start, chunk.end, records=records)


def _cancelled_outcome(chunk: Chunk) -> ChunkOutcome:
    return ChunkOutcome(
        chunk.index,
        chunk.start,
        chunk.end,
        error=FetchCancelledError("fetch was cancelled before the batch started"),
    )


def execute_batches(
    chunks: Sequence[Chunk],
    query: BatchQuery,
    token: CancellationToken | None = None,
    max_workers: int | None = None,
) -> list[ChunkOutcome]:
    """Run query once per chunk concurrently and collect one outcome per chunk.

    Outcomes are returned in completion order. Exceptions raised by query
    become error outcomes. Batches still queued when the token fires are
    cancelled without calling query; running ones are waited for.
    """
    if max_workers is not None and max_workers < 1:
        raise ValueError(f"max_workers must be positive, got {max_workers}")
    if not chunks:
        return []
    token = token or CancellationToken()
    workers = len(chunks) if max_workers is None else min(max_workers, len(chunks))

    outcomes: list[ChunkOutcome] = []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="batch") as executor:
        futures: dict[Future, Chunk] = {
            executor.submit(_run_chunk, chunk, query, token): chunk for chunk in chunks
        }
        pending = set(futures)
        while pending:
            done, pending = wait(pending, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
            for future in done:
                outcomes.append(future.result())
            if pending and token.cancelled:
                for future in list(pending):
                    if future.cancel():
                        pending.discard(future)
                        outcomes.append(_cancelled_outcome(futures[future]))
    return outcomes


def assemble_results(outcomes: Iterable[ChunkOutcome], chunk_count: int) -> list[UserRecord]:
    """Merge chunk outcomes back into input order, or raise if any chunk failed.

    Records with an empty login (non-user nodes) are dropped.
    """
    ordered = sorted(outcomes, key=lambda o: o.index)
    indices = [o.index for o in ordered]
    if indices != list(range(chunk_count)):
        raise ValueError(f"expected one outcome per batch for {chunk_count} batches, got indices {indices}")

    failures = [o for o in ordered if not o.ok]
    if failures:
        # Report the first real failure; cancellations only win when nothing else went wrong
        primary = next(
            (o for o in failures if not isinstance(o.error, FetchCancelledError)),
            failures[0],
        )
        error_cls = BatchCancelledError if isinstance(primary.error, FetchCancelledError) else BatchFetchError
        raise error_cls(primary.start, primary.end, primary.error, failed_batches=len(failures)) from primary.error

    records: list[UserRecord] = []
    for outcome in ordered:
        for record in outcome.records or []:
            if not record.login:
                logger.debug("Dropping non-user node in batch %d-%d", outcome.start, outcome.end)
                continue
            records.append(record)
    return records
