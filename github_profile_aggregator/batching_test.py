"""Unit tests for batch planning, concurrent execution and result assembly."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from .batching import (
    CancellationToken,
    assemble_results,
    execute_batches,
    plan_batches,
)
from .errors import (
    BatchCancelledError,
    BatchFetchError,
    FetchCancelledError,
    ProtocolError,
    TransportError,
)
from .models import Chunk, ChunkOutcome, UserRecord


def _records_for(chunk: Chunk) -> list[UserRecord]:
    return [UserRecord(login=str(item)) for item in chunk.items]


def _logins(records: list[UserRecord]) -> list[str]:
    return [r.login for r in records]


def describe_plan_batches():

    def it_splits_23_items_into_10_10_3():
        chunks = plan_batches([f"user{i}" for i in range(23)], 10)
        assert [len(c.items) for c in chunks] == [10, 10, 3]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert [(c.start, c.end) for c in chunks] == [(0, 10), (10, 20), (20, 23)]

    def it_partitions_exhaustively():
        for n in range(0, 26):
            for size in (1, 3, 10, 30):
                items = list(range(n))
                chunks = plan_batches(items, size)
                assert len(chunks) == -(-n // size)
                assert sum(len(c.items) for c in chunks) == n
                assert [i for c in chunks for i in c.items] == items

    def it_returns_no_chunks_for_empty_input():
        assert plan_batches([], 10) == []

    def it_keeps_duplicates_in_place():
        chunks = plan_batches(["a", "b", "a", "a"], 3)
        assert chunks[0].items == ("a", "b", "a")
        assert chunks[1].items == ("a",)

    def it_rejects_non_positive_batch_size():
        with pytest.raises(ValueError):
            plan_batches(["a"], 0)


def describe_CancellationToken():

    def it_starts_uncancelled():
        token = CancellationToken()
        assert not token.cancelled
        assert token.remaining() is None
        token.raise_if_cancelled()

    def it_cancels_explicitly():
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        with pytest.raises(FetchCancelledError, match="cancelled"):
            token.raise_if_cancelled()

    def it_expires_after_timeout():
        token = CancellationToken(timeout=0.01)
        time.sleep(0.02)
        assert token.cancelled
        assert token.remaining() == 0.0
        with pytest.raises(FetchCancelledError, match="deadline"):
            token.raise_if_cancelled()

    def it_wakes_early_from_wait_on_cancel():
        token = CancellationToken()
        threading.Timer(0.01, token.cancel).start()
        t0 = time.monotonic()
        assert token.wait(5) is True
        assert time.monotonic() - t0 < 2


def describe_execute_batches():

    def it_returns_one_outcome_per_chunk():
        chunks = plan_batches(list(range(23)), 10)
        outcomes = execute_batches(chunks, lambda chunk, token: _records_for(chunk))
        assert sorted(o.index for o in outcomes) == [0, 1, 2]
        assert all(o.ok for o in outcomes)

    def it_makes_no_calls_for_no_chunks():
        calls = []
        assert execute_batches([], lambda chunk, token: calls.append(chunk)) == []
        assert calls == []

    def it_runs_chunks_concurrently():
        chunks = plan_batches(list(range(30)), 10)
        barrier = threading.Barrier(3, timeout=5)

        def query(chunk, token):
            # Deadlocks unless all three chunks are in flight together
            barrier.wait()
            return _records_for(chunk)

        outcomes = execute_batches(chunks, query)
        assert all(o.ok for o in outcomes)

    def it_respects_max_workers():
        chunks = plan_batches(list(range(50)), 10)
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def query(chunk, token):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.02)
            with lock:
                active[0] -= 1
            return _records_for(chunk)

        outcomes = execute_batches(chunks, query, max_workers=2)
        assert len(outcomes) == 5
        assert peak[0] <= 2

    def it_rejects_zero_workers():
        query = MagicMock()
        with pytest.raises(ValueError, match="max_workers"):
            execute_batches(plan_batches(["a"], 10), query, max_workers=0)
        query.assert_not_called()

    def it_turns_exceptions_into_error_outcomes():
        chunks = plan_batches(list(range(30)), 10)

        def query(chunk, token):
            if chunk.index == 1:
                raise TransportError("connection reset")
            return _records_for(chunk)

        outcomes = {o.index: o for o in execute_batches(chunks, query)}
        assert outcomes[0].ok and outcomes[2].ok
        assert isinstance(outcomes[1].error, TransportError)
        assert outcomes[1].records is None

    def it_waits_for_running_chunks_after_a_failure():
        chunks = plan_batches(list(range(20)), 10)
        finished = threading.Event()

        def query(chunk, token):
            if chunk.index == 0:
                raise ProtocolError(["boom"])
            time.sleep(0.05)
            finished.set()
            return _records_for(chunk)

        outcomes = execute_batches(chunks, query)
        assert finished.is_set()
        assert len(outcomes) == 2

    def it_skips_queries_when_already_cancelled():
        chunks = plan_batches(list(range(30)), 10)
        token = CancellationToken()
        token.cancel()
        calls = []

        outcomes = execute_batches(chunks, lambda chunk, t: calls.append(chunk) or [], token=token)

        assert calls == []
        assert len(outcomes) == 3
        assert all(isinstance(o.error, FetchCancelledError) for o in outcomes)

    def it_cancels_queued_chunks_when_token_fires():
        chunks = plan_batches(list(range(50)), 10)
        token = CancellationToken()
        calls = []

        def query(chunk, t):
            calls.append(chunk.index)
            token.cancel()
            return _records_for(chunk)

        outcomes = execute_batches(chunks, query, token=token, max_workers=1)

        assert calls == [0]
        assert len(outcomes) == 5
        cancelled = [o for o in outcomes if not o.ok]
        assert len(cancelled) == 4
        assert all(isinstance(o.error, FetchCancelledError) for o in cancelled)

    def it_lets_running_chunks_observe_the_deadline():
        chunks = plan_batches(list(range(20)), 10)
        token = CancellationToken(timeout=0.05)

        def query(chunk, t):
            while not t.wait(5):
                pass
            t.raise_if_cancelled()
            return _records_for(chunk)

        t0 = time.monotonic()
        outcomes = execute_batches(chunks, query, token=token)
        assert time.monotonic() - t0 < 2
        assert all(isinstance(o.error, FetchCancelledError) for o in outcomes)


def describe_assemble_results():

    def _ok(index, start, logins):
        return ChunkOutcome(index, start, start + len(logins), records=[UserRecord(login=login) for login in logins])

    def _failed(index, start, end, error):
        return ChunkOutcome(index, start, end, error=error)

    def it_restores_input_order_from_completion_order():
        outcomes = [
            _ok(2, 20, ["u20", "u21", "u22"]),
            _ok(0, 0, [f"u{i}" for i in range(10)]),
            _ok(1, 10, [f"u{i}" for i in range(10, 20)]),
        ]
        records = assemble_results(outcomes, 3)
        assert _logins(records) == [f"u{i}" for i in range(23)]

    def it_is_deterministic():
        outcomes = [_ok(1, 2, ["c", "d"]), _ok(0, 0, ["a", "b"])]
        first = _logins(assemble_results(outcomes, 2))
        second = _logins(assemble_results(list(reversed(outcomes)), 2))
        assert first == second == ["a", "b", "c", "d"]

    def it_drops_non_user_records():
        outcomes = [_ok(0, 0, ["a", "", "c"])]
        assert _logins(assemble_results(outcomes, 1)) == ["a", "c"]

    def it_returns_empty_for_no_chunks():
        assert assemble_results([], 0) == []

    def it_raises_with_the_failing_range():
        cause = TransportError("timed out")
        outcomes = [
            _ok(0, 0, [f"u{i}" for i in range(10)]),
            _failed(1, 10, 20, cause),
            _ok(2, 20, ["u20", "u21", "u22"]),
        ]
        with pytest.raises(BatchFetchError, match="10-20") as exc_info:
            assemble_results(outcomes, 3)
        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause
        assert (exc_info.value.start, exc_info.value.end) == (10, 20)
        assert not isinstance(exc_info.value, BatchCancelledError)

    def it_reports_the_lowest_failing_batch_and_counts_the_rest():
        outcomes = [
            _failed(1, 10, 20, ProtocolError(["second"])),
            _failed(0, 0, 10, ProtocolError(["first"])),
        ]
        with pytest.raises(BatchFetchError, match="0-10") as exc_info:
            assemble_results(outcomes, 2)
        assert exc_info.value.failed_batches == 2
        assert "first" in str(exc_info.value)

    def it_reports_cancellation_distinctly():
        outcomes = [
            _failed(0, 0, 10, FetchCancelledError("fetch was cancelled")),
            _ok(1, 10, ["x"]),
        ]
        with pytest.raises(BatchCancelledError):
            assemble_results(outcomes, 2)

    def it_prefers_a_real_failure_over_cancellation():
        outcomes = [
            _failed(0, 0, 10, FetchCancelledError("fetch was cancelled")),
            _failed(1, 10, 20, ProtocolError(["bad query"])),
        ]
        with pytest.raises(BatchFetchError) as exc_info:
            assemble_results(outcomes, 2)
        assert not isinstance(exc_info.value, BatchCancelledError)
        assert isinstance(exc_info.value.cause, ProtocolError)

    def it_rejects_missing_outcomes():
        with pytest.raises(ValueError):
            assemble_results([_ok(0, 0, ["a"])], 2)

    def it_rejects_duplicate_outcomes():
        with pytest.raises(ValueError):
            assemble_results([_ok(0, 0, ["a"]), _ok(0, 0, ["a"])], 2)


def describe_fan_out_fan_in():

    def it_preserves_order_when_later_chunks_finish_first():
        identifiers = [f"user{i}" for i in range(23)]
        chunks = plan_batches(identifiers, 10)
        # Each chunk finishes only after the chunk behind it has
        released = [threading.Event() for _ in chunks]
        finished = []

        def query(chunk, token):
            if chunk.index + 1 < len(chunks):
                assert released[chunk.index + 1].wait(5)
            finished.append(chunk.index)
            released[chunk.index].set()
            return _records_for(chunk)

        outcomes = execute_batches(chunks, query)
        assert finished == [2, 1, 0]
        assert _logins(assemble_results(outcomes, len(chunks))) == identifiers

    def it_returns_nothing_when_one_chunk_fails():
        chunks = plan_batches([f"user{i}" for i in range(23)], 10)

        def query(chunk, token):
            if chunk.index == 1:
                raise TransportError("timed out")
            return _records_for(chunk)

        outcomes = execute_batches(chunks, query)
        with pytest.raises(BatchFetchError, match="10-20"):
            assemble_results(outcomes, len(chunks))
