"""Unit tests for adaptive batch dispatch."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from alertsynth.config.models import DispatchConfig
from alertsynth.core.dispatcher import BatchDispatcher
from alertsynth.core.exceptions import StoreOverflowError, StoreWriteError
from alertsynth.store.base import WriteResult

from conftest import FakeStore


def records(count: int):
    return [{"kibana.alert.uuid": f"id-{i}"} for i in range(count)]


def too_large():
    return StoreOverflowError("too large", reason=StoreOverflowError.PAYLOAD_TOO_LARGE, status_code=413)


class SlowStore(FakeStore):
    """Fake store that tracks how many writes overlap."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.max_active = 0

    async def write_batch(self, records, namespace, refresh=False):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return await super().write_batch(records, namespace, refresh)


class TestDispatch:
    """Tests for batching and delivery."""

    @pytest.mark.asyncio
    async def test_batches_and_final_refresh(self):
        store = FakeStore()
        dispatcher = BatchDispatcher(store, initial_batch_size=4, concurrency=2)

        result = await dispatcher.dispatch(records(10), "prod")

        assert [call["size"] for call in store.calls] == [4, 4, 2]
        assert [call["refresh"] for call in store.calls] == [False, False, True]
        assert all(call["namespace"] == "prod" for call in store.calls)
        assert result.delivered == 10
        assert result.batches == 3
        assert len(store.documents) == 10

    @pytest.mark.asyncio
    async def test_single_batch_is_refreshed(self):
        store = FakeStore()

        await BatchDispatcher(store, initial_batch_size=10).dispatch(records(3), "default")

        assert store.calls == [{"size": 3, "namespace": "default", "refresh": True}]

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        store = SlowStore()
        dispatcher = BatchDispatcher(store, initial_batch_size=1, concurrency=3)

        result = await dispatcher.dispatch(records(12), "default")

        assert result.delivered == 12
        assert store.max_active <= 3
        assert store.max_active >= 2
        assert store.calls[-1]["refresh"] is True
        assert sum(call["refresh"] for call in store.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_input(self):
        store = FakeStore()

        result = await BatchDispatcher(store).dispatch([], "default")

        assert result.total == 0
        assert store.calls == []


class TestOverflow:
    """Tests for adaptive batch sizing."""

    @pytest.mark.asyncio
    async def test_payload_too_large_halves_batch(self):
        store = FakeStore(failures=[too_large()])
        dispatcher = BatchDispatcher(store, initial_batch_size=8, concurrency=1)

        result = await dispatcher.dispatch(records(8), "default")

        assert [call["size"] for call in store.calls] == [8, 4, 4]
        assert result.delivered == 8
        assert result.adjustments == 1
        assert result.final_batch_size == 4
        assert sorted(store.documents) == sorted(r["kibana.alert.uuid"] for r in records(8))

    @pytest.mark.asyncio
    async def test_repeated_overflow_keeps_halving(self):
        store = FakeStore(failures=[too_large(), too_large(), too_large()])
        dispatcher = BatchDispatcher(store, initial_batch_size=8, concurrency=1)

        result = await dispatcher.dispatch(records(8), "default")

        assert result.final_batch_size == 1
        assert result.delivered == 8
        assert result.adjustments == 3

    @pytest.mark.asyncio
    async def test_persistent_overflow_at_size_one_escalates(self):
        store = FakeStore(failures=[too_large(), too_large(), too_large()])
        dispatcher = BatchDispatcher(store, initial_batch_size=1, concurrency=1, max_overflow_retries=2)

        with pytest.raises(StoreOverflowError):
            await dispatcher.dispatch(records(1), "default")

        assert len(store.calls) == 3

    @pytest.mark.asyncio
    async def test_single_record_too_large_is_retried(self):
        store = FakeStore(failures=[too_large()])
        dispatcher = BatchDispatcher(store, initial_batch_size=1, concurrency=1)

        result = await dispatcher.dispatch(records(1), "default")

        assert result.delivered == 1
        assert [call["size"] for call in store.calls] == [1, 1]

    @pytest.mark.asyncio
    async def test_single_record_rate_limit_recovers(self):
        sleep = AsyncMock()
        rate_limited = StoreOverflowError("slow down", reason=StoreOverflowError.RATE_LIMITED, retry_after=1.5)
        store = FakeStore(failures=[rate_limited])
        dispatcher = BatchDispatcher(store, initial_batch_size=1, concurrency=1, sleep=sleep)

        result = await dispatcher.dispatch(records(1), "default")

        sleep.assert_awaited_once_with(1.5)
        assert result.delivered == 1
        assert store.calls[-1]["refresh"] is True

    @pytest.mark.asyncio
    async def test_rate_limited_leftover_record_is_resent(self):
        sleep = AsyncMock()
        rate_limited = StoreOverflowError("slow down", reason=StoreOverflowError.RATE_LIMITED)
        store = FakeStore(failures=[None, rate_limited])
        dispatcher = BatchDispatcher(store, initial_batch_size=2, concurrency=1, sleep=sleep)

        result = await dispatcher.dispatch(records(3), "default")

        assert result.delivered == 3
        assert [call["size"] for call in store.calls] == [2, 1, 1]
        assert result.final_batch_size == 2
        assert result.adjustments == 0

    @pytest.mark.asyncio
    async def test_successful_write_resets_single_record_retries(self):
        store = FakeStore(failures=[too_large(), None, too_large(), None])
        dispatcher = BatchDispatcher(store, initial_batch_size=1, concurrency=1, max_overflow_retries=1)

        result = await dispatcher.dispatch(records(2), "default")

        assert result.delivered == 2
        assert len(store.calls) == 4

    @pytest.mark.asyncio
    async def test_rate_limit_waits_retry_after(self):
        sleep = AsyncMock()
        rate_limited = StoreOverflowError("slow down", reason=StoreOverflowError.RATE_LIMITED, retry_after=2.0)
        store = FakeStore(failures=[rate_limited])
        dispatcher = BatchDispatcher(store, initial_batch_size=4, concurrency=1, sleep=sleep)

        result = await dispatcher.dispatch(records(4), "default")

        sleep.assert_awaited_once_with(2.0)
        assert result.delivered == 4
        assert result.final_batch_size == 2

    @pytest.mark.asyncio
    async def test_rate_limit_default_delay(self):
        sleep = AsyncMock()
        store = FakeStore(failures=[StoreOverflowError("slow down", reason=StoreOverflowError.RATE_LIMITED)])
        dispatcher = BatchDispatcher(store, initial_batch_size=2, concurrency=1, rate_limit_delay=0.5, sleep=sleep)

        await dispatcher.dispatch(records(2), "default")

        sleep.assert_awaited_once_with(0.5)


class TestFailures:
    """Tests for whole-batch and per-item failures."""

    @pytest.mark.asyncio
    async def test_write_error_counts_batch_as_failed(self):
        store = FakeStore(failures=[StoreWriteError("boom", status_code=500)])
        dispatcher = BatchDispatcher(store, initial_batch_size=3, concurrency=1)

        result = await dispatcher.dispatch(records(6), "default")

        assert result.failed == 3
        assert result.delivered == 3

    @pytest.mark.asyncio
    async def test_item_errors_counted_by_type(self):
        store = FakeStore(reject_ids=["id-1", "id-3"])

        result = await BatchDispatcher(store, initial_batch_size=10).dispatch(records(5), "default")

        assert result.delivered == 3
        assert result.item_errors == 2
        assert result.errors_by_type == {"version_conflict_engine_exception": 2}

    @pytest.mark.asyncio
    async def test_in_flight_writes_cancelled_on_escalation(self):
        cancelled = asyncio.Event()

        class MixedStore(FakeStore):
            async def write_batch(self, records, namespace, refresh=False):
                if records[0]["kibana.alert.uuid"] == "id-0":
                    raise too_large()
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.set()
                    raise
                return WriteResult(accepted=len(records))

        dispatcher = BatchDispatcher(MixedStore(), initial_batch_size=1, concurrency=2)

        with pytest.raises(StoreOverflowError):
            await dispatcher.dispatch(records(3), "default")

        assert cancelled.is_set()


class TestConstruction:
    """Tests for dispatcher configuration."""

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            BatchDispatcher(FakeStore(), initial_batch_size=0)
        with pytest.raises(ValueError):
            BatchDispatcher(FakeStore(), concurrency=0)
        with pytest.raises(ValueError):
            BatchDispatcher(FakeStore(), max_overflow_retries=-1)

    def test_from_config(self):
        config = DispatchConfig(
            initial_batch_size=50, concurrency=2, rate_limit_delay_seconds=0.25, max_overflow_retries=5
        )

        dispatcher = BatchDispatcher.from_config(FakeStore(), config)

        assert dispatcher.initial_batch_size == 50
        assert dispatcher.concurrency == 2
        assert dispatcher.rate_limit_delay == 0.25
        assert dispatcher.max_overflow_retries == 5
