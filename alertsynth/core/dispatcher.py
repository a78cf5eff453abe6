"""Adaptive-size, bounded-concurrency delivery of records to the store.

Records are sent in batches of an adaptive size with at most ``concurrency``
batches in flight. When the store reports a batch as too large or rate
limited, the batch size halves (never below one) and that batch's records go
back to the front of the queue. A single-record batch that overflows is resent
as is, up to ``max_overflow_retries`` times in a row. Only the final batch of a
run asks the store for synchronous visibility; it is held back until every
other batch has settled.
"""

import asyncio
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from alertsynth import metrics
from alertsynth.core.exceptions import StoreOverflowError, StoreWriteError
from alertsynth.store.base import DocumentStore, WriteResult

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of dispatching one run's records."""
    total: int
    delivered: int = 0
    item_errors: int = 0
    failed: int = 0
    batches: int = 0
    adjustments: int = 0
    final_batch_size: int = 0
    errors_by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for serialization."""
        return {
            "total": self.total,
            "delivered": self.delivered,
            "item_errors": self.item_errors,
            "failed": self.failed,
            "batches": self.batches,
            "adjustments": self.adjustments,
            "final_batch_size": self.final_batch_size,
            "errors_by_type": dict(self.errors_by_type),
        }


class BatchDispatcher:
    """Delivers validated records to a ``DocumentStore``.

    Args:
        store: Bulk-capable document store
        initial_batch_size: Starting number of records per batch
        concurrency: Maximum batches in flight
        rate_limit_delay: Wait before resending after a rate limit without Retry-After
        max_overflow_retries: Resends of a single-record batch after overflow before giving up
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        store: DocumentStore,
        initial_batch_size: int = 500,
        concurrency: int = 4,
        rate_limit_delay: float = 1.0,
        max_overflow_retries: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if initial_batch_size < 1:
            raise ValueError("initial_batch_size must be at least 1")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_overflow_retries < 0:
            raise ValueError("max_overflow_retries must not be negative")
        self.store = store
        self.initial_batch_size = initial_batch_size
        self.concurrency = concurrency
        self.rate_limit_delay = rate_limit_delay
        self.max_overflow_retries = max_overflow_retries
        self._sleep = sleep

    @classmethod
    def from_config(cls, store: DocumentStore, config: Any) -> "BatchDispatcher":
        """Create a dispatcher from a ``DispatchConfig``."""
        return cls(
            store,
            initial_batch_size=config.initial_batch_size,
            concurrency=config.concurrency,
            rate_limit_delay=config.rate_limit_delay_seconds,
            max_overflow_retries=config.max_overflow_retries,
        )

    async def dispatch(self, records: Sequence[Dict[str, Any]], namespace: str) -> DispatchResult:
        """Write every record, adapting the batch size to store overflow.

        Raises:
            StoreOverflowError: If a single-record batch keeps overflowing past
                ``max_overflow_retries`` resends
        """
        result = DispatchResult(total=len(records))
        batch_size = self.initial_batch_size
        result.final_batch_size = batch_size
        metrics.DISPATCH_BATCH_SIZE.set(batch_size)
        if not records:
            return result

        pending: Deque[Dict[str, Any]] = deque(records)
        in_flight: Dict[asyncio.Task, Tuple[List[Dict[str, Any]], bool]] = {}
        error_types: Counter = Counter()
        # Consecutive overflows of single-record batches since the last accepted write
        single_overflows = 0

        try:
            while pending or in_flight:
                while pending and len(in_flight) < self.concurrency:
                    is_last = len(pending) <= batch_size
                    if is_last and in_flight:
                        break
                    batch = [pending.popleft() for _ in range(min(batch_size, len(pending)))]
                    task = asyncio.create_task(self.store.write_batch(batch, namespace, refresh=is_last))
                    in_flight[task] = (batch, is_last)
                    result.batches += 1

                done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    batch, is_last = in_flight.pop(task)
                    try:
                        write_result: WriteResult = task.result()
                    except StoreOverflowError as e:
                        if len(batch) <= 1:
                            single_overflows += 1
                            if single_overflows > self.max_overflow_retries:
                                logger.error(
                                    f"Store overflow persists at batch size 1 after "
                                    f"{self.max_overflow_retries} retries: {e.message}"
                                )
                                raise
                            logger.warning(
                                f"Store overflow ({e.reason}) on a single record; "
                                f"retry {single_overflows}/{self.max_overflow_retries}"
                            )
                        else:
                            new_size = min(batch_size, max(1, len(batch) // 2))
                            if new_size < batch_size:
                                logger.warning(
                                    f"Store overflow ({e.reason}); reducing batch size {batch_size} -> {new_size}"
                                )
                                batch_size = new_size
                                metrics.DISPATCH_BATCH_SIZE.set(batch_size)
                            result.adjustments += 1
                            metrics.BATCH_SIZE_ADJUSTMENTS.labels(reason=e.reason).inc()
                        pending.extendleft(reversed(batch))
                        if e.reason == StoreOverflowError.RATE_LIMITED:
                            await self._sleep(e.retry_after if e.retry_after is not None else self.rate_limit_delay)
                    except StoreWriteError as e:
                        result.failed += len(batch)
                        logger.error(f"Batch of {len(batch)} records failed: {e.message}")
                    else:
                        single_overflows = 0
                        result.delivered += write_result.accepted
                        if write_result.item_errors:
                            result.item_errors += len(write_result.item_errors)
                            for item_error in write_result.item_errors:
                                error_types[item_error.error_type] += 1
                                metrics.STORE_ITEM_ERRORS.labels(error_type=item_error.error_type).inc()
                                logger.debug(
                                    f"Record {item_error.record_id} rejected: "
                                    f"{item_error.error_type} {item_error.reason}"
                                )
                            logger.warning(
                                f"{len(write_result.item_errors)} of {len(batch)} records rejected by store"
                            )
        finally:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

        result.final_batch_size = batch_size
        result.errors_by_type = dict(error_types)
        logger.info(
            f"Dispatched {result.delivered}/{result.total} records in {result.batches} batches "
            f"(item_errors={result.item_errors}, failed={result.failed}, "
            f"adjustments={result.adjustments}, final_batch_size={batch_size})"
        )
        return result
