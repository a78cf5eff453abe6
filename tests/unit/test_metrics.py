"""Unit tests for Prometheus metric exposition."""

import pytest
from prometheus_client import REGISTRY

from alertsynth.core.dispatcher import BatchDispatcher
from alertsynth.core.exceptions import StoreOverflowError
from alertsynth.metrics import render_metrics

from conftest import FakeStore


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestRenderMetrics:
    """Tests for the text exposition output."""

    def test_exposition_format(self):
        body, content_type = render_metrics()

        assert content_type.startswith("text/plain")
        text = body.decode()
        assert "alertsynth_records_generated_total" in text
        assert "alertsynth_dispatch_batch_size" in text

    @pytest.mark.asyncio
    async def test_dispatch_updates_metrics(self):
        before_errors = sample("alertsynth_store_item_errors_total", error_type="version_conflict_engine_exception")
        before_adjustments = sample("alertsynth_batch_size_adjustments_total", reason=StoreOverflowError.PAYLOAD_TOO_LARGE)
        overflow = StoreOverflowError("too large", reason=StoreOverflowError.PAYLOAD_TOO_LARGE, status_code=413)
        store = FakeStore(failures=[overflow], reject_ids=["id-0"])
        records = [{"kibana.alert.uuid": f"id-{i}"} for i in range(4)]

        await BatchDispatcher(store, initial_batch_size=4, concurrency=1).dispatch(records, "default")

        assert sample("alertsynth_store_item_errors_total", error_type="version_conflict_engine_exception") == before_errors + 1
        assert sample("alertsynth_batch_size_adjustments_total", reason=StoreOverflowError.PAYLOAD_TOO_LARGE) == before_adjustments + 1
        assert sample("alertsynth_dispatch_batch_size") == 2
        assert 'alertsynth_dispatch_batch_size 2.0' in render_metrics()[0].decode()
