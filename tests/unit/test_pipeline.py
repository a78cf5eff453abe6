"""Unit tests for end-to-end generation runs."""

import pytest

from alertsynth import AlertSynthConfig, GenerationPipeline, run_generation, run_generation_sync
from alertsynth.core.exceptions import RunFailedError
from alertsynth.llm.exceptions import BackendUnavailableError
from alertsynth.llm.providers import OpenAIProvider
from alertsynth.store.elasticsearch import ElasticsearchStore

from conftest import FakeStore, MockLLMProvider, alert_json


@pytest.fixture
def config():
    return AlertSynthConfig(
        backend={"max_retries": 0, "retry_base_delay": 0.0, "request_timeout": 1.0},
        generation={"generation_chunk_size": 2},
        chain={"chain_probability": 0.5},
        dispatch={"initial_batch_size": 4, "concurrency": 2},
    )


class TestPipelineConstruction:
    """Tests for wiring components from configuration."""

    def test_components_from_config(self, config):
        pipeline = GenerationPipeline.from_config(config, provider=MockLLMProvider(), store=FakeStore())

        assert pipeline.orchestrator.planner is not None
        assert pipeline.orchestrator.planner.chain_probability == 0.5
        assert pipeline.cache is pipeline.orchestrator.cache
        assert pipeline.dispatcher.initial_batch_size == 4

    def test_disabled_chain_and_cache(self):
        config = AlertSynthConfig(chain={"enabled": False}, cache={"enabled": False})

        pipeline = GenerationPipeline.from_config(config, provider=MockLLMProvider(), store=FakeStore())

        assert pipeline.orchestrator.planner is None
        assert pipeline.cache is None

    def test_default_provider_and_store(self):
        pipeline = GenerationPipeline.from_config(AlertSynthConfig(backend={"api_key": "k"}))

        assert isinstance(pipeline.orchestrator.provider, OpenAIProvider)
        assert isinstance(pipeline.dispatcher.store, ElasticsearchStore)

    def test_no_provider_when_ai_disabled(self):
        pipeline = GenerationPipeline.from_config(AlertSynthConfig(generation={"use_ai": False}), store=FakeStore())
        assert pipeline.orchestrator.provider is None


class TestPipelineRun:
    """Tests for complete runs."""

    @pytest.mark.asyncio
    async def test_run_delivers_every_record(self, config, entities):
        store = FakeStore()
        provider = MockLLMProvider(default=alert_json())

        report = await run_generation(config, entities, namespace="prod", provider=provider, store=store)

        assert report.records == len(entities)
        assert report.dispatch.delivered == len(entities)
        assert {doc["host.name"] for doc in store.documents.values()} == {e.host_name for e in entities}
        assert all(call["namespace"] == "prod" for call in store.calls)
        assert store.calls[-1]["refresh"] is True
        assert store.closed

    @pytest.mark.asyncio
    async def test_maintenance_runs_inside_context(self, config, entities):
        pipeline = GenerationPipeline.from_config(config, provider=MockLLMProvider(default=alert_json()), store=FakeStore())

        async with pipeline:
            assert pipeline.cache._maintenance_task is not None
            await pipeline.run(entities[:1])

        assert pipeline.cache._maintenance_task is None
        assert len(pipeline.cache) == 0

    @pytest.mark.asyncio
    async def test_backend_outage_fails_after_delivery(self, config, entities):
        store = FakeStore()
        provider = MockLLMProvider(default=BackendUnavailableError("invalid api key", provider="mock"))

        with pytest.raises(RunFailedError) as exc_info:
            await run_generation(config, entities, provider=provider, store=store)

        report = exc_info.value.report
        assert report.backend_outage
        assert report.dispatch.delivered == len(entities)
        assert report.stats.records_by_level["template"] == len(entities)
        assert len(store.documents) == len(entities)

    @pytest.mark.asyncio
    async def test_backend_outage_tolerated_when_configured(self, entities):
        config = AlertSynthConfig(generation={"fail_on_backend_outage": False}, backend={"max_retries": 0})
        provider = MockLLMProvider(default=BackendUnavailableError("invalid api key"))

        report = await run_generation(config, entities, provider=provider, store=FakeStore())

        assert report.backend_outage
        assert report.records == len(entities)

    @pytest.mark.asyncio
    async def test_report_to_dict(self, config, entities):
        report = await run_generation(
            config, entities[:2], provider=MockLLMProvider(default=alert_json()), store=FakeStore()
        )

        data = report.to_dict()

        assert data["records"] == 2
        assert data["generation"]["requested"] == 2
        assert data["dispatch"]["delivered"] == 2

    @pytest.mark.asyncio
    async def test_cached_record_is_rejected_as_duplicate(self, entities):
        config = AlertSynthConfig(chain={"enabled": False})
        store = FakeStore()
        provider = MockLLMProvider(default=alert_json())

        async with GenerationPipeline.from_config(config, provider=provider, store=store) as pipeline:
            first = await pipeline.run(entities[:1])
            second = await pipeline.run(entities[:1])

        assert first.dispatch.delivered == 1
        assert second.stats.cache_hits == 1
        assert second.dispatch.delivered == 0
        assert second.dispatch.errors_by_type == {"version_conflict_engine_exception": 1}
        assert provider.call_count == 1


def test_run_generation_sync(config, entities):
    store = FakeStore()

    report = run_generation_sync(config, entities[:3], provider=MockLLMProvider(default=alert_json()), store=store)

    assert report.records == 3
    assert len(store.documents) == 3
