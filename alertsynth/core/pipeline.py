"""End-to-end generation runs: plan, generate, validate, deliver."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from alertsynth.config.models import AlertSynthConfig
from alertsynth.core.cache import ResponseCache
from alertsynth.core.dispatcher import BatchDispatcher, DispatchResult
from alertsynth.core.exceptions import RunFailedError
from alertsynth.core.models import Entity, GenerationStats
from alertsynth.core.orchestrator import GenerationOrchestrator
from alertsynth.intelligence.chain_planner import ChainPlanner
from alertsynth.intelligence.technique_graph import TechniqueGraph
from alertsynth.llm.base import BaseLLMProvider
from alertsynth.llm.providers import create_provider
from alertsynth.store.base import DocumentStore
from alertsynth.store.elasticsearch import ElasticsearchStore

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Summary of one generation run."""
    namespace: str
    records: int
    stats: GenerationStats
    dispatch: DispatchResult
    chains: int = 0

    @property
    def backend_outage(self) -> bool:
        """The backend was unavailable and never produced a record."""
        return self.stats.backend_unavailable > 0 and self.stats.backend_successes == 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "namespace": self.namespace,
            "records": self.records,
            "chains": self.chains,
            "generation": self.stats.to_dict(),
            "dispatch": self.dispatch.to_dict(),
        }


class GenerationPipeline:
    """Wires the orchestrator to a document store for complete runs.

    Use as an async context manager so cache maintenance is started and the
    store connection is released::

        async with GenerationPipeline.from_config(config) as pipeline:
            report = await pipeline.run(entities, namespace="default")
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        dispatcher: BatchDispatcher,
        cache: Optional[ResponseCache] = None,
        maintenance_interval: float = 900.0,
        fail_on_backend_outage: bool = True,
    ):
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.cache = cache
        self.maintenance_interval = maintenance_interval
        self.fail_on_backend_outage = fail_on_backend_outage

    @classmethod
    def from_config(
        cls,
        config: AlertSynthConfig,
        provider: Optional[BaseLLMProvider] = None,
        store: Optional[DocumentStore] = None,
        rng: Optional[random.Random] = None,
    ) -> "GenerationPipeline":
        """Build every component from configuration.

        ``provider`` and ``store`` override the configured backend and
        Elasticsearch store.
        """
        rng = rng or random.Random()

        planner = None
        if config.chain.enabled:
            if config.chain.technique_data_path:
                graph = TechniqueGraph.from_file(config.chain.technique_data_path)
            else:
                graph = TechniqueGraph.default()
            planner = ChainPlanner.from_config(graph, config.chain, rng=rng)

        cache = ResponseCache.from_config(config.cache) if config.cache.enabled else None

        if provider is None and config.generation.use_ai:
            provider = create_provider(config.backend)

        orchestrator = GenerationOrchestrator(
            provider,
            planner=planner,
            cache=cache,
            backend=config.backend,
            generation=config.generation,
            rng=rng,
        )

        if store is None:
            store = ElasticsearchStore.from_config(config.store)
        dispatcher = BatchDispatcher.from_config(store, config.dispatch)

        return cls(
            orchestrator,
            dispatcher,
            cache=cache,
            maintenance_interval=config.cache.maintenance_interval_seconds,
            fail_on_backend_outage=config.generation.fail_on_backend_outage,
        )

    async def __aenter__(self) -> "GenerationPipeline":
        if self.cache is not None:
            self.cache.start_maintenance(self.maintenance_interval)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        await self.dispatcher.store.close()

    async def run(
        self,
        entities: Sequence[Entity],
        namespace: str = "default",
        theme: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> RunReport:
        """Generate one record per entity and deliver them to the store.

        Raises:
            RunFailedError: After delivery, when the backend was unavailable
                for the whole run and ``fail_on_backend_outage`` is set
            StoreOverflowError: If the store rejects even single-record batches
        """
        logger.info(f"Starting generation run for {len(entities)} entities in namespace '{namespace}'")
        outcome = await self.orchestrator.generate(entities, namespace=namespace, theme=theme, deadline=deadline)
        dispatch = await self.dispatcher.dispatch(outcome.records, namespace)

        report = RunReport(
            namespace=namespace,
            records=len(outcome.records),
            stats=outcome.stats,
            dispatch=dispatch,
            chains=len(outcome.chains),
        )
        if report.backend_outage and self.fail_on_backend_outage:
            raise RunFailedError(
                f"Backend unavailable for the whole run; {dispatch.delivered} templated records delivered",
                report=report,
            )
        logger.info(f"Generation run complete: {report.records} records, {dispatch.delivered} delivered")
        return report


async def run_generation(
    config: AlertSynthConfig,
    entities: Sequence[Entity],
    namespace: str = "default",
    theme: Optional[str] = None,
    deadline: Optional[float] = None,
    provider: Optional[BaseLLMProvider] = None,
    store: Optional[DocumentStore] = None,
) -> RunReport:
    """Run one generation with a pipeline built from ``config``."""
    async with GenerationPipeline.from_config(config, provider=provider, store=store) as pipeline:
        return await pipeline.run(entities, namespace=namespace, theme=theme, deadline=deadline)


def run_generation_sync(
    config: AlertSynthConfig,
    entities: Sequence[Entity],
    namespace: str = "default",
    theme: Optional[str] = None,
    deadline: Optional[float] = None,
    provider: Optional[BaseLLMProvider] = None,
    store: Optional[DocumentStore] = None,
) -> RunReport:
    """Synchronous wrapper around ``run_generation``."""
    return asyncio.run(
        run_generation(config, entities, namespace=namespace, theme=theme, deadline=deadline,
                       provider=provider, store=store)
    )
