"""Generation orchestration with caching and a three-level fallback cascade.

Every entity is tracked by an ``EntitySlot`` that moves through the cascade
(cache -> batched backend -> individual backend -> deterministic template).
A lower level is only attempted for slots a higher level left unresolved, so
a run always ends with exactly one record per requested entity.
"""

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from alertsynth import metrics
from alertsynth.config.models import BackendConfig, GenerationConfig
from alertsynth.core.cache import ResponseCache, alert_cache_key
from alertsynth.core.models import (
    CascadeLevel,
    Entity,
    EntitySlot,
    GenerationRequest,
    GenerationStats,
)
from alertsynth.core.normalizer import normalize_response
from alertsynth.core.templates import build_default_record
from alertsynth.core.timestamps import TimeWindow, resolve_time_window
from alertsynth.core.validator import (
    RECORD_ID_FIELD,
    TIMESTAMP_FIELDS,
    drop_nested,
    validate_record,
)
from alertsynth.intelligence.chain_planner import (
    AttackChain,
    ChainPlanner,
    TechniqueSelection,
    build_mitre_context,
    mitre_fields,
)
from alertsynth.llm.base import BaseLLMProvider
from alertsynth.llm.exceptions import BackendUnavailableError, LLMError, RateLimitError
from alertsynth.llm.prompts import PromptContext, build_batch_prompt, build_single_prompt, load_schema_excerpt

logger = logging.getLogger(__name__)


# Fields the deterministic default always wins on when merging backend output
PROTECTED_FIELDS = ("host.name", "user.name", "kibana.space_ids", RECORD_ID_FIELD) + TIMESTAMP_FIELDS


@dataclass
class GenerationOutcome:
    """Records of one run, in entity order, plus run statistics."""
    records: List[Dict[str, Any]]
    stats: GenerationStats
    chains: List[AttackChain] = field(default_factory=list)


class GenerationOrchestrator:
    """Drives backend calls, caching, retries and the fallback cascade.

    Args:
        provider: Text-generation backend, or None to always use templates
        planner: Chain planner; None disables MITRE context entirely
        cache: Response cache; None disables caching
        backend: Retry/timeout/circuit settings for backend calls
        generation: Chunking, concurrency and time window settings
        examples: Prior example records used as prompt context
        rng: Random source, injectable for deterministic tests
        sleep: Awaitable sleep used for retry backoff, injectable for tests
    """

    def __init__(
        self,
        provider: Optional[BaseLLMProvider],
        planner: Optional[ChainPlanner] = None,
        cache: Optional[ResponseCache] = None,
        backend: Optional[BackendConfig] = None,
        generation: Optional[GenerationConfig] = None,
        examples: Sequence[Dict[str, Any]] = (),
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.planner = planner
        self.cache = cache
        self.backend = backend or BackendConfig()
        self.generation = generation or GenerationConfig()
        self.rng = rng or random.Random()
        self._sleep = sleep

        self.schema_excerpt = load_schema_excerpt(self.generation.schema_path)
        self.window: TimeWindow = resolve_time_window(self.generation.time_window)
        self._examples: Deque[Dict[str, Any]] = deque(examples, maxlen=max(1, self.generation.max_examples))
        self._semaphore = asyncio.Semaphore(self.generation.backend_concurrency)
        self._consecutive_unavailable = 0
        self._circuit_open = False
        self.stats = GenerationStats()

    # ========================================================================
    # Public API
    # ========================================================================

    async def generate_one(self, request: GenerationRequest) -> Dict[str, Any]:
        """Generate a record for one entity (cache -> individual -> template)."""
        slot = EntitySlot(0, request)
        self.stats.requested += 1
        self._lookup_cache(slot)
        if not slot.resolved:
            await self._resolve_individual(slot)
        if not slot.resolved:
            self._resolve_template(slot)
        self._count(slot)
        return slot.record

    async def generate_batch(self, requests: Sequence[GenerationRequest]) -> List[Dict[str, Any]]:
        """Generate one record per request, in request order."""
        slots = [EntitySlot(i, request) for i, request in enumerate(requests)]
        self.stats.requested += len(slots)
        await self._run_batch(slots)
        for slot in slots:
            if not slot.resolved:
                self._resolve_template(slot)
            self._count(slot)
        return [slot.record for slot in slots]

    async def generate_chain(
        self,
        chain: AttackChain,
        entities: Sequence[Entity],
        namespace: str = "default",
        theme: Optional[str] = None,
        variant: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Generate one record per chain stage, strictly in stage order.

        Stage ``i`` is attributed to ``entities[i % len(entities)]``.
        """
        if not entities:
            raise ValueError("generate_chain requires at least one entity")
        slots = self._chain_slots(chain, entities, 0, namespace, theme, variant)
        self.stats.requested += len(slots)
        self.stats.chains_planned += 1
        await self._run_chain(slots)
        self._template_chain_remainder(slots)
        for slot in slots:
            self._count(slot)
        return [slot.record for slot in slots]

    async def generate(
        self,
        entities: Sequence[Entity],
        namespace: str = "default",
        theme: Optional[str] = None,
        variant: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> GenerationOutcome:
        """Generate exactly one record per entity.

        Consecutive entities are grouped into attack chains with the planner's
        chain probability; the rest get independent technique selections and
        go through the batched path. When ``deadline`` (seconds) expires,
        in-flight backend calls are abandoned and unresolved entities fall
        back to the deterministic template.
        """
        self.stats = GenerationStats(requested=len(entities))
        self.window = resolve_time_window(self.generation.time_window)
        theme = theme if theme is not None else self.generation.theme
        started = time.monotonic()

        batch_slots, chain_slots, chains = self._plan(entities, namespace, theme, variant)
        self.stats.chains_planned = len(chains)

        async def run_all() -> None:
            await asyncio.gather(
                self._run_batch(batch_slots),
                *(self._run_chain(slots) for slots in chain_slots),
            )

        try:
            if deadline is not None:
                await asyncio.wait_for(run_all(), timeout=deadline)
            else:
                await run_all()
        except asyncio.TimeoutError:
            self.stats.deadline_expired = True
            unresolved = sum(1 for s in batch_slots if not s.resolved)
            unresolved += sum(1 for slots in chain_slots for s in slots if not s.resolved)
            logger.warning(f"Generation deadline of {deadline}s expired; templating {unresolved} unresolved entities")

        for slot in batch_slots:
            if not slot.resolved:
                self._resolve_template(slot)
        for slots in chain_slots:
            self._template_chain_remainder(slots)

        all_slots = sorted(batch_slots + [s for slots in chain_slots for s in slots], key=lambda s: s.index)
        for slot in all_slots:
            self._count(slot)

        self._log_summary(time.monotonic() - started)
        return GenerationOutcome(records=[slot.record for slot in all_slots], stats=self.stats, chains=chains)

    def reset_circuit(self) -> None:
        """Allow backend calls again after repeated unavailability."""
        self._consecutive_unavailable = 0
        self._circuit_open = False

    @property
    def circuit_open(self) -> bool:
        return self._circuit_open

    # ========================================================================
    # Planning
    # ========================================================================

    def _plan(
        self,
        entities: Sequence[Entity],
        namespace: str,
        theme: Optional[str],
        variant: Optional[str],
    ) -> Tuple[List[EntitySlot], List[List[EntitySlot]], List[AttackChain]]:
        batch_slots: List[EntitySlot] = []
        chain_slots: List[List[EntitySlot]] = []
        chains: List[AttackChain] = []
        variant = variant or self.generation.alert_type

        index = 0
        while index < len(entities):
            chain = self.planner.plan_chain(len(entities) - index) if self.planner else None
            if chain is not None:
                members = entities[index:index + chain.length]
                chain_slots.append(self._chain_slots(chain, members, index, namespace, theme, variant))
                chains.append(chain)
                index += chain.length
                continue

            techniques = tuple(self.planner.select_independent()) if self.planner else ()
            request = GenerationRequest(
                entity=entities[index],
                namespace=namespace,
                variant=variant,
                theme=theme,
                techniques=techniques,
            )
            batch_slots.append(EntitySlot(index, request))
            index += 1
        return batch_slots, chain_slots, chains

    def _chain_slots(
        self,
        chain: AttackChain,
        entities: Sequence[Entity],
        first_index: int,
        namespace: str,
        theme: Optional[str],
        variant: Optional[str],
    ) -> List[EntitySlot]:
        slots = []
        for stage_index, stage in enumerate(chain.stages):
            request = GenerationRequest(
                entity=entities[stage_index % len(entities)],
                namespace=namespace,
                variant=variant or self.generation.alert_type,
                theme=theme,
                techniques=(stage,),
                chain=chain,
                stage_index=stage_index,
            )
            slots.append(EntitySlot(first_index + stage_index, request))
        return slots

    # ========================================================================
    # Cascade levels
    # ========================================================================

    def _lookup_cache(self, slot: EntitySlot) -> None:
        request = slot.request
        if self.cache is None or request.is_chain_stage:
            return
        cached = self.cache.get(self._cache_key(request))
        if cached is None:
            self.stats.cache_misses += 1
            return
        self.stats.cache_hits += 1
        slot.complete(cached, CascadeLevel.CACHE)

    async def _run_batch(self, slots: List[EntitySlot]) -> None:
        for slot in slots:
            self._lookup_cache(slot)

        remaining = [slot for slot in slots if not slot.resolved]
        size = self.generation.generation_chunk_size
        chunks = [remaining[i:i + size] for i in range(0, len(remaining), size)]
        if chunks:
            await asyncio.gather(*(self._resolve_chunk(chunk) for chunk in chunks))

        degraded = [slot for slot in remaining if not slot.resolved]
        if degraded:
            logger.debug(f"{len(degraded)} entities degraded from batch to individual generation")
            await asyncio.gather(*(self._resolve_individual(slot) for slot in degraded))

    async def _resolve_chunk(self, chunk: List[EntitySlot]) -> None:
        first = chunk[0].request
        context = build_batch_prompt(
            [(s.request.entity.host_name, s.request.entity.user_name) for s in chunk],
            namespace=first.namespace,
            schema_excerpt=self.schema_excerpt,
            alert_type=first.variant,
            theme=first.theme,
            examples=self._prompt_examples(),
            technique_hints=[[t.effective_id for t in s.request.techniques] for s in chunk],
            max_tokens=self.backend.max_tokens,
            temperature=self.backend.temperature,
        )
        text = await self._call_backend(context)
        candidates = normalize_response(text, max_records=len(chunk)) if text is not None else []
        if text is not None and len(candidates) != len(chunk):
            logger.debug(f"Batch response yielded {len(candidates)} of {len(chunk)} records")

        for position, slot in enumerate(chunk):
            candidate = candidates[position] if position < len(candidates) else None
            if candidate:
                self._accept(slot, candidate, CascadeLevel.BATCH)
            else:
                slot.fail(CascadeLevel.BATCH)

    async def _resolve_individual(self, slot: EntitySlot) -> None:
        text = await self._call_backend(self._single_context(slot.request))
        candidates = normalize_response(text, max_records=1) if text is not None else []
        if candidates and candidates[0]:
            self._accept(slot, candidates[0], CascadeLevel.INDIVIDUAL)
        else:
            slot.fail(CascadeLevel.INDIVIDUAL)

    def _resolve_template(self, slot: EntitySlot) -> None:
        slot.complete(self._finalize({}, slot.request), CascadeLevel.TEMPLATE)

    def _accept(self, slot: EntitySlot, candidate: Dict[str, Any], level: CascadeLevel) -> None:
        record = self._finalize(candidate, slot.request)
        slot.complete(record, level)
        self._examples.append(record)
        if self.cache is not None and not slot.request.is_chain_stage:
            self.cache.set(self._cache_key(slot.request), record)

    # ========================================================================
    # Chains
    # ========================================================================

    async def _run_chain(self, slots: List[EntitySlot]) -> None:
        for position, slot in enumerate(slots):
            slot.request = replace(slot.request, parent_ids=self._parent_ids(slots, position))
            await self._resolve_individual(slot)
            if not slot.resolved:
                self._resolve_template(slot)

    def _template_chain_remainder(self, slots: List[EntitySlot]) -> None:
        for position, slot in enumerate(slots):
            if slot.resolved:
                continue
            slot.request = replace(slot.request, parent_ids=self._parent_ids(slots, position))
            self._resolve_template(slot)

    @staticmethod
    def _parent_ids(slots: List[EntitySlot], position: int) -> Tuple[str, ...]:
        return tuple(slot.record[RECORD_ID_FIELD] for slot in slots[:position])

    # ========================================================================
    # Backend calls
    # ========================================================================

    def _prompt_examples(self) -> List[Dict[str, Any]]:
        if not self.generation.max_examples:
            return []
        return list(self._examples)[-self.generation.max_examples:]

    def _single_context(self, request: GenerationRequest) -> PromptContext:
        mitre_context = ""
        chain_stage = None
        if self.planner is not None and request.techniques:
            mitre_context = build_mitre_context(self.planner.graph, request.techniques, request.chain)
        if request.is_chain_stage:
            chain_stage = (request.stage_index, request.chain.length)
        return build_single_prompt(
            request.entity.host_name,
            request.entity.user_name,
            namespace=request.namespace,
            schema_excerpt=self.schema_excerpt,
            alert_type=request.variant,
            mitre_context=mitre_context,
            theme=request.theme,
            examples=self._prompt_examples(),
            chain_stage=chain_stage,
            max_tokens=self.backend.max_tokens,
            temperature=self.backend.temperature,
        )

    async def _call_backend(self, context: PromptContext) -> Optional[str]:
        """Call the backend with retries; None when every attempt failed."""
        if self.provider is None or not self.generation.use_ai:
            return None

        attempts = self.backend.max_retries + 1
        for attempt in range(attempts):
            if self._circuit_open:
                return None

            retry_after = None
            async with self._semaphore:
                self.stats.backend_calls += 1
                start_time = time.monotonic()
                try:
                    text = await asyncio.wait_for(
                        self.provider.complete(context),
                        timeout=self.backend.request_timeout,
                    )
                except BackendUnavailableError as e:
                    self._record_unavailable(e)
                    return None
                except asyncio.TimeoutError:
                    self.stats.backend_failures += 1
                    metrics.BACKEND_CALLS.labels(outcome="timeout").inc()
                    logger.warning(
                        f"Backend call timed out after {self.backend.request_timeout}s "
                        f"(attempt {attempt + 1}/{attempts})"
                    )
                except RateLimitError as e:
                    self.stats.backend_failures += 1
                    metrics.BACKEND_CALLS.labels(outcome="rate_limited").inc()
                    retry_after = e.retry_after
                    logger.warning(f"Backend rate limited (attempt {attempt + 1}/{attempts}): {e}")
                except LLMError as e:
                    self.stats.backend_failures += 1
                    metrics.BACKEND_CALLS.labels(outcome="error").inc()
                    logger.warning(f"Backend call failed (attempt {attempt + 1}/{attempts}): {e}")
                except Exception as e:
                    self.stats.backend_failures += 1
                    metrics.BACKEND_CALLS.labels(outcome="error").inc()
                    logger.warning(
                        f"Backend call raised {type(e).__name__} (attempt {attempt + 1}/{attempts}): {e}"
                    )
                else:
                    self._consecutive_unavailable = 0
                    self.stats.backend_successes += 1
                    metrics.BACKEND_CALLS.labels(outcome="success").inc()
                    metrics.BACKEND_LATENCY.observe(time.monotonic() - start_time)
                    return text

            if attempt < attempts - 1:
                await self._sleep(self._calculate_retry_delay(attempt, retry_after))

        logger.info(f"Backend retries exhausted after {attempts} attempts")
        return None

    def _calculate_retry_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Calculate delay for retry with exponential backoff and jitter."""
        max_delay = self.backend.retry_max_delay
        if retry_after is not None:
            return min(max(0.0, retry_after), max_delay)

        delay = min(self.backend.retry_base_delay * (2 ** attempt), max_delay)
        jitter_amount = delay * self.backend.retry_jitter
        delay += self.rng.uniform(-jitter_amount, jitter_amount)
        return max(0.0, delay)

    def _record_unavailable(self, error: BackendUnavailableError) -> None:
        self.stats.backend_unavailable += 1
        self._consecutive_unavailable += 1
        metrics.BACKEND_CALLS.labels(outcome="unavailable").inc()
        if not self._circuit_open and self._consecutive_unavailable >= self.backend.circuit_failure_threshold:
            self._circuit_open = True
            logger.error(
                f"Backend unavailable {self._consecutive_unavailable} times in a row, "
                f"skipping further backend calls: {error}"
            )
        else:
            logger.warning(f"Backend unavailable: {error}")

    # ========================================================================
    # Record assembly
    # ========================================================================

    def _cache_key(self, request: GenerationRequest) -> str:
        return alert_cache_key(request.entity, request.namespace, request.cache_variant)

    def _finalize(self, candidate: Dict[str, Any], request: GenerationRequest) -> Dict[str, Any]:
        """Merge over the default, enrich, then validate."""
        default = build_default_record(
            request.entity,
            request.namespace,
            self.window,
            rng=self.rng,
            pattern=self.generation.time_window.pattern,
        )
        record = dict(default)
        for key, value in candidate.items():
            record[key] = value
        for dotted in PROTECTED_FIELDS:
            drop_nested(record, dotted)
            record[dotted] = default[dotted]

        record.update(self._enrichment(request))
        return validate_record(
            record,
            request.entity,
            request.namespace,
            self.window,
            rng=self.rng,
            pattern=self.generation.time_window.pattern,
        )

    def _enrichment(self, request: GenerationRequest) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if self.planner is not None and request.techniques:
            fields.update(mitre_fields(self.planner.graph, request.techniques, request.chain))

        if request.is_chain_stage:
            chain = request.chain
            stage: TechniqueSelection = chain.stages[request.stage_index]
            fields.update({
                "threat.attack_chain.id": chain.chain_id,
                "threat.attack_chain.stage_index": request.stage_index,
                "threat.attack_chain.total_stages": chain.length,
                "threat.attack_chain.stage_tactic": stage.tactic,
                "threat.attack_chain.parent_ids": list(request.parent_ids),
                "threat.attack_chain.severity": chain.severity.value,
                "threat.attack_chain.length": chain.length,
            })
        return fields

    # ========================================================================
    # Reporting
    # ========================================================================

    def _count(self, slot: EntitySlot) -> None:
        self.stats.record_level(slot.level)
        metrics.RECORDS_GENERATED.labels(level=slot.level.value).inc()

    def _log_summary(self, elapsed: float) -> None:
        by_level = self.stats.records_by_level
        depth = self.stats.cascade_depth
        logger.info(
            f"Generated {sum(by_level.values())}/{self.stats.requested} records in {elapsed:.1f}s "
            f"(cache={by_level['cache']}, batch={by_level['batch']}, individual={by_level['individual']}, "
            f"template={by_level['template']}; cascade depth={depth.value if depth else 'none'}; "
            f"cache hit rate={self.stats.cache_hit_rate:.1%}; chains={self.stats.chains_planned})"
        )
