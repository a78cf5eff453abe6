"""Core data models for alert generation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from alertsynth.intelligence.chain_planner import AttackChain, TechniqueSelection


@dataclass(frozen=True)
class Entity:
    """Host/user identity an alert is generated for."""
    host_name: str
    user_name: str

    def __str__(self) -> str:
        return f"{self.user_name}@{self.host_name}"

    @classmethod
    def from_pair(cls, pair: Tuple[str, str]) -> "Entity":
        host_name, user_name = pair
        return cls(host_name=host_name, user_name=user_name)


def entities_from_pairs(pairs: Sequence[Tuple[str, str]]) -> List[Entity]:
    """Build entities from (host_name, user_name) pairs."""
    return [Entity.from_pair(pair) for pair in pairs]


@dataclass(frozen=True)
class GenerationRequest:
    """Everything needed to generate one alert record."""
    entity: Entity
    namespace: str = "default"
    variant: str = "general"
    theme: Optional[str] = None
    techniques: Tuple[TechniqueSelection, ...] = ()
    chain: Optional[AttackChain] = None
    stage_index: Optional[int] = None
    parent_ids: Tuple[str, ...] = ()

    @property
    def is_chain_stage(self) -> bool:
        return self.chain is not None and self.stage_index is not None

    @property
    def cache_variant(self) -> str:
        """Variant part of the cache key: alert type plus any technique context."""
        if not self.techniques:
            return self.variant
        technique_ids = ",".join(t.effective_id for t in self.techniques)
        return f"{self.variant}:mitre:{technique_ids}"


class CascadeLevel(str, Enum):
    """Fallback cascade level that produced a record."""
    CACHE = "cache"
    BATCH = "batch"
    INDIVIDUAL = "individual"
    TEMPLATE = "template"


class EntityState(str, Enum):
    """Per-entity cascade state.

    ``*_ATTEMPTED`` means that level was tried and did not produce a record.
    """
    PENDING = "pending"
    BATCH_ATTEMPTED = "batch_attempted"
    INDIVIDUAL_ATTEMPTED = "individual_attempted"
    TEMPLATED = "templated"
    DONE = "done"


ALLOWED_TRANSITIONS: Dict[EntityState, FrozenSet[EntityState]] = {
    EntityState.PENDING: frozenset({
        EntityState.DONE,
        EntityState.BATCH_ATTEMPTED,
        EntityState.INDIVIDUAL_ATTEMPTED,
        EntityState.TEMPLATED,
    }),
    EntityState.BATCH_ATTEMPTED: frozenset({
        EntityState.DONE,
        EntityState.INDIVIDUAL_ATTEMPTED,
        EntityState.TEMPLATED,
    }),
    EntityState.INDIVIDUAL_ATTEMPTED: frozenset({EntityState.TEMPLATED}),
    EntityState.TEMPLATED: frozenset(),
    EntityState.DONE: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised on a cascade state change that skips back up the cascade."""
    pass


@dataclass
class EntitySlot:
    """Tracks one entity through the fallback cascade."""
    index: int
    request: GenerationRequest
    state: EntityState = EntityState.PENDING
    level: Optional[CascadeLevel] = None
    record: Optional[Dict[str, Any]] = None

    @property
    def resolved(self) -> bool:
        return self.state in (EntityState.DONE, EntityState.TEMPLATED)

    def transition(self, new_state: EntityState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"Cannot move slot {self.index} from {self.state.value} to {new_state.value}")
        self.state = new_state

    def complete(self, record: Dict[str, Any], level: CascadeLevel) -> None:
        """Resolve the slot with a record produced at ``level``."""
        self.transition(EntityState.TEMPLATED if level == CascadeLevel.TEMPLATE else EntityState.DONE)
        self.record = record
        self.level = level

    def fail(self, level: CascadeLevel) -> None:
        """Record that ``level`` did not produce a record for this slot."""
        if level == CascadeLevel.BATCH:
            self.transition(EntityState.BATCH_ATTEMPTED)
        elif level == CascadeLevel.INDIVIDUAL:
            self.transition(EntityState.INDIVIDUAL_ATTEMPTED)
        else:
            raise InvalidTransitionError(f"Level {level.value} cannot fail")


CASCADE_ORDER = (CascadeLevel.CACHE, CascadeLevel.BATCH, CascadeLevel.INDIVIDUAL, CascadeLevel.TEMPLATE)


@dataclass
class GenerationStats:
    """Counters for one generation run."""
    requested: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    backend_calls: int = 0
    backend_successes: int = 0
    backend_failures: int = 0
    backend_unavailable: int = 0
    chains_planned: int = 0
    deadline_expired: bool = False
    records_by_level: Dict[str, int] = field(default_factory=lambda: {level.value: 0 for level in CascadeLevel})

    def record_level(self, level: CascadeLevel) -> None:
        self.records_by_level[level.value] += 1

    @property
    def cascade_depth(self) -> Optional[CascadeLevel]:
        """Deepest cascade level that produced at least one record."""
        deepest = None
        for level in CASCADE_ORDER:
            if self.records_by_level[level.value]:
                deepest = level
        return deepest

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / max(1, self.cache_hits + self.cache_misses)

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary for serialization."""
        depth = self.cascade_depth
        return {
            "requested": self.requested,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": round(self.cache_hit_rate, 4),
            "backend_calls": self.backend_calls,
            "backend_successes": self.backend_successes,
            "backend_failures": self.backend_failures,
            "backend_unavailable": self.backend_unavailable,
            "chains_planned": self.chains_planned,
            "deadline_expired": self.deadline_expired,
            "records_by_level": dict(self.records_by_level),
            "cascade_depth": depth.value if depth else None,
        }
