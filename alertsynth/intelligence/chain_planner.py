"""Attack-chain planning over the technique graph.

Builds either a multi-stage attack chain (starting from Initial Access and
following ``leads_to`` edges) or an independent set of techniques drawn from
distinct tactics, and turns either into prompt context and alert fields.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from alertsynth.intelligence.technique_graph import (
    INITIAL_ACCESS,
    SubTechnique,
    Technique,
    TechniqueGraph,
)

logger = logging.getLogger(__name__)


DEFAULT_HIGH_IMPACT_TECHNIQUES = ("T1055", "T1078", "T1027")

# Techniques that raise the severity of an unchained alert
DANGEROUS_TECHNIQUES = frozenset({"T1055", "T1078", "T1027", "T1134", "T1548"})


class Severity(str, Enum):
    """Alert / chain severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def risk_score(self) -> int:
        return RISK_SCORES[self]


RISK_SCORES = {
    Severity.LOW: 35,
    Severity.MEDIUM: 55,
    Severity.HIGH: 75,
    Severity.CRITICAL: 90,
}


@dataclass(frozen=True)
class TechniqueSelection:
    """One tactic/technique pick, optionally narrowed to a sub-technique."""
    tactic: str
    technique: str
    sub_technique: Optional[str] = None

    @property
    def effective_id(self) -> str:
        return self.sub_technique or self.technique


@dataclass(frozen=True)
class AttackChain:
    """Ordered, cycle-free sequence of technique selections."""
    chain_id: str
    stages: Tuple[TechniqueSelection, ...]
    severity: Severity

    @property
    def length(self) -> int:
        return len(self.stages)

    @property
    def technique_ids(self) -> List[str]:
        return [stage.technique for stage in self.stages]

    def __len__(self) -> int:
        return len(self.stages)


def compute_severity(
    technique_ids: Sequence[str],
    high_impact_techniques: Iterable[str] = DEFAULT_HIGH_IMPACT_TECHNIQUES,
) -> Severity:
    """Severity grows with chain length; high-impact techniques make a chain critical."""
    length = len(technique_ids)
    if length >= 2 and set(technique_ids) & set(high_impact_techniques):
        return Severity.CRITICAL
    if length >= 3:
        return Severity.HIGH
    if length == 2:
        return Severity.MEDIUM
    return Severity.LOW


def new_chain_id() -> str:
    return f"chain-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class ChainPlanner:
    """Plans attack chains and independent technique sets.

    Args:
        graph: Technique knowledge graph
        max_chain_length: Default upper bound for chain length
        enabled_tactics: Tactic ids techniques may be drawn from
        chain_probability: Probability that ``plan_chain`` produces a chain
        include_sub_techniques: Attach a weighted-random sub-technique when available
        max_techniques: Default size of an independent technique set
        high_impact_techniques: Technique ids that upgrade a chain to critical
        rng: Random source, injectable for deterministic tests
    """

    def __init__(
        self,
        graph: TechniqueGraph,
        max_chain_length: int = 3,
        enabled_tactics: Optional[Sequence[str]] = None,
        chain_probability: float = 0.3,
        include_sub_techniques: bool = True,
        max_techniques: int = 2,
        high_impact_techniques: Sequence[str] = DEFAULT_HIGH_IMPACT_TECHNIQUES,
        rng: Optional[random.Random] = None,
    ):
        if max_chain_length < 1:
            raise ValueError("max_chain_length must be at least 1")
        self.graph = graph
        self.max_chain_length = max_chain_length
        self.enabled_tactics = list(enabled_tactics or [INITIAL_ACCESS, "TA0002"])
        self.chain_probability = chain_probability
        self.include_sub_techniques = include_sub_techniques
        self.max_techniques = max_techniques
        self.high_impact_techniques = tuple(high_impact_techniques)
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, graph: TechniqueGraph, config: Any, rng: Optional[random.Random] = None) -> "ChainPlanner":
        """Create a planner from a ``ChainConfig``."""
        return cls(
            graph,
            max_chain_length=config.max_chain_length,
            enabled_tactics=config.enabled_tactics,
            chain_probability=config.chain_probability if config.enabled else 0.0,
            include_sub_techniques=config.include_sub_techniques,
            max_techniques=config.max_techniques,
            high_impact_techniques=config.high_impact_techniques,
            rng=rng,
        )

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def build_chain(
        self,
        max_length: Optional[int] = None,
        enabled_tactics: Optional[Sequence[str]] = None,
    ) -> Optional[AttackChain]:
        """Build an attack chain starting from an Initial Access technique.

        The walk stops when ``max_length`` stages are reached, the current
        technique has no unvisited successor, or a technique would repeat.

        Returns:
            The chain, or None if Initial Access is not enabled or has no techniques
        """
        if max_length is None:
            max_length = self.max_chain_length
        if max_length < 1:
            raise ValueError("max_length must be at least 1")

        enabled = list(enabled_tactics) if enabled_tactics is not None else self.enabled_tactics
        if INITIAL_ACCESS not in enabled:
            logger.debug("Initial Access tactic not enabled, no chain built")
            return None

        candidates = self.graph.techniques_for_tactic(INITIAL_ACCESS)
        if not candidates:
            logger.debug("No Initial Access techniques available, no chain built")
            return None

        seen: Set[str] = set()
        stages: List[TechniqueSelection] = []
        current: Optional[Technique] = self.rng.choice(candidates)

        while current is not None and len(stages) < max_length:
            if current.id in seen:
                break
            seen.add(current.id)

            tactic = INITIAL_ACCESS if not stages else self._stage_tactic(current, enabled)
            stages.append(TechniqueSelection(tactic, current.id, self._pick_sub_technique(current)))

            options = [t for t in self.graph.next_techniques(current.id) if t.id not in seen]
            current = self.rng.choice(options) if options else None

        technique_ids = [stage.technique for stage in stages]
        chain = AttackChain(
            chain_id=new_chain_id(),
            stages=tuple(stages),
            severity=compute_severity(technique_ids, self.high_impact_techniques),
        )
        logger.debug(f"Built attack chain {chain.chain_id}: {' -> '.join(technique_ids)} ({chain.severity.value})")
        return chain

    def plan_chain(self, max_length: Optional[int] = None) -> Optional[AttackChain]:
        """Build a chain with the configured probability.

        ``max_length`` further caps the configured maximum, e.g. to the number
        of entities left to generate for.
        """
        if self.chain_probability <= 0 or self.rng.random() >= self.chain_probability:
            return None
        length = self.max_chain_length if max_length is None else min(max_length, self.max_chain_length)
        return self.build_chain(length)

    # ------------------------------------------------------------------
    # Independent selections
    # ------------------------------------------------------------------

    def select_independent(
        self,
        max_techniques: Optional[int] = None,
        enabled_tactics: Optional[Sequence[str]] = None,
    ) -> List[TechniqueSelection]:
        """Sample up to ``max_techniques`` techniques from distinct enabled tactics.

        Tactics or techniques missing from the graph are skipped.
        """
        if max_techniques is None:
            max_techniques = self.max_techniques
        enabled = list(enabled_tactics) if enabled_tactics is not None else list(self.enabled_tactics)
        self.rng.shuffle(enabled)

        selections: List[TechniqueSelection] = []
        used: Set[str] = set()
        for tactic_id in enabled:
            if len(selections) >= max_techniques:
                break
            if self.graph.get_tactic(tactic_id) is None:
                continue
            options = [t for t in self.graph.techniques_for_tactic(tactic_id) if t.id not in used]
            if not options:
                continue
            technique = self.rng.choice(options)
            used.add(technique.id)
            selections.append(TechniqueSelection(tactic_id, technique.id, self._pick_sub_technique(technique)))
        return selections

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stage_tactic(self, technique: Technique, enabled: Sequence[str]) -> str:
        for tactic_id in technique.tactics:
            if tactic_id in enabled:
                return tactic_id
        return technique.tactics[0] if technique.tactics else ""

    def _pick_sub_technique(self, technique: Technique) -> Optional[str]:
        # Independent of the edge that led here
        if not self.include_sub_techniques:
            return None
        subs: List[SubTechnique] = self.graph.sub_techniques_for(technique.id)
        if not subs:
            return None
        weights = [max(sub.weight, 0.0) for sub in subs]
        if sum(weights) <= 0:
            return self.rng.choice(subs).id
        return self.rng.choices(subs, weights=weights, k=1)[0].id


# ============================================================================
# Prompt context and alert fields
# ============================================================================


def _describe(graph: TechniqueGraph, selection: TechniqueSelection) -> str:
    text = (
        f"{selection.tactic} ({graph.tactic_name(selection.tactic)}) -> "
        f"{selection.technique} ({graph.technique_name(selection.technique)})"
    )
    if selection.sub_technique:
        text += f" -> {selection.sub_technique} ({graph.sub_technique_name(selection.sub_technique)})"
    technique = graph.get_technique(selection.technique)
    if technique and technique.description:
        text += f" - {technique.description}"
    return text


def build_mitre_context(
    graph: TechniqueGraph,
    selections: Sequence[TechniqueSelection],
    chain: Optional[AttackChain] = None,
) -> str:
    """Render technique selections (or a whole chain) as prompt text."""
    if not selections and chain is None:
        return ""

    lines = ["MITRE ATT&CK Context:"]
    if chain is not None:
        lines.append(f"Attack Chain ({chain.severity.value} severity):")
        lines.extend(f"{i + 1}. {_describe(graph, stage)}" for i, stage in enumerate(chain.stages))
    else:
        lines.extend(f"- {_describe(graph, selection)}" for selection in selections)
    return "\n".join(lines)


def risk_assessment(
    selections: Sequence[TechniqueSelection],
    chain: Optional[AttackChain] = None,
) -> Tuple[Severity, int]:
    """Severity and risk score for an alert built from the given selections."""
    if chain is not None:
        return chain.severity, chain.severity.risk_score

    if any(s.technique in DANGEROUS_TECHNIQUES for s in selections):
        severity = Severity.HIGH
    elif len(selections) >= 2:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW
    return severity, severity.risk_score


def mitre_fields(
    graph: TechniqueGraph,
    selections: Sequence[TechniqueSelection],
    chain: Optional[AttackChain] = None,
) -> Dict[str, Any]:
    """ECS ``threat.*`` fields plus severity/risk score for the selections."""
    if not selections:
        return {}

    fields: Dict[str, Any] = {
        "threat.framework": "MITRE ATT&CK",
        "threat.technique.id": [s.effective_id for s in selections],
        "threat.technique.name": [
            graph.sub_technique_name(s.sub_technique) if s.sub_technique else graph.technique_name(s.technique)
            for s in selections
        ],
        "threat.tactic.id": [s.tactic for s in selections],
        "threat.tactic.name": [graph.tactic_name(s.tactic) for s in selections],
    }
    if chain is not None:
        fields["threat.attack_chain.id"] = chain.chain_id
        fields["threat.attack_chain.severity"] = chain.severity.value
        fields["threat.attack_chain.length"] = chain.length

    severity, risk_score = risk_assessment(selections, chain)
    fields["kibana.alert.severity"] = severity.value
    fields["kibana.alert.risk_score"] = risk_score
    return fields
