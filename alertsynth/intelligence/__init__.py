"""MITRE ATT&CK knowledge and attack-chain planning."""

from alertsynth.intelligence.chain_planner import (
    AttackChain,
    ChainPlanner,
    Severity,
    TechniqueSelection,
    build_mitre_context,
    compute_severity,
    mitre_fields,
)
from alertsynth.intelligence.technique_graph import (
    INITIAL_ACCESS,
    SubTechnique,
    Tactic,
    Technique,
    TechniqueGraph,
)

__all__ = [
    "AttackChain",
    "ChainPlanner",
    "INITIAL_ACCESS",
    "Severity",
    "SubTechnique",
    "Tactic",
    "Technique",
    "TechniqueGraph",
    "TechniqueSelection",
    "build_mitre_context",
    "compute_severity",
    "mitre_fields",
]
