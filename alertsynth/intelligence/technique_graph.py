"""Static MITRE ATT&CK knowledge used for attack-chain planning.

The graph is loaded once (from the packaged table or a user supplied YAML or
JSON file) and is read-only afterwards. Chaining is expressed as an explicit
adjacency map of ``leads_to`` edges between technique ids; the map may
contain cycles, so every traversal keeps its own seen-set.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from alertsynth.core.exceptions import TechniqueDataError

logger = logging.getLogger(__name__)


# ============================================================================
# Validation Patterns
# ============================================================================


TACTIC_ID_PATTERN = re.compile(r'^TA\d{4}$')

# Technique ID pattern: T followed by 4 digits
TECHNIQUE_ID_PATTERN = re.compile(r'^T\d{4}$')

# Sub-technique ID pattern: parent technique id followed by .XXX
SUB_TECHNIQUE_ID_PATTERN = re.compile(r'^T\d{4}\.\d{3}$')

INITIAL_ACCESS = "TA0001"

DEFAULT_DATA_PATH = Path(__file__).parent / "data" / "mitre_attack.yaml"


# ============================================================================
# Data Models
# ============================================================================


@dataclass(frozen=True)
class Tactic:
    """MITRE ATT&CK tactic with its ordered technique ids."""
    id: str
    name: str
    description: str = ""
    techniques: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SubTechnique:
    """MITRE ATT&CK sub-technique."""
    id: str
    name: str
    parent: str
    weight: float = 1.0


@dataclass(frozen=True)
class Technique:
    """MITRE ATT&CK technique and its outgoing chain edges."""
    id: str
    name: str
    description: str = ""
    tactics: Tuple[str, ...] = ()
    sub_techniques: Tuple[str, ...] = ()
    leads_to: Tuple[str, ...] = field(default=())


# ============================================================================
# Technique Graph
# ============================================================================


class TechniqueGraph:
    """Read-only tactic/technique table with chaining edges.

    References to techniques that are not part of the table (from a tactic's
    technique list or a ``leads_to`` edge) are kept as-is and filtered out by
    the query methods, so a partial table never breaks planning.
    """

    def __init__(
        self,
        tactics: Dict[str, Tactic],
        techniques: Dict[str, Technique],
        sub_techniques: Optional[Dict[str, SubTechnique]] = None,
    ):
        self._tactics = dict(tactics)
        self._techniques = dict(techniques)
        self._sub_techniques = dict(sub_techniques or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> "TechniqueGraph":
        """Build a graph from the ``tactics``/``techniques``/``sub_techniques`` mapping."""
        if not isinstance(data, dict):
            raise TechniqueDataError("Technique data must be a mapping", source=source)

        tactics: Dict[str, Tactic] = {}
        for tactic_id, raw in (data.get("tactics") or {}).items():
            if not TACTIC_ID_PATTERN.match(str(tactic_id)) or not isinstance(raw, dict):
                logger.warning(f"Skipping malformed tactic entry {tactic_id!r} in {source}")
                continue
            tactics[tactic_id] = Tactic(
                id=tactic_id,
                name=raw.get("name", tactic_id),
                description=raw.get("description", ""),
                techniques=tuple(raw.get("techniques") or ()),
            )

        techniques: Dict[str, Technique] = {}
        for technique_id, raw in (data.get("techniques") or {}).items():
            if not TECHNIQUE_ID_PATTERN.match(str(technique_id)) or not isinstance(raw, dict):
                logger.warning(f"Skipping malformed technique entry {technique_id!r} in {source}")
                continue
            techniques[technique_id] = Technique(
                id=technique_id,
                name=raw.get("name", technique_id),
                description=raw.get("description", ""),
                tactics=tuple(raw.get("tactics") or ()),
                sub_techniques=tuple(raw.get("sub_techniques") or raw.get("subTechniques") or ()),
                leads_to=tuple(raw.get("leads_to") or raw.get("chainNext") or ()),
            )

        raw_subs = data.get("sub_techniques") or data.get("subTechniques") or {}
        sub_techniques: Dict[str, SubTechnique] = {}
        for sub_id, raw in raw_subs.items():
            if not SUB_TECHNIQUE_ID_PATTERN.match(str(sub_id)) or not isinstance(raw, dict):
                logger.warning(f"Skipping malformed sub-technique entry {sub_id!r} in {source}")
                continue
            sub_techniques[sub_id] = SubTechnique(
                id=sub_id,
                name=raw.get("name", sub_id),
                parent=raw.get("parent", sub_id.split(".")[0]),
                weight=float(raw.get("weight", 1.0)),
            )

        graph = cls(tactics, techniques, sub_techniques)
        dangling = graph.dangling_references()
        if dangling:
            logger.debug(f"Technique data from {source} has {len(dangling)} dangling references")
        logger.info(
            f"Loaded technique graph from {source}: {len(tactics)} tactics, "
            f"{len(techniques)} techniques, {len(sub_techniques)} sub-techniques"
        )
        return graph

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "TechniqueGraph":
        """Load a graph from a YAML or JSON file."""
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except FileNotFoundError:
            raise TechniqueDataError(f"Technique data file not found: {path}", source=str(path))
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise TechniqueDataError(f"Failed to parse technique data: {e}", source=str(path))
        return cls.from_dict(data or {}, source=str(path))

    @classmethod
    def default(cls) -> "TechniqueGraph":
        """Load the packaged Enterprise ATT&CK subset."""
        return cls.from_file(DEFAULT_DATA_PATH)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def tactic_ids(self) -> List[str]:
        return list(self._tactics)

    @property
    def technique_ids(self) -> List[str]:
        return list(self._techniques)

    def get_tactic(self, tactic_id: str) -> Optional[Tactic]:
        return self._tactics.get(tactic_id)

    def get_technique(self, technique_id: str) -> Optional[Technique]:
        return self._techniques.get(technique_id)

    def get_sub_technique(self, sub_technique_id: str) -> Optional[SubTechnique]:
        return self._sub_techniques.get(sub_technique_id)

    def has_technique(self, technique_id: str) -> bool:
        return technique_id in self._techniques

    def techniques_for_tactic(self, tactic_id: str) -> List[Technique]:
        """Known techniques of a tactic, in table order."""
        tactic = self._tactics.get(tactic_id)
        if tactic is None:
            return []
        return [self._techniques[t] for t in tactic.techniques if t in self._techniques]

    def next_techniques(self, technique_id: str) -> List[Technique]:
        """Known techniques reachable through one ``leads_to`` edge."""
        technique = self._techniques.get(technique_id)
        if technique is None:
            return []
        return [self._techniques[t] for t in technique.leads_to if t in self._techniques]

    def sub_techniques_for(self, technique_id: str) -> List[SubTechnique]:
        """Sub-techniques of a technique, falling back to a bare entry when unnamed."""
        technique = self._techniques.get(technique_id)
        if technique is None:
            return []
        return [
            self._sub_techniques.get(sub_id) or SubTechnique(id=sub_id, name=sub_id, parent=technique_id)
            for sub_id in technique.sub_techniques
        ]

    def tactic_name(self, tactic_id: str) -> str:
        tactic = self._tactics.get(tactic_id)
        return tactic.name if tactic else tactic_id

    def technique_name(self, technique_id: str) -> str:
        technique = self._techniques.get(technique_id)
        return technique.name if technique else technique_id

    def sub_technique_name(self, sub_technique_id: str) -> str:
        sub = self._sub_techniques.get(sub_technique_id)
        return sub.name if sub else sub_technique_id

    def dangling_references(self) -> List[Tuple[str, str]]:
        """(owner id, missing technique id) pairs for every unresolved reference."""
        missing = []
        for tactic in self._tactics.values():
            missing.extend((tactic.id, t) for t in tactic.techniques if t not in self._techniques)
        for technique in self._techniques.values():
            missing.extend((technique.id, t) for t in technique.leads_to if t not in self._techniques)
        return missing

    def __len__(self) -> int:
        return len(self._techniques)

    def __repr__(self) -> str:
        return f"TechniqueGraph(tactics={len(self._tactics)}, techniques={len(self._techniques)})"
