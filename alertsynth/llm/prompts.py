"""Prompt context assembly for alert generation."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)


SCHEMA_EXCERPT_LIMIT = 800

ESSENTIAL_TOP_LEVEL_FIELDS = (
    "@timestamp", "host", "user", "event", "kibana", "agent",
    "source", "destination", "network", "process", "file", "alert",
)

SALIENT_EXAMPLE_FIELDS = (
    "host.name",
    "user.name",
    "event.kind",
    "event.category",
    "kibana.alert.severity",
    "kibana.alert.risk_score",
    "kibana.alert.rule.name",
    "source.ip",
    "destination.ip",
    "process.name",
)

DEFAULT_SCHEMA_EXCERPT = json.dumps({
    "@timestamp": "date",
    "host": {"name": "keyword", "os": {"name": "keyword"}},
    "user": {"name": "keyword", "domain": "keyword"},
    "event": {"kind": "keyword", "category": "keyword", "action": "keyword", "outcome": "keyword"},
    "process": {"name": "keyword", "command_line": "wildcard", "pid": "long"},
    "source": {"ip": "ip", "port": "long"},
    "destination": {"ip": "ip", "port": "long"},
    "kibana": {"alert": {
        "uuid": "keyword", "severity": "keyword", "risk_score": "float",
        "reason": "keyword", "rule": {"name": "keyword", "description": "keyword"},
    }},
}, separators=(",", ":"))

REQUIRED_FIELDS_TEXT = """- kibana.alert.uuid: unique UUID
- kibana.alert.start & kibana.alert.last_detected: ISO timestamps
- kibana.version: "8.7.0"
- @timestamp: ISO timestamp
- event.kind: "signal"
- kibana.alert.status: "active"
- kibana.alert.workflow_status: "open"
- kibana.alert.depth: 1
- kibana.alert.severity and kibana.alert.risk_score
- kibana.alert.rule.name and kibana.alert.reason describing the detection"""


@dataclass(frozen=True)
class PromptContext:
    """Everything a backend needs for one completion."""
    system_prompt: str
    user_prompt: str
    expected_records: int = 1
    max_tokens: int = 2000
    temperature: float = 0.7
    json_mode: bool = True


def _type_summary(properties: Dict[str, Any]) -> Dict[str, Any]:
    summary: Dict[str, Any] = {}
    for name, definition in properties.items():
        if not isinstance(definition, dict):
            continue
        if isinstance(definition.get("properties"), dict):
            summary[name] = _type_summary(definition["properties"])
        else:
            summary[name] = definition.get("type", "object")
    return summary


def load_schema_excerpt(path: Optional[Union[str, Path]] = None, limit: int = SCHEMA_EXCERPT_LIMIT) -> str:
    """Compact excerpt of an Elasticsearch mapping restricted to essential fields."""
    if path is None:
        return DEFAULT_SCHEMA_EXCERPT[:limit]
    try:
        with open(path, 'r', encoding='utf-8') as f:
            mapping = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to load mapping schema {path}: {e}; using built-in excerpt")
        return DEFAULT_SCHEMA_EXCERPT[:limit]

    root = mapping.get("mappings", mapping) if isinstance(mapping, dict) else {}
    properties = root.get("properties", {}) if isinstance(root, dict) else {}
    essential = {k: v for k, v in properties.items() if k in ESSENTIAL_TOP_LEVEL_FIELDS}
    excerpt = json.dumps(_type_summary(essential), separators=(",", ":"))
    return excerpt[:limit]


def _lookup(record: Dict[str, Any], dotted: str) -> Any:
    if dotted in record:
        return record[dotted]
    node: Any = record
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def reduce_example(record: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the salient fields of an example record."""
    reduced = {}
    for dotted in SALIENT_EXAMPLE_FIELDS:
        value = _lookup(record, dotted)
        if value is not None:
            reduced[dotted] = value
    return reduced


def examples_context(examples: Sequence[Dict[str, Any]], max_examples: int = 2) -> str:
    reduced = [reduce_example(e) for e in list(examples)[:max_examples]]
    reduced = [r for r in reduced if r]
    if not reduced:
        return ""
    return json.dumps(reduced, separators=(",", ":"))


def _system_prompt(
    header: str,
    namespace: str,
    alert_type: str,
    schema_excerpt: str,
    mitre_context: str,
    theme: Optional[str],
) -> str:
    parts = [
        header,
        f"- kibana.space_ids: [\"{namespace}\"]",
        REQUIRED_FIELDS_TEXT,
    ]
    if alert_type and alert_type != "general":
        parts.append(f"This is a {alert_type} type alert.")
    if theme:
        parts.append(f"Use realistic names and details consistent with a {theme} theme.")
    if mitre_context:
        parts.append(mitre_context)
    parts.append(f"Schema excerpt: {schema_excerpt}")
    parts.append("Respond with JSON only.")
    return "\n".join(parts)


def build_single_prompt(
    host_name: str,
    user_name: str,
    namespace: str,
    schema_excerpt: str,
    alert_type: str = "general",
    mitre_context: str = "",
    theme: Optional[str] = None,
    examples: Sequence[Dict[str, Any]] = (),
    chain_stage: Optional[Tuple[int, int]] = None,
    max_tokens: int = 2000,
    temperature: float = 0.7,
) -> PromptContext:
    """Prompt for one alert for one entity."""
    header = (
        "Security alert generator. Create one JSON alert object with:\n"
        f"- host.name: \"{host_name}\"\n"
        f"- user.name: \"{user_name}\""
    )
    system_prompt = _system_prompt(header, namespace, alert_type, schema_excerpt, mitre_context, theme)

    user_prompt = f"Generate a realistic security alert for host \"{host_name}\" and user \"{user_name}\"."
    if chain_stage is not None:
        index, total = chain_stage
        user_prompt += f" This alert is stage {index + 1} of {total} of the attack chain above."
    example_text = examples_context(examples)
    if example_text:
        user_prompt += f" Reference examples: {example_text}"

    return PromptContext(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        expected_records=1,
        max_tokens=max_tokens,
        temperature=temperature,
    )


def build_batch_prompt(
    entities: Sequence[Tuple[str, str]],
    namespace: str,
    schema_excerpt: str,
    alert_type: str = "general",
    mitre_context: str = "",
    theme: Optional[str] = None,
    examples: Sequence[Dict[str, Any]] = (),
    technique_hints: Optional[Sequence[Sequence[str]]] = None,
    max_tokens: int = 2000,
    temperature: float = 0.7,
) -> PromptContext:
    """Prompt for one alert per (host_name, user_name) pair, in order.

    ``technique_hints`` optionally lists MITRE techniques per entity.
    """
    count = len(entities)
    header = (
        f"Security alert generator. Create {count} separate JSON alerts, one per entity and in the "
        "given order, each with these required fields:\n"
        "- host.name: (provided per entity)\n"
        "- user.name: (provided per entity)"
    )
    system_prompt = _system_prompt(header, namespace, alert_type, schema_excerpt, mitre_context, theme)
    system_prompt += f"\nReturn a JSON object of the form {{\"alerts\": [...]}} with exactly {count} alert objects."

    described = []
    for i, (host_name, user_name) in enumerate(entities):
        entry: Dict[str, Any] = {"host.name": host_name, "user.name": user_name}
        if technique_hints and i < len(technique_hints) and technique_hints[i]:
            entry["mitre_techniques"] = list(technique_hints[i])
        described.append(entry)
    entity_list = json.dumps(described)
    user_prompt = f"Generate {count} realistic security alerts for these entities: {entity_list}."
    example_text = examples_context(examples)
    if example_text:
        user_prompt += f" Reference examples: {example_text}"

    return PromptContext(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        expected_records=count,
        max_tokens=max_tokens,
        temperature=temperature,
    )
