"""Enforce alert record invariants on merged candidates.

``validate_record`` never fails: identity fields are always taken from the
caller, broken or out-of-window timestamps and record ids are regenerated,
and missing status fields get safe defaults.
"""

import copy
import logging
import random
import uuid
from typing import Any, Dict, List, Optional, Tuple

from alertsynth.config.models import TimestampPattern
from alertsynth.core.models import Entity
from alertsynth.core.timestamps import TimeWindow, format_timestamp, generate_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


RECORD_ID_FIELD = "kibana.alert.uuid"
PRIMARY_TIMESTAMP_FIELD = "@timestamp"

TIMESTAMP_FIELDS = (
    "@timestamp",
    "kibana.alert.start",
    "kibana.alert.last_detected",
    "kibana.alert.original_time",
)

# Any other field whose last segment names a date is checked against the window
TIMESTAMP_LEAF_NAMES = frozenset({
    "timestamp", "created", "ingested", "start", "end", "first_seen", "last_seen",
    "last_detected", "original_time",
})
TIMESTAMP_LEAF_SUFFIXES = ("_time", "_at")

STATUS_DEFAULTS: Dict[str, Any] = {
    "event.kind": "signal",
    "kibana.alert.status": "active",
    "kibana.alert.workflow_status": "open",
    "kibana.alert.severity": "low",
    "kibana.alert.risk_score": 21,
    "kibana.alert.depth": 1,
}


def new_record_id(rng: Optional[random.Random] = None) -> str:
    if rng is None:
        return str(uuid.uuid4())
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def is_valid_record_id(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def identity_fields(entity: Entity, namespace: str) -> Dict[str, Any]:
    return {
        "host.name": entity.host_name,
        "user.name": entity.user_name,
        "kibana.space_ids": [namespace],
    }


def drop_nested(record: Dict[str, Any], dotted: str) -> None:
    """Remove the nested form (``{"host": {"name": ...}}``) of a dotted field."""
    parts = dotted.split(".")
    node = record
    for part in parts[:-1]:
        node = node.get(part) if isinstance(node, dict) else None
        if not isinstance(node, dict):
            return
    node.pop(parts[-1], None)


def get_nested(record: Dict[str, Any], dotted: str) -> Any:
    node: Any = record
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def is_timestamp_field(dotted: str) -> bool:
    leaf = dotted.rsplit(".", 1)[-1]
    return leaf in TIMESTAMP_LEAF_NAMES or leaf.endswith(TIMESTAMP_LEAF_SUFFIXES)


def _extra_timestamp_fields(record: Dict[str, Any]) -> List[Tuple[Dict[str, Any], str, str]]:
    """Date-named scalar fields outside ``TIMESTAMP_FIELDS``, flat or nested."""
    found = []
    stack: List[Tuple[Dict[str, Any], str]] = [(record, "")]
    while stack:
        node, prefix = stack.pop()
        for key, value in node.items():
            dotted = f"{prefix}{key}"
            if isinstance(value, dict):
                stack.append((value, f"{dotted}."))
            elif not isinstance(value, list) and dotted not in TIMESTAMP_FIELDS and is_timestamp_field(dotted):
                found.append((node, key, dotted))
    return found


def validate_record(
    candidate: Dict[str, Any],
    entity: Entity,
    namespace: str,
    window: TimeWindow,
    rng: Optional[random.Random] = None,
    pattern: TimestampPattern = TimestampPattern.UNIFORM,
) -> Dict[str, Any]:
    """Return a copy of ``candidate`` that satisfies every record invariant.

    Args:
        candidate: Merged record (backend output over defaults)
        entity: Caller-supplied identity; always wins over generated values
        namespace: Target space/namespace
        window: Every timestamp field, including date-named fields the
            backend added, must fall inside this window
        rng: Random source for regenerated values
        pattern: Distribution used when a timestamp has to be regenerated

    Returns:
        Validated record
    """
    record = copy.deepcopy(candidate) if isinstance(candidate, dict) else {}

    for dotted, value in identity_fields(entity, namespace).items():
        drop_nested(record, dotted)
        record[dotted] = value

    fixed = []
    primary = None
    for dotted in TIMESTAMP_FIELDS:
        raw = record.get(dotted)
        if raw is None:
            raw = get_nested(record, dotted)
            if raw is not None:
                drop_nested(record, dotted)
        if raw is None and dotted != PRIMARY_TIMESTAMP_FIELD:
            continue
        moment = parse_timestamp(raw)
        if moment is None or not window.contains(moment):
            # Secondary timestamps follow @timestamp when it is valid
            moment = primary if primary is not None else generate_timestamp(window, pattern, rng)
            fixed.append(dotted)
        if dotted == PRIMARY_TIMESTAMP_FIELD:
            primary = moment
        record[dotted] = format_timestamp(moment)

    for container, key, dotted in _extra_timestamp_fields(record):
        moment = parse_timestamp(container[key])
        if moment is None or not window.contains(moment):
            container[key] = format_timestamp(primary)
            fixed.append(dotted)

    record_id = record.get(RECORD_ID_FIELD)
    if not is_valid_record_id(record_id):
        record[RECORD_ID_FIELD] = new_record_id(rng)
        if record_id is not None:
            fixed.append(RECORD_ID_FIELD)

    for dotted, default in STATUS_DEFAULTS.items():
        if record.get(dotted) in (None, ""):
            record[dotted] = default

    if fixed:
        logger.debug(f"Corrected fields for {entity}: {', '.join(fixed)}")
    return record
