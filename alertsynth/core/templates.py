"""Deterministic default alert records.

The default record guarantees schema completeness: backend output is merged
over it and the whole record is used as-is when every backend level fails.
"""

import random
from typing import Any, Dict, Optional

from alertsynth.config.models import TimestampPattern
from alertsynth.core.models import Entity
from alertsynth.core.timestamps import TimeWindow, format_timestamp, generate_timestamp
from alertsynth.core.validator import STATUS_DEFAULTS, identity_fields, new_record_id

KIBANA_VERSION = "8.7.0"

REALISTIC_ALERT_NAMES = [
    "Suspicious PowerShell Activity Detected",
    "Malware Detection - Endpoint Security",
    "Failed Login Attempts from Multiple IPs",
    "Privilege Escalation Attempt",
    "Suspicious Network Traffic to External Domain",
    "File Integrity Monitoring Alert",
    "Credential Dumping Activity",
    "Process Injection Detected",
    "Unusual Outbound Network Connection",
    "Windows Defender Real-time Protection Disabled",
    "Suspicious Registry Modification",
    "Unauthorized Service Installation",
    "Command and Control Communication",
    "Data Exfiltration Attempt",
    "Lateral Movement Detected",
    "Brute Force Attack on SSH",
    "Web Shell Detection",
    "Suspicious DNS Query",
    "Endpoint Agent Tampering",
    "Critical System File Modified",
]


def build_default_record(
    entity: Entity,
    namespace: str,
    window: TimeWindow,
    rng: Optional[random.Random] = None,
    pattern: TimestampPattern = TimestampPattern.UNIFORM,
) -> Dict[str, Any]:
    """Build a complete, valid alert record without any backend involvement."""
    rng = rng or random.Random()
    timestamp = format_timestamp(generate_timestamp(window, pattern, rng))
    rule_name = rng.choice(REALISTIC_ALERT_NAMES)

    record: Dict[str, Any] = {
        "@timestamp": timestamp,
        "kibana.alert.start": timestamp,
        "kibana.alert.last_detected": timestamp,
        "kibana.alert.original_time": timestamp,
        "kibana.alert.uuid": new_record_id(rng),
        "kibana.version": KIBANA_VERSION,
        "kibana.alert.reason": f"{rule_name} on {entity.host_name} by {entity.user_name}",
        "kibana.alert.rule.name": rule_name,
        "kibana.alert.rule.uuid": new_record_id(rng),
        "kibana.alert.rule.category": "Custom Query Rule",
        "kibana.alert.rule.consumer": "siem",
        "kibana.alert.rule.producer": "siem",
        "kibana.alert.rule.rule_type_id": "siem.queryRule",
        "kibana.alert.rule.type": "query",
        "kibana.alert.rule.enabled": True,
        "kibana.alert.rule.interval": "5m",
        "kibana.alert.rule.from": "now-360s",
        "kibana.alert.rule.to": "now",
        "kibana.alert.rule.severity": STATUS_DEFAULTS["kibana.alert.severity"],
        "kibana.alert.rule.risk_score": STATUS_DEFAULTS["kibana.alert.risk_score"],
        "kibana.alert.rule.tags": [],
        "kibana.alert.rule.threat": [],
    }
    record.update(STATUS_DEFAULTS)
    record.update(identity_fields(entity, namespace))
    return record
