"""Global test fixtures for the AlertSynth test suite."""

import json
import random
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from alertsynth.config.models import BackendConfig, GenerationConfig
from alertsynth.core.models import Entity
from alertsynth.intelligence.technique_graph import TechniqueGraph
from alertsynth.llm.base import BaseLLMProvider, LLMResponse
from alertsynth.store.base import DocumentStore, ItemError, WriteResult


# ==========================================
# Mock LLM Provider
# ==========================================

Scripted = Union[str, Exception, Callable[[str, Dict[str, Any]], str]]


class MockLLMProvider(BaseLLMProvider):
    """Mock LLM provider that replays scripted responses.

    Each call consumes the next entry of ``responses``; strings are returned
    as content, exceptions are raised and callables receive the prompt and
    kwargs. Once the script is exhausted ``default`` is used.
    """

    name = "mock"

    def __init__(self, responses: Optional[Sequence[Scripted]] = None, default: Optional[Scripted] = None):
        super().__init__({"api_key": "test-key", "model": "mock-model"})
        self.responses: List[Scripted] = list(responses or [])
        self.default = default
        self.call_count = 0
        self.calls: List[Dict[str, Any]] = []

    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        self.call_count += 1
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature, **kwargs})

        scripted = self.responses.pop(0) if self.responses else self.default
        if scripted is None:
            raise RuntimeError("Mock LLM provider has no scripted response")
        if isinstance(scripted, Exception):
            raise scripted
        if callable(scripted):
            scripted = scripted(prompt, kwargs)
        return LLMResponse(content=scripted, provider=self.name, model=self.model)


def alert_json(**fields: Any) -> str:
    """A minimal backend alert object as JSON text."""
    record = {
        "event.category": "process",
        "kibana.alert.rule.name": "Suspicious Process",
        "kibana.alert.reason": "Suspicious process execution",
    }
    record.update(fields)
    return json.dumps(record)


def batch_json(count: int, **fields: Any) -> str:
    """A batch response with ``count`` alert objects."""
    return json.dumps({"alerts": [json.loads(alert_json(**fields)) for _ in range(count)]})


# ==========================================
# Fake Document Store
# ==========================================

class FakeStore(DocumentStore):
    """In-memory document store with scriptable failures.

    ``failures`` is consumed one entry per ``write_batch`` call; an exception
    is raised, a callable receives the batch and may raise, and None means
    the batch is accepted.
    """

    def __init__(self, failures: Optional[Sequence[Any]] = None, reject_ids: Sequence[str] = ()):
        self.failures = list(failures or [])
        self.reject_ids = set(reject_ids)
        self.calls: List[Dict[str, Any]] = []
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.closed = False

    async def write_batch(
        self,
        records: Sequence[Dict[str, Any]],
        namespace: str,
        refresh: bool = False,
    ) -> WriteResult:
        self.calls.append({"size": len(records), "namespace": namespace, "refresh": refresh})
        failure = self.failures.pop(0) if self.failures else None
        if isinstance(failure, Exception):
            raise failure
        if callable(failure):
            failure(records)

        errors = []
        accepted = 0
        for position, record in enumerate(records):
            record_id = record.get("kibana.alert.uuid")
            if record_id in self.reject_ids or record_id in self.documents:
                errors.append(ItemError(
                    position=position,
                    record_id=record_id,
                    error_type="version_conflict_engine_exception",
                    reason="document already exists",
                    status=409,
                ))
                continue
            self.documents[record_id] = record
            accepted += 1
        return WriteResult(accepted=accepted, item_errors=errors)

    async def close(self) -> None:
        self.closed = True


# ==========================================
# Technique Data
# ==========================================

SMALL_TECHNIQUE_DATA: Dict[str, Any] = {
    "tactics": {
        "TA0001": {"name": "Initial Access", "techniques": ["T1566", "T1078"]},
        "TA0002": {"name": "Execution", "techniques": ["T1059", "T1204"]},
        "TA0005": {"name": "Defense Evasion", "techniques": ["T1027", "T1078"]},
    },
    "techniques": {
        "T1566": {
            "name": "Phishing",
            "tactics": ["TA0001"],
            "sub_techniques": ["T1566.001", "T1566.002"],
            "leads_to": ["T1204"],
        },
        "T1078": {"name": "Valid Accounts", "tactics": ["TA0001", "TA0005"], "leads_to": []},
        "T1204": {"name": "User Execution", "tactics": ["TA0002"], "leads_to": ["T1059"]},
        "T1059": {"name": "Command and Scripting Interpreter", "tactics": ["TA0002"], "leads_to": ["T1027"]},
        "T1027": {"name": "Obfuscated Files or Information", "tactics": ["TA0005"], "leads_to": ["T1566"]},
    },
    "sub_techniques": {
        "T1566.001": {"name": "Spearphishing Attachment", "parent": "T1566", "weight": 3},
        "T1566.002": {"name": "Spearphishing Link", "parent": "T1566", "weight": 1},
    },
}


# ==========================================
# Fixtures
# ==========================================

@pytest.fixture
def small_graph() -> TechniqueGraph:
    """Five-technique graph with a cycle back to Initial Access."""
    return TechniqueGraph.from_dict(SMALL_TECHNIQUE_DATA, source="test")


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def entities() -> List[Entity]:
    return [Entity(host_name=f"host-{i}", user_name=f"user-{i}") for i in range(6)]


@pytest.fixture
def backend_config() -> BackendConfig:
    """Backend settings with tiny delays for fast retries."""
    return BackendConfig(
        provider="openai",
        api_key="test-key",
        request_timeout=1.0,
        max_retries=1,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        retry_jitter=0.0,
        circuit_failure_threshold=2,
    )


@pytest.fixture
def generation_config() -> GenerationConfig:
    return GenerationConfig(generation_chunk_size=3, backend_concurrency=2)


@pytest.fixture
def mock_provider() -> MockLLMProvider:
    return MockLLMProvider(default=alert_json())


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()
