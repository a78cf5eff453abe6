"""AlertSynth - AI-backed synthesis of realistic security alerts.

Plans MITRE ATT&CK attack chains, generates alert records through a
pluggable LLM backend with caching and a fallback cascade, and delivers the
records to a bulk document store with adaptive batch sizing.
"""

__version__ = "0.1.0"

from alertsynth.config import AlertSynthConfig, load_config, setup_logging
from alertsynth.core.models import Entity, GenerationRequest, entities_from_pairs
from alertsynth.core.pipeline import GenerationPipeline, RunReport, run_generation, run_generation_sync

__all__ = [
    "AlertSynthConfig",
    "Entity",
    "GenerationPipeline",
    "GenerationRequest",
    "RunReport",
    "entities_from_pairs",
    "load_config",
    "run_generation",
    "run_generation_sync",
    "setup_logging",
]
