"""Configuration package for AlertSynth."""

from alertsynth.config.loader import load_config, setup_logging
from alertsynth.config.models import (
    AlertSynthConfig,
    BackendConfig,
    BackendProvider,
    CacheConfig,
    ChainConfig,
    DispatchConfig,
    GenerationConfig,
    LoggingConfig,
    StoreConfig,
    TimestampPattern,
    TimeWindowConfig,
)

__all__ = [
    "AlertSynthConfig",
    "BackendConfig",
    "BackendProvider",
    "CacheConfig",
    "ChainConfig",
    "DispatchConfig",
    "GenerationConfig",
    "LoggingConfig",
    "StoreConfig",
    "TimestampPattern",
    "TimeWindowConfig",
    "load_config",
    "setup_logging",
]
