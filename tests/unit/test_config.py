"""Unit tests for configuration loading."""

import logging

import pytest
import yaml

from alertsynth.config import (
    AlertSynthConfig,
    BackendProvider,
    TimestampPattern,
    load_config,
    setup_logging,
)
from alertsynth.core.exceptions import ConfigurationError

ENV_VARS = (
    "OPENAI_API_KEY", "AZURE_OPENAI_API_KEY", "ANTHROPIC_API_KEY",
    "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_DEPLOYMENT_NAME", "AZURE_OPENAI_API_VERSION",
    "ELASTIC_NODE", "ELASTIC_API_KEY", "ELASTIC_USERNAME", "ELASTIC_PASSWORD", "LOG_LEVEL",
    "ALERTSYNTH_BACKEND__MODEL", "ALERTSYNTH_GENERATION__GENERATION_CHUNK_SIZE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path, data) -> str:
    path = tmp_path / "alertsynth.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestLoadConfig:
    """Tests for file loading and validation."""

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.backend.provider == BackendProvider.OPENAI
        assert config.generation.generation_chunk_size == 5
        assert config.chain.enabled_tactics == ["TA0001", "TA0002"]
        assert config.dispatch.initial_batch_size == 500
        assert config.store.index_pattern == ".alerts-security.alerts-{namespace}"

    def test_file_values(self, tmp_path):
        path = write_config(tmp_path, {
            "backend": {"provider": "anthropic", "max_retries": 5},
            "generation": {"time_window": {"start_date": "7d", "pattern": "business_hours"}},
            "chain": {"chain_probability": 0.5},
        })

        config = load_config(path)

        assert config.backend.provider == BackendProvider.ANTHROPIC
        assert config.backend.max_retries == 5
        assert config.generation.time_window.pattern == TimestampPattern.BUSINESS_HOURS
        assert config.chain.chain_probability == 0.5

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "alertsynth.yaml"
        path.write_text("backend: [unclosed")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)
        assert exc_info.value.config_path == str(path)

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "alertsynth.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            load_config(path)

    @pytest.mark.parametrize("data", [
        {"chain": {"enabled_tactics": ["Initial Access"]}},
        {"chain": {"high_impact_techniques": ["1055"]}},
        {"chain": {"chain_probability": 1.5}},
        {"generation": {"max_examples": 5}},
        {"generation": {"generation_chunk_size": 50}, "dispatch": {"initial_batch_size": 10}},
        {"dispatch": {"max_overflow_retries": -1}},
    ])
    def test_invalid_values(self, tmp_path, data):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, data))


class TestEnvironment:
    """Tests for environment overrides."""

    def test_provider_key_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "anthropic-key")
        monkeypatch.setenv("OPENAI_API_KEY", "openai-key")

        config = load_config(write_config(tmp_path, {"backend": {"provider": "anthropic"}}))

        assert config.backend.api_key == "anthropic-key"

    def test_azure_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "azure-key")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com")
        monkeypatch.setenv("AZURE_OPENAI_DEPLOYMENT_NAME", "alerts")

        config = load_config(write_config(tmp_path, {"backend": {"provider": "azure_openai"}}))

        assert config.backend.api_key == "azure-key"
        assert config.backend.azure_endpoint == "https://example.openai.azure.com"
        assert config.backend.azure_deployment == "alerts"

    def test_elastic_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ELASTIC_NODE", "https://es.internal:9200")
        monkeypatch.setenv("ELASTIC_API_KEY", "es-key")

        config = load_config(tmp_path / "missing.yaml")

        assert config.store.node == "https://es.internal:9200"
        assert config.store.api_key == "es-key"

    def test_prefixed_environment_wins_over_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ALERTSYNTH_BACKEND__MODEL", "gpt-env")

        config = load_config(write_config(tmp_path, {"backend": {"model": "gpt-file", "max_retries": 1}}))

        assert config.backend.model == "gpt-env"
        assert config.backend.max_retries == 1

    def test_direct_construction_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ALERTSYNTH_GENERATION__GENERATION_CHUNK_SIZE", "7")
        assert AlertSynthConfig().generation.generation_chunk_size == 7


class TestSetupLogging:
    """Tests for logging configuration."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers = handlers
        root.setLevel(level)

    def test_console_and_file_handlers(self, tmp_path):
        log_file = tmp_path / "logs" / "alertsynth.log"
        config = AlertSynthConfig(logging={"level": "debug", "file_path": str(log_file)})

        setup_logging(config)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        assert log_file.parent.exists()

    def test_console_disabled(self):
        setup_logging(AlertSynthConfig(logging={"enable_console_logging": False}))
        assert logging.getLogger().handlers == []
