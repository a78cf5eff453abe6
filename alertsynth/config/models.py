"""Configuration models for AlertSynth.

Every section can be supplied from a YAML file and overridden through
environment variables with the ``ALERTSYNTH_`` prefix, using ``__`` to reach
nested fields (``ALERTSYNTH_CACHE__MAX_SIZE=50``).
"""

import re
from enum import Enum
from typing import List, Optional, Tuple, Type

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

TACTIC_ID_PATTERN = re.compile(r"^TA\d{4}$")
TECHNIQUE_ID_PATTERN = re.compile(r"^T\d{4}(\.\d{3})?$")


class BackendProvider(str, Enum):
    """Supported text-generation backends."""
    OPENAI = "openai"
    AZURE_OPENAI = "azure_openai"
    ANTHROPIC = "anthropic"


class TimestampPattern(str, Enum):
    """Distribution of generated timestamps inside the time window."""
    UNIFORM = "uniform"
    BUSINESS_HOURS = "business_hours"
    ATTACK_SIMULATION = "attack_simulation"
    WEEKEND_HEAVY = "weekend_heavy"
    RANDOM = "random"


class BackendConfig(BaseModel):
    """Configuration for the LLM backend."""
    provider: BackendProvider = BackendProvider.OPENAI
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    azure_endpoint: Optional[str] = None
    azure_deployment: Optional[str] = None
    azure_api_version: str = "2023-05-15"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, gt=0)
    request_timeout: float = Field(default=60.0, gt=0, description="Per-call timeout (seconds)")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Base delay for exponential backoff (seconds)")
    retry_max_delay: float = Field(default=30.0, ge=0, description="Maximum retry delay (seconds)")
    retry_jitter: float = Field(default=0.1, ge=0, le=1, description="Jitter factor for retry delays (0-1)")
    circuit_failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive unavailable errors before backend calls are skipped",
    )


class TimeWindowConfig(BaseModel):
    """Window that every generated timestamp must fall into.

    ``start_date``/``end_date`` accept ISO-8601 strings, ``now`` or relative
    offsets such as ``7d`` or ``12h``. When both are unset the window is the
    last ``offset_hours`` hours.
    """
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    offset_hours: float = Field(default=24.0, gt=0)
    pattern: TimestampPattern = TimestampPattern.UNIFORM


class GenerationConfig(BaseModel):
    """Generation orchestration settings."""
    use_ai: bool = True
    generation_chunk_size: int = Field(default=5, ge=1)
    backend_concurrency: int = Field(default=4, ge=1)
    alert_type: str = "general"
    theme: Optional[str] = None
    max_examples: int = Field(default=2, ge=0, le=2)
    schema_path: Optional[str] = None
    fail_on_backend_outage: bool = True
    time_window: TimeWindowConfig = Field(default_factory=TimeWindowConfig)


class ChainConfig(BaseModel):
    """Attack-chain planning settings."""
    enabled: bool = True
    chain_probability: float = Field(default=0.3, ge=0.0, le=1.0)
    max_chain_length: int = Field(default=3, ge=1)
    enabled_tactics: List[str] = Field(default_factory=lambda: ["TA0001", "TA0002"])
    include_sub_techniques: bool = True
    max_techniques: int = Field(default=2, ge=1)
    high_impact_techniques: List[str] = Field(default_factory=lambda: ["T1055", "T1078", "T1027"])
    technique_data_path: Optional[str] = None

    @field_validator("enabled_tactics")
    @classmethod
    def validate_tactics(cls, v: List[str]) -> List[str]:
        for tactic_id in v:
            if not TACTIC_ID_PATTERN.match(tactic_id):
                raise ValueError(f"Invalid tactic id: {tactic_id}")
        return v

    @field_validator("high_impact_techniques")
    @classmethod
    def validate_techniques(cls, v: List[str]) -> List[str]:
        for technique_id in v:
            if not TECHNIQUE_ID_PATTERN.match(technique_id):
                raise ValueError(f"Invalid technique id: {technique_id}")
        return v


class CacheConfig(BaseModel):
    """Response cache settings."""
    enabled: bool = True
    max_size: int = Field(default=100, ge=1)
    ttl_seconds: float = Field(default=3600.0, gt=0)
    maintenance_interval_seconds: float = Field(default=900.0, gt=0)


class DispatchConfig(BaseModel):
    """Store dispatch settings."""
    initial_batch_size: int = Field(default=500, ge=1)
    concurrency: int = Field(default=4, ge=1)
    rate_limit_delay_seconds: float = Field(default=1.0, ge=0)
    max_overflow_retries: int = Field(default=3, ge=0)


class StoreConfig(BaseModel):
    """Elasticsearch connection settings."""
    node: str = "http://localhost:9200"
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    index_pattern: str = ".alerts-security.alerts-{namespace}"
    timeout_seconds: float = Field(default=30.0, gt=0)
    verify_ssl: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size_mb: int = 50
    backup_count: int = 5
    enable_console_logging: bool = True


class AlertSynthConfig(BaseSettings):
    """Main AlertSynth configuration.

    Environment variables take precedence over values passed to the
    constructor, which in turn come from the YAML file.
    """

    model_config = SettingsConfigDict(
        env_prefix="ALERTSYNTH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    backend: BackendConfig = Field(default_factory=BackendConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @model_validator(mode="after")
    def validate_chunking(self) -> "AlertSynthConfig":
        if self.generation.generation_chunk_size > self.dispatch.initial_batch_size:
            raise ValueError(
                "generation.generation_chunk_size must not exceed dispatch.initial_batch_size"
            )
        return self
