"""
Environment-aware configuration settings for the chatflow engine.

Supports dev, test, and prod environments with appropriate defaults.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional
from urllib.parse import quote

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class StorageBackend(str, Enum):
    """Key-value storage backends available to executors."""

    MEMORY = "memory"
    REDIS = "redis"


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis server hostname")
    port: int = Field(default=6379, description="Redis server port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    socket_timeout: float = Field(default=5.0, description="Socket timeout")
    key_prefix: str = Field(default="chatflow:", description="Prefix for every stored key")
    default_ttl: Optional[int] = Field(
        default=None,
        description="Expiry applied to stored values (seconds). None keeps values forever",
    )

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        auth = f":{quote(self.password, safe='')}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class StorageSettings(BaseSettings):
    """Executor storage service settings."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    backend: StorageBackend = Field(default=StorageBackend.MEMORY, description="Storage backend")


class InterpreterSettings(BaseSettings):
    """
    FSM interpreter settings.

    max_visits bounds how many times a single turn may enter the same node.
    Hitting the bound stops the walk and is reported as halt_reason
    "visit_limit" instead of being silently swallowed.
    """

    model_config = SettingsConfigDict(env_prefix="INTERPRETER_")

    max_visits: int = Field(default=3, ge=1, le=1000, description="Per-turn revisit bound per node")
    end_message: str = Field(default="Workflow selesai.", description="Message emitted by end nodes")
    default_input_prompt: str = Field(default="Masukkan data", description="Prompt for unlabeled input nodes")
    default_choice_prompt: str = Field(default="Pilih opsi", description="Prompt for unlabeled condition nodes")


class ExecutorSettings(BaseSettings):
    """Executor dispatch settings."""

    model_config = SettingsConfigDict(env_prefix="EXECUTOR_")

    timeout: float = Field(default=30.0, gt=0, description="Per-invocation timeout (seconds)")
    retry_count: int = Field(default=0, ge=0, le=20, description="Re-invocations on retry status")
    retry_backoff: float = Field(default=1.0, ge=0, description="Linear backoff unit between re-invocations (seconds)")
    http_timeout: float = Field(default=10.0, gt=0, description="Default HTTP client timeout (seconds)")


class LlmSettings(BaseSettings):
    """OpenAI-compatible chat completion endpoint settings."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    base_url: Optional[str] = Field(default=None, description="Base URL, e.g. https://api.openai.com/v1")
    api_key: Optional[str] = Field(default=None, description="Bearer token for the endpoint")
    model: str = Field(default="gpt-4o-mini", description="Default model identifier")
    timeout: float = Field(default=60.0, gt=0, description="Request timeout (seconds)")


class MessagingSettings(BaseSettings):
    """Outbound message delivery settings."""

    model_config = SettingsConfigDict(env_prefix="MESSAGING_")

    webhook_url: Optional[str] = Field(default=None, description="Webhook receiving outbound messages")
    webhook_token: Optional[str] = Field(default=None, description="Bearer token for the webhook")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Chatflow Engine")
    environment: Environment = Field(default=Environment.DEV)
    log_level: str = Field(default="INFO")

    # Sub-settings
    interpreter: InterpreterSettings = Field(default_factory=InterpreterSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    llm: LlmSettings = Field(default_factory=LlmSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate and convert environment string to enum."""
        if isinstance(v, Environment):
            return v
        return Environment(v.lower())

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
