"""
Centralized configuration management for the Carpso AI backend.
Uses environment variables with safe defaults following 12-factor app principles.
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv
from enum import Enum


class LLMProvider(Enum):
    """LLM provider selection."""
    ANTHROPIC = "anthropic"
    OPENAI_COMPATIBLE = "openai_compatible"


class StoreBackend(Enum):
    """Storage backend selection for bookmarks, lots and history."""
    MEMORY = "memory"
    JSON = "json"


@dataclass(frozen=True)
class AnthropicConfig:
    """Anthropic API configuration."""
    api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048


@dataclass(frozen=True)
class OpenAICompatibleConfig:
    """Any OpenAI-compatible chat completions endpoint (Gemini by default)."""
    api_key: str = ""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    model: str = "gemini-2.0-flash"
    max_tokens: int = 2048


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy shared by every flow: exponential backoff, fixed attempts."""
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0  # 1s, 2s, 4s ...
    call_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class FlowConfig:
    """Per-flow tunables."""
    max_recommendations: int = 5
    max_concurrent_provider_calls: int = 0  # 0 = unlimited


@dataclass(frozen=True)
class StoreConfig:
    """Parking store configuration."""
    backend: StoreBackend = StoreBackend.MEMORY
    file_path: str = "/app/data/carpso_store.json"
    backup_on_write: bool = True


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration - assembled from environment."""
    llm_provider: LLMProvider = LLMProvider.ANTHROPIC
    anthropic: AnthropicConfig = field(default_factory=AnthropicConfig)
    openai_compatible: OpenAICompatibleConfig = field(default_factory=OpenAICompatibleConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    flows: FlowConfig = field(default_factory=FlowConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log_file_dir: str = ""  # Directory for timestamped log files; empty = no file logging
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    environment: str = "production"


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(os.environ.get(name, str(default)))
    except ValueError:
        return default
    return value if value >= minimum else default


def _float_env(name: str, default: float, minimum: float = 0.0) -> float:
    try:
        value = float(os.environ.get(name, str(default)))
    except ValueError:
        return default
    return value if value >= minimum else default


def load_config() -> AppConfig:
    """
    Load configuration from environment variables.
    Safe defaults are used when env vars are missing or invalid.
    """
    load_dotenv()  # Load .env file if present

    provider_str = os.environ.get("LLM_PROVIDER", "anthropic").lower()
    try:
        llm_provider = LLMProvider(provider_str)
    except ValueError:
        llm_provider = LLMProvider.ANTHROPIC

    anthropic = AnthropicConfig(
        api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        model=os.environ.get("ANTHROPIC_MODEL", AnthropicConfig.model),
        max_tokens=_int_env("ANTHROPIC_MAX_TOKENS", AnthropicConfig.max_tokens, minimum=1),
    )

    openai_compatible = OpenAICompatibleConfig(
        api_key=os.environ.get(
            "OPENAI_COMPAT_API_KEY", os.environ.get("GOOGLE_GENAI_API_KEY", "")
        ),
        base_url=os.environ.get("OPENAI_COMPAT_BASE_URL", OpenAICompatibleConfig.base_url),
        model=os.environ.get("OPENAI_COMPAT_MODEL", OpenAICompatibleConfig.model),
        max_tokens=_int_env("OPENAI_COMPAT_MAX_TOKENS", OpenAICompatibleConfig.max_tokens, minimum=1),
    )

    retry = RetryConfig(
        max_attempts=_int_env("FLOW_MAX_ATTEMPTS", RetryConfig.max_attempts, minimum=1),
        backoff_base_seconds=_float_env("FLOW_BACKOFF_BASE_SECONDS", RetryConfig.backoff_base_seconds),
        call_timeout_seconds=_float_env("FLOW_CALL_TIMEOUT_SECONDS", RetryConfig.call_timeout_seconds, minimum=0.1),
    )

    flows = FlowConfig(
        max_recommendations=_int_env("MAX_RECOMMENDATIONS", FlowConfig.max_recommendations, minimum=1),
        max_concurrent_provider_calls=_int_env(
            "MAX_CONCURRENT_PROVIDER_CALLS", FlowConfig.max_concurrent_provider_calls
        ),
    )

    store_str = os.environ.get("STORE_BACKEND", "memory").lower()
    try:
        store_backend = StoreBackend(store_str)
    except ValueError:
        store_backend = StoreBackend.MEMORY

    store = StoreConfig(
        backend=store_backend,
        file_path=os.environ.get("STORE_FILE_PATH", StoreConfig.file_path),
    )

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        log_level = "INFO"

    return AppConfig(
        llm_provider=llm_provider,
        anthropic=anthropic,
        openai_compatible=openai_compatible,
        retry=retry,
        flows=flows,
        store=store,
        log_file_dir=os.environ.get("LOG_FILE_DIR", ""),
        api_host=os.environ.get("API_HOST", "0.0.0.0"),
        api_port=_int_env("API_PORT", 8000, minimum=1),
        log_level=log_level,
        environment=os.environ.get("ENVIRONMENT", "production"),
    )
