from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    llm_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "openai/gpt-4o-mini"

    # Run loop defaults
    max_retries: int = 1
    request_limit: int = 50
    parallel_tool_calls: bool = True
    max_concurrent_tools: int | None = None
    run_timeout: float | None = None

    # Transport retries (rate limits, 5xx, timeouts)
    transport_max_retries: int = 3
    transport_initial_delay: float = 0.1
    transport_max_delay: float = 30.0
    transport_multiplier: float = 2.0
    transport_jitter: float = 0.1

    # Prompt template overrides
    prompts_dir: str = ""

    log_level: str = "INFO"


settings = Settings()


@dataclass
class ModelConfig:
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    base_url: str = ""
    timeout: float | None = None


_models_config_cache: dict | None = None

_MODEL_CONFIG_KEYS = ("model", "temperature", "max_tokens", "base_url", "timeout")


def _load_models_yaml() -> dict:
    global _models_config_cache
    if _models_config_cache is not None:
        return _models_config_cache

    config_path = os.environ.get("MODELS_CONFIG_PATH", "models.yaml")
    path = Path(config_path)
    if not path.is_file():
        _models_config_cache = {}
        return _models_config_cache

    import yaml

    with open(path) as f:
        _models_config_cache = yaml.safe_load(f) or {}
    return _models_config_cache


def get_model_config(agent_name: str = "") -> ModelConfig:
    """Model config for a named agent: the ``default`` section of models.yaml
    with the agent's entry under ``agents`` layered on top.

    Without a models.yaml the env-based Settings are used.
    """
    data = _load_models_yaml()

    if not data:
        return ModelConfig(model=settings.llm_model, base_url=settings.llm_base_url)

    default = data.get("default", {})
    merged = {key: default.get(key) for key in _MODEL_CONFIG_KEYS}
    merged["model"] = merged["model"] or settings.llm_model
    merged["base_url"] = merged["base_url"] or settings.llm_base_url

    if agent_name:
        agent_override = data.get("agents", {}).get(agent_name, {})
        for key, value in agent_override.items():
            if key in merged:
                merged[key] = value

    return ModelConfig(**merged)


def transport_retry_strategy():
    """Exponential backoff configured from the transport_* settings."""
    from agent_runtime.retries.backoff import ExponentialBackoff

    return ExponentialBackoff(
        max_retries=settings.transport_max_retries,
        initial_delay=settings.transport_initial_delay,
        max_delay=settings.transport_max_delay,
        multiplier=settings.transport_multiplier,
        jitter=settings.transport_jitter,
    )
