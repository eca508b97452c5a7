"""Load configuration from YAML and environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"

_TRUE = ("1", "true", "yes")


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")
    url: str = "redis://localhost:6379/0"


class OllamaSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="OLLAMA_", extra="ignore")
    host: str = "http://localhost:11434"
    api_key: str = "ollama"
    # False: native /api/chat over httpx. True: OpenAI-compatible /v1 via the openai SDK.
    openai_compat: bool = False
    default_model: str = "llama2"
    timeout_seconds: float = 120.0
    connect_timeout_seconds: float = 8.0


class ServerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SERVER_", extra="ignore")
    host: str = "0.0.0.0"
    port: int = 3000
    secret_key: str = "change-me-in-production"
    secure_cookies: bool = False


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")
    level: str = "INFO"
    json_output: bool = True


class Config(BaseSettings):
    """Application config: YAML + env. Secrets from env only."""

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_name = os.getenv("OLLACHAT_ENV", "")
        if env_name:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_name}.yaml")))
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            yaml_data.setdefault("redis", {})["url"] = redis_url
        host = os.getenv("OLLAMA_HOST")
        if host:
            yaml_data.setdefault("ollama", {})["host"] = host
        api_key = os.getenv("OLLAMA_API_KEY")
        if api_key:
            yaml_data.setdefault("ollama", {})["api_key"] = api_key
        compat = os.getenv("OLLAMA_OPENAI_COMPAT")
        if compat:
            yaml_data.setdefault("ollama", {})["openai_compat"] = compat.lower() in _TRUE
        default_model = os.getenv("OLLAMA_DEFAULT_MODEL")
        if default_model:
            yaml_data.setdefault("ollama", {})["default_model"] = default_model
        secret = os.getenv("SECRET_KEY")
        if secret:
            yaml_data.setdefault("server", {})["secret_key"] = secret
        port = os.getenv("PORT")
        if port:
            yaml_data.setdefault("server", {})["port"] = int(port)
        level = os.getenv("LOG_LEVEL")
        if level:
            yaml_data.setdefault("logging", {})["level"] = level
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)
