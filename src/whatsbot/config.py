"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from whatsbot.tenancy.models import TenantConfig


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class SessionConfig(BaseModel):
    ttl_hours: float = 1.0
    max_user_turns: int = 10
    max_assistant_turns: int = 10


class IdempotencyConfig(BaseModel):
    window_hours: float = 24.0
    cache_size: int = 1000


class WhatsAppConfig(BaseModel):
    api_version: str = "v19.0"
    base_url: str = "https://graph.facebook.com"
    send_timeout: float = 10.0
    pacing_seconds: float = 0.5
    verify_token: str = ""
    signature_bypass: bool = False  # debug only, ignored in production


class LLMConfig(BaseModel):
    timeout: float = 30.0
    tool_timeout: float = 15.0
    max_iterations: int = 4
    loop_budget: float = 60.0
    max_tokens: int = 1024
    default_model: str = "gpt-4o-mini"
    default_temperature: float = 0.7
    max_retries: int = 1


class PosConfig(BaseModel):
    base_url: str = ""
    timeout: float = 15.0


class PlacesConfig(BaseModel):
    base_url: str = "https://places.googleapis.com/v1"
    timeout: float = 10.0


class WorkflowConfig(BaseModel):
    webhook_url: str = ""
    callback_base_url: str = ""
    timeout: float = 10.0


class AwsConfig(BaseModel):
    region: str = "ap-southeast-1"
    endpoint_url: Optional[str] = None
    tenant_table: str = "StoreBotConfigs"
    store_tokens_table: str = "WhatsappStoreTokens"
    sessions_table: str = "whatsbot-sessions"
    processed_messages_table: str = "whatsbot-processed-messages"
    deals_table: str = "ViralDeals"
    media_bucket: str = ""


class StorageConfig(BaseModel):
    backend: str = "sqlite"  # "sqlite" | "dynamodb"
    db_path: str = "./data/whatsbot.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    environment: str = "development"
    data_dir: str = "./data"
    tenant_cache_ttl: float = 300.0
    server: ServerConfig = Field(default_factory=ServerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    pos: PosConfig = Field(default_factory=PosConfig)
    places: PlacesConfig = Field(default_factory=PlacesConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    aws: AwsConfig = Field(default_factory=AwsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tenants: list[TenantConfig] = Field(default_factory=list)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
