"""
Configuration system: reads chatrelay.json + .env
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

VERSION = "0.1.0"


# ── JSON schema models ───────────────────────────────────────────────────────

class ProviderConfig(BaseModel):
    name: str
    display_name: str = ""
    base_url: Optional[str] = None
    api_key_env: Optional[str] = None
    models: list[str] = Field(default_factory=list)


class ContentstackConfig(BaseModel):
    api_key_env: str = "CONTENTSTACK_API_KEY"
    delivery_token_env: str = "CONTENTSTACK_DELIVERY_TOKEN"
    environment: str = "production"
    region: str = "us"  # "us" | "eu" | "azure-na" | "azure-eu" | "gcp-na"
    branch: str = "main"
    locale: str = "en-us"
    timeout_seconds: float = 10.0
    max_limit: int = 20


class ContentQueryToolConfig(BaseModel):
    enabled: bool = True
    default_limit: int = 5


class ToolsConfig(BaseModel):
    content_query: ContentQueryToolConfig = Field(default_factory=ContentQueryToolConfig)


class AgentConfig(BaseModel):
    temperature: float = 0.7
    max_tokens: int = 1000
    system_prompt: str = (
        "You are a helpful AI assistant for a website. Your main job is to help "
        "users with their questions.\n\n"
        "If users ask about specific content like products, articles, events, or "
        "anything that might be stored in the CMS, use the query_contentstack_content "
        "tool. For general questions or conversation, respond directly without tools.\n\n"
        "Website Context: {website_context}\n\n"
        "Always be helpful, friendly, and accurate."
    )

    def render_system_prompt(self, website_context: Optional[dict] = None) -> str:
        context = json.dumps(website_context) if website_context else "Generic website"
        return self.system_prompt.replace("{website_context}", context)


def _default_providers() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            name="groq",
            display_name="Groq",
            api_key_env="GROQ_API_KEY",
            models=[
                "llama-3.3-70b-versatile",
                "llama-3.1-8b-instant",
                "mixtral-8x7b-32768",
            ],
        )
    ]


class ChatRelayConfig(BaseModel):
    version: str = "1.0"
    default_provider: str = "groq"
    default_model: Optional[str] = None
    providers: list[ProviderConfig] = Field(default_factory=_default_providers)
    contentstack: ContentstackConfig = Field(default_factory=ContentstackConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)

    def get_provider(self, name: str) -> Optional[ProviderConfig]:
        for p in self.providers:
            if p.name == name:
                return p
        return None

    def get_provider_api_key(self, provider: ProviderConfig) -> Optional[str]:
        if provider.api_key_env:
            return os.environ.get(provider.api_key_env)
        return None

    def resolve_model(self, provider: ProviderConfig, model: Optional[str] = None) -> Optional[str]:
        if model:
            return model
        if self.default_model and provider.name == self.default_provider:
            return self.default_model
        return provider.models[0] if provider.models else None


# ── App settings (from .env) ─────────────────────────────────────────────────

class AppSettings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8000
    config_path: str = "./chatrelay.json"
    db_path: str = "./chatrelay.db"
    log_level: str = "INFO"
    cors_origins: str = ""
    upstream_timeout: float = 60.0

    model_config = {"env_prefix": "CHATRELAY_", "env_file": ".env", "extra": "ignore"}


# ── Singleton loaders ─────────────────────────────────────────────────────────

_config: Optional[ChatRelayConfig] = None
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def load_config(path: Optional[str] = None) -> ChatRelayConfig:
    global _config
    settings = get_settings()
    config_file = Path(path or settings.config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        _config = ChatRelayConfig(**data)
    else:
        _config = ChatRelayConfig()

    return _config


def get_config() -> ChatRelayConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[ChatRelayConfig]) -> None:
    global _config
    _config = config
