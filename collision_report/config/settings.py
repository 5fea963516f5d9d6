from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ADAPTER_KINDS = ("extraction", "clarification", "diagram", "sketch")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COLLISION_",
        extra="ignore",
    )

    environment: str = "local"
    data_dir: Path = Path("data")

    providers_config_path: Path = Path("config/providers.yaml")

    default_provider: str = "google"
    extraction_prompt_version: str = "v001"
    clarification_prompt_version: str = "v001"
    diagram_prompt_version: str = "v001"
    sketch_prompt_version: str = "v001"

    adapter_timeout_seconds: float = Field(default=120.0, gt=0)
    llm_max_attempts: int = Field(default=2, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0)

    log_level: str = "INFO"
    log_file: Path | None = None

    gradio_server_name: str = "127.0.0.1"
    gradio_server_port: int = Field(default=7860, ge=1, le=65535)

    bundle_signing_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "COLLISION_BUNDLE_SIGNING_KEY",
            "BUNDLE_SIGNING_KEY",
        ),
    )
    google_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "COLLISION_GOOGLE_API_KEY", "GOOGLE_API_KEY", "GEMINI_API_KEY"
        ),
    )
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("COLLISION_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def package_root(self) -> Path:
        return Path(__file__).resolve().parents[1]

    @property
    def prompts_root(self) -> Path:
        return self.package_root / "prompts"

    @property
    def resolved_data_dir(self) -> Path:
        return self._resolve_path(self.data_dir, base=self.project_root)

    @property
    def exports_dir(self) -> Path:
        return self.resolved_data_dir / "exports"

    @property
    def previews_dir(self) -> Path:
        return self.resolved_data_dir / "previews"

    @property
    def resolved_providers_config_path(self) -> Path:
        return self._resolve_path(self.providers_config_path, base=self.package_root)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def providers_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_providers_config_path)

    def api_key_for(self, provider: str) -> str | None:
        if provider == "google":
            return self.google_api_key
        if provider == "openai":
            return self.openai_api_key
        raise ValueError(f"Unknown LLM provider: {provider}")

    def model_for(self, provider: str, kind: str) -> str:
        if kind not in ADAPTER_KINDS:
            raise ValueError(f"Unknown adapter kind: {kind}")

        providers = self.providers_config.get("llm_providers")
        if not isinstance(providers, dict) or provider not in providers:
            raise ValueError(f"Unknown LLM provider: {provider}")

        models = providers[provider].get("models")
        if not isinstance(models, dict) or not models.get(kind):
            raise ValueError(f"No {kind} model configured for provider {provider}")

        return str(models[kind])

    def params_for(self, provider: str, kind: str) -> dict[str, Any]:
        providers = self.providers_config.get("llm_providers") or {}
        provider_config = providers.get(provider) or {}
        params = (provider_config.get("params") or {}).get(kind) or {}
        if not isinstance(params, dict):
            raise ValueError(f"Params for {provider}/{kind} must be a mapping")
        return dict(params)

    def _resolve_path(self, path: Path, *, base: Path) -> Path:
        if path.is_absolute():
            return path
        return (base / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
