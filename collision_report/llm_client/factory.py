from __future__ import annotations

from collision_report.config.settings import Settings
from collision_report.llm_client.base import LLMClient
from collision_report.llm_client.gemini_client import GeminiLLMClient
from collision_report.llm_client.openai_client import OpenAILLMClient


def build_llm_client(settings: Settings, provider: str | None = None) -> LLMClient:
    resolved = provider or settings.default_provider
    api_key = settings.api_key_for(resolved)
    if resolved == "google":
        return GeminiLLMClient(api_key=api_key)
    if resolved == "openai":
        return OpenAILLMClient(api_key=api_key)
    raise ValueError(f"Unknown LLM provider: {resolved}")
