from __future__ import annotations

import time
from typing import Callable, TypeVar

from collision_report.config.settings import Settings
from collision_report.logging import get_logger, set_log_context
from collision_report.prompts.manager import PromptManager, PromptSet
from collision_report.utils.error_taxonomy import (
    AdapterError,
    build_error_details,
    classify_llm_api_error,
    is_retryable_llm_exception,
)
from collision_report.utils.retry import run_with_retry

T = TypeVar("T")

logger = get_logger("adapters")


class AdapterBase:
    """Shared wiring for adapters: settings, provider, model and prompt lookup."""

    kind: str = ""
    prompt_name: str = ""

    def __init__(
        self,
        *,
        llm_client,
        settings: Settings,
        prompt_manager: PromptManager | None = None,
        provider: str | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.settings = settings
        self.prompt_manager = prompt_manager or PromptManager(settings.prompts_root)
        self.provider = provider or settings.default_provider

    @property
    def model(self) -> str:
        return self.settings.model_for(self.provider, self.kind)

    @property
    def params(self) -> dict:
        return self.settings.params_for(self.provider, self.kind)

    def load_prompt(self) -> PromptSet:
        version = getattr(self.settings, f"{self.kind}_prompt_version")
        return self.prompt_manager.load_prompt_set(prompt_name=self.prompt_name, version=version)

    def invoke(self, operation: Callable[[], T]) -> T:
        set_log_context(stage=self.kind)
        started_at = time.perf_counter()
        logger.info(
            "Adapter call started",
            extra={"details": {"provider": self.provider, "model": self.model}},
        )
        result = run_with_retry(
            operation=operation,
            should_retry=is_retryable_llm_exception,
            max_attempts=self.settings.llm_max_attempts,
            base_delay_seconds=self.settings.retry_base_delay_seconds,
            on_retry=lambda attempt, delay, error: logger.warning(
                "LLM transient error, retrying (attempt=%s delay=%.2fs): %s",
                attempt,
                delay,
                error,
            ),
        )
        extra: dict = {"duration_ms": round((time.perf_counter() - started_at) * 1000, 1)}
        usage = getattr(result, "usage_normalized", None)
        if usage:
            extra["usage"] = usage
        logger.info("Adapter call finished", extra=extra)
        return result


def adapter_failure(error: Exception) -> AdapterError:
    code = classify_llm_api_error(error)
    logger.error("Adapter call failed", extra={"error_code": code})
    return AdapterError(code, build_error_details(error))
