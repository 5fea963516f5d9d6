from __future__ import annotations

from typing import Any

UsageCounts = dict[str, int | None]


def normalize_usage(provider: str, usage: dict[str, Any] | None) -> UsageCounts:
    if provider == "google":
        return normalize_gemini_usage(usage)
    if provider == "openai":
        return normalize_openai_usage(usage)
    raise ValueError(f"Unknown LLM provider: {provider}")


def normalize_openai_usage(usage: dict[str, Any] | None) -> UsageCounts:
    usage_data = usage or {}

    prompt_tokens = _first_int(usage_data, "input_tokens", "prompt_tokens", "inputTokens")
    completion_tokens = _first_int(
        usage_data, "output_tokens", "completion_tokens", "outputTokens"
    )
    details = usage_data.get("output_tokens_details")
    reasoning_tokens = (
        _first_int(details, "reasoning_tokens") if isinstance(details, dict) else None
    )

    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": _first_int(usage_data, "total_tokens", "totalTokens")
        or _sum_tokens(prompt_tokens, completion_tokens),
        "thoughts_tokens": reasoning_tokens,
    }


def normalize_gemini_usage(usage: dict[str, Any] | None) -> UsageCounts:
    usage_data = usage or {}

    prompt_tokens = _first_int(
        usage_data, "prompt_token_count", "promptTokenCount", "prompt_tokens"
    )
    completion_tokens = _first_int(
        usage_data,
        "candidates_token_count",
        "candidatesTokenCount",
        "completion_tokens",
    )

    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": _first_int(
            usage_data, "total_token_count", "totalTokenCount", "total_tokens"
        )
        or _sum_tokens(prompt_tokens, completion_tokens),
        "thoughts_tokens": _first_int(
            usage_data, "thoughts_token_count", "thoughtsTokenCount", "thoughts_tokens"
        ),
    }


def _first_int(data: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return int(value)
    return None


def _sum_tokens(prompt_tokens: int | None, completion_tokens: int | None) -> int | None:
    if prompt_tokens is None and completion_tokens is None:
        return None
    return int((prompt_tokens or 0) + (completion_tokens or 0))
