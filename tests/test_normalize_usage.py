from __future__ import annotations

import pytest

from collision_report.llm_client.normalize_usage import (
    normalize_gemini_usage,
    normalize_openai_usage,
    normalize_usage,
)


def test_normalize_openai_usage_reads_reasoning_tokens() -> None:
    usage = normalize_openai_usage(
        {
            "input_tokens": 1000,
            "output_tokens": 500,
            "output_tokens_details": {"reasoning_tokens": 120},
        }
    )

    assert usage == {
        "prompt_tokens": 1000,
        "completion_tokens": 500,
        "total_tokens": 1500,
        "thoughts_tokens": 120,
    }


def test_normalize_gemini_usage_accepts_both_key_styles() -> None:
    snake = normalize_gemini_usage(
        {"prompt_token_count": 10, "candidates_token_count": 4, "thoughts_token_count": 2}
    )
    camel = normalize_gemini_usage(
        {"promptTokenCount": 10, "candidatesTokenCount": 4, "totalTokenCount": 16}
    )

    assert snake == {
        "prompt_tokens": 10,
        "completion_tokens": 4,
        "total_tokens": 14,
        "thoughts_tokens": 2,
    }
    assert camel["total_tokens"] == 16
    assert camel["thoughts_tokens"] is None


def test_normalize_usage_dispatches_by_provider() -> None:
    assert normalize_usage("openai", None) == {
        "prompt_tokens": None,
        "completion_tokens": None,
        "total_tokens": None,
        "thoughts_tokens": None,
    }
    assert normalize_usage("google", {"totalTokenCount": 3})["total_tokens"] == 3

    with pytest.raises(ValueError, match="Unknown LLM provider"):
        normalize_usage("acme", {})
