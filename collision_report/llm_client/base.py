from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class MediaPart:
    filename: str
    mime_type: str
    data: bytes = field(repr=False)


@dataclass(frozen=True, slots=True)
class LLMResult:
    raw_text: str
    parsed_json: dict[str, Any] | None
    raw_response: dict[str, Any]
    usage_raw: dict[str, Any]
    usage_normalized: dict[str, int | None]
    timings: dict[str, float]


@dataclass(frozen=True, slots=True)
class ImageResult:
    data: bytes = field(repr=False)
    mime_type: str
    timings: dict[str, float]


class LLMClient(Protocol):
    def generate_json(
        self,
        *,
        system_prompt: str,
        user_content: str,
        media: tuple[MediaPart, ...],
        json_schema: dict[str, Any],
        model: str,
        params: dict[str, Any],
    ) -> LLMResult: ...

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_content: str,
        media: tuple[MediaPart, ...],
        model: str,
        params: dict[str, Any],
    ) -> LLMResult: ...

    def generate_image(
        self,
        *,
        prompt: str,
        model: str,
        params: dict[str, Any],
    ) -> ImageResult: ...
