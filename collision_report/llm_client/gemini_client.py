from __future__ import annotations

import json
import time
from typing import Any, Protocol

from collision_report.llm_client.base import ImageResult, LLMResult, MediaPart
from collision_report.llm_client.normalize_usage import normalize_gemini_usage
from collision_report.utils.error_taxonomy import EmptyResponseError


class GeminiModelsService(Protocol):
    def generate_content(self, **kwargs: Any) -> Any: ...

    def generate_images(self, **kwargs: Any) -> Any: ...


class GeminiLLMClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        models_service: GeminiModelsService | None = None,
    ) -> None:
        self._api_key = api_key
        self._models_service = models_service

    def generate_json(
        self,
        *,
        system_prompt: str,
        user_content: str,
        media: tuple[MediaPart, ...],
        json_schema: dict[str, Any],
        model: str,
        params: dict[str, Any],
    ) -> LLMResult:
        payload = self.build_request_payload(
            system_prompt=system_prompt,
            user_content=user_content,
            media=media,
            json_schema=json_schema,
            model=model,
            params=params,
        )
        result = self._generate(payload)
        return _with_parsed_json(result)

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_content: str,
        media: tuple[MediaPart, ...],
        model: str,
        params: dict[str, Any],
    ) -> LLMResult:
        payload = self.build_request_payload(
            system_prompt=system_prompt,
            user_content=user_content,
            media=media,
            json_schema=None,
            model=model,
            params=params,
        )
        return self._generate(payload)

    def generate_image(
        self,
        *,
        prompt: str,
        model: str,
        params: dict[str, Any],
    ) -> ImageResult:
        service = self._resolve_service()
        config = {
            "number_of_images": 1,
            "output_mime_type": str(params.get("output_mime_type") or "image/png"),
            "aspect_ratio": str(params.get("aspect_ratio") or "1:1"),
        }

        start_time = time.perf_counter()
        response = service.generate_images(model=model, prompt=prompt, config=config)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        image_bytes = _extract_image_bytes(response)
        return ImageResult(
            data=image_bytes,
            mime_type=config["output_mime_type"],
            timings={"t_llm_total_ms": elapsed_ms},
        )

    @staticmethod
    def build_request_payload(
        *,
        system_prompt: str,
        user_content: str,
        media: tuple[MediaPart, ...],
        json_schema: dict[str, Any] | None,
        model: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        config: dict[str, Any] = {"system_instruction": system_prompt}
        if json_schema is not None:
            config["response_mime_type"] = "application/json"
            config["response_json_schema"] = json_schema

        thinking_level = str(
            params.get("gemini_thinking_level")
            or params.get("thinking_level")
            or "auto"
        )
        mapped_level = _map_thinking_level(thinking_level)
        if mapped_level is not None:
            config["thinking_config"] = {"thinking_level": mapped_level}

        temperature = params.get("temperature")
        if temperature is not None:
            config["temperature"] = temperature

        max_output_tokens = params.get("max_output_tokens")
        if max_output_tokens is not None:
            config["max_output_tokens"] = int(max_output_tokens)

        parts: list[dict[str, Any]] = [
            {"inline_data": {"mime_type": item.mime_type, "data": item.data}}
            for item in media
        ]
        parts.append({"text": user_content})

        return {
            "model": model,
            "contents": [{"role": "user", "parts": parts}],
            "config": config,
        }

    def _generate(self, payload: dict[str, Any]) -> LLMResult:
        service = self._resolve_service()

        start_time = time.perf_counter()
        response = service.generate_content(**payload)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = _to_dict(response)
        raw_text = _extract_gemini_output_text(response=response, payload=response_payload)
        usage_raw = _extract_usage(response=response, payload=response_payload)

        return LLMResult(
            raw_text=raw_text,
            parsed_json=None,
            raw_response=response_payload,
            usage_raw=usage_raw,
            usage_normalized=normalize_gemini_usage(usage_raw),
            timings={"t_llm_total_ms": elapsed_ms},
        )

    def _resolve_service(self) -> GeminiModelsService:
        if self._models_service is not None:
            return self._models_service

        if self._api_key is None:
            raise ValueError("Google API key is required when service is not injected")

        from google import genai

        # Keep the client referenced; the models service does not own it.
        client = getattr(self, "_genai_client", None)
        if client is None:
            client = genai.Client(api_key=self._api_key)
            self._genai_client = client

        self._models_service = client.models
        return self._models_service


def _with_parsed_json(result: LLMResult) -> LLMResult:
    parsed = json.loads(result.raw_text)
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("Expected a JSON object", result.raw_text, 0)
    return LLMResult(
        raw_text=result.raw_text,
        parsed_json=parsed,
        raw_response=result.raw_response,
        usage_raw=result.usage_raw,
        usage_normalized=result.usage_normalized,
        timings=result.timings,
    )


def _map_thinking_level(value: str) -> str | None:
    normalized = value.strip().lower()
    if normalized not in {"low", "medium", "high"}:
        return None
    return normalized


def _extract_usage(*, response: Any, payload: dict[str, Any]) -> dict[str, Any]:
    for key in ("usage_metadata", "usageMetadata"):
        usage = payload.get(key)
        if isinstance(usage, dict):
            return usage

    response_usage = getattr(response, "usage_metadata", None)
    if response_usage is not None:
        return _to_dict(response_usage)

    return {}


def _extract_gemini_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    direct_text = getattr(response, "text", None)
    if isinstance(direct_text, str) and direct_text.strip():
        return direct_text

    for candidate in payload.get("candidates") or []:
        if not isinstance(candidate, dict):
            continue
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            if not isinstance(part, dict):
                continue
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                return text

    raise EmptyResponseError("Gemini response does not contain text output")


def _extract_image_bytes(response: Any) -> bytes:
    generated = getattr(response, "generated_images", None)
    if generated is None:
        generated = _to_dict(response).get("generated_images")

    for item in generated or []:
        image = item.get("image") if isinstance(item, dict) else getattr(item, "image", None)
        if image is None:
            continue
        data = (
            image.get("image_bytes")
            if isinstance(image, dict)
            else getattr(image, "image_bytes", None)
        )
        if data:
            return bytes(data)

    raise EmptyResponseError("Gemini image response does not contain image bytes")


def _to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}
