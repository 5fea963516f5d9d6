from __future__ import annotations

import base64
import json
import time
from typing import Any, Protocol

from collision_report.llm_client.base import ImageResult, LLMResult, MediaPart
from collision_report.llm_client.normalize_usage import normalize_openai_usage
from collision_report.utils.error_taxonomy import EmptyResponseError


class OpenAIResponsesService(Protocol):
    def create(self, **kwargs: Any) -> Any: ...


class OpenAIImagesService(Protocol):
    def generate(self, **kwargs: Any) -> Any: ...


class OpenAILLMClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        responses_service: OpenAIResponsesService | None = None,
        images_service: OpenAIImagesService | None = None,
    ) -> None:
        self._api_key = api_key
        self._responses_service = responses_service
        self._images_service = images_service

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
        result = self._respond(payload)
        parsed_json = json.loads(result.raw_text)
        if not isinstance(parsed_json, dict):
            raise json.JSONDecodeError("Expected a JSON object", result.raw_text, 0)
        return LLMResult(
            raw_text=result.raw_text,
            parsed_json=parsed_json,
            raw_response=result.raw_response,
            usage_raw=result.usage_raw,
            usage_normalized=result.usage_normalized,
            timings=result.timings,
        )

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
        return self._respond(payload)

    def generate_image(
        self,
        *,
        prompt: str,
        model: str,
        params: dict[str, Any],
    ) -> ImageResult:
        service = self._resolve_images_service()
        request: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "n": 1,
            "size": str(params.get("size") or "1024x1024"),
        }

        start_time = time.perf_counter()
        response = service.generate(**request)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        return ImageResult(
            data=_extract_image_bytes(response),
            mime_type="image/png",
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
        user_parts: list[dict[str, Any]] = [_media_content(item) for item in media]
        user_parts.append({"type": "input_text", "text": user_content})

        payload: dict[str, Any] = {
            "model": model,
            "input": [
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": system_prompt}],
                },
                {"role": "user", "content": user_parts},
            ],
            "tools": [],
            "tool_choice": "none",
        }

        if json_schema is not None:
            payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": str(params.get("schema_name") or "collision_report"),
                    "schema": json_schema,
                    "strict": False,
                }
            }

        reasoning_effort = str(
            params.get("openai_reasoning_effort")
            or params.get("reasoning_effort")
            or "auto"
        )
        if reasoning_effort in {"low", "medium", "high"}:
            payload["reasoning"] = {"effort": reasoning_effort}

        temperature = params.get("temperature")
        if temperature is not None:
            payload["temperature"] = temperature

        max_output_tokens = params.get("max_output_tokens")
        if max_output_tokens is not None:
            payload["max_output_tokens"] = int(max_output_tokens)

        return payload

    def _respond(self, payload: dict[str, Any]) -> LLMResult:
        service = self._resolve_responses_service()

        start_time = time.perf_counter()
        response = service.create(**payload)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = _to_dict(response)
        raw_text = _extract_openai_output_text(response=response, payload=response_payload)
        usage_raw = _extract_usage(response=response, payload=response_payload)

        return LLMResult(
            raw_text=raw_text,
            parsed_json=None,
            raw_response=response_payload,
            usage_raw=usage_raw,
            usage_normalized=normalize_openai_usage(usage_raw),
            timings={"t_llm_total_ms": elapsed_ms},
        )

    def _client(self) -> Any:
        if self._api_key is None:
            raise ValueError("OpenAI API key is required when service is not injected")

        from openai import OpenAI

        client = getattr(self, "_openai_client", None)
        if client is None:
            client = OpenAI(api_key=self._api_key)
            self._openai_client = client
        return client

    def _resolve_responses_service(self) -> OpenAIResponsesService:
        if self._responses_service is None:
            self._responses_service = self._client().responses
        return self._responses_service

    def _resolve_images_service(self) -> OpenAIImagesService:
        if self._images_service is None:
            self._images_service = self._client().images
        return self._images_service


def _media_content(item: MediaPart) -> dict[str, Any]:
    encoded = base64.b64encode(item.data).decode("ascii")
    data_url = f"data:{item.mime_type};base64,{encoded}"
    if item.mime_type.startswith("image/"):
        return {"type": "input_image", "image_url": data_url}
    return {"type": "input_file", "filename": item.filename, "file_data": data_url}


def _extract_usage(*, response: Any, payload: dict[str, Any]) -> dict[str, Any]:
    usage = payload.get("usage")
    if isinstance(usage, dict):
        return usage

    response_usage = getattr(response, "usage", None)
    if response_usage is None:
        return {}

    return _to_dict(response_usage)


def _extract_openai_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    output_text = getattr(response, "output_text", None)
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    payload_text = payload.get("output_text")
    if isinstance(payload_text, str) and payload_text.strip():
        return payload_text

    for item in payload.get("output") or []:
        if not isinstance(item, dict):
            continue
        for content_item in item.get("content") or []:
            if not isinstance(content_item, dict):
                continue
            text = content_item.get("text")
            if isinstance(text, str) and text.strip():
                return text

    raise EmptyResponseError("OpenAI response does not contain output text")


def _extract_image_bytes(response: Any) -> bytes:
    data = getattr(response, "data", None)
    if data is None:
        data = _to_dict(response).get("data")

    for item in data or []:
        encoded = item.get("b64_json") if isinstance(item, dict) else getattr(item, "b64_json", None)
        if encoded:
            return base64.b64decode(encoded)

    raise EmptyResponseError("OpenAI image response does not contain image data")


def _to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}
