from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Any

from collision_report.adapters.extraction import ExtractionResult
from collision_report.llm_client.base import ImageResult, LLMResult
from collision_report.report.model import PartialReport, Question

FIXED_NOW = datetime(2026, 10, 17, 9, 30, 45)

DIAGRAM_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="400" height="300">'
    '<g id="vehicle-A"><rect x="10" y="10" width="40" height="20" fill="cyan"/></g>'
    '<g id="vehicle-B"><rect x="80" y="10" width="40" height="20" fill="indigo"/></g>'
    "</svg>"
)


class FakeLLMClient:
    """Records every call and replays canned provider output."""

    def __init__(
        self,
        *,
        json_payloads: list[dict[str, Any]] | None = None,
        text: str = DIAGRAM_SVG,
        image: bytes = b"\x89PNG-sketch",
        error: Exception | None = None,
    ) -> None:
        self.json_payloads = list(json_payloads or [])
        self.text = text
        self.image = image
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def generate_json(self, **kwargs: Any) -> LLMResult:
        self.calls.append(("json", kwargs))
        if self.error is not None:
            raise self.error
        payload = self.json_payloads.pop(0)
        return LLMResult(
            raw_text=json.dumps(payload),
            parsed_json=payload,
            raw_response={},
            usage_raw={"input_tokens": 10, "output_tokens": 5},
            usage_normalized={
                "prompt_tokens": 10,
                "completion_tokens": 5,
                "total_tokens": 15,
                "thoughts_tokens": None,
            },
            timings={"t_llm_total_ms": 1.0},
        )

    def generate_text(self, **kwargs: Any) -> LLMResult:
        self.calls.append(("text", kwargs))
        if self.error is not None:
            raise self.error
        return LLMResult(
            raw_text=self.text,
            parsed_json=None,
            raw_response={},
            usage_raw={},
            usage_normalized={},
            timings={"t_llm_total_ms": 1.0},
        )

    def generate_image(self, **kwargs: Any) -> ImageResult:
        self.calls.append(("image", kwargs))
        if self.error is not None:
            raise self.error
        return ImageResult(data=self.image, mime_type="image/png", timings={"t_llm_total_ms": 1.0})


class FakeExtraction:
    """Extraction stand-in. ``gates`` maps a call number to an event the call waits on."""

    def __init__(
        self,
        *results: ExtractionResult | Exception,
        gates: dict[int, threading.Event] | None = None,
    ) -> None:
        self.results = list(results)
        self.gates = gates or {}
        self.requests: list[Any] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def extract(self, request: Any) -> ExtractionResult:
        with self._lock:
            call_number = len(self.requests) + 1
            self.requests.append(request)
            outcome = self.results.pop(0)
        gate = self.gates.get(call_number)
        if gate is not None:
            assert gate.wait(timeout=5), "gate was never released"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSynthesis:
    def __init__(self, result: str | Exception) -> None:
        self.result = result
        self.requests: list[Any] = []

    def generate(self, request: Any) -> str:
        self.requests.append(request)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeClarification:
    def __init__(self, *results: PartialReport | Exception) -> None:
        self.results = list(results)
        self.requests: list[Any] = []

    def clarify(self, request: Any) -> PartialReport:
        self.requests.append(request)
        outcome = self.results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def extraction_result(
    payload: dict[str, Any] | None = None,
    questions: list[dict[str, str]] | None = None,
) -> ExtractionResult:
    return ExtractionResult(
        partial=PartialReport.model_validate(payload or {}),
        questions=tuple(Question.model_validate(item) for item in questions or []),
    )
