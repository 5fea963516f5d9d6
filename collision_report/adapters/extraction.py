from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from collision_report.adapters.runtime import AdapterBase, adapter_failure
from collision_report.evidence import EvidenceGroups, Geolocation
from collision_report.llm_client.base import MediaPart
from collision_report.logging import get_logger
from collision_report.pipeline.validate_output import validate_output
from collision_report.prompts.manager import PromptSet
from collision_report.report.catalog import (
    JURISDICTION_NAMES,
    LANGUAGE_NAMES,
    Language,
    Locale,
    violations_for,
)
from collision_report.report.model import PartialReport, Question
from collision_report.utils.error_taxonomy import AdapterError

logger = get_logger("adapters.extraction")

GROUP_DESCRIPTIONS = {
    "document_A": "Driver A documents (extract details for Vehicle A / Driver A from these)",
    "document_B": "Driver B documents (extract details for Vehicle B / Driver B from these)",
    "scene": "Accident scene photos/videos (use for impact points, location, weather, light conditions)",
    "audio_A": "Driver A audio statement (transcribe and use for statement and manoeuvre)",
    "audio_B": "Driver B audio statement (transcribe and use for statement and manoeuvre)",
}
GROUP_ORDER = ("document_A", "document_B", "scene", "audio_A", "audio_B")


@dataclass(frozen=True, slots=True)
class ExtractionRequest:
    evidence: EvidenceGroups
    locale: Locale
    language: Language
    geolocation: Geolocation | None = None


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    partial: PartialReport
    questions: tuple[Question, ...] = ()
    warnings: tuple[str, ...] = ()
    usage: dict[str, Any] = field(default_factory=dict)


class ExtractionAdapter(AdapterBase):
    kind = "extraction"
    prompt_name = "report_extraction"

    def extract(self, request: ExtractionRequest) -> ExtractionResult:
        prompt_set = self.load_prompt()
        schema = prompt_set.require_schema()
        user_content = build_extraction_prompt(prompt_set, request)
        media = evidence_media(request.evidence)
        params = {**self.params, "schema_name": "collision_report_extraction"}

        try:
            llm_result = self.invoke(
                lambda: self.llm_client.generate_json(
                    system_prompt=prompt_set.system_prompt_text,
                    user_content=user_content,
                    media=media,
                    json_schema=schema,
                    model=self.model,
                    params=params,
                )
            )
        except AdapterError:
            raise
        except Exception as error:  # noqa: BLE001
            raise adapter_failure(error) from error

        return parse_extraction_output(
            llm_result.parsed_json or {},
            schema=schema,
            locale=request.locale,
            usage=llm_result.usage_normalized,
        )


def evidence_media(groups: EvidenceGroups) -> tuple[MediaPart, ...]:
    parts: list[MediaPart] = []
    for _, items in groups.labeled():
        for item in items:
            parts.append(MediaPart(filename=item.filename, mime_type=item.mime_type, data=item.data))
    return tuple(parts)


def build_extraction_prompt(prompt_set: PromptSet, request: ExtractionRequest) -> str:
    by_name = dict(request.evidence.labeled())
    media_lines = []
    for name in GROUP_ORDER:
        items = by_name[name]
        if items:
            filenames = ", ".join(item.filename for item in items)
            media_lines.append(f"- {GROUP_DESCRIPTIONS[name]}: {filenames}")

    location = ""
    if request.geolocation is not None:
        location = (
            "- User's current location (use to determine the accident address): "
            f"Latitude: {request.geolocation.lat}, Longitude: {request.geolocation.lng}"
        )

    catalog = "\n".join(
        f"- {item.violation_id}: {item.text}" for item in violations_for(request.locale)
    )

    return prompt_set.render_user_prompt(
        locale=request.locale,
        jurisdiction_name=JURISDICTION_NAMES[request.locale],
        language_name=LANGUAGE_NAMES[request.language],
        violation_catalog=catalog,
        media_inputs="\n".join(media_lines),
        location=location,
    )


def parse_extraction_output(
    parsed_json: dict[str, Any],
    *,
    schema: dict[str, Any] | None,
    locale: Locale,
    usage: dict[str, Any] | None = None,
) -> ExtractionResult:
    validation = validate_output(parsed_json=parsed_json, schema=schema, locale=locale)
    if not validation.valid:
        logger.error(
            "Extraction output failed schema validation",
            extra={"error_code": "LLM_SCHEMA_INVALID", "details": validation.schema_errors},
        )
        raise AdapterError("LLM_SCHEMA_INVALID", "; ".join(validation.schema_errors))

    for warning in validation.invariant_warnings:
        logger.warning("Extraction output sanitised: %s", warning)

    try:
        partial = PartialReport.model_validate(validation.sanitized)
        questions = tuple(
            Question.model_validate(item) for item in validation.sanitized.get("questions") or []
        )
    except ValidationError as error:
        raise AdapterError("LLM_SCHEMA_INVALID", str(error)) from error

    return ExtractionResult(
        partial=partial,
        questions=questions,
        warnings=tuple(validation.invariant_warnings),
        usage=dict(usage or {}),
    )

