from __future__ import annotations

import json
from dataclasses import dataclass

from collision_report.adapters.runtime import AdapterBase, adapter_failure
from collision_report.logging import get_logger
from collision_report.pipeline.validate_output import validate_output
from collision_report.report.model import PartialReport, Question, ReportRecord
from collision_report.utils.error_taxonomy import AdapterError

logger = get_logger("adapters.clarification")

# Left out of the prompt: large binary payloads and fields the user owns.
PROMPT_EXCLUDE = {
    "signatures": True,
    "consent": True,
    "witnesses": True,
    "diagram": {"svg", "sketch_base64"},
}


@dataclass(frozen=True, slots=True)
class ClarificationRequest:
    record: ReportRecord
    questions: tuple[Question, ...]
    answer: str


class ClarificationAdapter(AdapterBase):
    kind = "clarification"
    prompt_name = "report_clarification"

    def clarify(self, request: ClarificationRequest) -> PartialReport:
        prompt_set = self.load_prompt()
        user_content = prompt_set.render_user_prompt(
            report_json=serialize_record_for_prompt(request.record),
            questions="\n".join(f"- {item.question}" for item in request.questions),
            answer=request.answer.strip(),
        )

        try:
            llm_result = self.invoke(
                lambda: self.llm_client.generate_json(
                    system_prompt=prompt_set.system_prompt_text,
                    user_content=user_content,
                    media=(),
                    json_schema=prompt_set.schema or {"type": "object"},
                    model=self.model,
                    params={**self.params, "schema_name": "collision_report_clarification"},
                )
            )
        except AdapterError:
            raise
        except Exception as error:  # noqa: BLE001
            raise adapter_failure(error) from error

        return parse_clarification_output(
            llm_result.parsed_json or {},
            schema=prompt_set.schema,
            record=request.record,
        )


def serialize_record_for_prompt(record: ReportRecord) -> str:
    data = record.model_dump(mode="json", exclude=PROMPT_EXCLUDE)
    return json.dumps(data, ensure_ascii=False, indent=2)


def parse_clarification_output(
    parsed_json: dict,
    *,
    schema: dict | None,
    record: ReportRecord,
) -> PartialReport:
    validation = validate_output(parsed_json=parsed_json, schema=schema, locale=record.locale)
    if not validation.valid:
        raise AdapterError("LLM_SCHEMA_INVALID", "; ".join(validation.schema_errors))

    for warning in validation.invariant_warnings:
        logger.warning("Clarification output sanitised: %s", warning)

    data = validation.sanitized
    diagram = data.get("diagram")
    if isinstance(diagram, dict):
        # Synthesised visuals are never re-derived from a text answer.
        data["diagram"] = {key: value for key, value in diagram.items() if key == "notes"}

    try:
        return PartialReport.model_validate(data)
    except ValueError as error:
        raise AdapterError("LLM_SCHEMA_INVALID", str(error)) from error
