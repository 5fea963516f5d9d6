from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Literal, TypeVar

from collision_report.adapters.clarification import ClarificationAdapter, ClarificationRequest
from collision_report.adapters.extraction import ExtractionAdapter, ExtractionRequest
from collision_report.adapters.runtime import adapter_failure
from collision_report.adapters.synthesis import (
    DiagramAdapter,
    SketchAdapter,
    synthesis_request_from,
)
from collision_report.config.settings import Settings, get_settings
from collision_report.evidence import (
    EvidenceKind,
    EvidenceSet,
    Geolocation,
    UploadedEvidence,
    group_evidence,
)
from collision_report.llm_client.base import LLMClient
from collision_report.llm_client.factory import build_llm_client
from collision_report.logging import get_logger, set_log_context
from collision_report.pipeline import state
from collision_report.pipeline.state import Step, Transition
from collision_report.report import edits
from collision_report.report.catalog import JurisdictionConfig, Language, Locale, VehicleLabel
from collision_report.report.merge import FieldOwnership, degrade_diagram, merge_partial
from collision_report.report.model import (
    PartialDiagram,
    PartialReport,
    Question,
    ReportRecord,
    new_report,
)
from collision_report.storage.zip_export import export_evidence_package
from collision_report.utils.error_taxonomy import (
    AdapterError,
    ErrorCode,
    InvalidTransitionError,
    SessionBusyError,
    SessionValidationError,
)

T = TypeVar("T")

logger = get_logger("pipeline.session")

AI_DIAGRAM_NOTE = "AI generated"
EDITABLE_STEPS = (Step.VERIFICATION, Step.CLARIFYING_PAUSE)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    status: Literal["committed", "failed", "stale"]
    step: Step
    degraded: tuple[str, ...] = ()

    @property
    def committed(self) -> bool:
        return self.status == "committed"


class ReportSession:
    """One report from landing page to exported package.

    Only this class writes the canonical record. Adapter calls run off the
    event loop; a result whose generation is no longer current is dropped.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        extraction_adapter: ExtractionAdapter,
        diagram_adapter: DiagramAdapter,
        sketch_adapter: SketchAdapter,
        clarification_adapter: ClarificationAdapter,
        session_id: str | None = None,
        preview_dir: Path | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.settings = settings
        self.evidence = EvidenceSet(preview_dir)
        self._extraction = extraction_adapter
        self._diagram = diagram_adapter
        self._sketch = sketch_adapter
        self._clarification = clarification_adapter
        self._clock = clock

        self._step = Step.LANDING_PAGE
        self._config: JurisdictionConfig | None = None
        self._geolocation: Geolocation | None = None
        self._record: ReportRecord | None = None
        self._ownership = FieldOwnership()
        self._questions: tuple[Question, ...] = ()
        self._quality_warning: Question | None = None
        self._error_code: ErrorCode | None = None
        self._error_message: str | None = None
        self._generation = 0

    @property
    def step(self) -> Step:
        return self._step

    @property
    def visible_step(self) -> Step:
        return state.visible_step(self._step)

    @property
    def config(self) -> JurisdictionConfig | None:
        return self._config

    @property
    def geolocation(self) -> Geolocation | None:
        return self._geolocation

    @property
    def record(self) -> ReportRecord | None:
        return self._record

    @property
    def ownership(self) -> FieldOwnership:
        return self._ownership

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._questions

    @property
    def quality_warning(self) -> Question | None:
        return self._quality_warning

    @property
    def error(self) -> str | None:
        return self._error_message

    @property
    def error_code(self) -> ErrorCode | None:
        return self._error_code

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_busy(self) -> bool:
        return self._step in (Step.PROCESSING, Step.CLARIFYING_PAUSE)

    # Navigation

    def start(self) -> None:
        self._apply(state.start(self._step))

    def select_jurisdiction(self, locale: Locale, language: Language) -> None:
        config = JurisdictionConfig(locale=locale, language=language)
        self._apply(state.select_jurisdiction(self._step))
        self._config = config
        self._log_context(stage="select_jurisdiction")
        logger.info("Jurisdiction selected", extra={"details": {"locale": locale, "language": language}})

    def continue_anyway(self) -> None:
        self._apply(state.continue_anyway(self._step))

    def reupload(self) -> None:
        self._apply(state.reupload(self._step))
        # The next submission starts from a fresh record.
        self._record = None
        self._ownership = FieldOwnership()
        self._questions = ()

    def go_back_to_upload(self) -> None:
        was_processing = self._step is Step.PROCESSING
        self._apply(state.back_to_upload(self._step))
        self._generation += 1
        if was_processing:
            logger.warning("Processing abandoned; its result will be discarded")

    def dismiss_error(self) -> None:
        self._error_code = None
        self._error_message = None

    # Evidence intake

    def add_evidence(
        self,
        filename: str,
        data: bytes,
        *,
        mime_type: str | None = None,
        kind: EvidenceKind | None = None,
        owner: VehicleLabel | None = None,
    ) -> UploadedEvidence:
        self._require_step(Step.UPLOAD_MEDIA, action="add evidence")
        return self.evidence.add(filename, data, mime_type=mime_type, kind=kind, owner=owner)

    def remove_evidence(self, evidence_id: str) -> None:
        self._require_step(Step.UPLOAD_MEDIA, action="remove evidence")
        self.evidence.remove(evidence_id)

    def reclassify_evidence(
        self,
        evidence_id: str,
        *,
        kind: EvidenceKind | None = None,
        owner: VehicleLabel | None = None,
    ) -> UploadedEvidence:
        self._require_step(Step.UPLOAD_MEDIA, action="reclassify evidence")
        return self.evidence.reclassify(evidence_id, kind=kind, owner=owner)

    def set_geolocation(self, lat: float | None, lng: float | None) -> None:
        if lat is None or lng is None:
            self._geolocation = None
            return
        try:
            self._geolocation = Geolocation(lat=float(lat), lng=float(lng))
        except ValueError as error:
            raise SessionValidationError("INVALID_EVIDENCE", str(error)) from error

    # Adapter-driven operations

    async def process(self) -> RunOutcome:
        if self._step is Step.PROCESSING:
            raise SessionBusyError("Evidence is already being processed")

        transition = state.submit(self._step, evidence_count=len(self.evidence))
        config = self._require_config()
        self._generation += 1
        generation = self._generation
        self.dismiss_error()
        self._apply(transition)
        self._log_context(stage="processing")

        base = self._record or new_report(config.locale, config.language, now=self._clock())
        ownership = self._ownership
        groups = group_evidence(self.evidence.items)
        request = ExtractionRequest(
            evidence=groups,
            locale=config.locale,
            language=config.language,
            geolocation=self._geolocation,
        )

        try:
            extraction = await self._call(self._extraction.extract, request, kind="extraction")
        except Exception as error:  # noqa: BLE001
            failure = error if isinstance(error, AdapterError) else adapter_failure(error)
            if self._is_stale(generation):
                return self._stale()
            self._error_code = failure.code
            self._error_message = failure.friendly_message
            self._apply(state.processing_failed(self._step, error=failure.friendly_message))
            return RunOutcome(status="failed", step=self._step)

        if self._is_stale(generation):
            return self._stale()

        working = merge_partial(base, extraction.partial, ownership)
        synthesis_request = synthesis_request_from(working, groups.scene)
        diagram_result, sketch_result = await asyncio.gather(
            self._call(self._diagram.generate, synthesis_request, kind="diagram"),
            self._call(self._sketch.generate, synthesis_request, kind="sketch"),
            return_exceptions=True,
        )
        if self._is_stale(generation):
            return self._stale()

        working, degraded = self._apply_synthesis(
            working,
            svg=diagram_result,
            sketch=sketch_result,
            ownership=ownership,
        )
        self._record = working
        self._apply(state.extraction_completed(self._step, extraction.questions))
        logger.info(
            "Processing committed",
            extra={"details": {"step": self._step.value, "questions": len(self._questions)}},
        )
        return RunOutcome(status="committed", step=self._step, degraded=degraded)

    async def clarify(self, answer: str) -> RunOutcome:
        if self._step is Step.CLARIFYING_PAUSE:
            raise SessionBusyError("A clarification is already in flight")
        self._require_step(Step.VERIFICATION, action="answer questions")
        if not answer or not answer.strip():
            raise SessionValidationError("ANSWER_REQUIRED")
        if not self._questions:
            raise SessionValidationError("NO_OPEN_QUESTIONS")

        record = self._require_record()
        questions = self._questions
        generation = self._generation
        self.dismiss_error()
        self._apply(state.begin_clarification(self._step))
        self._log_context(stage="clarification")

        request = ClarificationRequest(record=record, questions=questions, answer=answer)
        try:
            partial = await self._call(self._clarification.clarify, request, kind="clarification")
        except Exception as error:  # noqa: BLE001
            failure = error if isinstance(error, AdapterError) else adapter_failure(error)
            if self._is_stale(generation):
                return self._stale()
            self._error_code = failure.code
            self._error_message = failure.friendly_message
            self._apply(
                state.end_clarification(self._step, questions, error=failure.friendly_message)
            )
            return RunOutcome(status="failed", step=self._step)

        if self._is_stale(generation):
            return self._stale()

        # Edits made while the call was in flight stay; the answer merges on top.
        self._record = merge_partial(self._require_record(), partial, self._ownership)
        self._apply(state.end_clarification(self._step, ()))
        return RunOutcome(status="committed", step=self._step)

    # Verification edits

    def update_accident(self, **fields: Any) -> ReportRecord:
        return self._edit(edits.update_accident, **fields)

    def update_vehicle(self, label: VehicleLabel, /, **fields: Any) -> ReportRecord:
        return self._edit(edits.update_vehicle, label, **fields)

    def update_driver(self, label: VehicleLabel, /, **fields: Any) -> ReportRecord:
        return self._edit(edits.update_driver, label, **fields)

    def update_insurance(self, label: VehicleLabel, /, **fields: Any) -> ReportRecord:
        return self._edit(edits.update_insurance, label, **fields)

    def toggle_violation(self, label: VehicleLabel, violation_id: str) -> ReportRecord:
        return self._edit(edits.toggle_violation, label, violation_id)

    def add_witness(self, *, name: str = "", phone: str = "") -> ReportRecord:
        return self._edit(edits.add_witness, name=name, phone=phone)

    def update_witness(self, index: int, **fields: Any) -> ReportRecord:
        return self._edit(edits.update_witness, index, **fields)

    def remove_witness(self, index: int) -> ReportRecord:
        return self._edit(edits.remove_witness, index)

    def set_signature(self, label: VehicleLabel, data: str | None) -> ReportRecord:
        return self._edit(edits.set_signature, label, data)

    def set_consent(self, label: VehicleLabel, value: bool) -> ReportRecord:
        return self._edit(edits.set_consent, label, value)

    def set_diagram_svg(self, svg: str) -> ReportRecord:
        record = self._edit(edits.set_diagram_svg, svg)
        self._ownership = FieldOwnership(diagram_svg=True)
        return record

    def set_diagram_notes(self, notes: str) -> ReportRecord:
        return self._edit(edits.set_diagram_notes, notes)

    # Confirmation and packaging

    def confirm(self) -> None:
        record = self._require_record()
        self._apply(
            state.confirm(self._step, signatures=record.signatures, consent=record.consent)
        )
        logger.info("Report confirmed")

    def export_package(self, output_dir: Path | None = None, *, today: date | None = None) -> Path:
        self._require_step(Step.REPORT_GENERATED, action="export the package")
        self._log_context(stage="export")
        return export_evidence_package(
            record=self._require_record(),
            evidence=self.evidence.items,
            output_dir=output_dir or self.settings.exports_dir,
            signing_key=self.settings.bundle_signing_key,
            today=today or self._clock().date(),
        )

    def close(self) -> None:
        self._generation += 1
        self.evidence.clear()

    # Internals

    async def _call(self, func: Callable[[Any], T], request: Any, *, kind: str) -> T:
        timeout = self.settings.adapter_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, request), timeout=timeout)
        except asyncio.TimeoutError as error:
            logger.error(
                "Adapter call timed out",
                extra={"error_code": "ADAPTER_TIMEOUT", "details": {"kind": kind}},
            )
            raise AdapterError("ADAPTER_TIMEOUT", f"{kind} call exceeded {timeout}s") from error

    def _apply_synthesis(
        self,
        record: ReportRecord,
        *,
        svg: Any,
        sketch: Any,
        ownership: FieldOwnership,
    ) -> tuple[ReportRecord, tuple[str, ...]]:
        svg_failed = isinstance(svg, BaseException)
        sketch_failed = isinstance(sketch, BaseException)
        degraded: list[str] = []
        if svg_failed:
            degraded.append("diagram.svg")
            logger.warning(
                "Diagram synthesis degraded: %s", svg, extra={"error_code": "SYNTHESIS_FAILED"}
            )
        if sketch_failed:
            degraded.append("diagram.sketch_base64")
            logger.warning(
                "Sketch synthesis degraded: %s", sketch, extra={"error_code": "SYNTHESIS_FAILED"}
            )

        notes = None
        if not svg_failed and not record.diagram.notes:
            notes = AI_DIAGRAM_NOTE
        partial = PartialReport(
            diagram=PartialDiagram(
                svg=None if svg_failed else svg,
                sketch_base64=None if sketch_failed else sketch,
                notes=notes,
            )
        )
        merged = merge_partial(record, partial, ownership)
        merged = degrade_diagram(
            merged,
            svg_failed=svg_failed,
            sketch_failed=sketch_failed,
            ownership=ownership,
        )
        return merged, tuple(degraded)

    def _apply(self, transition: Transition) -> None:
        self._step = transition.step
        self._quality_warning = transition.quality_warning
        if transition.questions is not None:
            self._questions = transition.questions

    def _edit(
        self, operation: Callable[..., ReportRecord], /, *args: Any, **kwargs: Any
    ) -> ReportRecord:
        if self._step not in EDITABLE_STEPS:
            raise InvalidTransitionError(f"The report cannot be edited in step {self._step.value}")
        self._record = operation(self._require_record(), *args, **kwargs)
        return self._record

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _stale(self) -> RunOutcome:
        logger.warning("Discarded stale adapter result")
        return RunOutcome(status="stale", step=self._step)

    def _require_step(self, step: Step, *, action: str) -> None:
        if self._step is not step:
            raise InvalidTransitionError(f"Cannot {action} in step {self._step.value}")

    def _require_config(self) -> JurisdictionConfig:
        if self._config is None:
            raise InvalidTransitionError("Jurisdiction has not been selected")
        return self._config

    def _require_record(self) -> ReportRecord:
        if self._record is None:
            raise InvalidTransitionError("No report has been extracted yet")
        return self._record

    def _log_context(self, *, stage: str) -> None:
        set_log_context(session_id=self.session_id, generation=self._generation, stage=stage)


def create_session(
    settings: Settings | None = None,
    *,
    llm_client: LLMClient | None = None,
    provider: str | None = None,
) -> ReportSession:
    resolved_settings = settings or get_settings()
    client = llm_client or build_llm_client(resolved_settings, provider)
    shared = {"llm_client": client, "settings": resolved_settings, "provider": provider}
    session_id = uuid.uuid4().hex
    return ReportSession(
        settings=resolved_settings,
        extraction_adapter=ExtractionAdapter(**shared),
        diagram_adapter=DiagramAdapter(**shared),
        sketch_adapter=SketchAdapter(**shared),
        clarification_adapter=ClarificationAdapter(**shared),
        session_id=session_id,
        preview_dir=resolved_settings.previews_dir / session_id,
    )
