from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from collision_report.report.model import Consent, Question, Signatures
from collision_report.utils.error_taxonomy import (
    InvalidTransitionError,
    SessionValidationError,
)


class Step(str, Enum):
    LANDING_PAGE = "LandingPage"
    SELECT_COUNTRY = "SelectCountry"
    UPLOAD_MEDIA = "UploadMedia"
    PROCESSING = "Processing"
    VERIFICATION = "Verification"
    REPORT_GENERATED = "ReportGenerated"
    BLURRY_DOCUMENT_PAUSE = "BlurryDocumentPause"
    CLARIFYING_PAUSE = "ClarifyingPause"


ALLOWED_TRANSITIONS: dict[Step, frozenset[Step]] = {
    Step.LANDING_PAGE: frozenset({Step.SELECT_COUNTRY}),
    Step.SELECT_COUNTRY: frozenset({Step.UPLOAD_MEDIA}),
    Step.UPLOAD_MEDIA: frozenset({Step.PROCESSING}),
    Step.PROCESSING: frozenset(
        {Step.VERIFICATION, Step.BLURRY_DOCUMENT_PAUSE, Step.UPLOAD_MEDIA}
    ),
    Step.BLURRY_DOCUMENT_PAUSE: frozenset({Step.VERIFICATION, Step.UPLOAD_MEDIA}),
    Step.VERIFICATION: frozenset(
        {Step.CLARIFYING_PAUSE, Step.UPLOAD_MEDIA, Step.REPORT_GENERATED}
    ),
    Step.CLARIFYING_PAUSE: frozenset({Step.VERIFICATION, Step.UPLOAD_MEDIA}),
    Step.REPORT_GENERATED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class Transition:
    """Next step plus its side payload. ``questions=None`` leaves the open questions as they are."""

    step: Step
    questions: tuple[Question, ...] | None = None
    quality_warning: Question | None = None
    error: str | None = None


def visible_step(step: Step) -> Step:
    """Clarifying happens in place; the user still sees the verification step."""
    if step is Step.CLARIFYING_PAUSE:
        return Step.VERIFICATION
    return step


def require_transition(current: Step, target: Step) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Transition {current.value} -> {target.value} is not allowed"
        )


def start(current: Step) -> Transition:
    require_transition(current, Step.SELECT_COUNTRY)
    return Transition(step=Step.SELECT_COUNTRY)


def select_jurisdiction(current: Step) -> Transition:
    require_transition(current, Step.UPLOAD_MEDIA)
    return Transition(step=Step.UPLOAD_MEDIA)


def submit(current: Step, *, evidence_count: int) -> Transition:
    require_transition(current, Step.PROCESSING)
    if evidence_count < 1:
        raise SessionValidationError("EVIDENCE_REQUIRED")
    return Transition(step=Step.PROCESSING, questions=())


def extraction_completed(current: Step, questions: tuple[Question, ...]) -> Transition:
    """Route a finished processing pass on its question list.

    A ``document_quality`` question is pulled out of the list and
    becomes the blocking warning; the rest stay attached for display.
    """
    quality = next((item for item in questions if item.is_quality), None)
    remaining = tuple(item for item in questions if not item.is_quality)
    if quality is not None:
        require_transition(current, Step.BLURRY_DOCUMENT_PAUSE)
        return Transition(
            step=Step.BLURRY_DOCUMENT_PAUSE,
            questions=remaining,
            quality_warning=quality,
        )
    require_transition(current, Step.VERIFICATION)
    return Transition(step=Step.VERIFICATION, questions=remaining)


def processing_failed(current: Step, *, error: str) -> Transition:
    require_transition(current, Step.UPLOAD_MEDIA)
    return Transition(step=Step.UPLOAD_MEDIA, error=error)


def continue_anyway(current: Step) -> Transition:
    if current is not Step.BLURRY_DOCUMENT_PAUSE:
        raise InvalidTransitionError("No document quality warning is pending")
    return Transition(step=Step.VERIFICATION)


def reupload(current: Step) -> Transition:
    if current is not Step.BLURRY_DOCUMENT_PAUSE:
        raise InvalidTransitionError("No document quality warning is pending")
    return Transition(step=Step.UPLOAD_MEDIA)


def begin_clarification(current: Step) -> Transition:
    require_transition(current, Step.CLARIFYING_PAUSE)
    return Transition(step=Step.CLARIFYING_PAUSE)


def end_clarification(
    current: Step,
    questions: tuple[Question, ...],
    *,
    error: str | None = None,
) -> Transition:
    require_transition(current, Step.VERIFICATION)
    return Transition(step=Step.VERIFICATION, questions=questions, error=error)


def back_to_upload(current: Step) -> Transition:
    if current not in (Step.VERIFICATION, Step.CLARIFYING_PAUSE, Step.PROCESSING):
        raise InvalidTransitionError(
            f"Cannot return to evidence intake from {current.value}"
        )
    return Transition(step=Step.UPLOAD_MEDIA)


def confirm(current: Step, *, signatures: Signatures, consent: Consent) -> Transition:
    require_transition(current, Step.REPORT_GENERATED)
    if not signatures.any_present:
        raise SessionValidationError("SIGNATURE_REQUIRED")
    if not consent.both_given:
        raise SessionValidationError("CONSENT_REQUIRED")
    return Transition(step=Step.REPORT_GENERATED)
