from __future__ import annotations

import asyncio
import threading
from datetime import date
from pathlib import Path
from zipfile import ZipFile

import pytest

from collision_report.config.settings import Settings
from collision_report.pipeline.state import Step
from collision_report.report.model import PLACEHOLDER_SVG, PartialReport, new_report
from collision_report.utils.error_taxonomy import (
    AdapterError,
    InvalidTransitionError,
    SessionBusyError,
    SessionValidationError,
    SynthesisError,
)
from tests.helpers import (
    DIAGRAM_SVG,
    FakeClarification,
    FakeExtraction,
    FakeSynthesis,
    extraction_result,
)

QUALITY_QUESTION = {"field": "document_quality", "question": "Driver A's licence photo is blurry."}
PLATE_QUESTION = {"field": "vehicles.B.plate", "question": "What is vehicle B's plate?"}


async def _wait_for_calls(extraction: FakeExtraction, count: int) -> None:
    while extraction.call_count < count:
        await asyncio.sleep(0.01)


def test_uk_scenario_commits_extraction_and_synthesis(make_session, upload_ready) -> None:
    extraction = FakeExtraction(
        extraction_result({"vehicles": [{"label": "A", "plate": "AB12CDE"}], "questions": []})
    )
    diagram = FakeSynthesis(DIAGRAM_SVG)
    session = upload_ready(make_session(extraction=extraction, diagram=diagram))

    outcome = asyncio.run(session.process())

    assert outcome.committed
    assert outcome.degraded == ()
    assert session.step is Step.VERIFICATION
    record = session.record
    assert record.vehicle("A").plate == "AB12CDE"
    assert record.vehicle("B") == new_report("UK", "EN").vehicle("B")
    assert session.questions == ()
    assert record.accident.timestamp == "2026-10-17T09:30"
    assert record.diagram.svg == DIAGRAM_SVG
    assert record.diagram.sketch_base64 == "c2tldGNo"
    assert record.diagram.notes == "AI generated"

    request = extraction.requests[0]
    assert (request.locale, request.language) == ("UK", "EN")
    assert [item.filename for item in request.evidence.scene] == ["scene.jpg"]
    assert [item.filename for item in request.evidence.document_A] == ["licence_a.pdf"]
    assert [item.filename for item in diagram.requests[0].scene_photos] == ["scene.jpg"]


def test_quality_question_pauses_then_continue_anyway(make_session, upload_ready) -> None:
    extraction = FakeExtraction(
        extraction_result(
            {"vehicles": [{"label": "A", "plate": "AB12CDE"}]},
            questions=[PLATE_QUESTION, QUALITY_QUESTION],
        )
    )
    session = upload_ready(make_session(extraction=extraction))

    asyncio.run(session.process())

    assert session.step is Step.BLURRY_DOCUMENT_PAUSE
    assert session.quality_warning.question == QUALITY_QUESTION["question"]
    assert [item.question for item in session.questions] == [PLATE_QUESTION["question"]]
    assert session.record.vehicle("A").plate == "AB12CDE"

    session.continue_anyway()

    assert session.step is Step.VERIFICATION
    assert session.quality_warning is None
    assert [item.field for item in session.questions] == ["vehicles.B.plate"]


def test_reupload_from_quality_pause_starts_from_fresh_record(make_session, upload_ready) -> None:
    extraction = FakeExtraction(
        extraction_result(
            {"vehicles": [{"label": "A", "plate": "BLURRY"}]}, questions=[QUALITY_QUESTION]
        ),
        extraction_result({"vehicles": [{"label": "B", "plate": "XY34"}]}),
    )
    session = upload_ready(make_session(extraction=extraction))
    asyncio.run(session.process())

    session.reupload()
    assert session.step is Step.UPLOAD_MEDIA
    assert session.record is None
    session.add_evidence("licence_a_sharp.jpg", b"sharp", kind="document", owner="A")
    asyncio.run(session.process())

    assert session.step is Step.VERIFICATION
    assert session.record.vehicle("A").plate == ""
    assert session.record.vehicle("B").plate == "XY34"
    assert len(extraction.requests[1].evidence.document_A) == 2


def test_submission_guard_keeps_state(make_session) -> None:
    extraction = FakeExtraction()
    session = make_session(extraction=extraction)
    session.start()
    session.select_jurisdiction("CA", "EN")

    with pytest.raises(SessionValidationError) as error:
        asyncio.run(session.process())

    assert error.value.code == "EVIDENCE_REQUIRED"
    assert session.step is Step.UPLOAD_MEDIA
    assert session.generation == 0
    assert extraction.call_count == 0


def test_adapter_failure_returns_to_upload_with_session_error(make_session, upload_ready) -> None:
    extraction = FakeExtraction(AdapterError("LLM_AUTH_ERROR", "401 unauthorized"))
    session = upload_ready(make_session(extraction=extraction))

    outcome = asyncio.run(session.process())

    assert outcome.status == "failed"
    assert session.step is Step.UPLOAD_MEDIA
    assert session.error_code == "LLM_AUTH_ERROR"
    assert session.error == "Invalid API key. Please check your settings."
    assert session.record is None

    session.dismiss_error()
    assert session.error is None


def test_failed_resubmission_keeps_committed_record(make_session, upload_ready) -> None:
    extraction = FakeExtraction(
        extraction_result({"vehicles": [{"label": "A", "plate": "AB12CDE"}]}),
        RuntimeError("connection dropped"),
    )
    session = upload_ready(make_session(extraction=extraction))
    asyncio.run(session.process())
    committed = session.record

    session.go_back_to_upload()
    outcome = asyncio.run(session.process())

    assert outcome.status == "failed"
    assert session.error_code == "LLM_API_ERROR"
    assert session.step is Step.UPLOAD_MEDIA
    assert session.record == committed


def test_adapter_timeout_is_reported(settings: Settings, make_session, upload_ready) -> None:
    settings.adapter_timeout_seconds = 0.05
    gate = threading.Event()
    extraction = FakeExtraction(extraction_result(), gates={1: gate})
    session = upload_ready(make_session(extraction=extraction))

    async def _scenario():
        outcome = await session.process()
        gate.set()
        return outcome

    outcome = asyncio.run(_scenario())

    assert outcome.status == "failed"
    assert session.error_code == "ADAPTER_TIMEOUT"
    assert session.step is Step.UPLOAD_MEDIA


def test_superseded_extraction_result_is_discarded(make_session, upload_ready) -> None:
    gate = threading.Event()
    extraction = FakeExtraction(
        extraction_result({"vehicles": [{"label": "A", "plate": "OLD-1"}]}),
        extraction_result({"vehicles": [{"label": "A", "plate": "NEW-2"}]}),
        gates={1: gate},
    )
    diagram = FakeSynthesis(DIAGRAM_SVG)
    session = upload_ready(make_session(extraction=extraction, diagram=diagram))

    async def _scenario():
        first = asyncio.create_task(session.process())
        await _wait_for_calls(extraction, 1)
        with pytest.raises(SessionBusyError):
            await session.process()
        session.go_back_to_upload()
        second = await session.process()
        gate.set()
        return await first, second

    first, second = asyncio.run(_scenario())

    assert second.committed
    assert first.status == "stale"
    assert session.step is Step.VERIFICATION
    assert session.record.vehicle("A").plate == "NEW-2"
    assert len(diagram.requests) == 1


def test_navigating_away_discards_in_flight_result(make_session, upload_ready) -> None:
    gate = threading.Event()
    extraction = FakeExtraction(
        extraction_result({"vehicles": [{"label": "A", "plate": "LATE"}]}), gates={1: gate}
    )
    session = upload_ready(make_session(extraction=extraction))

    async def _scenario():
        task = asyncio.create_task(session.process())
        await _wait_for_calls(extraction, 1)
        session.go_back_to_upload()
        gate.set()
        return await task

    outcome = asyncio.run(_scenario())

    assert outcome.status == "stale"
    assert session.step is Step.UPLOAD_MEDIA
    assert session.record is None


def test_diagram_failure_degrades_to_placeholder(make_session, upload_ready) -> None:
    session = upload_ready(
        make_session(diagram=FakeSynthesis(SynthesisError("no groups")))
    )

    outcome = asyncio.run(session.process())

    assert outcome.committed
    assert outcome.degraded == ("diagram.svg",)
    assert session.step is Step.VERIFICATION
    assert session.error is None
    assert session.record.diagram.svg == PLACEHOLDER_SVG
    assert session.record.diagram.notes == ""
    assert session.record.diagram.sketch_base64 == "c2tldGNo"


def test_both_visuals_failing_still_commits(make_session, upload_ready) -> None:
    session = upload_ready(
        make_session(
            diagram=FakeSynthesis(SynthesisError("bad svg")),
            sketch=FakeSynthesis(RuntimeError("image model down")),
        )
    )

    outcome = asyncio.run(session.process())

    assert outcome.committed
    assert outcome.degraded == ("diagram.svg", "diagram.sketch_base64")
    assert session.record.diagram.sketch_base64 is None


def test_user_edited_diagram_survives_reprocessing(make_session, upload_ready) -> None:
    extraction = FakeExtraction(extraction_result(), extraction_result())
    diagram = FakeSynthesis(DIAGRAM_SVG)
    session = upload_ready(make_session(extraction=extraction, diagram=diagram))
    asyncio.run(session.process())

    session.set_diagram_svg("<svg id='mine'/>")
    session.set_signature("A", "data:image/png;base64,U0lH")
    session.go_back_to_upload()
    diagram.result = SynthesisError("down")
    asyncio.run(session.process())

    assert session.ownership.diagram_svg is True
    assert session.record.diagram.svg == "<svg id='mine'/>"
    assert session.record.signatures.A == "data:image/png;base64,U0lH"


def test_clarification_merges_answer_and_clears_questions(make_session, upload_ready) -> None:
    clarification = FakeClarification(
        PartialReport.model_validate(
            {
                "vehicles": [{"label": "B", "plate": "XY34ZZZ"}],
                "signatures": {"A": "data:image/png;base64,FORGED"},
            }
        )
    )
    extraction = FakeExtraction(extraction_result(questions=[PLATE_QUESTION]))
    session = upload_ready(make_session(extraction=extraction, clarification=clarification))
    asyncio.run(session.process())
    session.set_signature("A", "data:image/png;base64,U0lH")

    outcome = asyncio.run(session.clarify("It was XY34ZZZ"))

    assert outcome.committed
    assert session.step is Step.VERIFICATION
    assert session.questions == ()
    assert session.record.vehicle("B").plate == "XY34ZZZ"
    assert session.record.signatures.A == "data:image/png;base64,U0lH"
    request = clarification.requests[0]
    assert request.answer == "It was XY34ZZZ"
    assert [item.question for item in request.questions] == [PLATE_QUESTION["question"]]


def test_clarification_guards(make_session, upload_ready) -> None:
    session = upload_ready(make_session())

    with pytest.raises(InvalidTransitionError):
        asyncio.run(session.clarify("too early"))

    asyncio.run(session.process())

    with pytest.raises(SessionValidationError) as blank:
        asyncio.run(session.clarify("   "))
    with pytest.raises(SessionValidationError) as no_questions:
        asyncio.run(session.clarify("an answer"))

    assert blank.value.code == "ANSWER_REQUIRED"
    assert no_questions.value.code == "NO_OPEN_QUESTIONS"


def test_clarification_failure_keeps_questions(make_session, upload_ready) -> None:
    clarification = FakeClarification(AdapterError("LLM_API_ERROR", "503"))
    extraction = FakeExtraction(extraction_result(questions=[PLATE_QUESTION]))
    session = upload_ready(make_session(extraction=extraction, clarification=clarification))
    asyncio.run(session.process())
    before = session.record

    outcome = asyncio.run(session.clarify("XY34"))

    assert outcome.status == "failed"
    assert session.step is Step.VERIFICATION
    assert len(session.questions) == 1
    assert session.error_code == "LLM_API_ERROR"
    assert session.record == before


def test_edits_during_clarification_are_kept(make_session, upload_ready) -> None:
    gate = threading.Event()

    class GatedClarification(FakeClarification):
        def clarify(self, request):
            assert gate.wait(timeout=5)
            return super().clarify(request)

    clarification = GatedClarification(
        PartialReport.model_validate({"drivers": [{"vehicle": "B", "phone": "0700"}]})
    )
    extraction = FakeExtraction(extraction_result(questions=[PLATE_QUESTION]))
    session = upload_ready(make_session(extraction=extraction, clarification=clarification))
    asyncio.run(session.process())

    async def _scenario():
        task = asyncio.create_task(session.clarify("phone is 0700"))
        while session.step is not Step.CLARIFYING_PAUSE:
            await asyncio.sleep(0.01)
        assert session.visible_step is Step.VERIFICATION
        with pytest.raises(SessionBusyError):
            await session.clarify("again")
        session.update_vehicle("A", make_model="Ford Focus")
        gate.set()
        return await task

    outcome = asyncio.run(_scenario())

    assert outcome.committed
    assert session.record.vehicle("A").make_model == "Ford Focus"
    assert session.record.driver("B").phone == "0700"


def test_confirmation_guard_and_export(make_session, upload_ready, tmp_path: Path) -> None:
    session = upload_ready(make_session())
    asyncio.run(session.process())

    with pytest.raises(InvalidTransitionError):
        session.export_package(tmp_path)
    with pytest.raises(SessionValidationError) as missing_signature:
        session.confirm()
    session.set_signature("B", "data:image/png;base64,U0lH")
    session.set_consent("A", True)
    with pytest.raises(SessionValidationError) as missing_consent:
        session.confirm()

    assert missing_signature.value.code == "SIGNATURE_REQUIRED"
    assert missing_consent.value.code == "CONSENT_REQUIRED"
    assert session.step is Step.VERIFICATION

    session.set_consent("B", True)
    session.confirm()
    assert session.step is Step.REPORT_GENERATED

    with pytest.raises(InvalidTransitionError):
        session.update_accident(weather="Rain")

    zip_path = session.export_package(tmp_path / "exports", today=date(2026, 10, 17))
    with ZipFile(zip_path, "r") as archive:
        names = archive.namelist()

    assert zip_path.name == "Accident_Evidence_Package_2026-10-17.zip"
    assert "media/scene.jpg" in names
    assert "media/licence_a.pdf" in names
    assert "media/Accident_Sketch.png" in names


def test_intake_is_limited_to_upload_step(make_session, upload_ready) -> None:
    session = upload_ready(make_session())
    item = session.evidence.items[0]
    session.reclassify_evidence(item.evidence_id, kind="document", owner="B")
    assert session.evidence.get(item.evidence_id).owner == "B"

    with pytest.raises(SessionValidationError) as bad_location:
        session.set_geolocation(123.0, 0.0)
    assert bad_location.value.code == "INVALID_EVIDENCE"
    session.set_geolocation(51.5, -0.12)
    assert session.geolocation.lat == 51.5

    asyncio.run(session.process())

    with pytest.raises(InvalidTransitionError):
        session.add_evidence("late.jpg", b"late")
    with pytest.raises(InvalidTransitionError):
        session.remove_evidence(item.evidence_id)

    session.go_back_to_upload()
    session.remove_evidence(item.evidence_id)
    assert len(session.evidence) == 1


def test_close_releases_previews(make_session, upload_ready) -> None:
    session = upload_ready(make_session())
    previews = [item.preview_path for item in session.evidence.items]
    assert all(path.exists() for path in previews)

    session.close()

    assert len(session.evidence) == 0
    assert not any(path.exists() for path in previews)


def test_clarification_result_is_discarded_after_leaving_verification(
    make_session, upload_ready
) -> None:
    gate = threading.Event()

    class GatedClarification(FakeClarification):
        def clarify(self, request):
            assert gate.wait(timeout=5)
            return super().clarify(request)

    clarification = GatedClarification(
        PartialReport.model_validate({"vehicles": [{"label": "B", "plate": "LATE"}]})
    )
    extraction = FakeExtraction(extraction_result(questions=[PLATE_QUESTION]))
    session = upload_ready(make_session(extraction=extraction, clarification=clarification))
    asyncio.run(session.process())
    before = session.record

    async def _scenario():
        task = asyncio.create_task(session.clarify("It was LATE"))
        while session.step is not Step.CLARIFYING_PAUSE:
            await asyncio.sleep(0.01)
        session.go_back_to_upload()
        gate.set()
        return await task

    outcome = asyncio.run(_scenario())

    assert outcome.status == "stale"
    assert session.step is Step.UPLOAD_MEDIA
    assert session.record == before
    assert session.record.vehicle("B").plate == ""


def test_vehicle_label_cannot_be_edited_through_session(make_session, upload_ready) -> None:
    session = upload_ready(make_session())
    asyncio.run(session.process())

    with pytest.raises(ValueError, match="cannot be edited"):
        session.update_vehicle("A", label="B")
    with pytest.raises(ValueError, match="cannot be edited"):
        session.update_insurance("B", vehicle="A")

    assert session.record.vehicle("A").label == "A"
