from __future__ import annotations

import base64
import importlib.util
import json
import mimetypes
from html import escape
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

import gradio as gr

from collision_report.config.settings import Settings, get_settings
from collision_report.logging import get_logger, setup_logging
from collision_report.pipeline.session import ReportSession, create_session
from collision_report.pipeline.state import Step
from collision_report.report.catalog import (
    JURISDICTION_NAMES,
    LANGUAGE_NAMES,
    VEHICLE_LABELS,
    violations_for,
)
from collision_report.report.model import ReportRecord
from collision_report.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    InvalidTransitionError,
    PackageExportError,
    SessionBusyError,
    SessionValidationError,
)

SessionFactory = Callable[[], ReportSession]
PreflightChecker = Callable[[str], str | None]

logger = get_logger("ui")

EVIDENCE_HEADERS = ["evidence_id", "filename", "kind", "owner", "size_bytes"]
WITNESS_HEADERS = ["#", "name", "phone"]
PANEL_STEPS = {
    "landing": (Step.LANDING_PAGE,),
    "country": (Step.SELECT_COUNTRY,),
    "upload": (Step.UPLOAD_MEDIA, Step.PROCESSING),
    "quality": (Step.BLURRY_DOCUMENT_PAUSE,),
    "verify": (Step.VERIFICATION, Step.CLARIFYING_PAUSE),
    "export": (Step.REPORT_GENERATED,),
}
EDITABLE_SECTIONS = {
    "vehicles": ("plate", "make_model", "first_impact", "maneuver"),
    "drivers": ("name", "national_id", "license_number", "phone", "statement"),
    "insurance": ("company", "policy_number"),
}


def render_view(session: ReportSession | None, message: str = "") -> tuple[Any, ...]:
    """Project the session onto every output component, in ``build_app`` order."""
    step = session.visible_step if session is not None else Step.LANDING_PAGE
    record = session.record if session is not None else None

    status_lines = [f"**Step:** {step.value}"]
    if session is not None and session.config is not None:
        status_lines.append(
            f"**Jurisdiction:** {JURISDICTION_NAMES[session.config.locale]} / "
            f"{LANGUAGE_NAMES[session.config.language]}"
        )
    if session is not None and session.error:
        status_lines.append(f"**Error:** {session.error}")
    if message:
        status_lines.append(message)

    evidence_rows = (
        [
            [item.evidence_id, item.filename, item.kind, item.owner or "", item.size_bytes]
            for item in session.evidence
        ]
        if session is not None
        else []
    )

    quality_text = ""
    if session is not None and session.quality_warning is not None:
        quality_text = f"**Document quality warning:** {session.quality_warning.question}"

    questions_text = "No open questions."
    if session is not None and session.questions:
        questions_text = "\n".join(f"- {item.question}" for item in session.questions)

    return (
        session,
        "\n\n".join(status_lines),
        evidence_rows,
        quality_text,
        json.dumps(editable_payload(record), ensure_ascii=False, indent=2) if record else "{}",
        questions_text,
        _violation_update(record, "A"),
        _violation_update(record, "B"),
        record.diagram.svg if record else "",
        record.diagram.notes if record else "",
        _visuals_html(record),
        [[index, item.name, item.phone] for index, item in enumerate(record.witnesses)]
        if record
        else [],
        bool(record.consent.A) if record else False,
        bool(record.consent.B) if record else False,
        *[gr.update(visible=step in steps) for steps in PANEL_STEPS.values()],
    )


def editable_payload(record: ReportRecord | None) -> dict[str, Any]:
    if record is None:
        return {}
    payload: dict[str, Any] = {"accident": record.accident.model_dump()}
    for section, fields in EDITABLE_SECTIONS.items():
        entries = getattr(record, section)
        payload[section] = {
            label: {name: getattr(entry, name) for name in fields}
            for label, entry in zip(VEHICLE_LABELS, entries)
        }
    return payload


def start_report(session: ReportSession | None, *, session_factory: SessionFactory) -> tuple[Any, ...]:
    active = session or session_factory()
    return render_view(active, _run_action(active.start))


def choose_jurisdiction(
    session: ReportSession | None,
    locale: str,
    language: str,
    *,
    session_factory: SessionFactory,
) -> tuple[Any, ...]:
    active = session or session_factory()
    return render_view(active, _run_action(lambda: active.select_jurisdiction(locale, language)))


def add_files(session: ReportSession | None, uploaded: Sequence[str | Path] | str | Path | None) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")

    def _add() -> None:
        for path in _normalize_uploaded_files(uploaded):
            session.add_evidence(path.name, path.read_bytes())

    return render_view(session, _run_action(_add))


def reclassify_file(
    session: ReportSession | None,
    evidence_id: str,
    kind: str,
    owner: str,
) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    return render_view(
        session,
        _run_action(
            lambda: session.reclassify_evidence(
                evidence_id.strip(), kind=kind or None, owner=owner or None
            )
        ),
    )


def remove_file(session: ReportSession | None, evidence_id: str) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    return render_view(session, _run_action(lambda: session.remove_evidence(evidence_id.strip())))


async def process_evidence(
    session: ReportSession | None,
    lat: float | None,
    lng: float | None,
    *,
    preflight_checker: PreflightChecker | None = None,
) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")

    if preflight_checker is not None:
        preflight_error = preflight_checker(session.settings.default_provider)
        if preflight_error is not None:
            return render_view(session, preflight_error)

    async def _process() -> str:
        session.set_geolocation(lat, lng)
        outcome = await session.process()
        if outcome.degraded:
            return ERROR_FRIENDLY_MESSAGES["SYNTHESIS_FAILED"]
        return ""

    return render_view(session, await _run_async_action(_process))


def continue_with_warning(session: ReportSession | None) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    return render_view(session, _run_action(session.continue_anyway))


def reupload_evidence(session: ReportSession | None) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    return render_view(session, _run_action(session.reupload))


def go_back(session: ReportSession | None) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    return render_view(session, _run_action(session.go_back_to_upload))


def apply_record_json(session: ReportSession | None, text: str) -> tuple[Any, ...]:
    if session is None or session.record is None:
        return render_view(session, "No report to edit yet.")

    def _apply() -> None:
        try:
            payload = json.loads(text or "{}")
        except json.JSONDecodeError as error:
            raise ValueError(f"Report JSON is invalid: {error.msg}") from error
        if not isinstance(payload, dict):
            raise ValueError("Report JSON must be an object")

        current = editable_payload(session.record)
        accident = payload.get("accident") or {}
        changed = _changed_fields(current["accident"], accident)
        if changed:
            session.update_accident(**changed)

        updaters = {
            "vehicles": session.update_vehicle,
            "drivers": session.update_driver,
            "insurance": session.update_insurance,
        }
        for section, update in updaters.items():
            entries = payload.get(section) or {}
            for label in VEHICLE_LABELS:
                changed = _changed_fields(current[section][label], entries.get(label) or {})
                if changed:
                    update(label, **changed)

    return render_view(session, _run_action(_apply))


def apply_violations(
    session: ReportSession | None,
    selected_a: Sequence[str] | None,
    selected_b: Sequence[str] | None,
) -> tuple[Any, ...]:
    if session is None or session.record is None:
        return render_view(session, "No report to edit yet.")

    def _apply() -> None:
        for label, selected in zip(VEHICLE_LABELS, (selected_a, selected_b)):
            current = set(session.record.vehicle(label).alleged_violations)
            wanted = set(selected or [])
            for violation_id in sorted(current.symmetric_difference(wanted)):
                session.toggle_violation(label, violation_id)

    return render_view(session, _run_action(_apply))


def add_witness_entry(session: ReportSession | None, name: str, phone: str) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    return render_view(
        session,
        _run_action(lambda: session.add_witness(name=(name or "").strip(), phone=(phone or "").strip())),
    )


def remove_witness_entry(session: ReportSession | None, index: float | None) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    if index is None:
        return render_view(session, "Choose a witness number to remove.")
    return render_view(session, _run_action(lambda: session.remove_witness(int(index))))


def apply_diagram(session: ReportSession | None, svg: str, notes: str) -> tuple[Any, ...]:
    if session is None or session.record is None:
        return render_view(session, "No report to edit yet.")

    def _apply() -> None:
        if svg and svg != session.record.diagram.svg:
            session.set_diagram_svg(svg)
        if (notes or "") != session.record.diagram.notes:
            session.set_diagram_notes(notes or "")

    return render_view(session, _run_action(_apply))


def save_signature(
    session: ReportSession | None,
    label: str,
    image_path: str | Path | None,
) -> tuple[Any, ...]:
    if session is None or session.record is None:
        return render_view(session, "No report to sign yet.")
    data = _image_data_url(image_path) if image_path else None
    return render_view(session, _run_action(lambda: session.set_signature(label, data)))


def set_consent_flags(session: ReportSession | None, consent_a: bool, consent_b: bool) -> tuple[Any, ...]:
    if session is None or session.record is None:
        return render_view(session, "No report to edit yet.")

    def _apply() -> None:
        session.set_consent("A", bool(consent_a))
        session.set_consent("B", bool(consent_b))

    return render_view(session, _run_action(_apply))


async def send_answer(session: ReportSession | None, answer: str) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")

    async def _clarify() -> str:
        await session.clarify(answer or "")
        return ""

    return render_view(session, await _run_async_action(_clarify))


def confirm_report(session: ReportSession | None) -> tuple[Any, ...]:
    if session is None:
        return render_view(None, "Start a report first.")
    return render_view(session, _run_action(session.confirm))


def export_package_for_ui(session: ReportSession | None) -> tuple[Any, ...]:
    if session is None:
        return (*render_view(None, "Start a report first."), None)

    try:
        zip_path = session.export_package()
    except (InvalidTransitionError, PackageExportError) as error:
        return (*render_view(session, _error_message(error)), None)
    return (*render_view(session, f"Package ready: {zip_path.name}"), str(zip_path))


def build_app(
    session_factory: SessionFactory | None = None,
    preflight_checker: PreflightChecker | None = None,
) -> gr.Blocks:
    settings = get_settings()
    factory = session_factory or (lambda: create_session(settings))
    runtime_preflight = preflight_checker or (
        _make_preflight_checker(settings) if session_factory is None else None
    )

    locale_choices = [(name, code) for code, name in JURISDICTION_NAMES.items()]
    language_choices = [(name, code) for code, name in LANGUAGE_NAMES.items()]

    with gr.Blocks(title="Collision Report") as app:
        gr.Markdown("# Collision Report")
        session_state = gr.State(value=None)
        status_md = gr.Markdown("**Step:** LandingPage")

        with gr.Group(visible=True) as landing_group:
            gr.Markdown(
                "Turn photos, documents and audio statements about a collision "
                "into a signed report for both drivers."
            )
            start_button = gr.Button("Start", variant="primary")

        with gr.Group(visible=False) as country_group:
            locale = gr.Dropdown(label="Jurisdiction", choices=locale_choices, value="UK")
            language = gr.Dropdown(label="Language", choices=language_choices, value="EN")
            country_button = gr.Button("Continue", variant="primary")

        with gr.Group(visible=False) as upload_group:
            files = gr.File(label="Evidence", file_count="multiple", type="filepath")
            add_files_button = gr.Button("Add files")
            evidence_table = gr.Dataframe(
                headers=EVIDENCE_HEADERS,
                datatype=["str", "str", "str", "str", "number"],
                interactive=False,
                label="Evidence",
            )
            with gr.Row():
                evidence_id = gr.Textbox(label="Evidence ID")
                kind = gr.Dropdown(label="Kind", choices=["document", "scene", "audio"], value=None)
                owner = gr.Dropdown(label="Owner", choices=["A", "B"], value=None)
            with gr.Row():
                reclassify_button = gr.Button("Reclassify")
                remove_button = gr.Button("Remove")
            with gr.Row():
                lat = gr.Number(label="Latitude", value=None)
                lng = gr.Number(label="Longitude", value=None)
            process_button = gr.Button("Process evidence", variant="primary")

        with gr.Group(visible=False) as quality_group:
            quality_md = gr.Markdown()
            with gr.Row():
                continue_button = gr.Button("Continue anyway")
                reupload_button = gr.Button("Re-upload")

        with gr.Group(visible=False) as verify_group:
            record_json = gr.Code(label="Report fields", language="json")
            apply_record_button = gr.Button("Apply field edits")
            questions_md = gr.Markdown()
            answer = gr.Textbox(label="Your answer", lines=3)
            answer_button = gr.Button("Send answer")
            with gr.Row():
                violations_a = gr.CheckboxGroup(label="Alleged violations A", choices=[])
                violations_b = gr.CheckboxGroup(label="Alleged violations B", choices=[])
            apply_violations_button = gr.Button("Apply violations")
            witnesses_table = gr.Dataframe(
                headers=WITNESS_HEADERS,
                datatype=["number", "str", "str"],
                interactive=False,
                label="Witnesses",
            )
            with gr.Row():
                witness_name = gr.Textbox(label="Witness name")
                witness_phone = gr.Textbox(label="Witness phone")
                add_witness_button = gr.Button("Add witness")
            with gr.Row():
                witness_index = gr.Number(label="Witness #", precision=0, value=None)
                remove_witness_button = gr.Button("Remove witness")
            visuals_html = gr.HTML()
            svg_code = gr.Code(label="Diagram SVG", language="html")
            notes = gr.Textbox(label="Diagram notes")
            apply_diagram_button = gr.Button("Apply diagram")
            with gr.Row():
                signature_a = gr.Image(label="Signature A", type="filepath")
                signature_b = gr.Image(label="Signature B", type="filepath")
            with gr.Row():
                consent_a = gr.Checkbox(label="Driver A agrees")
                consent_b = gr.Checkbox(label="Driver B agrees")
            with gr.Row():
                back_button = gr.Button("Back to evidence")
                confirm_button = gr.Button("Confirm report", variant="primary")

        with gr.Group(visible=False) as export_group:
            export_button = gr.Button("Download evidence package", variant="primary")
            package_file = gr.File(label="Evidence package", interactive=False)

        view_outputs = [
            session_state,
            status_md,
            evidence_table,
            quality_md,
            record_json,
            questions_md,
            violations_a,
            violations_b,
            svg_code,
            notes,
            visuals_html,
            witnesses_table,
            consent_a,
            consent_b,
            landing_group,
            country_group,
            upload_group,
            quality_group,
            verify_group,
            export_group,
        ]

        start_button.click(
            fn=lambda session: start_report(session, session_factory=factory),
            inputs=[session_state],
            outputs=view_outputs,
        )
        country_button.click(
            fn=lambda session, selected_locale, selected_language: choose_jurisdiction(
                session, selected_locale, selected_language, session_factory=factory
            ),
            inputs=[session_state, locale, language],
            outputs=view_outputs,
        )
        add_files_button.click(fn=add_files, inputs=[session_state, files], outputs=view_outputs)
        reclassify_button.click(
            fn=reclassify_file,
            inputs=[session_state, evidence_id, kind, owner],
            outputs=view_outputs,
        )
        remove_button.click(fn=remove_file, inputs=[session_state, evidence_id], outputs=view_outputs)

        async def _process(session, selected_lat, selected_lng):
            return await process_evidence(
                session, selected_lat, selected_lng, preflight_checker=runtime_preflight
            )

        process_button.click(
            fn=_process,
            inputs=[session_state, lat, lng],
            outputs=view_outputs,
            concurrency_limit=1,
        )
        continue_button.click(fn=continue_with_warning, inputs=[session_state], outputs=view_outputs)
        reupload_button.click(fn=reupload_evidence, inputs=[session_state], outputs=view_outputs)
        apply_record_button.click(
            fn=apply_record_json, inputs=[session_state, record_json], outputs=view_outputs
        )
        answer_button.click(
            fn=send_answer,
            inputs=[session_state, answer],
            outputs=view_outputs,
            concurrency_limit=1,
        )
        apply_violations_button.click(
            fn=apply_violations,
            inputs=[session_state, violations_a, violations_b],
            outputs=view_outputs,
        )
        add_witness_button.click(
            fn=add_witness_entry,
            inputs=[session_state, witness_name, witness_phone],
            outputs=view_outputs,
        )
        remove_witness_button.click(
            fn=remove_witness_entry,
            inputs=[session_state, witness_index],
            outputs=view_outputs,
        )
        apply_diagram_button.click(
            fn=apply_diagram, inputs=[session_state, svg_code, notes], outputs=view_outputs
        )
        signature_a.change(
            fn=lambda session, path: save_signature(session, "A", path),
            inputs=[session_state, signature_a],
            outputs=view_outputs,
        )
        signature_b.change(
            fn=lambda session, path: save_signature(session, "B", path),
            inputs=[session_state, signature_b],
            outputs=view_outputs,
        )
        consent_a.input(
            fn=set_consent_flags, inputs=[session_state, consent_a, consent_b], outputs=view_outputs
        )
        consent_b.input(
            fn=set_consent_flags, inputs=[session_state, consent_a, consent_b], outputs=view_outputs
        )
        back_button.click(fn=go_back, inputs=[session_state], outputs=view_outputs)
        confirm_button.click(fn=confirm_report, inputs=[session_state], outputs=view_outputs)
        export_button.click(
            fn=export_package_for_ui,
            inputs=[session_state],
            outputs=[*view_outputs, package_file],
        )

    return app


def _run_action(action: Callable[[], Any]) -> str:
    try:
        action()
    except (
        SessionValidationError,
        SessionBusyError,
        InvalidTransitionError,
        KeyError,
        IndexError,
        ValueError,
    ) as error:
        return _error_message(error)
    return ""


async def _run_async_action(action: Callable[[], Awaitable[str]]) -> str:
    try:
        return await action()
    except (SessionValidationError, SessionBusyError, InvalidTransitionError, ValueError) as error:
        return _error_message(error)


def _error_message(error: Exception) -> str:
    if isinstance(error, SessionValidationError):
        return error.message
    if isinstance(error, SessionBusyError):
        return "Please wait for the current request to finish."
    if isinstance(error, PackageExportError):
        return ERROR_FRIENDLY_MESSAGES["PACKAGE_EXPORT_ERROR"]
    if isinstance(error, KeyError):
        return f"Not found: {error.args[0] if error.args else error}"
    return str(error)


def _changed_fields(current: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    return {
        name: value
        for name, value in incoming.items()
        if name in current and value != current[name]
    }


def _violation_update(record: ReportRecord | None, label: str) -> dict[str, Any]:
    if record is None:
        return gr.update(choices=[], value=[])
    choices = [(item.text, item.violation_id) for item in violations_for(record.locale)]
    return gr.update(choices=choices, value=list(record.vehicle(label).alleged_violations))


def _visuals_html(record: ReportRecord | None) -> str:
    if record is None:
        return ""
    svg_data = base64.b64encode(record.diagram.svg.encode("utf-8")).decode("ascii")
    parts = [f'<img src="data:image/svg+xml;base64,{svg_data}" alt="Diagram" />']
    if record.diagram.sketch_base64:
        parts.append(
            f'<img src="data:image/png;base64,{escape(record.diagram.sketch_base64)}" '
            'alt="Sketch" width="300" />'
        )
    return "".join(parts)


def _image_data_url(path: str | Path) -> str:
    file_path = Path(path)
    mime_type = mimetypes.guess_type(file_path.name)[0] or "image/png"
    encoded = base64.b64encode(file_path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _normalize_uploaded_files(
    uploaded: Sequence[str | Path] | str | Path | None,
) -> list[Path]:
    if uploaded is None:
        return []
    if isinstance(uploaded, (str, Path)):
        return [Path(uploaded)]
    return [Path(item) for item in uploaded if item]


def _make_preflight_checker(settings: Settings) -> PreflightChecker:
    def _checker(provider: str) -> str | None:
        api_key = settings.api_key_for(provider)
        if api_key is None or not api_key.strip():
            env_name = "GOOGLE_API_KEY" if provider == "google" else "OPENAI_API_KEY"
            return f"Runtime preflight failed: {env_name} is not configured."

        package = "google.genai" if provider == "google" else "openai"
        if importlib.util.find_spec(package.split(".")[0]) is None:
            return f"Runtime preflight failed: {package} package is not installed."
        return None

    return _checker


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)
    logger.info("Starting Gradio app")
    app = build_app()
    app.launch(
        server_name=settings.gradio_server_name,
        server_port=settings.gradio_server_port,
    )


if __name__ == "__main__":
    main()
