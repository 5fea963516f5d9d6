from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from collision_report.config.settings import Settings
from collision_report.pipeline.session import ReportSession
from tests.helpers import (
    DIAGRAM_SVG,
    FIXED_NOW,
    FakeClarification,
    FakeExtraction,
    FakeSynthesis,
    extraction_result,
)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(_env_file=None, data_dir=tmp_path / "data")


@pytest.fixture
def make_session(settings: Settings, tmp_path: Path) -> Callable[..., ReportSession]:
    def _make(
        *,
        extraction: FakeExtraction | None = None,
        diagram: FakeSynthesis | None = None,
        sketch: FakeSynthesis | None = None,
        clarification: FakeClarification | None = None,
    ) -> ReportSession:
        return ReportSession(
            settings=settings,
            extraction_adapter=extraction or FakeExtraction(extraction_result()),
            diagram_adapter=diagram or FakeSynthesis(DIAGRAM_SVG),
            sketch_adapter=sketch or FakeSynthesis("c2tldGNo"),
            clarification_adapter=clarification or FakeClarification(),
            session_id="session-test",
            preview_dir=tmp_path / "previews",
            clock=lambda: FIXED_NOW,
        )

    return _make


@pytest.fixture
def upload_ready() -> Callable[..., ReportSession]:
    """Walk a session to UploadMedia with one scene photo and one document of driver A."""

    def _prepare(session: ReportSession, *, locale: str = "UK", language: str = "EN") -> ReportSession:
        session.start()
        session.select_jurisdiction(locale, language)
        session.add_evidence("scene.jpg", b"jpeg-bytes")
        session.add_evidence("licence_a.pdf", b"%PDF-1.7", owner="A")
        return session

    return _prepare
