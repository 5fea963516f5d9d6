from __future__ import annotations

from pathlib import Path

import pytest

from collision_report.evidence import (
    EvidenceSet,
    Geolocation,
    group_evidence,
    guess_kind,
    guess_mime_type,
)
from collision_report.utils.error_taxonomy import SessionValidationError


def test_kind_is_guessed_from_mime_type() -> None:
    assert guess_mime_type("scene.jpg") == "image/jpeg"
    assert guess_mime_type("unknown.blob") == "application/octet-stream"
    assert guess_kind("image/png") == "scene"
    assert guess_kind("video/mp4") == "scene"
    assert guess_kind("audio/mpeg") == "audio"
    assert guess_kind("application/pdf") == "document"


def test_add_defaults_owner_and_writes_preview(tmp_path: Path) -> None:
    evidence = EvidenceSet(tmp_path / "previews")

    scene = evidence.add("dir/scene.jpg", b"jpeg")
    document = evidence.add("licence.pdf", b"pdf")
    audio = evidence.add("statement.mp3", b"mp3", owner="B")

    assert scene.filename == "scene.jpg"
    assert (scene.kind, scene.owner) == ("scene", None)
    assert (document.kind, document.owner) == ("document", "A")
    assert (audio.kind, audio.owner) == ("audio", "B")
    assert document.preview_path is not None
    assert document.preview_path.read_bytes() == b"pdf"
    assert document.preview_path.name == f"{document.evidence_id}_licence.pdf"
    assert len(evidence) == 3
    assert [item.filename for item in evidence.items] == [
        "scene.jpg",
        "licence.pdf",
        "statement.mp3",
    ]


def test_add_rejects_empty_files_and_unknown_owner(tmp_path: Path) -> None:
    evidence = EvidenceSet(tmp_path)

    with pytest.raises(SessionValidationError) as empty_error:
        evidence.add("licence.pdf", b"")
    with pytest.raises(SessionValidationError):
        evidence.add("   ", b"data")
    with pytest.raises(SessionValidationError):
        evidence.add("licence.pdf", b"pdf", owner="C")

    assert empty_error.value.code == "INVALID_EVIDENCE"
    assert len(evidence) == 0


def test_reclassify_switches_owner_rules(tmp_path: Path) -> None:
    evidence = EvidenceSet(tmp_path)
    item = evidence.add("photo.jpg", b"jpeg")

    as_document = evidence.reclassify(item.evidence_id, kind="document")
    assert (as_document.kind, as_document.owner) == ("document", "A")

    to_b = evidence.reclassify(item.evidence_id, owner="B")
    assert (to_b.kind, to_b.owner) == ("document", "B")

    back_to_scene = evidence.reclassify(item.evidence_id, kind="scene", owner="B")
    assert (back_to_scene.kind, back_to_scene.owner) == ("scene", None)
    assert evidence.get(item.evidence_id) == back_to_scene

    with pytest.raises(SessionValidationError):
        evidence.reclassify(item.evidence_id, kind="video")
    with pytest.raises(KeyError):
        evidence.reclassify("missing", kind="scene")


def test_remove_and_clear_release_previews(tmp_path: Path) -> None:
    evidence = EvidenceSet(tmp_path)
    first = evidence.add("a.jpg", b"1")
    second = evidence.add("b.jpg", b"2")

    evidence.remove(first.evidence_id)
    assert not first.preview_path.exists()
    assert [item.evidence_id for item in evidence] == [second.evidence_id]

    evidence.clear()
    assert not second.preview_path.exists()
    assert len(evidence) == 0


def test_group_evidence_by_kind_and_owner() -> None:
    evidence = EvidenceSet()
    evidence.add("scene.jpg", b"1")
    evidence.add("licence_a.pdf", b"2")
    evidence.add("licence_b.pdf", b"3", owner="B")
    evidence.add("statement_b.mp3", b"4", owner="B")

    groups = group_evidence(evidence.items)

    assert [item.filename for item in groups.scene] == ["scene.jpg"]
    assert [item.filename for item in groups.document_A] == ["licence_a.pdf"]
    assert [item.filename for item in groups.document_B] == ["licence_b.pdf"]
    assert groups.audio_A == ()
    assert [item.filename for item in groups.audio_B] == ["statement_b.mp3"]
    assert groups.total == 4


def test_geolocation_validates_ranges() -> None:
    assert Geolocation(lat=51.5, lng=-0.12).lat == 51.5

    with pytest.raises(ValueError, match="Latitude"):
        Geolocation(lat=91.0, lng=0.0)
    with pytest.raises(ValueError, match="Longitude"):
        Geolocation(lat=0.0, lng=-181.0)
