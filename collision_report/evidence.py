from __future__ import annotations

import mimetypes
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal

from collision_report.logging import get_logger
from collision_report.report.catalog import VEHICLE_LABELS, VehicleLabel
from collision_report.utils.error_taxonomy import SessionValidationError

EvidenceKind = Literal["document", "scene", "audio"]
EVIDENCE_KINDS: tuple[EvidenceKind, ...] = ("document", "scene", "audio")

logger = get_logger("evidence")


@dataclass(frozen=True, slots=True)
class UploadedEvidence:
    evidence_id: str
    filename: str
    mime_type: str
    data: bytes = field(repr=False)
    kind: EvidenceKind
    owner: VehicleLabel | None
    preview_path: Path | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class EvidenceGroups:
    document_A: tuple[UploadedEvidence, ...] = ()
    document_B: tuple[UploadedEvidence, ...] = ()
    audio_A: tuple[UploadedEvidence, ...] = ()
    audio_B: tuple[UploadedEvidence, ...] = ()
    scene: tuple[UploadedEvidence, ...] = ()

    def labeled(self) -> list[tuple[str, tuple[UploadedEvidence, ...]]]:
        return [
            ("document_A", self.document_A),
            ("document_B", self.document_B),
            ("audio_A", self.audio_A),
            ("audio_B", self.audio_B),
            ("scene", self.scene),
        ]

    @property
    def total(self) -> int:
        return sum(len(items) for _, items in self.labeled())


@dataclass(frozen=True, slots=True)
class Geolocation:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"Longitude out of range: {self.lng}")


def guess_mime_type(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def guess_kind(mime_type: str) -> EvidenceKind:
    if mime_type.startswith("image/") or mime_type.startswith("video/"):
        return "scene"
    if mime_type.startswith("audio/"):
        return "audio"
    return "document"


def group_evidence(items: list[UploadedEvidence] | tuple[UploadedEvidence, ...]) -> EvidenceGroups:
    buckets: dict[str, list[UploadedEvidence]] = {
        "document_A": [],
        "document_B": [],
        "audio_A": [],
        "audio_B": [],
        "scene": [],
    }
    for item in items:
        if item.kind == "scene":
            buckets["scene"].append(item)
            continue
        owner = item.owner or "A"
        buckets[f"{item.kind}_{owner}"].append(item)
    return EvidenceGroups(**{name: tuple(values) for name, values in buckets.items()})


class EvidenceSet:
    """Ordered working set of uploaded evidence for one session.

    Each item gets a preview file under ``preview_dir``; the file is
    removed together with the item.
    """

    def __init__(self, preview_dir: Path | None = None) -> None:
        self._preview_dir = preview_dir
        self._items: list[UploadedEvidence] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    @property
    def items(self) -> tuple[UploadedEvidence, ...]:
        return tuple(self._items)

    def get(self, evidence_id: str) -> UploadedEvidence:
        return self._items[self._index_of(evidence_id)]

    def add(
        self,
        filename: str,
        data: bytes,
        *,
        mime_type: str | None = None,
        kind: EvidenceKind | None = None,
        owner: VehicleLabel | None = None,
    ) -> UploadedEvidence:
        name = Path(filename).name.strip()
        if not name:
            raise SessionValidationError("INVALID_EVIDENCE", "Uploaded file has no name.")
        if not data:
            raise SessionValidationError("INVALID_EVIDENCE", f"Uploaded file {name} is empty.")

        resolved_mime = mime_type or guess_mime_type(name)
        resolved_kind = kind or guess_kind(resolved_mime)
        _check_kind(resolved_kind)
        resolved_owner = _owner_for(resolved_kind, owner)

        evidence_id = uuid.uuid4().hex
        item = UploadedEvidence(
            evidence_id=evidence_id,
            filename=name,
            mime_type=resolved_mime,
            data=data,
            kind=resolved_kind,
            owner=resolved_owner,
            preview_path=self._write_preview(evidence_id, name, data),
        )
        self._items.append(item)
        logger.info(
            "Evidence added",
            extra={"details": {"filename": name, "kind": resolved_kind, "owner": resolved_owner}},
        )
        return item

    def remove(self, evidence_id: str) -> None:
        item = self._items.pop(self._index_of(evidence_id))
        _release_preview(item)

    def reclassify(
        self,
        evidence_id: str,
        *,
        kind: EvidenceKind | None = None,
        owner: VehicleLabel | None = None,
    ) -> UploadedEvidence:
        index = self._index_of(evidence_id)
        current = self._items[index]
        new_kind = kind or current.kind
        _check_kind(new_kind)

        if new_kind == "scene":
            new_owner = None
        else:
            new_owner = _owner_for(new_kind, owner or current.owner)

        updated = replace(current, kind=new_kind, owner=new_owner)
        self._items[index] = updated
        return updated

    def clear(self) -> None:
        for item in self._items:
            _release_preview(item)
        self._items.clear()

    def _index_of(self, evidence_id: str) -> int:
        for index, item in enumerate(self._items):
            if item.evidence_id == evidence_id:
                return index
        raise KeyError(f"Unknown evidence id: {evidence_id}")

    def _write_preview(self, evidence_id: str, filename: str, data: bytes) -> Path | None:
        if self._preview_dir is None:
            return None
        self._preview_dir.mkdir(parents=True, exist_ok=True)
        path = self._preview_dir / f"{evidence_id}_{filename}"
        path.write_bytes(data)
        return path


def _check_kind(kind: str) -> None:
    if kind not in EVIDENCE_KINDS:
        raise SessionValidationError("INVALID_EVIDENCE", f"Unknown evidence kind: {kind}")


def _owner_for(kind: EvidenceKind, owner: VehicleLabel | None) -> VehicleLabel | None:
    if kind == "scene":
        return None
    if owner is None:
        return "A"
    if owner not in VEHICLE_LABELS:
        raise SessionValidationError("INVALID_EVIDENCE", f"Unknown evidence owner: {owner}")
    return owner


def _release_preview(item: UploadedEvidence) -> None:
    if item.preview_path is not None:
        item.preview_path.unlink(missing_ok=True)
