from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from datetime import date
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Iterable
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from collision_report.evidence import UploadedEvidence
from collision_report.logging import get_logger
from collision_report.report.model import ReportRecord
from collision_report.storage.report_html import render_report_html
from collision_report.utils.error_taxonomy import PackageExportError

REPORT_HTML_FILE = "Accident_Report.html"
REPORT_JSON_FILE = "report.json"
SKETCH_FILE = "media/Accident_Sketch.png"
BUNDLE_MANIFEST_FILE = "bundle_manifest.json"
_MANIFEST_SIGNATURE_ALGORITHM = "hmac-sha256"

logger = get_logger("storage.zip_export")


def package_filename(today: date) -> str:
    return f"Accident_Evidence_Package_{today.isoformat()}.zip"


def export_evidence_package(
    *,
    record: ReportRecord,
    evidence: Iterable[UploadedEvidence],
    output_dir: Path | str,
    signing_key: str | None = None,
    today: date | None = None,
) -> Path:
    """Write the confirmed report and its evidence into one deterministic ZIP."""
    package_date = today or date.today()
    destination_dir = Path(output_dir)
    destination_dir.mkdir(parents=True, exist_ok=True)
    zip_path = destination_dir / package_filename(package_date)

    archive_files = _collect_archive_files(record=record, evidence=list(evidence))
    manifest_payload = _build_bundle_manifest(
        record=record,
        package_date=package_date,
        archive_files=archive_files,
        signing_key=signing_key,
    )
    archive_entries = [
        *archive_files,
        (BUNDLE_MANIFEST_FILE, _json_dumps_bytes(manifest_payload)),
    ]

    try:
        with ZipFile(zip_path, mode="w") as archive:
            for relative_path, data in sorted(archive_entries, key=lambda item: item[0]):
                zip_info = ZipInfo(filename=relative_path)
                zip_info.date_time = (1980, 1, 1, 0, 0, 0)
                zip_info.compress_type = ZIP_DEFLATED
                archive.writestr(zip_info, data)
    except OSError as error:
        raise PackageExportError(f"Could not write package {zip_path}: {error}") from error

    logger.info(
        "Evidence package written",
        extra={"details": {"path": str(zip_path), "files": len(archive_entries)}},
    )
    return zip_path


def _collect_archive_files(
    *,
    record: ReportRecord,
    evidence: list[UploadedEvidence],
) -> list[tuple[str, bytes]]:
    files: list[tuple[str, bytes]] = [
        (REPORT_HTML_FILE, render_report_html(record).encode("utf-8")),
        (REPORT_JSON_FILE, _json_dumps_bytes(record.model_dump(mode="json"))),
    ]
    used_names = {SKETCH_FILE}

    if record.diagram.sketch_base64:
        try:
            sketch = base64.b64decode(record.diagram.sketch_base64, validate=True)
        except (binascii.Error, ValueError) as error:
            raise PackageExportError(f"Sketch is not valid base64: {error}") from error
        files.append((SKETCH_FILE, sketch))

    for item in evidence:
        relative_path = _unique_media_path(item.filename, used_names)
        used_names.add(relative_path)
        files.append((relative_path, item.data))

    return files


def _unique_media_path(filename: str, used_names: set[str]) -> str:
    # Strip directory components of either path flavour.
    name = PureWindowsPath(PurePosixPath(filename).name).name.strip()
    if not name or name in {".", ".."}:
        name = "evidence"

    stem, dot, suffix = name.rpartition(".")
    if not dot:
        stem, suffix = name, ""

    candidate = f"media/{name}"
    counter = 1
    while candidate in used_names:
        candidate = f"media/{stem}_{counter}.{suffix}" if suffix else f"media/{stem}_{counter}"
        counter += 1
    return candidate


def _build_bundle_manifest(
    *,
    record: ReportRecord,
    package_date: date,
    archive_files: list[tuple[str, bytes]],
    signing_key: str | None,
) -> dict[str, Any]:
    files_payload: list[dict[str, Any]] = [
        {
            "relative_path": relative_path,
            "size_bytes": len(data),
            "sha256": hashlib.sha256(data).hexdigest(),
        }
        for relative_path, data in sorted(archive_files, key=lambda item: item[0])
    ]

    manifest_payload: dict[str, Any] = {
        "version": "v1",
        "package_date": package_date.isoformat(),
        "locale": record.locale,
        "language": record.language,
        "files": files_payload,
    }
    normalized_key = _normalize_signing_key(signing_key)
    if normalized_key is not None:
        manifest_payload["signature"] = {
            "algorithm": _MANIFEST_SIGNATURE_ALGORITHM,
            "hmac_sha256": compute_manifest_signature(
                manifest_payload=manifest_payload,
                signing_key=normalized_key,
            ),
        }
    return manifest_payload


def compute_manifest_signature(*, manifest_payload: dict[str, Any], signing_key: str) -> str:
    unsigned = {key: value for key, value in manifest_payload.items() if key != "signature"}
    message = json.dumps(
        unsigned,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")
    return hmac.new(signing_key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _json_dumps_bytes(payload: dict[str, Any]) -> bytes:
    text = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
    return f"{text}\n".encode("utf-8")


def _normalize_signing_key(signing_key: str | None) -> str | None:
    if signing_key is None:
        return None
    normalized = signing_key.strip()
    return normalized or None
