from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, TypeVar

from pydantic import BaseModel

from collision_report.logging import get_logger
from collision_report.report.catalog import filter_known_violations
from collision_report.report.model import (
    PLACEHOLDER_SVG,
    AccidentInfo,
    Consent,
    DiagramRecord,
    DriverRecord,
    InsuranceRecord,
    PartialAccident,
    PartialDiagram,
    PartialDriver,
    PartialInsurance,
    PartialReport,
    PartialVehicle,
    ReportRecord,
    Signatures,
    VehicleRecord,
    slot_index,
)

logger = get_logger("report.merge")

SectionT = TypeVar("SectionT", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class FieldOwnership:
    """Which optionally-owned fields the user has taken over.

    Signatures and consent are always locally owned; the diagram markup
    becomes locally owned once the user edits it.
    """

    diagram_svg: bool = False


@dataclass(frozen=True, slots=True)
class LocalFieldsSnapshot:
    signatures: Signatures
    consent: Consent
    diagram_svg: str | None


def snapshot_local_fields(record: ReportRecord, ownership: FieldOwnership) -> LocalFieldsSnapshot:
    return LocalFieldsSnapshot(
        signatures=record.signatures,
        consent=record.consent,
        diagram_svg=record.diagram.svg if ownership.diagram_svg else None,
    )


def reapply_local_ownership(snapshot: LocalFieldsSnapshot, merged: ReportRecord) -> ReportRecord:
    restored: list[str] = []
    if merged.signatures != snapshot.signatures:
        restored.append("signatures")
    if merged.consent != snapshot.consent:
        restored.append("consent")

    diagram = merged.diagram
    if snapshot.diagram_svg is not None and diagram.svg != snapshot.diagram_svg:
        restored.append("diagram.svg")
        diagram = diagram.model_copy(update={"svg": snapshot.diagram_svg})

    if not restored:
        return merged

    logger.debug("Restored locally owned fields", extra={"details": {"restored": restored}})
    return merged.model_copy(
        update={
            "signatures": snapshot.signatures,
            "consent": snapshot.consent,
            "diagram": diagram,
        }
    )


def merge_partial(
    canonical: ReportRecord,
    partial: PartialReport,
    ownership: FieldOwnership | None = None,
) -> ReportRecord:
    """Overlay every field present in ``partial`` onto ``canonical``.

    Returns a new record; ``canonical`` stays valid for rollback.
    Locally owned fields always end up with their pre-merge values.
    """
    if partial.is_empty:
        return canonical

    snapshot = snapshot_local_fields(canonical, ownership or FieldOwnership())
    merged = canonical.model_copy(
        update={
            "accident": merge_accident(canonical.accident, partial.accident),
            "vehicles": _merge_slots(
                canonical.vehicles,
                partial.vehicles,
                key=lambda entry: entry.label,
                merge=lambda current, entry: merge_vehicle(canonical, current, entry),
            ),
            "drivers": _merge_slots(
                canonical.drivers,
                partial.drivers,
                key=lambda entry: entry.vehicle,
                merge=merge_driver,
            ),
            "insurance": _merge_slots(
                canonical.insurance,
                partial.insurance,
                key=lambda entry: entry.vehicle,
                merge=merge_insurance,
            ),
            "diagram": merge_diagram(canonical.diagram, partial.diagram),
            "signatures": _overlay(canonical.signatures, partial.signatures),
            "consent": _overlay(canonical.consent, partial.consent),
        }
    )
    return reapply_local_ownership(snapshot, merged)


def merge_accident(current: AccidentInfo, partial: PartialAccident | None) -> AccidentInfo:
    return _overlay(current, partial)


def merge_vehicle(
    record: ReportRecord,
    current: VehicleRecord,
    partial: PartialVehicle,
) -> VehicleRecord:
    updated = _overlay(current, partial, exclude={"label", "alleged_violations"})
    if partial.alleged_violations is None:
        return updated

    violations = filter_known_violations(record.locale, partial.alleged_violations)
    dropped = len(set(partial.alleged_violations)) - len(violations)
    if dropped:
        logger.warning(
            "Dropped violations outside catalog",
            extra={"details": {"vehicle": current.label, "dropped": dropped}},
        )
    return updated.model_copy(update={"alleged_violations": violations})


def merge_driver(current: DriverRecord, partial: PartialDriver) -> DriverRecord:
    return _overlay(current, partial, exclude={"vehicle"})


def merge_insurance(current: InsuranceRecord, partial: PartialInsurance) -> InsuranceRecord:
    return _overlay(current, partial, exclude={"vehicle"})


def merge_diagram(current: DiagramRecord, partial: PartialDiagram | None) -> DiagramRecord:
    return _overlay(current, partial)


def degrade_diagram(
    record: ReportRecord,
    *,
    svg_failed: bool,
    sketch_failed: bool,
    ownership: FieldOwnership | None = None,
) -> ReportRecord:
    """Reset diagram sub-fields whose synthesis failed to their absent values."""
    owned = ownership or FieldOwnership()
    updates: dict[str, object] = {}
    if svg_failed and not owned.diagram_svg:
        updates["svg"] = PLACEHOLDER_SVG
    if sketch_failed:
        updates["sketch_base64"] = None
    if not updates:
        return record
    return record.model_copy(update={"diagram": record.diagram.model_copy(update=updates)})


def _merge_slots(current, entries: Iterable, *, key, merge) -> tuple:
    slots = list(current)
    for entry in entries:
        index = slot_index(key(entry))
        slots[index] = merge(slots[index], entry)
    return tuple(slots)


def _overlay(
    current: SectionT,
    partial: BaseModel | None,
    *,
    exclude: set[str] | None = None,
) -> SectionT:
    if partial is None:
        return current
    updates = {
        name: value
        for name, value in partial.model_dump(exclude_none=True).items()
        if name in type(current).model_fields and name not in (exclude or set())
    }
    if not updates:
        return current
    return current.model_copy(update=updates)
