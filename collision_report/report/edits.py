from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel

from collision_report.report.catalog import VehicleLabel, is_known_violation
from collision_report.report.model import ReportRecord, Witness, slot_index
from collision_report.utils.error_taxonomy import SessionValidationError

SectionT = TypeVar("SectionT", bound=BaseModel)


def update_accident(record: ReportRecord, **fields: Any) -> ReportRecord:
    return record.model_copy(update={"accident": _edit(record.accident, fields)})


def update_vehicle(record: ReportRecord, label: VehicleLabel, /, **fields: Any) -> ReportRecord:
    index = slot_index(label)
    vehicle = _edit(
        record.vehicles[index], fields, frozen_fields={"label", "alleged_violations"}
    )
    return record.model_copy(update={"vehicles": _replace_slot(record.vehicles, index, vehicle)})


def update_driver(record: ReportRecord, label: VehicleLabel, /, **fields: Any) -> ReportRecord:
    index = slot_index(label)
    driver = _edit(record.drivers[index], fields, frozen_fields={"vehicle"})
    return record.model_copy(update={"drivers": _replace_slot(record.drivers, index, driver)})


def update_insurance(record: ReportRecord, label: VehicleLabel, /, **fields: Any) -> ReportRecord:
    index = slot_index(label)
    insurance = _edit(record.insurance[index], fields, frozen_fields={"vehicle"})
    return record.model_copy(
        update={"insurance": _replace_slot(record.insurance, index, insurance)}
    )


def toggle_violation(record: ReportRecord, label: VehicleLabel, violation_id: str) -> ReportRecord:
    if not is_known_violation(record.locale, violation_id):
        raise SessionValidationError(
            "UNKNOWN_VIOLATION",
            f"Violation {violation_id!r} is not in the {record.locale} catalog.",
        )

    index = slot_index(label)
    vehicle = record.vehicles[index]
    current = vehicle.alleged_violations
    if violation_id in current:
        violations = tuple(item for item in current if item != violation_id)
    else:
        violations = (*current, violation_id)

    vehicle = vehicle.model_copy(update={"alleged_violations": violations})
    return record.model_copy(update={"vehicles": _replace_slot(record.vehicles, index, vehicle)})


def add_witness(record: ReportRecord, *, name: str = "", phone: str = "") -> ReportRecord:
    witness = Witness(name=name, phone=phone)
    return record.model_copy(update={"witnesses": (*record.witnesses, witness)})


def update_witness(record: ReportRecord, index: int, **fields: Any) -> ReportRecord:
    witnesses = list(record.witnesses)
    _check_witness_index(witnesses, index)
    witnesses[index] = _edit(witnesses[index], fields)
    return record.model_copy(update={"witnesses": tuple(witnesses)})


def remove_witness(record: ReportRecord, index: int) -> ReportRecord:
    witnesses = list(record.witnesses)
    _check_witness_index(witnesses, index)
    del witnesses[index]
    return record.model_copy(update={"witnesses": tuple(witnesses)})


def set_signature(record: ReportRecord, label: VehicleLabel, data: str | None) -> ReportRecord:
    slot_index(label)
    value = data or None
    return record.model_copy(
        update={"signatures": record.signatures.model_copy(update={label: value})}
    )


def set_consent(record: ReportRecord, label: VehicleLabel, value: bool) -> ReportRecord:
    slot_index(label)
    return record.model_copy(
        update={"consent": record.consent.model_copy(update={label: bool(value)})}
    )


def set_diagram_svg(record: ReportRecord, svg: str) -> ReportRecord:
    return record.model_copy(update={"diagram": _edit(record.diagram, {"svg": svg})})


def set_diagram_notes(record: ReportRecord, notes: str) -> ReportRecord:
    return record.model_copy(update={"diagram": _edit(record.diagram, {"notes": notes})})


def _edit(
    section: SectionT,
    fields: dict[str, Any],
    *,
    frozen_fields: set[str] | None = None,
) -> SectionT:
    known = type(section).model_fields
    for name in fields:
        if name not in known:
            raise ValueError(f"Unknown field for {type(section).__name__}: {name}")
        if frozen_fields and name in frozen_fields:
            raise ValueError(f"Field {name} cannot be edited directly")
    # Re-validate so edits keep the section's types.
    return type(section).model_validate({**section.model_dump(), **fields})


def _replace_slot(slots: tuple, index: int, value: Any) -> tuple:
    items = list(slots)
    items[index] = value
    return tuple(items)


def _check_witness_index(witnesses: list[Witness], index: int) -> None:
    if index < 0 or index >= len(witnesses):
        raise IndexError(f"Witness index out of range: {index}")
