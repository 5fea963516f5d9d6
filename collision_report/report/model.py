from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from collision_report.report.catalog import (
    VEHICLE_LABELS,
    Language,
    Locale,
    VehicleLabel,
    filter_known_violations,
)

PLACEHOLDER_SVG = (
    '<svg width="400" height="300" xmlns="http://www.w3.org/2000/svg" '
    'style="background-color:#334155;"></svg>'
)
QUALITY_QUESTION_FIELD = "document_quality"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AccidentInfo(_Record):
    timestamp: str = ""
    address: str = ""
    weather: str = ""
    light: str = ""


class VehicleRecord(_Record):
    label: VehicleLabel
    plate: str = ""
    make_model: str = ""
    first_impact: str = ""
    maneuver: str = ""
    alleged_violations: tuple[str, ...] = ()


class DriverRecord(_Record):
    vehicle: VehicleLabel
    name: str = ""
    national_id: str = ""
    license_number: str = ""
    phone: str = ""
    statement: str = ""


class InsuranceRecord(_Record):
    vehicle: VehicleLabel
    company: str = ""
    policy_number: str = ""


class Witness(_Record):
    name: str = ""
    phone: str = ""


class DiagramRecord(_Record):
    svg: str = PLACEHOLDER_SVG
    sketch_base64: str | None = None
    notes: str = ""


class Signatures(_Record):
    A: str | None = None
    B: str | None = None

    def get(self, label: VehicleLabel) -> str | None:
        return self.A if label == "A" else self.B

    @property
    def any_present(self) -> bool:
        return bool(self.A) or bool(self.B)


class Consent(_Record):
    A: bool = False
    B: bool = False

    def get(self, label: VehicleLabel) -> bool:
        return self.A if label == "A" else self.B

    @property
    def both_given(self) -> bool:
        return self.A and self.B


class ReportRecord(_Record):
    """Canonical record for one report session.

    Every structural path exists from construction on: two labeled
    vehicle/driver/insurance slots, a placeholder diagram, empty
    signatures and unset consent. Later passes only overlay fields.
    """

    locale: Locale
    language: Language
    accident: AccidentInfo = Field(default_factory=AccidentInfo)
    vehicles: tuple[VehicleRecord, VehicleRecord] = (
        VehicleRecord(label="A"),
        VehicleRecord(label="B"),
    )
    drivers: tuple[DriverRecord, DriverRecord] = (
        DriverRecord(vehicle="A"),
        DriverRecord(vehicle="B"),
    )
    insurance: tuple[InsuranceRecord, InsuranceRecord] = (
        InsuranceRecord(vehicle="A"),
        InsuranceRecord(vehicle="B"),
    )
    witnesses: tuple[Witness, ...] = ()
    diagram: DiagramRecord = Field(default_factory=DiagramRecord)
    signatures: Signatures = Field(default_factory=Signatures)
    consent: Consent = Field(default_factory=Consent)

    @model_validator(mode="after")
    def _check_structure(self) -> "ReportRecord":
        if tuple(item.label for item in self.vehicles) != VEHICLE_LABELS:
            raise ValueError("vehicles must be labeled A and B in order")
        if tuple(item.vehicle for item in self.drivers) != VEHICLE_LABELS:
            raise ValueError("drivers must reference vehicles A and B in order")
        if tuple(item.vehicle for item in self.insurance) != VEHICLE_LABELS:
            raise ValueError("insurance must reference vehicles A and B in order")
        for vehicle in self.vehicles:
            known = filter_known_violations(self.locale, vehicle.alleged_violations)
            if known != vehicle.alleged_violations:
                raise ValueError(
                    f"vehicle {vehicle.label} has violations outside the "
                    f"{self.locale} catalog or duplicates"
                )
        return self

    def vehicle(self, label: VehicleLabel) -> VehicleRecord:
        return self.vehicles[slot_index(label)]

    def driver(self, label: VehicleLabel) -> DriverRecord:
        return self.drivers[slot_index(label)]

    def insurance_for(self, label: VehicleLabel) -> InsuranceRecord:
        return self.insurance[slot_index(label)]


def slot_index(label: str) -> int:
    try:
        return VEHICLE_LABELS.index(label)  # type: ignore[arg-type]
    except ValueError as error:
        raise ValueError(f"Unknown vehicle label: {label}") from error


def new_report(
    locale: Locale,
    language: Language,
    *,
    now: datetime | None = None,
) -> ReportRecord:
    moment = now or datetime.now()
    return ReportRecord(
        locale=locale,
        language=language,
        accident=AccidentInfo(timestamp=moment.strftime(TIMESTAMP_FORMAT)),
    )


def normalize_timestamp(value: str) -> str:
    text = value.strip()
    candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return text
    return parsed.strftime(TIMESTAMP_FORMAT)


class Question(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    field: str = ""
    question: str

    @property
    def is_quality(self) -> bool:
        return self.field.strip().lower() == QUALITY_QUESTION_FIELD


# Partial records: sparse overlays produced by extraction and clarification.


class _Partial(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class PartialAccident(_Partial):
    timestamp: str | None = None
    address: str | None = None
    weather: str | None = None
    light: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_geo(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "address" in data:
            return data
        geo = data.get("geo")
        if isinstance(geo, dict) and "address" in geo:
            return {**data, "address": geo.get("address")}
        return data

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_timestamp(value)


class PartialVehicle(_Partial):
    label: VehicleLabel
    plate: str | None = None
    make_model: str | None = None
    first_impact: str | None = None
    maneuver: str | None = Field(
        default=None, validation_alias=AliasChoices("maneuver", "manoeuvre")
    )
    alleged_violations: tuple[str, ...] | None = Field(
        default=None,
        validation_alias=AliasChoices("alleged_violations", "alleged_offences"),
    )


class PartialDriver(_Partial):
    vehicle: VehicleLabel
    name: str | None = None
    national_id: str | None = Field(
        default=None, validation_alias=AliasChoices("national_id", "id_no")
    )
    license_number: str | None = Field(
        default=None, validation_alias=AliasChoices("license_number", "licence_no")
    )
    phone: str | None = None
    statement: str | None = None


class PartialInsurance(_Partial):
    vehicle: VehicleLabel
    company: str | None = None
    policy_number: str | None = Field(
        default=None, validation_alias=AliasChoices("policy_number", "policy_no")
    )


class PartialDiagram(_Partial):
    svg: str | None = None
    sketch_base64: str | None = None
    notes: str | None = None


class PartialSignatures(_Partial):
    A: str | None = None
    B: str | None = None


class PartialConsent(_Partial):
    A: bool | None = None
    B: bool | None = None


class PartialReport(_Partial):
    accident: PartialAccident | None = None
    vehicles: tuple[PartialVehicle, ...] = ()
    drivers: tuple[PartialDriver, ...] = ()
    insurance: tuple[PartialInsurance, ...] = ()
    diagram: PartialDiagram | None = None
    signatures: PartialSignatures | None = None
    consent: PartialConsent | None = None

    @field_validator("vehicles", "drivers", "insurance", mode="before")
    @classmethod
    def _null_list_is_empty(cls, value: Any) -> Any:
        return () if value is None else value

    @property
    def is_empty(self) -> bool:
        return self == PartialReport()
