from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, get_args

Locale = Literal["UK", "CA", "NY", "TR"]
Language = Literal["EN", "TR"]
VehicleLabel = Literal["A", "B"]

LOCALES: tuple[Locale, ...] = get_args(Locale)
LANGUAGES: tuple[Language, ...] = get_args(Language)
VEHICLE_LABELS: tuple[VehicleLabel, ...] = ("A", "B")

JURISDICTION_NAMES: dict[Locale, str] = {
    "UK": "United Kingdom",
    "CA": "California",
    "NY": "New York",
    "TR": "Turkey",
}

LANGUAGE_NAMES: dict[Language, str] = {
    "EN": "English",
    "TR": "Türkçe",
}

# Jurisdictions where the report is a private agreement, not a police report.
PRIVATE_AGREEMENT_LOCALES: frozenset[Locale] = frozenset({"UK", "CA", "NY"})


@dataclass(frozen=True, slots=True)
class Violation:
    violation_id: str
    text: str


@dataclass(frozen=True, slots=True)
class JurisdictionConfig:
    locale: Locale
    language: Language

    def __post_init__(self) -> None:
        if self.locale not in LOCALES:
            raise ValueError(f"Unsupported jurisdiction: {self.locale}")
        if self.language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {self.language}")


VIOLATION_CATALOGS: dict[Locale, tuple[Violation, ...]] = {
    "UK": (
        Violation("uk_1", "Failed to give way"),
        Violation("uk_2", "Exceeding speed limit"),
        Violation("uk_3", "Improper lane change"),
        Violation("uk_4", "Following too closely"),
        Violation("uk_5", "Disregarded traffic signal"),
    ),
    "CA": (
        Violation("ca_1", "Unsafe lane change (CVC 22107)"),
        Violation("ca_2", "Speeding (CVC 22350)"),
        Violation("ca_3", "Failure to yield (CVC 21800)"),
        Violation("ca_4", "Following too closely (CVC 21703)"),
        Violation("ca_5", "Disobeyed traffic signal (CVC 21453)"),
    ),
    "NY": (
        Violation("ny_1", "Imprudent speed (VTL 1180)"),
        Violation("ny_2", "Following too closely (VTL 1129)"),
        Violation("ny_3", "Failed to yield right-of-way (VTL 1140)"),
        Violation("ny_4", "Unsafe lane change (VTL 1128)"),
        Violation("ny_5", "Disobeyed traffic control device (VTL 1110)"),
    ),
    "TR": (
        Violation("tr_1", "Kırmızı ışık ihlali"),
        Violation("tr_2", "Hız limitini aşma"),
        Violation("tr_3", "Geçiş önceliğine uymama"),
        Violation("tr_4", "Hatalı şerit değiştirme"),
        Violation("tr_5", "Yakın takip"),
    ),
}


def violations_for(locale: str) -> tuple[Violation, ...]:
    try:
        return VIOLATION_CATALOGS[locale]  # type: ignore[index]
    except KeyError as error:
        raise ValueError(f"Unsupported jurisdiction: {locale}") from error


def is_known_violation(locale: str, violation_id: str) -> bool:
    return any(item.violation_id == violation_id for item in violations_for(locale))


def violation_text(locale: str, violation_id: str) -> str:
    for item in violations_for(locale):
        if item.violation_id == violation_id:
            return item.text
    return violation_id


def filter_known_violations(locale: str, violation_ids: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Keep catalog ids only, de-duplicated, first occurrence order."""
    known = {item.violation_id for item in violations_for(locale)}
    seen: set[str] = set()
    result: list[str] = []
    for violation_id in violation_ids:
        if violation_id not in known or violation_id in seen:
            continue
        seen.add(violation_id)
        result.append(violation_id)
    return tuple(result)
