from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator

from collision_report.report.catalog import VEHICLE_LABELS, Locale, is_known_violation

SLOT_SECTIONS = (("vehicles", "label"), ("drivers", "vehicle"), ("insurance", "vehicle"))
VIOLATION_KEYS = ("alleged_violations", "alleged_offences")


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    schema_errors: list[str]
    invariant_warnings: list[str]
    sanitized: dict[str, Any] = field(default_factory=dict)


def validate_output(
    *,
    parsed_json: dict[str, Any],
    schema: dict[str, Any] | None,
    locale: Locale,
) -> ValidationResult:
    """Check adapter JSON against its schema, then sanitise record invariants.

    Schema errors make the result invalid. Invariant problems are fixed
    in ``sanitized`` and reported as warnings.
    """
    schema_errors = _validate_schema(parsed_json=parsed_json, schema=schema) if schema else []
    if schema_errors:
        return ValidationResult(valid=False, schema_errors=schema_errors, invariant_warnings=[])

    sanitized, warnings = _sanitize_invariants(parsed_json=parsed_json, locale=locale)
    return ValidationResult(
        valid=True,
        schema_errors=[],
        invariant_warnings=warnings,
        sanitized=sanitized,
    )


def _validate_schema(
    *, parsed_json: dict[str, Any], schema: dict[str, Any]
) -> list[str]:
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(parsed_json), key=lambda item: list(item.path))

    messages: list[str] = []
    for error in errors:
        path = "/".join(str(item) for item in error.path)
        if path:
            messages.append(f"{path}: {error.message}")
        else:
            messages.append(error.message)

    return messages


def _sanitize_invariants(
    *, parsed_json: dict[str, Any], locale: Locale
) -> tuple[dict[str, Any], list[str]]:
    data = copy.deepcopy(parsed_json)
    warnings: list[str] = []

    for section, key in SLOT_SECTIONS:
        entries = data.get(section)
        if entries is None:
            continue
        if not isinstance(entries, list):
            warnings.append(f"{section} must be an array; ignored")
            data.pop(section)
            continue

        kept: list[dict[str, Any]] = []
        seen: set[str] = set()
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                warnings.append(f"{section}[{index}] must be an object; dropped")
                continue
            label = str(entry.get(key) or "").strip().upper()
            if label not in VEHICLE_LABELS:
                warnings.append(f"{section}[{index}] has unknown {key} {entry.get(key)!r}; dropped")
                continue
            if label in seen:
                warnings.append(f"{section}[{index}] duplicates {key} {label}; dropped")
                continue
            seen.add(label)
            entry[key] = label
            if section == "vehicles":
                warnings.extend(_sanitize_violations(entry, index=index, locale=locale))
            kept.append(entry)
        data[section] = kept

    questions = data.get("questions")
    if questions is not None:
        kept_questions: list[dict[str, Any]] = []
        for index, item in enumerate(questions if isinstance(questions, list) else []):
            if not isinstance(item, dict) or not str(item.get("question") or "").strip():
                warnings.append(f"questions[{index}] has no question text; dropped")
                continue
            kept_questions.append(item)
        data["questions"] = kept_questions

    return data, warnings


def _sanitize_violations(entry: dict[str, Any], *, index: int, locale: Locale) -> list[str]:
    warnings: list[str] = []
    for key in VIOLATION_KEYS:
        values = entry.get(key)
        if values is None:
            continue
        if not isinstance(values, list):
            warnings.append(f"vehicles[{index}].{key} must be an array; ignored")
            entry.pop(key)
            continue
        known = [value for value in values if isinstance(value, str) and is_known_violation(locale, value)]
        unknown = [value for value in values if value not in known]
        if unknown:
            warnings.append(
                f"vehicles[{index}].{key} outside {locale} catalog: "
                f"{', '.join(str(value) for value in unknown)}"
            )
        entry[key] = known
    return warnings
