from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, Literal

ErrorCode = Literal[
    "EVIDENCE_REQUIRED",
    "INVALID_EVIDENCE",
    "SIGNATURE_REQUIRED",
    "CONSENT_REQUIRED",
    "UNKNOWN_VIOLATION",
    "ANSWER_REQUIRED",
    "NO_OPEN_QUESTIONS",
    "LLM_API_ERROR",
    "LLM_AUTH_ERROR",
    "LLM_EMPTY_RESPONSE",
    "LLM_INVALID_JSON",
    "LLM_SCHEMA_INVALID",
    "ADAPTER_TIMEOUT",
    "SYNTHESIS_FAILED",
    "PACKAGE_EXPORT_ERROR",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "EVIDENCE_REQUIRED": "Please upload at least one file before proceeding.",
    "INVALID_EVIDENCE": "The uploaded file could not be accepted.",
    "SIGNATURE_REQUIRED": "Please provide at least one signature to continue.",
    "CONSENT_REQUIRED": "Both drivers must check the consent box to continue.",
    "UNKNOWN_VIOLATION": "The selected violation is not part of this jurisdiction.",
    "ANSWER_REQUIRED": "Please type an answer before sending it.",
    "NO_OPEN_QUESTIONS": "There are no open questions to answer.",
    "LLM_API_ERROR": "Could not connect to the AI service. Please retry.",
    "LLM_AUTH_ERROR": "Invalid API key. Please check your settings.",
    "LLM_EMPTY_RESPONSE": "The AI service returned an empty response. Please retry.",
    "LLM_INVALID_JSON": "The AI service returned a response that could not be read.",
    "LLM_SCHEMA_INVALID": "The AI service returned data in an unexpected shape.",
    "ADAPTER_TIMEOUT": "The AI service took too long to respond. Please retry.",
    "SYNTHESIS_FAILED": "The accident diagram or sketch could not be generated.",
    "PACKAGE_EXPORT_ERROR": "An error occurred while creating the report package.",
    "UNKNOWN_ERROR": "An error occurred while processing data with the AI.",
}


class SessionValidationError(ValueError):
    """Raised when a transition guard rejects user input. State is unchanged."""

    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        self.code = code
        self.message = message or ERROR_FRIENDLY_MESSAGES[code]
        super().__init__(self.message)


class AdapterError(RuntimeError):
    """Raised when an extraction or clarification call cannot produce a usable result."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")

    @property
    def friendly_message(self) -> str:
        return ERROR_FRIENDLY_MESSAGES.get(self.code, ERROR_FRIENDLY_MESSAGES["UNKNOWN_ERROR"])


class SynthesisError(RuntimeError):
    """Raised when diagram or sketch synthesis fails. Always degraded, never surfaced."""


class EmptyResponseError(ValueError):
    """Raised when a provider returns no usable output."""


class InvalidTransitionError(RuntimeError):
    """Raised when an action is not allowed from the current pipeline step."""


class SessionBusyError(RuntimeError):
    """Raised when a call of the same kind is already in flight for the session."""


class PackageExportError(RuntimeError):
    """Raised when the evidence package cannot be written safely."""


def classify_llm_api_error(error: Exception) -> ErrorCode:
    if isinstance(error, AdapterError):
        return error.code
    if isinstance(error, EmptyResponseError):
        return "LLM_EMPTY_RESPONSE"
    if isinstance(error, json.JSONDecodeError):
        return "LLM_INVALID_JSON"
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, socket.timeout)):
        return "ADAPTER_TIMEOUT"

    status_code = extract_http_status_code(error)
    if status_code in (401, 403):
        return "LLM_AUTH_ERROR"
    if status_code is not None:
        return "LLM_API_ERROR"

    class_name = error.__class__.__name__.lower()
    message = str(error).lower()
    if "authentication" in class_name or "api_key" in message or "api key" in message:
        return "LLM_AUTH_ERROR"
    if "timeout" in class_name or "timed out" in message:
        return "ADAPTER_TIMEOUT"
    if isinstance(error, (ConnectionError, RuntimeError)):
        return "LLM_API_ERROR"
    if "connection" in class_name or "network" in class_name:
        return "LLM_API_ERROR"
    return "UNKNOWN_ERROR"


def is_retryable_llm_exception(error: BaseException) -> bool:
    status_code = extract_http_status_code(error)
    return status_code is not None and is_retryable_status_code(status_code)


def is_retryable_status_code(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def extract_http_status_code(error: BaseException) -> int | None:
    for field_name in ("status_code", "status", "http_status", "code"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def build_error_details(error: Exception) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    for field_name in ("body", "response_body", "payload"):
        value = getattr(error, field_name, None)
        if value is None:
            continue
        details.append(f"{field_name}={value}")
    return "\n".join(details)


def _to_int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
