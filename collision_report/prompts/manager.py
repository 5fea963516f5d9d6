from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

import yaml

VERSION_RE = re.compile(r"^v(\d{3})$")


@dataclass(frozen=True, slots=True)
class PromptSet:
    prompt_name: str
    version: str
    system_prompt_text: str
    user_template_text: str
    schema: dict[str, Any] | None
    meta: dict[str, Any]
    prompt_dir: Path

    def render_user_prompt(self, **values: Any) -> str:
        """Fill ``$name`` placeholders of the user template; missing names raise KeyError."""
        return Template(self.user_template_text).substitute(
            {key: str(value) for key, value in values.items()}
        )

    def require_schema(self) -> dict[str, Any]:
        if self.schema is None:
            raise ValueError(f"Prompt {self.prompt_name}/{self.version} has no schema.json")
        return self.schema


class PromptManager:
    def __init__(self, prompts_root: Path | str) -> None:
        self.prompts_root = Path(prompts_root)

    def list_prompt_names(self) -> list[str]:
        if not self.prompts_root.exists():
            return []

        names: list[str] = []
        for child in self.prompts_root.iterdir():
            if not child.is_dir() or child.name.startswith("__"):
                continue
            if self.list_versions(child.name):
                names.append(child.name)
        return sorted(names)

    def list_versions(self, prompt_name: str) -> list[str]:
        prompt_dir = self.prompts_root / prompt_name
        if not prompt_dir.is_dir():
            return []

        versions = [
            child.name
            for child in prompt_dir.iterdir()
            if child.is_dir() and VERSION_RE.match(child.name)
        ]
        return sorted(versions, key=_version_to_int)

    def latest_version(self, prompt_name: str) -> str:
        versions = self.list_versions(prompt_name)
        if not versions:
            raise FileNotFoundError(f"No versions found for prompt: {prompt_name}")
        return versions[-1]

    def load_prompt_set(self, *, prompt_name: str, version: str) -> PromptSet:
        prompt_dir = self._prompt_dir(prompt_name=prompt_name, version=version)
        system_prompt_path = prompt_dir / "system_prompt.txt"
        user_template_path = prompt_dir / "user_prompt.txt"
        schema_path = prompt_dir / "schema.json"
        meta_path = prompt_dir / "meta.yaml"

        if not system_prompt_path.exists():
            raise FileNotFoundError(f"system prompt not found: {system_prompt_path}")
        if not user_template_path.exists():
            raise FileNotFoundError(f"user prompt not found: {user_template_path}")

        schema: dict[str, Any] | None = None
        if schema_path.exists():
            schema = _parse_schema_text(schema_path.read_text(encoding="utf-8"))

        meta: dict[str, Any] = {}
        if meta_path.exists():
            parsed_meta = yaml.safe_load(meta_path.read_text(encoding="utf-8")) or {}
            if isinstance(parsed_meta, dict):
                meta = parsed_meta

        return PromptSet(
            prompt_name=prompt_name,
            version=version,
            system_prompt_text=system_prompt_path.read_text(encoding="utf-8"),
            user_template_text=user_template_path.read_text(encoding="utf-8"),
            schema=schema,
            meta=meta,
            prompt_dir=prompt_dir,
        )

    def _prompt_dir(self, *, prompt_name: str, version: str) -> Path:
        if not VERSION_RE.match(version):
            raise ValueError(f"Invalid prompt version format: {version}")
        return self.prompts_root / prompt_name / version


def _parse_schema_text(schema_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(schema_text)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid schema JSON: {error}") from error

    if not isinstance(parsed, dict):
        raise ValueError("Schema JSON root must be an object")

    return parsed


def _version_to_int(version: str) -> int:
    match = VERSION_RE.match(version)
    if match is None:
        raise ValueError(f"Invalid version format: {version}")
    return int(match.group(1))
