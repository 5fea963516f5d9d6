from __future__ import annotations

import base64
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from collision_report.adapters.runtime import AdapterBase
from collision_report.evidence import UploadedEvidence
from collision_report.llm_client.base import MediaPart
from collision_report.report.model import ReportRecord
from collision_report.utils.error_taxonomy import SynthesisError

VEHICLE_GROUP_IDS = ("vehicle-A", "vehicle-B")

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


@dataclass(frozen=True, slots=True)
class SynthesisRequest:
    maneuver_a: str
    maneuver_b: str
    impact_a: str
    impact_b: str
    scene_photos: tuple[MediaPart, ...] = ()


def synthesis_request_from(
    record: ReportRecord,
    scene: tuple[UploadedEvidence, ...] = (),
) -> SynthesisRequest:
    vehicle_a = record.vehicle("A")
    vehicle_b = record.vehicle("B")
    return SynthesisRequest(
        maneuver_a=vehicle_a.maneuver,
        maneuver_b=vehicle_b.maneuver,
        impact_a=vehicle_a.first_impact,
        impact_b=vehicle_b.first_impact,
        scene_photos=tuple(
            MediaPart(filename=item.filename, mime_type=item.mime_type, data=item.data)
            for item in scene
            if item.mime_type.startswith("image/")
        ),
    )


class DiagramAdapter(AdapterBase):
    kind = "diagram"
    prompt_name = "scene_diagram"

    def generate(self, request: SynthesisRequest) -> str:
        prompt_set = self.load_prompt()
        user_content = prompt_set.render_user_prompt(
            maneuver_a=request.maneuver_a or "Not specified",
            maneuver_b=request.maneuver_b or "Not specified",
            impact_a=request.impact_a or "Not specified",
            impact_b=request.impact_b or "Not specified",
        )
        try:
            llm_result = self.invoke(
                lambda: self.llm_client.generate_text(
                    system_prompt=prompt_set.system_prompt_text,
                    user_content=user_content,
                    media=request.scene_photos,
                    model=self.model,
                    params=self.params,
                )
            )
        except Exception as error:  # noqa: BLE001
            raise SynthesisError(f"Diagram synthesis failed: {error}") from error

        return validate_svg(llm_result.raw_text)


class SketchAdapter(AdapterBase):
    kind = "sketch"
    prompt_name = "scene_sketch"

    def generate(self, request: SynthesisRequest) -> str:
        prompt_set = self.load_prompt()
        prompt = prompt_set.render_user_prompt(
            maneuver_a=request.maneuver_a or "driving",
            maneuver_b=request.maneuver_b or "driving",
            impact_a=request.impact_a or "unknown side",
            impact_b=request.impact_b or "unknown side",
            scene_hint=(
                "Use the described scene photos to inform the road layout."
                if request.scene_photos
                else "Assume a simple road layout."
            ),
        )
        try:
            image = self.invoke(
                lambda: self.llm_client.generate_image(
                    prompt=prompt,
                    model=self.model,
                    params=self.params,
                )
            )
        except Exception as error:  # noqa: BLE001
            raise SynthesisError(f"Sketch synthesis failed: {error}") from error

        if not image.data:
            raise SynthesisError("Sketch synthesis returned no image data")
        return base64.b64encode(image.data).decode("ascii")


def validate_svg(raw_text: str) -> str:
    """Return the diagram markup if it is an SVG with both tagged vehicle groups."""
    markup = _FENCE_RE.sub("", raw_text.strip()).strip()
    if not markup:
        raise SynthesisError("Diagram synthesis returned empty markup")

    try:
        root = ET.fromstring(markup)
    except ET.ParseError as error:
        raise SynthesisError(f"Diagram markup is not valid XML: {error}") from error

    if _local_name(root.tag) != "svg":
        raise SynthesisError(f"Diagram root element is {_local_name(root.tag)!r}, expected 'svg'")

    group_ids = {
        element.get("id")
        for element in root.iter()
        if _local_name(element.tag) == "g" and element.get("id")
    }
    missing = [group_id for group_id in VEHICLE_GROUP_IDS if group_id not in group_ids]
    if missing:
        raise SynthesisError(f"Diagram is missing vehicle groups: {', '.join(missing)}")

    return markup


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]
