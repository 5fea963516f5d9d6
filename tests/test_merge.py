from __future__ import annotations

import pytest

from collision_report.report import edits
from collision_report.report.merge import FieldOwnership, degrade_diagram, merge_partial
from collision_report.report.model import PLACEHOLDER_SVG, PartialReport, ReportRecord, new_report


def _populated_record() -> ReportRecord:
    record = new_report("UK", "EN")
    record = edits.update_vehicle(record, "A", plate="AB12CDE", maneuver="Turning right")
    record = edits.update_vehicle(record, "B", plate="XY34ZZZ")
    record = edits.toggle_violation(record, "A", "uk_1")
    record = edits.update_driver(record, "A", name="John Smith")
    record = edits.add_witness(record, name="Sam")
    record = edits.set_signature(record, "A", "data:image/png;base64,SIG")
    record = edits.set_consent(record, "A", True)
    return record


@pytest.mark.parametrize("record", [new_report("UK", "EN"), _populated_record()])
def test_merging_empty_partial_is_identity(record: ReportRecord) -> None:
    assert merge_partial(record, PartialReport()) == record
    assert merge_partial(record, PartialReport.model_validate({"vehicles": []})) == record


def test_signatures_and_consent_are_never_overwritten() -> None:
    record = _populated_record()
    partial = PartialReport.model_validate(
        {
            "signatures": {"A": "data:image/png;base64,FORGED", "B": "data:image/png;base64,NEW"},
            "consent": {"A": False, "B": True},
            "drivers": [{"vehicle": "A", "phone": "0700"}],
        }
    )

    merged = merge_partial(record, partial)

    assert merged.signatures == record.signatures
    assert merged.consent == record.consent
    assert merged.driver("A").phone == "0700"


def test_b_only_partial_leaves_slot_a_untouched() -> None:
    record = _populated_record()
    partial = PartialReport.model_validate(
        {"vehicles": [{"label": "B", "plate": "NEW1", "first_impact": "Rear"}]}
    )

    merged = merge_partial(record, partial)

    assert merged.vehicle("A") == record.vehicle("A")
    assert merged.driver("A") == record.driver("A")
    assert merged.vehicle("B").plate == "NEW1"
    assert merged.vehicle("B").first_impact == "Rear"


def test_merge_overlays_present_fields_only_and_filters_violations() -> None:
    record = _populated_record()
    partial = PartialReport.model_validate(
        {
            "accident": {"weather": "Rain", "light": ""},
            "vehicles": [
                {"label": "A", "alleged_offences": ["uk_2", "ca_1"]},
            ],
        }
    )

    merged = merge_partial(record, partial)

    assert merged.accident.weather == "Rain"
    assert merged.accident.timestamp == record.accident.timestamp
    assert merged.vehicle("A").plate == "AB12CDE"
    assert merged.vehicle("A").maneuver == "Turning right"
    assert merged.vehicle("A").alleged_violations == ("uk_2",)
    assert merged.witnesses == record.witnesses
    assert record.vehicle("A").alleged_violations == ("uk_1",)


def test_user_owned_diagram_svg_survives_merge_and_degradation() -> None:
    record = edits.set_diagram_svg(_populated_record(), "<svg id='mine'/>")
    ownership = FieldOwnership(diagram_svg=True)
    partial = PartialReport.model_validate(
        {"diagram": {"svg": "<svg id='model'/>", "sketch_base64": "c2tldGNo"}}
    )

    merged = merge_partial(record, partial, ownership)
    degraded = degrade_diagram(merged, svg_failed=True, sketch_failed=False, ownership=ownership)

    assert merged.diagram.svg == "<svg id='mine'/>"
    assert merged.diagram.sketch_base64 == "c2tldGNo"
    assert degraded.diagram.svg == "<svg id='mine'/>"


def test_degrade_diagram_resets_failed_subfields() -> None:
    record = merge_partial(
        new_report("UK", "EN"),
        PartialReport.model_validate({"diagram": {"svg": "<svg/>", "sketch_base64": "c2tldGNo"}}),
    )

    degraded = degrade_diagram(record, svg_failed=True, sketch_failed=True)

    assert degraded.diagram.svg == PLACEHOLDER_SVG
    assert degraded.diagram.sketch_base64 is None
    assert degrade_diagram(record, svg_failed=False, sketch_failed=False) is record


def test_out_of_order_entries_are_matched_by_label() -> None:
    record = new_report("UK", "EN")
    partial = PartialReport.model_validate(
        {
            "vehicles": [
                {"label": "B", "plate": "XY34ZZZ"},
                {"label": "A", "plate": "AB12CDE"},
            ],
            "drivers": [
                {"vehicle": "B", "name": "Jane Doe"},
                {"vehicle": "A", "name": "John Smith"},
            ],
            "insurance": [
                {"vehicle": "B", "company": "Aviva"},
                {"vehicle": "A", "company": "Acme"},
            ],
        }
    )

    merged = merge_partial(record, partial)

    assert merged.vehicles[0].label == "A"
    assert merged.vehicles[0].plate == "AB12CDE"
    assert merged.vehicles[1].plate == "XY34ZZZ"
    assert merged.drivers[0].vehicle == "A"
    assert merged.drivers[0].name == "John Smith"
    assert merged.drivers[1].name == "Jane Doe"
    assert merged.insurance[0].company == "Acme"
    assert merged.insurance[1].company == "Aviva"
