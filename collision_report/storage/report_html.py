from __future__ import annotations

import base64
from datetime import datetime
from html import escape

from collision_report.report.catalog import Language, VEHICLE_LABELS, violation_text
from collision_report.report.i18n import jurisdiction_notice, translate
from collision_report.report.model import ReportRecord

_STYLE = """
body { font-family: sans-serif; margin: 2rem; color: #333; }
h1, h2, h3 { color: #111; }
.container { max-width: 800px; margin: auto; }
.section { border: 1px solid #ccc; padding: 1rem; margin-bottom: 1rem; border-radius: 8px; }
.grid { display: grid; grid-template-columns: 1fr 1fr; gap: 1rem; }
.notice { background: #fef3c7; border: 1px solid #f59e0b; padding: 0.75rem; border-radius: 8px; }
.signature-box img { border: 1px solid #ccc; border-radius: 4px; }
.diagram-container img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 4px; }
"""


def render_report_html(record: ReportRecord, language: Language | None = None) -> str:
    """Render the record as one self-contained HTML page.

    All user and model supplied text is escaped; the diagram markup is
    embedded as an image so it cannot script the page.
    """
    lang = language or record.language

    def t(key: str) -> str:
        return escape(translate(lang, key))

    notice = jurisdiction_notice(record.locale, lang)
    notice_html = f'<p class="notice">{escape(notice)}</p>' if notice else ""

    accident = record.accident
    general = _section(
        t("general_information"),
        [
            _field(t("date_time"), _format_timestamp(accident.timestamp)),
            _field(t("location"), accident.address),
            _field(t("weather"), accident.weather),
            _field(t("light"), accident.light),
        ],
        level=2,
    )

    parties = "".join(
        f"<div>{_render_party(record, label, t)}</div>" for label in VEHICLE_LABELS
    )

    witnesses = ""
    if record.witnesses:
        witnesses = _section(
            t("witnesses"),
            [
                f"<p><strong>{escape(item.name)}:</strong> {escape(item.phone)}</p>"
                for item in record.witnesses
            ],
            level=2,
        )

    diagram = record.diagram
    if diagram.sketch_base64:
        sketch_html = (
            f'<img src="data:image/png;base64,{escape(diagram.sketch_base64)}" alt="{t("sketch")}" />'
        )
    else:
        sketch_html = f"<p>{t('not_available')}</p>"
    svg_data = base64.b64encode(diagram.svg.encode("utf-8")).decode("ascii")
    visuals = _section(
        t("visuals"),
        [
            '<div class="grid">',
            f'<div class="diagram-container"><h3>{t("sketch")}</h3>{sketch_html}</div>',
            f'<div class="diagram-container"><h3>{t("diagram")}</h3>'
            f'<img src="data:image/svg+xml;base64,{svg_data}" alt="{t("diagram")}" /></div>',
            "</div>",
            _field(t("notes"), diagram.notes),
        ],
        level=2,
    )

    signatures = "".join(
        '<div class="signature-box">'
        f"<h3>{t('driver')} {label}</h3>"
        f"{_signature_html(record.signatures.get(label), label, t)}"
        f"<p><strong>{t('consent')}:</strong> "
        f"{t('consent_given') if record.consent.get(label) else t('consent_missing')}</p>"
        "</div>"
        for label in VEHICLE_LABELS
    )

    return f"""<!DOCTYPE html>
<html lang="{escape(lang.lower())}">
<head>
<meta charset="UTF-8">
<title>{t("title")}</title>
<style>{_STYLE}</style>
</head>
<body>
<div class="container">
<h1>{t("title")}</h1>
{notice_html}
{general}
<h2>{t("parties")}</h2>
<div class="grid">{parties}</div>
{witnesses}
{visuals}
<h2>{t("signatures")}</h2>
<div class="grid">{signatures}</div>
</div>
</body>
</html>
"""


def _render_party(record: ReportRecord, label: str, t) -> str:
    vehicle = record.vehicle(label)
    driver = record.driver(label)
    insurance = record.insurance_for(label)

    violations = [
        f"<li>{escape(violation_text(record.locale, item))}</li>"
        for item in vehicle.alleged_violations
    ]
    violations_html = f"<ul>{''.join(violations)}</ul>" if violations else t("none")

    return "".join(
        [
            _section(
                f"{t('vehicle')} {label}",
                [
                    _field(t("plate"), vehicle.plate),
                    _field(t("make_model"), vehicle.make_model),
                    _field(t("first_impact"), vehicle.first_impact),
                    _field(t("maneuver"), vehicle.maneuver),
                    f"<p><strong>{t('alleged_violations')}:</strong></p>{violations_html}",
                ],
            ),
            _section(
                f"{t('driver')} {label}",
                [
                    _field(t("name"), driver.name),
                    _field(t("national_id"), driver.national_id),
                    _field(t("license_number"), driver.license_number),
                    _field(t("phone"), driver.phone),
                    _field(t("statement"), driver.statement),
                ],
            ),
            _section(
                f"{t('insurance')} {label}",
                [
                    _field(t("company"), insurance.company),
                    _field(t("policy_number"), insurance.policy_number),
                ],
            ),
        ]
    )


def _signature_html(data: str | None, label: str, t) -> str:
    if data and data.startswith("data:image/"):
        return f'<img src="{escape(data)}" alt="{t("driver")} {label}" width="200" />'
    return f"<p>{t('not_signed')}</p>"


def _section(title: str, body: list[str], *, level: int = 3) -> str:
    return f'<div class="section"><h{level}>{title}</h{level}>{"".join(body)}</div>'


def _field(label: str, value: str) -> str:
    return f"<p><strong>{label}:</strong> {escape(value)}</p>"


def _format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value
