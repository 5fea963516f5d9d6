from __future__ import annotations

from collision_report.report.catalog import PRIVATE_AGREEMENT_LOCALES, Language, Locale

STRINGS: dict[Language, dict[str, str]] = {
    "EN": {
        "title": "Accident Report",
        "general_information": "General Information",
        "date_time": "Date & Time",
        "location": "Location",
        "weather": "Weather",
        "light": "Light Conditions",
        "parties": "Parties Involved",
        "vehicle": "Vehicle",
        "plate": "License Plate",
        "make_model": "Make/Model",
        "first_impact": "Initial Impact",
        "maneuver": "Manoeuvre",
        "alleged_violations": "Alleged Violations",
        "driver": "Driver",
        "name": "Name",
        "national_id": "ID No",
        "license_number": "License No",
        "phone": "Phone",
        "statement": "Statement",
        "insurance": "Insurance",
        "company": "Company",
        "policy_number": "Policy No",
        "witnesses": "Witnesses",
        "visuals": "Accident Visuals",
        "sketch": "AI Generated Sketch",
        "diagram": "Interactive Diagram",
        "notes": "Notes",
        "not_available": "Not available",
        "signatures": "Signatures",
        "not_signed": "Not signed",
        "consent": "Consent",
        "consent_given": "Agreed",
        "consent_missing": "Not agreed",
        "none": "None",
        "private_agreement_notice": "This is a private agreement and not an official police report.",
    },
    "TR": {
        "title": "Kaza Tespit Tutanağı",
        "general_information": "Genel Bilgiler",
        "date_time": "Tarih ve Saat",
        "location": "Konum",
        "weather": "Hava Durumu",
        "light": "Işık Koşulları",
        "parties": "Taraflar",
        "vehicle": "Araç",
        "plate": "Plaka",
        "make_model": "Marka/Model",
        "first_impact": "İlk Çarpma Noktası",
        "maneuver": "Manevra",
        "alleged_violations": "İddia Edilen İhlaller",
        "driver": "Sürücü",
        "name": "Ad Soyad",
        "national_id": "T.C. Kimlik No",
        "license_number": "Ehliyet No",
        "phone": "Telefon",
        "statement": "Beyan",
        "insurance": "Sigorta",
        "company": "Şirket",
        "policy_number": "Poliçe No",
        "witnesses": "Tanıklar",
        "visuals": "Kaza Görselleri",
        "sketch": "Yapay Zeka Krokisi",
        "diagram": "Etkileşimli Diyagram",
        "notes": "Notlar",
        "not_available": "Mevcut değil",
        "signatures": "İmzalar",
        "not_signed": "İmzalanmadı",
        "consent": "Onay",
        "consent_given": "Onaylandı",
        "consent_missing": "Onaylanmadı",
        "none": "Yok",
        "private_agreement_notice": "Bu belge taraflar arasında özel bir anlaşmadır, resmi polis raporu değildir.",
    },
}


def translate(language: Language, key: str) -> str:
    table = STRINGS.get(language) or STRINGS["EN"]
    return table.get(key) or STRINGS["EN"][key]


def jurisdiction_notice(locale: Locale, language: Language) -> str | None:
    if locale not in PRIVATE_AGREEMENT_LOCALES:
        return None
    return translate(language, "private_agreement_notice")
