import copy
import logging
from datetime import datetime
from typing import Callable

from flask import current_app

from app.ai import ScanServiceError, analyze_medication_image
from app.brand_catalog import lookup_by_imprint
from app.drug_reference import search_drug_labels
from app.models import UNKNOWN_NAME, Medication
from app.ocr import insight_from_ocr, parse_ocr_text, recognize_text

logger = logging.getLogger(__name__)

SCAN_ENGINES = {"vision", "ocr"}
DEFAULT_IMPRINT_FLOOR = 0.7

Resolver = Callable[[dict], dict | None]


def _brand(insight: dict) -> str:
    return (insight.get("medicine") or {}).get("brand_name") or ""


def _has_brand(insight: dict) -> bool:
    brand = _brand(insight).strip()
    return bool(brand) and brand != UNKNOWN_NAME


def _fill_empty(target: dict, key: str, value) -> None:
    if value in (None, "", []):
        return
    if target.get(key) in (None, "", []):
        target[key] = value


def merge_label(insight: dict, label: dict) -> dict:
    """Fill empty insight fields from an openFDA label; populated fields stay."""
    medicine = insight["medicine"]
    medical = insight["medical_info"]

    manufacturers = label.get("manufacturer_name") or []
    dosage_forms = label.get("dosage_form") or []
    _fill_empty(medicine, "manufacturer", manufacturers[0] if manufacturers else "")
    _fill_empty(medicine, "generic_name", list(label.get("generic_name") or []))
    _fill_empty(medicine, "dosage_form", dosage_forms[0] if dosage_forms else "")
    _fill_empty(medical, "uses", list(label.get("indications_and_usage") or []))
    _fill_empty(medical, "warnings", list(label.get("warnings") or []))
    _fill_empty(medical, "common_side_effects", list(label.get("adverse_reactions") or []))
    _fill_empty(medical, "interactions", list(label.get("drug_interactions") or []))
    return insight


def resolve_with_label_database(insight: dict, *, search=None) -> dict | None:
    if not insight.get("identified") or not _has_brand(insight):
        return None

    if search is None:
        config = current_app.config
        labels = search_drug_labels(
            _brand(insight),
            base_url=config["OPENFDA_BASE_URL"],
            timeout=config["OPENFDA_TIMEOUT_SECONDS"],
        )
    else:
        labels = search(_brand(insight))

    if not labels:
        return None
    return merge_label(insight, labels[0])


def resolve_with_imprint(insight: dict, *, floor: float | None = None) -> dict | None:
    if _has_brand(insight) and insight.get("identified"):
        return None

    imprint = (insight.get("tablet_details") or {}).get("imprint") or ""
    if not imprint.strip():
        return None

    entry = lookup_by_imprint(imprint)
    if entry is None:
        return None

    if floor is None:
        floor = current_app.config.get("IMPRINT_CONFIDENCE_FLOOR", DEFAULT_IMPRINT_FLOOR)

    insight["identified"] = True
    insight["confidence_score"] = max(float(insight.get("confidence_score") or 0.0), floor)
    insight["medicine"]["brand_name"] = entry["brand"]
    insight["medicine"]["generic_name"] = list(entry["generic"])
    insight["medical_info"]["uses"] = list(entry["uses"])
    if entry.get("strength"):
        insight["medicine"]["strength"] = entry["strength"]
    return insight


DEFAULT_RESOLVERS: list[tuple[str, Resolver]] = [
    ("label_database", resolve_with_label_database),
    ("imprint_dictionary", resolve_with_imprint),
]


def identify_medication(insight: dict, resolvers: list[tuple[str, Resolver]] | None = None) -> dict:
    """Run the candidate through the resolvers; the first one that answers wins.

    The input is never mutated. When every resolver declines, the copy comes
    back unchanged apart from bookkeeping.
    """
    candidate = copy.deepcopy(insight)
    candidate.setdefault("resolved_by", [])

    for name, resolver in resolvers or DEFAULT_RESOLVERS:
        resolved = resolver(candidate)
        if resolved is None:
            continue
        resolved.setdefault("resolved_by", [])
        resolved["resolved_by"].append(name)
        logger.info("Medication resolved by %s: %s", name, _brand(resolved) or UNKNOWN_NAME)
        return resolved
    return candidate


def display_name(insight: dict) -> str:
    brand = _brand(insight).strip()
    return brand or UNKNOWN_NAME


def run_scan_pipeline(image_bytes: bytes, mime_type: str | None, engine: str | None = None) -> dict:
    engine = (engine or current_app.config.get("SCAN_ENGINE") or "vision").strip().lower()
    if engine not in SCAN_ENGINES:
        raise ScanServiceError(f"Unknown scan engine: {engine}")

    if engine == "ocr":
        candidate = insight_from_ocr(parse_ocr_text(recognize_text(image_bytes)))
    else:
        candidate = analyze_medication_image(image_bytes, mime_type)
    return identify_medication(candidate)


def medication_from_insight(user_id: int, insight: dict, *, image_path: str | None = None) -> Medication:
    medicine = insight.get("medicine") or {}
    medical = insight.get("medical_info") or {}
    notes = insight.get("insights") or {}
    flags = insight.get("risk_flags") or {}
    side_effects = list(medical.get("common_side_effects") or []) + list(
        medical.get("serious_side_effects") or []
    )
    now = datetime.utcnow()

    return Medication(
        user_id=user_id,
        source="scan",
        name=display_name(insight),
        brand_name=medicine.get("brand_name") or None,
        generic_names=list(medicine.get("generic_name") or []),
        strength=medicine.get("strength") or None,
        dosage=medicine.get("strength") or None,
        dosage_form=medicine.get("dosage_form") or None,
        manufacturer=medicine.get("manufacturer") or None,
        uses=list(medical.get("uses") or []),
        warnings=list(medical.get("warnings") or []),
        side_effects=side_effects,
        risk_level=notes.get("safety_risk_level") or None,
        requires_prescription=bool(flags.get("requires_prescription")),
        confidence=float(insight.get("confidence_score") or 0.0),
        identified=bool(insight.get("identified")),
        image_path=image_path,
        frequency="daily",
        times=[],
        scanned_at=now,
    )
