import io
import logging
import re

import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

from app.ai import ScanServiceError, default_insight
from app.models import UNKNOWN_NAME

logger = logging.getLogger(__name__)

SEE_PACKAGING = "See packaging"
FOLLOW_INSTRUCTIONS = "Follow dosage instructions"

# Checked in order; the first pattern with any match decides the dosage.
DOSAGE_PATTERNS = [
    r"\b\d+\s*mg\b",
    r"\b\d+\s*mcg\b",
    r"\b\d+\s*g\b",
    r"\b\d+\s*ml\b",
    r"\b\d+\s*IU\b",
]
MANUFACTURER_PATTERNS = [
    r"MFG[:\s]*([A-Za-z\s]{3,25})",
    r"MANUFACTURER[:\s]*([A-Za-z\s]{3,25})",
]
WARNING_PATTERNS = [
    r"STORE[:\s]*[^.\n]*",
    r"WARNING[:\s]*[^.\n]*",
    r"CAUTION[:\s]*[^.\n]*",
    r"EXPIRY[:\s]*[^.\n]*",
]
COMMON_DRUG_NAMES = [
    "PARACETAMOL",
    "ACETAMINOPHEN",
    "IBUPROFEN",
    "ASPIRIN",
    "AMOXICILLIN",
    "CIPROFLOXACIN",
    "AZITHROMYCIN",
    "METFORMIN",
    "ATORVASTATIN",
    "AMLODIPINE",
    "LOSARTAN",
    "OMEPRAZOLE",
    "PANTOPRAZOLE",
    "CETIRIZINE",
    "LORATADINE",
    "DICLOFENAC",
    "TRAMADOL",
    "AMITRIPTYLINE",
    "METRONIDAZOLE",
    "CIPLA",
]
HEADER_LINE_SCAN = 8
NAME_FROM_LIST = "common_name"
NAME_FROM_HEADER = "header"
NAME_FROM_FIRST_LINE = "first_line"
MIN_RECOGNIZED_CHARS = 5


def _first_match(text: str, patterns: list[str]) -> str:
    for pattern in patterns:
        match = re.search(pattern, text, flags=re.IGNORECASE)
        if match:
            return match.group(0)
    return ""


def parse_dosage(text: str) -> str:
    return _first_match(text, DOSAGE_PATTERNS)


def parse_manufacturer(text: str) -> str:
    for pattern in MANUFACTURER_PATTERNS:
        match = re.search(pattern, text, flags=re.IGNORECASE)
        if match:
            return (match.group(1) or match.group(0)).strip()
    return ""


def parse_warnings(text: str) -> str:
    for pattern in WARNING_PATTERNS:
        matches = re.findall(pattern, text, flags=re.IGNORECASE)
        if matches:
            return ". ".join(m.strip() for m in matches[:3])
    return ""


def _header_text(line: str) -> str:
    cleaned = re.sub(r"[\d\-.,()\[\]]", "", line).strip()
    if 3 < len(cleaned) < 35 and re.fullmatch(r"[A-Z\s]+", cleaned) and "MG" not in cleaned:
        return cleaned
    return ""


def match_drug_name(lines: list[str]) -> tuple[str, str]:
    """Return the drug name and the step that found it.

    The step is one of NAME_FROM_LIST, NAME_FROM_HEADER or NAME_FROM_FIRST_LINE,
    or "" when there are no lines at all.
    """
    for line in lines:
        upper_line = line.upper()
        for drug in COMMON_DRUG_NAMES:
            if drug in upper_line:
                return drug, NAME_FROM_LIST

    for line in lines[:HEADER_LINE_SCAN]:
        header = _header_text(line)
        if header:
            return header, NAME_FROM_HEADER

    if lines:
        return lines[0], NAME_FROM_FIRST_LINE
    return "", ""


def parse_drug_name(lines: list[str]) -> str:
    return match_drug_name(lines)[0]


def parse_ocr_text(raw_text: str) -> dict:
    """Pull drug name, dosage, manufacturer and warnings out of label text.

    Each field is matched independently. Nothing here raises; fields with
    no match fall back to "See packaging", "Follow dosage instructions" or
    "Unknown".
    """
    text = raw_text or ""
    lines = [line.strip() for line in text.split("\n")]
    lines = [line for line in lines if len(line) > 1]

    drug_name, name_source = match_drug_name(lines)
    return {
        "drug_name": drug_name or UNKNOWN_NAME,
        "name_source": name_source,
        "dosage": parse_dosage(text) or SEE_PACKAGING,
        "manufacturer": parse_manufacturer(text) or SEE_PACKAGING,
        "active_ingredients": drug_name or SEE_PACKAGING,
        "warnings": parse_warnings(text) or FOLLOW_INSTRUCTIONS,
        "raw_text": text,
    }


def recognize_text(image_bytes: bytes) -> str:
    if not image_bytes:
        raise ScanServiceError("No image data was provided.")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            prepared = ImageOps.grayscale(ImageOps.exif_transpose(image))
            text = pytesseract.image_to_string(prepared, lang="eng")
    except UnidentifiedImageError as exc:
        raise ScanServiceError("The uploaded file is not a readable image.") from exc
    except pytesseract.TesseractError as exc:
        raise ScanServiceError(f"OCR failed: {exc}") from exc
    except pytesseract.TesseractNotFoundError as exc:
        raise ScanServiceError("OCR failed: tesseract is not installed.") from exc

    if not text or len(text.strip()) < MIN_RECOGNIZED_CHARS:
        raise ScanServiceError("OCR failed: No text detected")
    logger.debug("Recognized %s characters of label text", len(text))
    return text


def insight_from_ocr(parsed: dict) -> dict:
    """Lift a flat OCR parse into the insight shape used by the resolvers."""
    insight = default_insight(parsed.get("raw_text") or "", source="ocr")
    name = parsed.get("drug_name") or UNKNOWN_NAME
    known = name != UNKNOWN_NAME

    insight["is_valid"] = known
    insight["identified"] = name in COMMON_DRUG_NAMES
    insight["confidence_score"] = 0.5 if insight["identified"] else 0.0
    insight["image_type"] = "strip"
    insight["medicine"].update(
        {
            "brand_name": name,
            "generic_name": [name] if insight["identified"] else [],
            "strength": "" if parsed.get("dosage") == SEE_PACKAGING else parsed.get("dosage") or "",
            "manufacturer": ""
            if parsed.get("manufacturer") == SEE_PACKAGING
            else parsed.get("manufacturer") or "",
        }
    )
    warnings = parsed.get("warnings")
    if warnings and warnings != FOLLOW_INSTRUCTIONS:
        insight["medical_info"]["warnings"] = [w.strip() for w in warnings.split(". ") if w.strip()]
        insight["packaging_details"]["storage_instructions"] = next(
            (w for w in insight["medical_info"]["warnings"] if w.upper().startswith("STORE")), ""
        )
    # Only an uppercase header line can stand in for the strip imprint; a
    # copied first line is ordinary label prose.
    from_header = known and parsed.get("name_source") == NAME_FROM_HEADER
    insight["tablet_details"]["imprint"] = name if from_header else ""
    return insight
