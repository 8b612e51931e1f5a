import base64
import json
import re
from typing import Any, Sequence

import openai
from flask import current_app
from openai import OpenAI

from app.models import UNKNOWN_NAME

DISCLAIMER = (
    "This analysis is AI-generated and may be inaccurate. "
    "Always confirm with a pharmacist or doctor before taking any medicine."
)

MEDICINE_PROMPT = """You are a pharmacist reading a photo of a medicine strip, box, bottle or tablet.
Respond ONLY with one JSON object, no prose, using exactly these keys:
{
  "is_valid": true if the image shows a medicine, else false,
  "image_type": "strip" | "box" | "bottle" | "tablet" | "prescription" | "other",
  "identified": true if you are confident about the brand,
  "confidence_score": number 0.0 to 1.0,
  "needs_human_review": boolean,
  "medicine": {"brand_name": "", "generic_name": [""], "strength": "", "dosage_form": "", "manufacturer": ""},
  "tablet_details": {"color": "", "shape": "", "imprint": "", "coating": "", "scored": false},
  "packaging_details": {"batch_number": "", "manufacturing_date": "", "expiry_date": "", "mrp": "", "strip_size": "", "storage_instructions": ""},
  "medical_info": {"uses": [""], "how_it_works": "", "common_side_effects": [""], "serious_side_effects": [""], "warnings": [""], "interactions": [""]},
  "insights": {"summary": "", "safety_risk_level": "low" | "moderate" | "high", "overdose_risk": "", "addiction_potential": false, "when_to_see_doctor": ""},
  "risk_flags": {"is_expired": false, "is_schedule_h": false, "is_high_alert_medicine": false, "requires_prescription": false}
}
Use "Unknown" for brand_name if it cannot be read. Copy any text printed on the tablet into tablet_details.imprint."""

CHAT_SYSTEM_PROMPT = """You are a helpful medical assistant. Your role is to provide health and medical information only.

RULES:
1. Only answer health, medical, and wellness-related questions
2. If asked non-medical questions, politely decline and redirect to medical topics
3. Always include a disclaimer at the end: "This is AI-generated medical information only. Please consult a qualified healthcare professional for proper diagnosis and treatment."
4. Respond in the SAME LANGUAGE the user uses (Hindi, English, Tamil, Telugu, Bengali, Marathi, Malayalam, Kannada, Gujarati, etc.)
5. Keep responses clear, concise, and easy to understand
6. Do not provide specific dosage recommendations - always tell users to consult a doctor
7. For emergency symptoms, immediately advise seeking immediate medical attention
8. Do not pretend to be a doctor - always clarify you are an AI assistant

Your responses should be helpful, accurate, and prioritize user safety above all."""

CHAT_FALLBACK_REPLY = "Sorry, I could not understand that. Please try again."
RISK_LEVELS = {"low", "moderate", "high"}


class ScanServiceError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def extract_json_object(raw_text: str) -> dict:
    text = (raw_text or "").strip()
    if not text:
        return {}

    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z0-9]*\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    candidate = _first_balanced_object(text)
    if not candidate:
        return {}
    try:
        parsed = json.loads(candidate)
        return parsed if isinstance(parsed, dict) else {}
    except json.JSONDecodeError:
        return {}


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def _as_list(value) -> list[str]:
    if value in (None, ""):
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if v not in (None, "") and str(v).strip()]
    text = str(value).strip()
    return [text] if text else []


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


def _as_float(value, default: float = 0.0) -> float:
    if value in (None, ""):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _section(parsed: dict, key: str) -> dict:
    value = parsed.get(key)
    return value if isinstance(value, dict) else {}


def default_insight(raw_text: str = "", source: str = "vision") -> dict:
    return {
        "is_valid": False,
        "image_type": "",
        "identified": False,
        "confidence_score": 0.0,
        "needs_human_review": True,
        "medicine": {
            "brand_name": UNKNOWN_NAME,
            "generic_name": [],
            "strength": "",
            "dosage_form": "",
            "manufacturer": "",
        },
        "tablet_details": {"color": "", "shape": "", "imprint": "", "coating": "", "scored": False},
        "packaging_details": {
            "batch_number": "",
            "manufacturing_date": "",
            "expiry_date": "",
            "mrp": "",
            "strip_size": "",
            "storage_instructions": "",
        },
        "medical_info": {
            "uses": [],
            "how_it_works": "",
            "common_side_effects": [],
            "serious_side_effects": [],
            "warnings": [],
            "interactions": [],
        },
        "insights": {
            "summary": "",
            "safety_risk_level": "low",
            "overdose_risk": "",
            "addiction_potential": False,
            "when_to_see_doctor": "",
        },
        "risk_flags": {
            "is_expired": False,
            "is_schedule_h": False,
            "is_high_alert_medicine": False,
            "requires_prescription": False,
        },
        "disclaimer": DISCLAIMER,
        "raw_text": raw_text or "",
        "source": source,
        "resolved_by": [],
    }


def _from_flat_response(parsed: dict, insight: dict) -> dict:
    # Older prompt shape: {"drugName", "dosage", "manufacturer", "activeIngredients", "warnings", "imprint"}
    name = _as_text(parsed.get("drugName"))
    insight["is_valid"] = True
    insight["identified"] = bool(name) and name != UNKNOWN_NAME
    insight["medicine"].update(
        {
            "brand_name": name or UNKNOWN_NAME,
            "generic_name": _as_list(parsed.get("activeIngredients")),
            "strength": _as_text(parsed.get("dosage")),
            "manufacturer": _as_text(parsed.get("manufacturer")),
        }
    )
    insight["medical_info"]["warnings"] = _as_list(parsed.get("warnings"))
    insight["tablet_details"]["imprint"] = _as_text(parsed.get("imprint"))
    return insight


def normalize_medicine_insight(parsed: dict, raw_text: str = "", source: str = "vision") -> dict:
    """Coerce a model JSON object into the insight shape; missing keys keep defaults."""
    insight = default_insight(raw_text, source=source)
    if not parsed:
        return insight

    if "drugName" in parsed and "medicine" not in parsed:
        return _from_flat_response(parsed, insight)

    medicine = _section(parsed, "medicine")
    tablet = _section(parsed, "tablet_details")
    packaging = _section(parsed, "packaging_details")
    medical = _section(parsed, "medical_info")
    notes = _section(parsed, "insights")
    flags = _section(parsed, "risk_flags")

    insight["is_valid"] = _as_bool(parsed["is_valid"]) if "is_valid" in parsed else True
    insight["image_type"] = _as_text(parsed.get("image_type"))
    insight["identified"] = _as_bool(parsed.get("identified"))
    insight["confidence_score"] = min(max(_as_float(parsed.get("confidence_score")), 0.0), 1.0)
    insight["needs_human_review"] = (
        _as_bool(parsed["needs_human_review"]) if "needs_human_review" in parsed else True
    )

    insight["medicine"].update(
        {
            "brand_name": _as_text(medicine.get("brand_name")) or UNKNOWN_NAME,
            "generic_name": _as_list(medicine.get("generic_name")),
            "strength": _as_text(medicine.get("strength")),
            "dosage_form": _as_text(medicine.get("dosage_form")),
            "manufacturer": _as_text(medicine.get("manufacturer")),
        }
    )
    insight["tablet_details"].update(
        {
            "color": _as_text(tablet.get("color")),
            "shape": _as_text(tablet.get("shape")),
            "imprint": _as_text(tablet.get("imprint")),
            "coating": _as_text(tablet.get("coating")),
            "scored": _as_bool(tablet.get("scored")),
        }
    )
    for key in insight["packaging_details"]:
        insight["packaging_details"][key] = _as_text(packaging.get(key))

    for key in ("uses", "common_side_effects", "serious_side_effects", "warnings", "interactions"):
        insight["medical_info"][key] = _as_list(medical.get(key))
    insight["medical_info"]["how_it_works"] = _as_text(medical.get("how_it_works"))

    risk_level = _as_text(notes.get("safety_risk_level")).lower()
    insight["insights"].update(
        {
            "summary": _as_text(notes.get("summary")),
            "safety_risk_level": risk_level if risk_level in RISK_LEVELS else "low",
            "overdose_risk": _as_text(notes.get("overdose_risk")),
            "addiction_potential": _as_bool(notes.get("addiction_potential")),
            "when_to_see_doctor": _as_text(notes.get("when_to_see_doctor")),
        }
    )
    for key in insight["risk_flags"]:
        insight["risk_flags"][key] = _as_bool(flags.get(key))

    return insight


def image_data_uri(image_bytes: bytes, mime_type: str | None) -> str:
    mime = (mime_type or "image/jpeg").split(";")[0].strip()
    if not mime.startswith("image/"):
        mime = "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(image_bytes).decode('utf-8')}"


def _openrouter_client() -> OpenAI:
    api_key = current_app.config.get("OPENROUTER_API_KEY")
    if not api_key:
        raise ScanServiceError("OPENROUTER_API_KEY is not configured.")
    return OpenAI(
        api_key=api_key,
        base_url=current_app.config["OPENROUTER_BASE_URL"],
        default_headers={
            "HTTP-Referer": current_app.config.get("OPENROUTER_REFERER") or "",
            "X-Title": current_app.config.get("OPENROUTER_APP_TITLE") or "Zenarog",
        },
    )


def _complete(messages: list[dict], *, model: str, max_tokens: int, temperature: float) -> str:
    client = _openrouter_client()
    try:
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
    except openai.APIStatusError as exc:
        raise ScanServiceError(f"API error: {exc.status_code}", status_code=exc.status_code) from exc
    except openai.APIError as exc:
        raise ScanServiceError(f"Request to the model provider failed: {exc}") from exc

    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


def analyze_medication_image(image_bytes: bytes, mime_type: str | None) -> dict:
    if not image_bytes:
        raise ScanServiceError("No image data was provided.")

    image_url = image_data_uri(image_bytes, mime_type)
    text = _complete(
        [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": MEDICINE_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }
        ],
        model=current_app.config["VISION_MODEL"],
        max_tokens=current_app.config["VISION_MAX_TOKENS"],
        temperature=current_app.config["VISION_TEMPERATURE"],
    )
    return normalize_medicine_insight(extract_json_object(text), raw_text=text, source="vision")


def build_chat_conversation(history: Sequence[dict[str, Any]], user_message: str) -> list[dict]:
    conversation = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
    for item in history:
        role = item.get("role")
        content = item.get("content")
        if role not in {"user", "assistant"} or not content:
            continue
        conversation.append({"role": role, "content": content})
    conversation.append({"role": "user", "content": user_message})
    return conversation


def send_chat_message(history: Sequence[dict[str, Any]], user_message: str) -> str:
    reply = _complete(
        build_chat_conversation(history, user_message),
        model=current_app.config["CHAT_MODEL"],
        max_tokens=current_app.config["CHAT_MAX_TOKENS"],
        temperature=current_app.config["CHAT_TEMPERATURE"],
    )
    return reply.strip() or CHAT_FALLBACK_REPLY
