import logging
import re
from typing import Any

import httpx

from app.models import UNKNOWN_NAME

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.fda.gov/drug"
LIST_FIELDS = [
    "purpose",
    "indications_and_usage",
    "warnings",
    "adverse_reactions",
    "drug_interactions",
]
OPENFDA_LIST_FIELDS = [
    "brand_name",
    "generic_name",
    "manufacturer_name",
    "product_type",
    "dosage_form",
    "route",
]


def clean_drug_name(name: str | None) -> str:
    return re.sub(r"[^\w\s]", "", (name or "").strip()).strip()


def label_search_queries(name: str) -> list[str]:
    """Exact brand, exact generic, then prefix-wildcard variants, in that order."""
    return [
        f'openfda.brand_name:"{name}"',
        f'openfda.generic_name:"{name}"',
        f"openfda.brand_name:{name}*",
        f"openfda.generic_name:{name}*",
    ]


def _string_list(value) -> list[str]:
    if value in (None, ""):
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [str(value).strip()]


def _parse_active_ingredients(label: dict[str, Any]) -> list[dict[str, str]]:
    # Labels carry free text like "Active ingredient (in each tablet) Acetaminophen 500 mg".
    parsed = []
    openfda = label.get("openfda") or {}
    substances = _string_list(openfda.get("substance_name"))
    for entry in _string_list(label.get("active_ingredient")):
        text = re.sub(r"(?i)^active ingredients?\s*(\([^)]*\))?\s*", "", entry).strip()
        strength_match = re.search(r"\d+(?:\.\d+)?\s*(?:mg|mcg|g|ml|iu|%)", text, flags=re.IGNORECASE)
        strength = strength_match.group(0) if strength_match else ""
        name = text[: strength_match.start()].strip(" ,;:") if strength_match else text
        if name or strength:
            parsed.append({"name": name, "strength": strength})
    if not parsed:
        parsed = [{"name": substance, "strength": ""} for substance in substances]
    return parsed


def normalize_label(label: dict[str, Any]) -> dict[str, Any]:
    openfda = label.get("openfda") if isinstance(label.get("openfda"), dict) else {}
    record: dict[str, Any] = {}
    for field in OPENFDA_LIST_FIELDS:
        record[field] = _string_list(openfda.get(field) or label.get(field))
    for field in LIST_FIELDS:
        record[field] = _string_list(label.get(field))
    record["active_ingredients"] = _parse_active_ingredients(label)
    return record


def _fetch_labels(query: str, *, base_url: str, limit: int, timeout: float) -> list[dict]:
    response = httpx.get(
        f"{base_url.rstrip('/')}/label.json",
        params={"search": query, "limit": limit},
        timeout=timeout,
        headers={"User-Agent": "Zenarog/1.0 (+drug-label-lookup)"},
    )
    response.raise_for_status()
    data = response.json()
    results = data.get("results") if isinstance(data, dict) else None
    return results if isinstance(results, list) else []


def search_drug_labels(
    drug_name: str | None,
    *,
    base_url: str = DEFAULT_BASE_URL,
    limit: int = 3,
    timeout: float = 8.0,
) -> list[dict[str, Any]]:
    """Look a name up in the openFDA label database.

    Queries are tried one after another until one returns a result. Any
    failure (network, HTTP status, malformed body) counts as "no result"
    for that query, so an empty list means nothing matched anywhere.
    """
    if not drug_name or drug_name == UNKNOWN_NAME:
        return []

    name = clean_drug_name(drug_name)
    if not name:
        return []

    for query in label_search_queries(name):
        try:
            results = _fetch_labels(query, base_url=base_url, limit=limit, timeout=timeout)
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("openFDA lookup skipped for %r (%s): %s", name, query, exc)
            continue
        if results:
            return [normalize_label(row) for row in results if isinstance(row, dict)]
    return []
