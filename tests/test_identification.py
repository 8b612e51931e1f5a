import tempfile
import unittest
from functools import partial
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx

from app import create_app
from app.ai import ScanServiceError, default_insight
from app.brand_catalog import lookup_by_imprint
from app.drug_reference import label_search_queries, normalize_label, search_drug_labels
from app.identification import (
    display_name,
    identify_medication,
    medication_from_insight,
    resolve_with_imprint,
    resolve_with_label_database,
    run_scan_pipeline,
)

OPENFDA_URL = "https://api.fda.gov/drug/label.json"

CROCIN_LABEL = normalize_label(
    {
        "openfda": {
            "brand_name": ["Crocin"],
            "generic_name": ["ACETAMINOPHEN"],
            "manufacturer_name": ["Haleon"],
            "dosage_form": ["TABLET"],
        },
        "indications_and_usage": ["Temporarily relieves minor aches and pains"],
        "warnings": ["Liver warning: severe liver damage may occur"],
        "adverse_reactions": ["Nausea"],
        "drug_interactions": ["Warfarin"],
        "active_ingredient": ["Active ingredient (in each tablet) Acetaminophen 500 mg"],
    }
)


def _identified(brand: str, **medicine) -> dict:
    insight = default_insight()
    insight["identified"] = True
    insight["confidence_score"] = 0.9
    insight["medicine"]["brand_name"] = brand
    insight["medicine"].update(medicine)
    return insight


def _json_response(payload: dict, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=payload, request=httpx.Request("GET", OPENFDA_URL))


class ImprintDictionaryTestCase(unittest.TestCase):
    def test_imprint_contains_key(self):
        self.assertEqual(lookup_by_imprint("D-O-L-O 650")["brand"], "Dolo 650")
        self.assertEqual(lookup_by_imprint("AMOXICILLIN")["brand"], "Amox")

    def test_key_contains_imprint_needs_three_characters(self):
        self.assertEqual(lookup_by_imprint("zith")["brand"], "Azithral")
        self.assertEqual(lookup_by_imprint("pan")["brand"], "Pan 40")
        self.assertIsNone(lookup_by_imprint("pa"))
        self.assertIsNone(lookup_by_imprint("--"))
        self.assertIsNone(lookup_by_imprint(None))

    def test_imprint_resolver_fills_from_entry(self):
        insight = default_insight()
        insight["tablet_details"]["imprint"] = "DOLO"
        resolved = resolve_with_imprint(insight, floor=0.7)
        self.assertTrue(resolved["identified"])
        self.assertEqual(resolved["confidence_score"], 0.7)
        self.assertEqual(resolved["medicine"]["brand_name"], "Dolo 650")
        self.assertEqual(resolved["medicine"]["strength"], "650mg")
        self.assertEqual(resolved["medical_info"]["uses"], ["Fever", "Pain relief"])

    def test_imprint_resolver_keeps_higher_confidence(self):
        insight = default_insight()
        insight["confidence_score"] = 0.9
        insight["tablet_details"]["imprint"] = "montec lc"
        resolved = resolve_with_imprint(insight, floor=0.7)
        self.assertEqual(resolved["confidence_score"], 0.9)
        self.assertEqual(resolved["medicine"]["brand_name"], "Montec LC")

    def test_imprint_resolver_skips_identified_brands(self):
        insight = _identified("Crocin")
        insight["tablet_details"]["imprint"] = "DOLO"
        self.assertIsNone(resolve_with_imprint(insight, floor=0.7))


class LabelLookupTestCase(unittest.TestCase):
    def test_queries_are_tried_in_order_until_one_matches(self):
        responses = [
            _json_response({"error": {"code": "NOT_FOUND"}}, status=404),
            _json_response({"results": []}),
            _json_response({"results": [{"openfda": {"brand_name": ["Crocin Advance"]}}]}),
        ]
        with patch("app.drug_reference.httpx.get", side_effect=responses) as fake_get:
            labels = search_drug_labels("Crocin!")

        self.assertEqual(fake_get.call_count, 3)
        searched = [call.kwargs["params"]["search"] for call in fake_get.call_args_list]
        self.assertEqual(searched, label_search_queries("Crocin")[:3])
        self.assertEqual(fake_get.call_args_list[0].kwargs["params"]["limit"], 3)
        self.assertEqual(labels[0]["brand_name"], ["Crocin Advance"])

    def test_network_failures_count_as_no_match(self):
        with patch("app.drug_reference.httpx.get", side_effect=httpx.ConnectError("offline")) as fake_get:
            self.assertEqual(search_drug_labels("Crocin"), [])
        self.assertEqual(fake_get.call_count, 4)

    def test_unknown_name_is_not_looked_up(self):
        with patch("app.drug_reference.httpx.get") as fake_get:
            self.assertEqual(search_drug_labels("Unknown"), [])
            self.assertEqual(search_drug_labels(""), [])
        fake_get.assert_not_called()

    def test_label_normalization(self):
        self.assertEqual(CROCIN_LABEL["manufacturer_name"], ["Haleon"])
        self.assertEqual(
            CROCIN_LABEL["active_ingredients"],
            [{"name": "Acetaminophen", "strength": "500 mg"}],
        )
        self.assertEqual(CROCIN_LABEL["route"], [])


class ResolverChainTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        tmp_dir = Path(tempfile.mkdtemp(prefix="zenarog-identify-"))
        cls.app = create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_dir / 'identify.db').as_posix()}",
                "UPLOAD_FOLDER": str(tmp_dir / "uploads"),
                "OPENROUTER_API_KEY": "test-key",
                "ENCRYPTION_MASTER_KEY": None,
            }
        )

    def test_label_merge_only_fills_empty_fields(self):
        insight = _identified("Crocin", manufacturer="GSK Consumer")
        insight["medical_info"]["warnings"] = ["Do not exceed 4 tablets a day"]
        resolvers = [
            ("label_database", partial(resolve_with_label_database, search=lambda name: [CROCIN_LABEL])),
            ("imprint_dictionary", partial(resolve_with_imprint, floor=0.7)),
        ]

        resolved = identify_medication(insight, resolvers)

        self.assertEqual(resolved["medicine"]["manufacturer"], "GSK Consumer")
        self.assertEqual(resolved["medical_info"]["warnings"], ["Do not exceed 4 tablets a day"])
        self.assertEqual(resolved["medicine"]["generic_name"], ["ACETAMINOPHEN"])
        self.assertEqual(resolved["medicine"]["dosage_form"], "TABLET")
        self.assertEqual(resolved["medical_info"]["uses"], ["Temporarily relieves minor aches and pains"])
        self.assertEqual(resolved["medical_info"]["common_side_effects"], ["Nausea"])
        self.assertEqual(resolved["medical_info"]["interactions"], ["Warfarin"])
        self.assertEqual(resolved["resolved_by"], ["label_database"])
        # Input stays untouched.
        self.assertEqual(insight["medicine"]["generic_name"], [])
        self.assertEqual(insight["resolved_by"], [])

    def test_label_resolver_uses_configured_openfda(self):
        with self.app.app_context(), patch(
            "app.drug_reference.httpx.get",
            return_value=_json_response({"results": [{"openfda": {"manufacturer_name": ["Haleon"]}}]}),
        ) as fake_get:
            resolved = resolve_with_label_database(_identified("Crocin"))

        self.assertEqual(resolved["medicine"]["manufacturer"], "Haleon")
        self.assertEqual(fake_get.call_args.args[0], OPENFDA_URL)
        self.assertEqual(fake_get.call_args.kwargs["timeout"], self.app.config["OPENFDA_TIMEOUT_SECONDS"])

    def test_unidentified_candidates_skip_label_lookup(self):
        search = MagicMock(return_value=[CROCIN_LABEL])
        self.assertIsNone(resolve_with_label_database(default_insight(), search=search))
        search.assert_not_called()

    def test_every_resolver_declining_returns_candidate(self):
        insight = default_insight()
        with self.app.app_context():
            resolved = identify_medication(insight)
        self.assertEqual(resolved, insight)
        self.assertIsNot(resolved, insight)
        self.assertEqual(display_name(resolved), "Unknown")

    def test_dolo_imprint_scan_end_to_end(self):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(
                        content='{"drugName":"Unknown","dosage":"","manufacturer":"","imprint":"DOLO"}'
                    )
                )
            ]
        )
        with self.app.app_context(), patch("app.ai.OpenAI", return_value=client), patch(
            "app.drug_reference.httpx.get"
        ) as fake_get:
            result = run_scan_pipeline(b"jpeg bytes", "image/jpeg", "vision")

        fake_get.assert_not_called()
        self.assertEqual(result["medicine"]["brand_name"], "Dolo 650")
        self.assertEqual(result["medicine"]["strength"], "650mg")
        self.assertIn("Fever", result["medical_info"]["uses"])
        self.assertIn("Pain relief", result["medical_info"]["uses"])
        self.assertTrue(result["identified"])
        self.assertEqual(result["confidence_score"], 0.7)
        self.assertEqual(result["resolved_by"], ["imprint_dictionary"])

    def test_ocr_engine_header_resolves_through_imprint(self):
        with self.app.app_context(), patch(
            "app.identification.recognize_text", return_value="DOLO\nbatch 12\n"
        ), patch("app.drug_reference.httpx.get") as fake_get:
            result = run_scan_pipeline(b"png bytes", "image/png", "ocr")

        fake_get.assert_not_called()
        self.assertEqual(result["source"], "ocr")
        self.assertEqual(result["medicine"]["brand_name"], "Dolo 650")

    def test_ocr_engine_ignores_plain_first_line(self):
        with self.app.app_context(), patch(
            "app.identification.recognize_text", return_value="Made in Japan\nbatch 12\n"
        ), patch("app.drug_reference.httpx.get") as fake_get:
            result = run_scan_pipeline(b"png bytes", "image/png", "ocr")

        fake_get.assert_not_called()
        self.assertFalse(result["identified"])
        self.assertEqual(result["medicine"]["brand_name"], "Made in Japan")
        self.assertEqual(result["resolved_by"], [])

    def test_unknown_engine_is_rejected(self):
        with self.app.app_context():
            with self.assertRaises(ScanServiceError):
                run_scan_pipeline(b"img", "image/png", "crystal-ball")

    def test_saved_medication_never_has_empty_name(self):
        insight = default_insight()
        insight["medicine"]["brand_name"] = ""
        med = medication_from_insight(1, insight)
        self.assertEqual(med.name, "Unknown")
        self.assertEqual(med.source, "scan")
        self.assertFalse(med.identified)


if __name__ == "__main__":
    unittest.main()
