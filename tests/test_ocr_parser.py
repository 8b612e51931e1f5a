import io
import unittest
from unittest.mock import patch

from PIL import Image

from app.ai import ScanServiceError
from app.identification import resolve_with_imprint
from app.ocr import (
    FOLLOW_INSTRUCTIONS,
    NAME_FROM_FIRST_LINE,
    NAME_FROM_LIST,
    SEE_PACKAGING,
    insight_from_ocr,
    parse_dosage,
    parse_drug_name,
    parse_ocr_text,
    parse_warnings,
    recognize_text,
)


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (16, 16), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


class OcrParserTestCase(unittest.TestCase):
    def test_strip_label_fields(self):
        parsed = parse_ocr_text("DOLO 650\nParacetamol Tablets IP 650 mg\nMFG: Micro Labs Ltd\n")
        self.assertEqual(parsed["drug_name"], "PARACETAMOL")
        self.assertEqual(parsed["active_ingredients"], "PARACETAMOL")
        self.assertEqual(parsed["dosage"], "650 mg")
        self.assertEqual(parsed["manufacturer"], "Micro Labs Ltd")
        self.assertEqual(parsed["warnings"], FOLLOW_INSTRUCTIONS)

    def test_empty_text_falls_back_to_defaults(self):
        parsed = parse_ocr_text("")
        self.assertEqual(parsed["drug_name"], "Unknown")
        self.assertEqual(parsed["dosage"], SEE_PACKAGING)
        self.assertEqual(parsed["manufacturer"], SEE_PACKAGING)
        self.assertEqual(parsed["active_ingredients"], SEE_PACKAGING)
        self.assertEqual(parsed["warnings"], FOLLOW_INSTRUCTIONS)

    def test_earlier_line_wins_over_list_order(self):
        self.assertEqual(parse_drug_name(["Take with IBUPROFEN", "PARACETAMOL 500mg"]), "IBUPROFEN")

    def test_list_order_decides_within_a_line(self):
        self.assertEqual(parse_drug_name(["aspirin and paracetamol"]), "PARACETAMOL")

    def test_uppercase_header_line_is_used_when_no_known_name(self):
        self.assertEqual(parse_drug_name(["123", "CROCIN ADVANCE", "Tablets 500mg"]), "CROCIN ADVANCE")

    def test_header_bounds_are_exclusive(self):
        self.assertEqual(parse_drug_name(["ABC", "ABCD"]), "ABCD")

    def test_header_with_mg_is_skipped(self):
        self.assertEqual(parse_drug_name(["XYZMG FORTE", "lower case line"]), "XYZMG FORTE")
        self.assertEqual(parse_drug_name(["XYZMG FORTE", "ZENTEL"]), "ZENTEL")

    def test_dosage_keeps_original_spelling(self):
        self.assertEqual(parse_dosage("Strength 10 MG per tab"), "10 MG")
        self.assertEqual(parse_dosage("Cyanocobalamin 500 mcg"), "500 mcg")
        self.assertEqual(parse_dosage("Syrup 5 ml twice"), "5 ml")
        self.assertEqual(parse_dosage("no numbers here"), "")

    def test_earlier_unit_pattern_wins_over_text_position(self):
        self.assertEqual(parse_dosage("Vitamin 500 mcg, 10 mg"), "10 mg")
        self.assertEqual(parse_dosage("B12 500 mcg with folic acid 5 mg"), "5 mg")
        self.assertEqual(parse_dosage("5 g in 10 ml"), "5 g")
        self.assertEqual(parse_dosage("10 ml contains 2 g"), "2 g")
        self.assertEqual(parse_dosage("400 IU per 250 mcg"), "250 mcg")

    def test_warnings_use_first_matching_pattern(self):
        text = "Store in a cool place.\nstore away from children\nWARNING: may cause drowsiness"
        self.assertEqual(parse_warnings(text), "Store in a cool place. store away from children")

    def test_insight_from_known_name(self):
        insight = insight_from_ocr(parse_ocr_text("Paracetamol Tablets IP 650 mg\nMFG: Micro Labs Ltd\n"))
        self.assertEqual(insight["source"], "ocr")
        self.assertTrue(insight["identified"])
        self.assertEqual(insight["confidence_score"], 0.5)
        self.assertEqual(insight["medicine"]["brand_name"], "PARACETAMOL")
        self.assertEqual(insight["medicine"]["generic_name"], ["PARACETAMOL"])
        self.assertEqual(insight["medicine"]["strength"], "650 mg")
        self.assertEqual(insight["medicine"]["manufacturer"], "Micro Labs Ltd")

    def test_insight_from_unknown_header_keeps_imprint(self):
        insight = insight_from_ocr(parse_ocr_text("DOLO\nbatch 12\n"))
        self.assertFalse(insight["identified"])
        self.assertEqual(insight["medicine"]["strength"], "")
        self.assertEqual(insight["tablet_details"]["imprint"], "DOLO")

    def test_first_line_fallback_is_not_an_imprint(self):
        parsed = parse_ocr_text("Made in Japan\nbatch 12\n")
        self.assertEqual(parsed["drug_name"], "Made in Japan")
        self.assertEqual(parsed["name_source"], NAME_FROM_FIRST_LINE)

        insight = insight_from_ocr(parsed)
        self.assertEqual(insight["tablet_details"]["imprint"], "")
        self.assertIsNone(resolve_with_imprint(insight, floor=0.7))

    def test_known_name_is_not_an_imprint(self):
        parsed = parse_ocr_text("AMOXICILLIN capsules\n")
        self.assertEqual(parsed["name_source"], NAME_FROM_LIST)
        self.assertEqual(insight_from_ocr(parsed)["tablet_details"]["imprint"], "")

    def test_recognize_text_requires_some_text(self):
        with patch("app.ocr.pytesseract.image_to_string", return_value="  ab \n"):
            with self.assertRaises(ScanServiceError) as ctx:
                recognize_text(_png_bytes())
        self.assertIn("No text detected", str(ctx.exception))

    def test_recognize_text_returns_engine_output(self):
        with patch("app.ocr.pytesseract.image_to_string", return_value="PARACETAMOL 500 mg\n"):
            self.assertEqual(recognize_text(_png_bytes()), "PARACETAMOL 500 mg\n")

    def test_recognize_text_rejects_non_images(self):
        with self.assertRaises(ScanServiceError):
            recognize_text(b"definitely not an image")


if __name__ == "__main__":
    unittest.main()
