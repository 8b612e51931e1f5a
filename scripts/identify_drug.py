import argparse
import json
import mimetypes
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app
from app.ai import ScanServiceError
from app.identification import DEFAULT_RESOLVERS, identify_medication, run_scan_pipeline
from app.ocr import insight_from_ocr, parse_ocr_text

TEXT_SUFFIXES = {".txt", ".text"}


def main():
    parser = argparse.ArgumentParser(
        description="Identify a medicine from label text or a photo and print the merged record as JSON."
    )
    parser.add_argument("path", help="Label text file (.txt) or medicine photo.")
    parser.add_argument(
        "--engine",
        choices=["vision", "ocr"],
        default=None,
        help="Photo reader to use (default: SCAN_ENGINE from the environment).",
    )
    parser.add_argument(
        "--no-label-lookup",
        action="store_true",
        help="Skip the openFDA label lookup and only use the imprint dictionary.",
    )
    parser.add_argument(
        "--parsed-only",
        action="store_true",
        help="For text input, print the raw OCR parse without resolving.",
    )
    args = parser.parse_args()

    source = Path(args.path)
    if not source.is_file():
        parser.error(f"{source} does not exist")

    resolvers = DEFAULT_RESOLVERS
    if args.no_label_lookup:
        resolvers = [entry for entry in DEFAULT_RESOLVERS if entry[0] != "label_database"]

    app = create_app()
    with app.app_context():
        try:
            if source.suffix.lower() in TEXT_SUFFIXES:
                parsed = parse_ocr_text(source.read_text(encoding="utf-8", errors="replace"))
                if args.parsed_only:
                    print(json.dumps(parsed, indent=2))
                    return
                result = identify_medication(insight_from_ocr(parsed), resolvers)
            elif args.no_label_lookup:
                parser.error("--no-label-lookup only applies to text input")
            else:
                mime_type = mimetypes.guess_type(source.name)[0]
                result = run_scan_pipeline(source.read_bytes(), mime_type, args.engine)
        except ScanServiceError as exc:
            print(f"Scan failed: {exc}", file=sys.stderr)
            sys.exit(1)

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
