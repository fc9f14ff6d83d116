"""
CLI tool: run the extractor over one clinical note and print the result JSON.

Usage:
    python -m apps.extractor.run_note NOTE.txt [--config cfg.json] [--validate]
    python -m apps.extractor.run_note - < note.txt

Prior context (earlier structured facts) can be passed with --prior, a JSON
file matching StructuredFacts.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Extract entities and a timeline from a clinical note.",
    )
    parser.add_argument("note", help="Path to a UTF-8 text note, or '-' for stdin")
    parser.add_argument("--config", default=None, help="ExtractionConfig JSON file (default: $EXTRACTION_CONFIG)")
    parser.add_argument("--prior", default=None, help="StructuredFacts JSON file with prior context")
    parser.add_argument("--reference-date", default=None, help="ISO date used to infer years for year-less dates")
    parser.add_argument("--validate", action="store_true", help="Validate the output against the JSON schema")
    parser.add_argument("--out", default=None, help="Write JSON here instead of stdout")
    args = parser.parse_args(argv)

    from packages.shared.config import load_config
    from packages.shared.models import ExtractionOptions, StructuredFacts
    from packages.shared.schema_validator import validate_output
    from apps.extractor.pipeline import extract

    if args.note == "-":
        text = sys.stdin.read()
    else:
        note_path = Path(args.note)
        if not note_path.exists():
            print(f"ERROR: note not found at {note_path}", file=sys.stderr)
            return 1
        text = note_path.read_text(encoding="utf-8")

    config = load_config(args.config)

    prior = None
    if args.prior:
        with open(args.prior, "r", encoding="utf-8") as f:
            prior = StructuredFacts.model_validate(json.load(f))
    reference_date = date.fromisoformat(args.reference_date) if args.reference_date else None
    options = ExtractionOptions(prior_context=prior, reference_date=reference_date)

    result = extract(text, options, config=config)
    data = result.model_dump(mode="json")

    exit_code = 0
    if args.validate:
        is_valid, messages = validate_output(data)
        if is_valid:
            logger.info("Output matches extraction-result schema")
        else:
            for message in messages:
                logger.error(f"Schema: {message}")
            exit_code = 2

    payload = json.dumps(data, indent=2)
    if args.out:
        Path(args.out).write_text(payload, encoding="utf-8")
        logger.info(f"Wrote {args.out}")
    else:
        print(payload)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
