"""
Command-line entry point.

Usage:
    markscan page.png --question-file question.txt
    markscan page.png --config markscan.yaml --strategy fallback --json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from markscan.config import VALID_STRATEGIES, PipelineConfig, load_config
from markscan.exceptions import ConfigurationError, TotalFailureError
from markscan.models import PipelineResult
from markscan.ocr.pipeline import create_pipeline

logger = logging.getLogger(__name__)

EXIT_TOTAL_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markscan",
        description="Extract the student's work from a photographed exam page",
    )
    parser.add_argument("image", type=Path, help="Page image (PNG or JPEG)")
    parser.add_argument(
        "--question-file", type=Path, help="Text file with the printed question transcript"
    )
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument(
        "--strategy", choices=VALID_STRATEGIES, help="Recognition strategy (default: auto)"
    )
    parser.add_argument(
        "--no-handwriting", action="store_true", help="Skip handwriting detection"
    )
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def _load(args: argparse.Namespace) -> PipelineConfig:
    config = load_config(args.config) if args.config else PipelineConfig()
    if args.strategy:
        config = replace(config, strategy=args.strategy)
    if args.no_handwriting:
        config = replace(config, handwriting=replace(config.handwriting, enabled=False))
    return config


def format_steps(result: PipelineResult) -> str:
    if not result.steps:
        return "(no student work found)"
    return "\n".join(f"{step.id}: {step.text}" for step in result.steps)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _load(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        image = args.image.read_bytes()
        question_text = None
        if args.question_file:
            question_text = args.question_file.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Cannot read input: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    pipeline = create_pipeline(config)
    try:
        result = pipeline.process(image, question_text)
    except TotalFailureError as e:
        logger.debug("Processing failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_TOTAL_FAILURE

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_steps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
