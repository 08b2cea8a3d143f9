#!/usr/bin/env python3
"""
Basic MarkScan Usage Example

This example demonstrates the core workflow:
1. Extract student work from a photographed page
2. Tune the heuristics with a custom configuration
3. Re-locate steps on the page with the lookup table
4. Check backend availability and handle total failure

Credentials are read from MATHPIX_APP_ID, MATHPIX_APP_KEY and
GOOGLE_APPLICATION_CREDENTIALS.
"""

import json
from pathlib import Path

from markscan import (
    HandwritingConfig,
    OrderingConfig,
    PipelineConfig,
    TotalFailureError,
    create_pipeline,
    get_service_status,
)


def main():
    image = Path("path/to/page.jpg").read_bytes()
    question = "Solve 3x + 5 = 17\nShow your working clearly."

    # ─────────────────────────────────────────────────────────────────────────
    # 1. Basic Extraction
    # ─────────────────────────────────────────────────────────────────────────

    pipeline = create_pipeline()
    result = pipeline.process(image, question_text=question)

    for step in result.steps:
        print(f"{step.id}: {step.text}  (confidence {step.confidence:.2f})")
    print(f"  Strategy: {result.diagnostics.strategy}")
    print(f"  Boundary: line {result.diagnostics.boundary_index}")

    # ─────────────────────────────────────────────────────────────────────────
    # 2. Custom Configuration
    # ─────────────────────────────────────────────────────────────────────────

    config = PipelineConfig(
        strategy="auto",
        ordering=OrderingConfig(primary_overlap=0.4),  # Stricter same-row grouping
        handwriting=HandwritingConfig(enabled=False),  # Skip the extra detector call
    )
    result = create_pipeline(config).process(image, question_text=question)

    # ─────────────────────────────────────────────────────────────────────────
    # 3. Lookup Table
    # ─────────────────────────────────────────────────────────────────────────

    if result.steps:
        entry = result.lookup[result.steps[-1].id]
        x, y, width, height = entry.bbox
        print(f"Final answer {entry.text!r} at ({x:.0f}, {y:.0f}), {width:.0f}x{height:.0f}")

    Path("result.json").write_text(json.dumps(result.to_dict(), indent=2))

    # ─────────────────────────────────────────────────────────────────────────
    # 4. Service Status and Failure
    # ─────────────────────────────────────────────────────────────────────────

    print(get_service_status())

    try:
        create_pipeline().process(b"not really an image")
    except TotalFailureError as e:
        print(f"Page could not be read: {e}")


if __name__ == "__main__":
    main()
