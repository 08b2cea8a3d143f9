"""
Output assembly: step identifiers and the bbox lookup table.
"""

from __future__ import annotations

import logging
import math

from markscan.exceptions import GeometryInvalidError
from markscan.models import LookupEntry, RecognizedLine, StudentWorkStep

logger = logging.getLogger(__name__)

STEP_ID_PREFIX = "step_"


def step_id(n: int) -> str:
    return f"{STEP_ID_PREFIX}{n}"


class OutputAssembler:
    """
    Maps sorted lines to student work steps.

    Ids are assigned after invalid lines are dropped, so they are always
    ``step_1 .. step_n`` without gaps.

    Example:
        >>> steps, lookup = OutputAssembler().assemble(sorted_lines)
        >>> lookup[steps[0].id].text == steps[0].text
        True
    """

    def _build_step(self, line: RecognizedLine, n: int) -> tuple[StudentWorkStep, LookupEntry]:
        bbox = tuple(float(v) for v in line.region.to_bbox())
        if len(bbox) != 4 or not all(math.isfinite(v) for v in bbox):
            raise GeometryInvalidError(f"Non-finite bbox {bbox}")
        if bbox[2] <= 0 or bbox[3] <= 0:
            raise GeometryInvalidError(f"Degenerate bbox {bbox}")

        identifier = step_id(n)
        step = StudentWorkStep(
            id=identifier,
            text=line.text,
            bbox=list(bbox),
            confidence=line.effective_confidence,
            is_handwritten=line.is_handwritten,
        )
        return step, LookupEntry(bbox=bbox, text=line.text)

    def assemble(
        self, lines: list[RecognizedLine]
    ) -> tuple[list[StudentWorkStep], dict[str, LookupEntry]]:
        """
        Build steps and the id -> {bbox, text} lookup.

        A line whose entry cannot be built is skipped; assembly continues.

        Args:
            lines: Lines in final reading order.

        Returns:
            Tuple of (steps, lookup).
        """
        steps: list[StudentWorkStep] = []
        lookup: dict[str, LookupEntry] = {}

        for line in lines:
            if not line.text or not line.text.strip():
                continue
            try:
                step, entry = self._build_step(line, len(steps) + 1)
            except (GeometryInvalidError, AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping line %r: %s", str(line.text)[:40], e)
                continue
            steps.append(step)
            lookup[step.id] = entry

        return steps, lookup
