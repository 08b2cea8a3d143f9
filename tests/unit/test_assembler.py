"""Tests for output assembly and the result model."""

from types import SimpleNamespace

import pytest

from markscan.models import (
    Diagnostics,
    ImageDimensions,
    LookupEntry,
    PipelineResult,
    SourceBackend,
)
from markscan.ocr.assembler import OutputAssembler
from tests.fakes import line


class TestOutputAssembler:
    """Tests for OutputAssembler.assemble()."""

    @pytest.fixture
    def assembler(self):
        return OutputAssembler()

    def test_sequential_ids(self, assembler):
        steps, lookup = assembler.assemble(
            [line("3x = 12", y=100), line("x = 4", y=200), line("x = 4", y=300)]
        )
        assert [step.id for step in steps] == ["step_1", "step_2", "step_3"]
        assert set(lookup) == {"step_1", "step_2", "step_3"}

    def test_lookup_round_trip(self, assembler):
        steps, lookup = assembler.assemble(
            [line("3x + 5 = 17", x=120, y=300, width=260, height=45), line("x = 4", y=400)]
        )
        for step in steps:
            entry = lookup[step.id]
            assert list(entry.bbox) == step.bbox
            assert entry.text == step.text
        assert lookup["step_1"] == LookupEntry(bbox=(120.0, 300.0, 260.0, 45.0), text="3x + 5 = 17")

    def test_ids_have_no_gaps_after_drops(self, assembler):
        broken = SimpleNamespace(text="x = 9", region=None)
        steps, lookup = assembler.assemble([line("a = 1"), line("   "), broken, line("b = 2")])
        assert [(step.id, step.text) for step in steps] == [("step_1", "a = 1"), ("step_2", "b = 2")]
        assert list(lookup) == ["step_1", "step_2"]

    def test_confidence_uses_overlay(self, assembler):
        item = line("x = 4", confidence=0.5, source=SourceBackend.MATH).with_confidence(0.85)
        steps, _ = assembler.assemble([item])
        assert steps[0].confidence == 0.85

    def test_handwriting_tag_carried(self, assembler):
        steps, _ = assembler.assemble([line("x = 4").with_handwriting(True)])
        assert steps[0].is_handwritten is True

    def test_empty(self, assembler):
        assert assembler.assemble([]) == ([], {})


class TestPipelineResult:
    """Tests for PipelineResult helpers."""

    @pytest.fixture
    def result(self):
        steps, lookup = OutputAssembler().assemble(
            [line("3x = 12", y=100, confidence=0.8), line("x = 4", y=200, confidence=0.6)]
        )
        return PipelineResult(
            steps=steps,
            lookup=lookup,
            dimensions=ImageDimensions(1000, 1400),
            diagnostics=Diagnostics(math_calls=1),
        )

    def test_text_and_confidence(self, result):
        assert result.text == "3x = 12\nx = 4"
        assert result.confidence == pytest.approx(0.7)

    def test_get_step(self, result):
        assert result.get_step("step_2").text == "x = 4"
        assert result.get_step("step_9") is None

    def test_to_dict(self, result):
        data = result.to_dict()
        assert data["steps"][0] == {
            "id": "step_1",
            "text": "3x = 12",
            "bbox": [100.0, 100.0, 300.0, 40.0],
            "confidence": 0.8,
            "is_handwritten": None,
        }
        assert data["lookup"]["step_2"] == {"bbox": [100.0, 200.0, 300.0, 40.0], "text": "x = 4"}
        assert data["dimensions"] == {"width": 1000, "height": 1400}
        assert data["diagnostics"]["boundary_method"] == "none"
        assert data["diagnostics"]["math_calls"] == 1

    def test_empty_result(self):
        empty = PipelineResult(steps=[], lookup={}, dimensions=ImageDimensions(10, 10))
        assert empty.text == ""
        assert empty.confidence == 0.0
