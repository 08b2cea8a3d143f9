"""Tests for line splitting and the inclusion filter."""

import pytest

from markscan.models import ImageDimensions, Rect, SourceBackend
from markscan.ocr.postprocess import (
    FilterRule,
    InclusionFilter,
    LinePostProcessor,
    split_merged_line,
)
from tests.fakes import line

DIMS = ImageDimensions(1000, 1400)

# =============================================================================
# SPLITTING TESTS
# =============================================================================


class TestSplitMergedLine:
    """Tests for split_merged_line()."""

    def test_no_marker(self):
        original = line("x = 4")
        assert split_merged_line(original) == [original]

    def test_split_distributes_height(self):
        original = line(r"3x + 5 = 17 \\ 3x = 12 \\ x = 4", x=120, y=300, width=260, height=90)

        parts = split_merged_line(original)

        assert [p.text for p in parts] == ["3x + 5 = 17", "3x = 12", "x = 4"]
        assert sum(p.region.height for p in parts) == pytest.approx(90)
        assert all(p.region.x == 120 and p.region.width == 260 for p in parts)
        assert [p.region.y for p in parts] == pytest.approx([300, 330, 360])

    def test_array_markup_stripped(self):
        original = line(r"\[\begin{array}{l}x+1=2 \\ x=1\end{array}\]", height=40)
        parts = split_merged_line(original)
        assert [p.text for p in parts] == ["x+1=2", "x=1"]

    def test_empty_fragments_discarded(self):
        parts = split_merged_line(line(r"x = 1 \\ \\  \\ y = 2", height=60))
        assert [p.text for p in parts] == ["x = 1", "y = 2"]
        assert parts[0].region.height == pytest.approx(30)

    def test_only_markers(self):
        assert split_merged_line(line(r"\\ \\")) == []

    def test_split_keeps_provenance(self):
        original = line(r"a=1 \\ b=2", source=SourceBackend.VISION, confidence=0.4)
        parts = split_merged_line(original)
        assert all(p.source == SourceBackend.VISION and p.confidence == 0.4 for p in parts)


# =============================================================================
# INCLUSION FILTER TESTS
# =============================================================================


class TestInclusionFilter:
    """Tests for InclusionFilter.classify()."""

    @pytest.fixture
    def inclusion(self):
        return InclusionFilter()

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("", FilterRule.EMPTY),
            ("   ", FilterRule.EMPTY),
            ("(Total for Question 4 is 3 marks)", FilterRule.FOOTER),
            ("12", FilterRule.PAGE_NUMBER),
            ("7", FilterRule.PAGE_NUMBER),
            ("3x + 5 = 17", FilterRule.EQUATION),
            ("so x = 4 because we divide both sides by three here", FilterRule.EQUATION),
            ("12 x 45", FilterRule.MATH_EXPRESSION),
            ("£5.40", FilterRule.MATH_EXPRESSION),
            ("2n + 1", FilterRule.MATH_EXPRESSION),
            (r"\(42\)", FilterRule.STANDALONE_NUMBER),
            ("1,250.5", FilterRule.STANDALONE_NUMBER),
            ("I think the answer is obviously 2 + 2 or maybe more", FilterRule.AMBIGUOUS),
            ("Answer", FilterRule.AMBIGUOUS),
        ],
    )
    def test_rules(self, inclusion, text, expected):
        assert inclusion.classify(line(text, y=500), DIMS) == expected

    def test_kept_rules(self):
        assert FilterRule.EQUATION.keeps
        assert FilterRule.STANDALONE_NUMBER.keeps
        assert not FilterRule.MARGIN.keeps
        assert not FilterRule.AMBIGUOUS.keeps

    def test_margin_prose(self, inclusion):
        footer_line = line("Turn over", x=100, y=1360, height=30)
        assert inclusion.classify(footer_line, DIMS) == FilterRule.MARGIN

    def test_equation_in_margin_is_kept(self, inclusion):
        assert inclusion.keep(line("x = 4", x=100, y=1360, height=30), DIMS)

    def test_long_number_dropped(self, inclusion):
        assert not inclusion.keep(line("12345678901"), DIMS)


# =============================================================================
# POST-PROCESSOR TESTS
# =============================================================================


class TestLinePostProcessor:
    """Tests for LinePostProcessor.process()."""

    @pytest.fixture
    def post(self):
        return LinePostProcessor()

    def test_keeps_work_drops_noise(self, post):
        lines = [
            line("3x + 5 = 17", y=300),
            line("12", y=360),
            line("Some printed prose about the diagram", y=420),
            line("(Total for Question 4 is 3 marks)", y=480),
        ]

        result = post.process(lines, DIMS)

        assert [kept.text for kept in result.lines] == ["3x + 5 = 17"]
        assert {rule for _, rule in result.dropped} == {
            FilterRule.PAGE_NUMBER,
            FilterRule.AMBIGUOUS,
            FilterRule.FOOTER,
        }

    def test_split_then_filter(self, post):
        result = post.process([line(r"x + 1 = 5 \\ Name", height=60)], DIMS)
        assert [kept.text for kept in result.lines] == ["x + 1 = 5"]
        assert len(result.dropped) == 1

    def test_math_gated_lines_bypass_filter(self, post):
        gated = line("Answer", source=SourceBackend.VISION, math_gated=True)
        result = post.process([gated], DIMS)
        assert result.lines == [gated]

    def test_returns_new_list(self, post):
        lines = [line("x = 1")]
        result = post.process(lines, DIMS)
        assert result.lines is not lines
        assert result.lines[0].region == Rect(100, 100, 300, 40)
