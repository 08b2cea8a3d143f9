"""
End-to-end tests for SegmentationPipeline with in-memory fake backends.
"""

import base64
import threading
import time

import pytest

from markscan import SegmentationPipeline, TotalFailureError, create_pipeline
from markscan.backends.base import MathResponse
from markscan.config import HandwritingConfig, RecognitionConfig
from markscan.exceptions import BackendUnavailableError
from markscan.models import BoundaryMethod, Rect
from tests.fakes import (
    FakeCropProvider,
    FakeMathBackend,
    FakeVisionBackend,
    fragment,
    math_line,
)

pytestmark = pytest.mark.integration

QUESTION = "Work out 2 + 2\nShow your working"


def _pipeline(math, vision, config):
    return SegmentationPipeline(
        math_backend=math,
        vision_backend=vision,
        crop_provider=FakeCropProvider(),
        config=config,
    )


def _primary_page():
    return MathResponse(
        lines=[
            math_line("Work out 2 + 2", 100, 100),
            math_line("Show your working", 100, 160),
            math_line("2+2=4", 100, 400),
            math_line("12", 480, 1300, width=40),
        ]
    )


class TestPrimaryPath:
    """Tests for pages read by the math recognizer."""

    def test_student_work_only(self, page_image, test_config):
        math = FakeMathBackend(page=_primary_page())
        vision = FakeVisionBackend()

        result = _pipeline(math, vision, test_config).process(page_image, QUESTION)

        assert [step.to_dict() for step in result.steps] == [
            {
                "id": "step_1",
                "text": "2+2=4",
                "bbox": [100.0, 400.0, 300.0, 40.0],
                "confidence": 0.95,
                "is_handwritten": False,
            }
        ]
        assert result.lookup["step_1"].text == "2+2=4"
        assert vision.recognize_calls == 0

    def test_diagnostics(self, page_image, test_config):
        math = FakeMathBackend(page=_primary_page())

        result = _pipeline(math, FakeVisionBackend(), test_config).process(page_image, QUESTION)

        diagnostics = result.diagnostics
        assert diagnostics.strategy == "primary"
        assert diagnostics.used_fallback is False
        assert diagnostics.math_calls == 1
        assert diagnostics.vision_calls == 0
        assert diagnostics.boundary_index == 2
        assert diagnostics.boundary_method == BoundaryMethod.FUZZY
        assert diagnostics.lines_recognized == 4
        assert diagnostics.lines_filtered == 1
        assert diagnostics.handwriting_signal is True
        assert diagnostics.processing_time_ms >= 0

    def test_without_transcript_boundary_is_zero(self, page_image, test_config):
        math = FakeMathBackend(page=_primary_page())
        result = _pipeline(math, FakeVisionBackend(), test_config).process(page_image)
        assert result.diagnostics.boundary_index == 0
        assert result.text == "Work out 2 + 2\n2+2=4"

    def test_question_only_page(self, page_image, test_config):
        math = FakeMathBackend(
            page=MathResponse(
                lines=[
                    math_line("Work out 2 + 2", 100, 100),
                    math_line("Show your working", 100, 160),
                ]
            )
        )
        result = _pipeline(math, FakeVisionBackend(), test_config).process(page_image, QUESTION)
        assert result.steps == []
        assert result.lookup == {}

    def test_merged_rows_are_split_and_ordered(self, page_image, test_config):
        math = FakeMathBackend(
            page=MathResponse(
                lines=[
                    math_line(r"3x + 5 = 17 \\ 3x = 12", 100, 400, height=80),
                    math_line("x = 4", 100, 500),
                ]
            )
        )
        result = _pipeline(math, FakeVisionBackend(), test_config).process(page_image)
        assert [(s.id, s.text) for s in result.steps] == [
            ("step_1", "3x + 5 = 17"),
            ("step_2", "3x = 12"),
            ("step_3", "x = 4"),
        ]
        assert result.steps[1].bbox == [100.0, 440.0, 300.0, 40.0]

    def test_base64_input(self, page_image, test_config):
        math = FakeMathBackend(page=_primary_page())
        encoded = "data:image/png;base64," + base64.b64encode(page_image).decode()

        result = _pipeline(math, FakeVisionBackend(), test_config).process(encoded, QUESTION)

        assert math.calls[0][0] == page_image
        assert result.text == "2+2=4"


class TestFallbackPath:
    """Tests for pages read by layout recognition."""

    def test_fallback_end_to_end(self, page_image, test_config):
        math = FakeMathBackend(
            page=BackendUnavailableError("fake_math", "connection refused"),
            regions=[MathResponse(latex_styled="x=4", confidence=0.9)],
        )
        vision = FakeVisionBackend(
            fragments=[
                fragment("x = 12 / 3", 100, 460, confidence=0.5),
                fragment("3x + 5 = 17", 100, 200, confidence=0.95),
                fragment("3x = 17 - 5", 100, 400, confidence=0.95),
            ],
            handwriting=[Rect(80, 380, 400, 70)],
        )

        result = _pipeline(math, vision, test_config).process(page_image, "3x + 5 = 17")

        assert [(s.id, s.text, s.is_handwritten) for s in result.steps] == [
            ("step_1", "3x = 17 - 5", True),
            ("step_2", "x=4", False),
        ]
        assert result.steps[1].confidence == 0.9
        assert result.diagnostics.strategy == "fallback"
        assert result.diagnostics.used_fallback is True
        assert result.diagnostics.math_calls == 2
        assert result.diagnostics.vision_calls == 1
        assert result.diagnostics.boundary_index == 1

    def test_strategy_override(self, page_image, test_config):
        math = FakeMathBackend(page=_primary_page())
        vision = FakeVisionBackend(fragments=[fragment("y = 2 + 3", 100, 400, confidence=0.95)])

        result = _pipeline(math, vision, test_config).process(page_image, strategy="fallback")

        assert math.calls == []
        assert result.text == "y = 2 + 3"

    def test_invalid_strategy(self, page_image, test_config):
        pipeline = _pipeline(FakeMathBackend(), FakeVisionBackend(), test_config)
        with pytest.raises(ValueError, match="strategy"):
            pipeline.process(page_image, strategy="fastest")


class TestDegradation:
    """Tests for failure handling."""

    def test_both_backends_fail(self, page_image, test_config):
        math = FakeMathBackend(page=BackendUnavailableError("fake_math", "connection refused"))
        vision = FakeVisionBackend(fail_recognize=True)

        with pytest.raises(TotalFailureError, match="Both recognition strategies"):
            _pipeline(math, vision, test_config).process(page_image, QUESTION)

    def test_handwriting_failure_is_absorbed(self, page_image, test_config):
        math = FakeMathBackend(page=_primary_page())
        vision = FakeVisionBackend(fail_handwriting=True)

        result = _pipeline(math, vision, test_config).process(page_image, QUESTION)

        assert result.text == "2+2=4"
        assert result.steps[0].is_handwritten is None
        assert result.diagnostics.handwriting_signal is False

    def test_handwriting_disabled(self, page_image, test_config):
        test_config.handwriting = HandwritingConfig(enabled=False)
        vision = FakeVisionBackend()

        result = _pipeline(FakeMathBackend(page=_primary_page()), vision, test_config).process(
            page_image, QUESTION
        )

        assert vision.handwriting_calls == 0
        assert result.diagnostics.handwriting_signal is False

    def test_idempotent(self, page_image, test_config):
        first = _pipeline(FakeMathBackend(page=_primary_page()), FakeVisionBackend(), test_config)
        second = _pipeline(FakeMathBackend(page=_primary_page()), FakeVisionBackend(), test_config)
        assert (
            first.process(page_image, QUESTION).to_dict()["steps"]
            == second.process(page_image, QUESTION).to_dict()["steps"]
        )


class TestCreatePipeline:
    """Tests for the convenience constructors."""

    def test_service_status_without_credentials(self, test_config):
        status = create_pipeline(test_config).get_service_status()
        assert status["math"] == {"name": "mathpix", "available": False}
        assert status["vision"] == {"name": "google_vision", "available": False}
        assert status["handwriting"] is False

    def test_credentials_from_config(self, test_config):
        test_config.backends.mathpix_app_id = "app"
        test_config.backends.mathpix_app_key = "key"
        pipeline = create_pipeline(test_config)
        assert pipeline.math_backend.is_available
        assert pipeline.math_backend.timeout == test_config.recognition.timeout


class SlowHandwritingVision(FakeVisionBackend):
    """Handwriting detector that blocks until released."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = threading.Event()

    def detect_handwriting(self, image):
        self.release.wait(timeout=3.0)
        return super().detect_handwriting(image)


class SignallingVision(FakeVisionBackend):
    """Handwriting detector that announces it has started."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = threading.Event()

    def detect_handwriting(self, image):
        self.started.set()
        return super().detect_handwriting(image)


class WaitingMathBackend(FakeMathBackend):
    """Math recognizer that waits for the handwriting detector before answering."""

    def __init__(self, detector_started, **kwargs):
        super().__init__(**kwargs)
        self.detector_started = detector_started
        self.saw_detector = None

    def recognize(self, image, options=None):
        if self.saw_detector is None:
            self.saw_detector = self.detector_started.wait(timeout=2.0)
        return super().recognize(image, options)


class TestParallelHandwriting:
    """Tests for the handwriting detector running beside recognition."""

    @pytest.fixture
    def short_timeout_config(self, test_config):
        test_config.recognition = RecognitionConfig(inter_call_delay=0.0, timeout=0.5)
        return test_config

    def test_detector_starts_before_recognition_returns(self, page_image, test_config):
        vision = SignallingVision(handwriting=[Rect(80, 380, 400, 70)])
        math = WaitingMathBackend(vision.started, page=_primary_page())

        result = _pipeline(math, vision, test_config).process(page_image, QUESTION)

        assert math.saw_detector is True
        assert result.steps[0].is_handwritten is True

    def test_slow_detector_does_not_hold_result(self, page_image, short_timeout_config):
        vision = SlowHandwritingVision()
        pipeline = _pipeline(FakeMathBackend(page=_primary_page()), vision, short_timeout_config)

        try:
            started = time.monotonic()
            result = pipeline.process(page_image, QUESTION)
            elapsed = time.monotonic() - started
        finally:
            vision.release.set()

        assert elapsed < 2.0
        assert result.text == "2+2=4"
        assert result.steps[0].is_handwritten is None
        assert result.diagnostics.handwriting_signal is False

    def test_total_failure_not_held_by_detector(self, page_image, short_timeout_config):
        math = FakeMathBackend(page=BackendUnavailableError("fake_math", "connection refused"))
        vision = SlowHandwritingVision(fail_recognize=True)
        pipeline = _pipeline(math, vision, short_timeout_config)

        try:
            started = time.monotonic()
            with pytest.raises(TotalFailureError):
                pipeline.process(page_image, QUESTION)
            elapsed = time.monotonic() - started
        finally:
            vision.release.set()

        assert elapsed < 2.0
