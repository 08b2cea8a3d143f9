"""
Pytest configuration and fixtures for MarkScan tests.
"""

import pytest

from markscan.config import BackendConfig, PipelineConfig, RecognitionConfig
from markscan.models import ImageDimensions
from tests.fakes import PAGE_HEIGHT, PAGE_WIDTH, png_bytes


@pytest.fixture
def page_dimensions() -> ImageDimensions:
    return ImageDimensions(PAGE_WIDTH, PAGE_HEIGHT)


@pytest.fixture
def page_image() -> bytes:
    """Return a blank page-sized PNG."""
    return png_bytes(PAGE_WIDTH, PAGE_HEIGHT)


@pytest.fixture
def small_image() -> bytes:
    return png_bytes(200, 100)


@pytest.fixture
def test_config() -> PipelineConfig:
    """Config with no inter-call delay and no credentials from the environment."""
    return PipelineConfig(
        recognition=RecognitionConfig(inter_call_delay=0.0, timeout=5.0),
        backends=BackendConfig(),
    )
