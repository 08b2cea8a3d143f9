"""
Configuration for MarkScan work segmentation.

Every heuristic threshold used by the pipeline is declared here as a
named constant and exposed through a dataclass default, so deployments
can tune behaviour from a YAML file without touching code.

Example:
    >>> config = PipelineConfig(
    ...     ordering=OrderingConfig(primary_overlap=0.4),
    ...     strategy="primary",
    ... )
    >>> pipeline = create_pipeline(config)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

import yaml

from markscan.exceptions import ConfigurationError

# =============================================================================
# CONSTANTS
# =============================================================================

# Margin bands, as fractions of the image size
MARGIN_VERTICAL_FRACTION = 0.05  # top and bottom
MARGIN_RIGHT_FRACTION = 0.10

# Boundary detection
QUESTION_SIMILARITY_THRESHOLD = 0.80
INSTRUCTION_KEYWORDS = (
    "work out",
    "calculate",
    "explain",
    "show that",
    "find the",
    "write down",
)
MIN_INSTRUCTION_WORDS = 3

# Inclusion filter
FOOTER_MARKER = "total for question"
MAX_PAGE_NUMBER_LENGTH = 3
MAX_MATH_EXPRESSION_WORDS = 7
MAX_STANDALONE_NUMBER_LENGTH = 10

# Reading order
PRIMARY_ROW_OVERLAP = 0.30
FALLBACK_ROW_OVERLAP = 0.10

# Handwriting correlation
HANDWRITING_COVERAGE_THRESHOLD = 0.30

# Recognition
MATH_LIKENESS_THRESHOLD = 0.35
FAST_PATH_CONFIDENCE = 0.90
CROP_PADDING_PX = 4
INTER_CALL_DELAY_S = 0.2
CLUSTER_EPS_PX = 60.0
CLUSTER_MIN_POINTS = 2
BACKEND_TIMEOUT_S = 30.0

# Backends
MATHPIX_BASE_URL = "https://api.mathpix.com"
MATHPIX_APP_ID_ENV = "MATHPIX_APP_ID"
MATHPIX_APP_KEY_ENV = "MATHPIX_APP_KEY"
GOOGLE_CREDENTIALS_ENV = "GOOGLE_APPLICATION_CREDENTIALS"

Strategy = Literal["auto", "primary", "fallback"]
VALID_STRATEGIES = ("auto", "primary", "fallback")


def _check_fraction(name: str, value: float) -> None:
    if value < 0.0 or value > 1.0:
        raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")


# =============================================================================
# SECTIONS
# =============================================================================


@dataclass
class MarginConfig:
    """Page margin bands where fragments are treated as scan noise."""

    vertical: float = MARGIN_VERTICAL_FRACTION
    right: float = MARGIN_RIGHT_FRACTION

    def __post_init__(self):
        """Validate configuration."""
        _check_fraction("margin.vertical", self.vertical)
        _check_fraction("margin.right", self.right)


@dataclass
class BoundaryConfig:
    """Question/answer boundary detection."""

    similarity_threshold: float = QUESTION_SIMILARITY_THRESHOLD
    instruction_keywords: tuple[str, ...] = INSTRUCTION_KEYWORDS
    min_instruction_words: int = MIN_INSTRUCTION_WORDS

    def __post_init__(self):
        """Validate configuration."""
        _check_fraction("boundary.similarity_threshold", self.similarity_threshold)
        self.instruction_keywords = tuple(kw.lower() for kw in self.instruction_keywords)
        if self.min_instruction_words < 1:
            raise ValueError(
                f"min_instruction_words must be >= 1, got {self.min_instruction_words}"
            )


@dataclass
class FilterConfig:
    """Inclusion filter applied to per-line recognition output."""

    footer_marker: str = FOOTER_MARKER
    max_page_number_length: int = MAX_PAGE_NUMBER_LENGTH
    max_math_expression_words: int = MAX_MATH_EXPRESSION_WORDS
    max_standalone_number_length: int = MAX_STANDALONE_NUMBER_LENGTH

    def __post_init__(self):
        """Validate configuration."""
        self.footer_marker = self.footer_marker.lower()
        for name in (
            "max_page_number_length",
            "max_math_expression_words",
            "max_standalone_number_length",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")


@dataclass
class OrderingConfig:
    """Same-row tolerance for the reading-order sort."""

    primary_overlap: float = PRIMARY_ROW_OVERLAP
    fallback_overlap: float = FALLBACK_ROW_OVERLAP

    def __post_init__(self):
        """Validate configuration."""
        _check_fraction("ordering.primary_overlap", self.primary_overlap)
        _check_fraction("ordering.fallback_overlap", self.fallback_overlap)


@dataclass
class HandwritingConfig:
    """Optional handwriting enrichment."""

    enabled: bool = True
    coverage_threshold: float = HANDWRITING_COVERAGE_THRESHOLD

    def __post_init__(self):
        """Validate configuration."""
        _check_fraction("handwriting.coverage_threshold", self.coverage_threshold)


@dataclass
class RecognitionConfig:
    """Recognition strategy tuning."""

    math_likeness_threshold: float = MATH_LIKENESS_THRESHOLD
    fast_path_confidence: float = FAST_PATH_CONFIDENCE
    crop_padding: int = CROP_PADDING_PX
    inter_call_delay: float = INTER_CALL_DELAY_S
    cluster_eps: float = CLUSTER_EPS_PX
    cluster_min_points: int = CLUSTER_MIN_POINTS
    timeout: float = BACKEND_TIMEOUT_S

    def __post_init__(self):
        """Validate configuration."""
        _check_fraction("recognition.math_likeness_threshold", self.math_likeness_threshold)
        _check_fraction("recognition.fast_path_confidence", self.fast_path_confidence)
        if self.crop_padding < 0:
            raise ValueError(f"crop_padding must be >= 0, got {self.crop_padding}")
        if self.inter_call_delay < 0:
            raise ValueError(f"inter_call_delay must be >= 0, got {self.inter_call_delay}")
        if self.cluster_eps <= 0:
            raise ValueError(f"cluster_eps must be > 0, got {self.cluster_eps}")
        if self.cluster_min_points < 1:
            raise ValueError(f"cluster_min_points must be >= 1, got {self.cluster_min_points}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")


@dataclass
class BackendConfig:
    """Backend endpoints and credentials."""

    mathpix_app_id: str | None = None
    mathpix_app_key: str | None = None
    mathpix_base_url: str = MATHPIX_BASE_URL
    google_credentials: str | None = None

    @classmethod
    def from_env(cls) -> BackendConfig:
        """Read credentials from the environment."""
        return cls(
            mathpix_app_id=os.environ.get(MATHPIX_APP_ID_ENV) or None,
            mathpix_app_key=os.environ.get(MATHPIX_APP_KEY_ENV) or None,
            google_credentials=os.environ.get(GOOGLE_CREDENTIALS_ENV) or None,
        )


@dataclass
class PipelineConfig:
    """
    Configuration for the work segmentation pipeline.

    All options have sensible defaults. Create a config only
    if you need to customize behavior.

    Example:
        >>> config = PipelineConfig(handwriting=HandwritingConfig(enabled=False))
        >>> result = create_pipeline(config).process(image_bytes)
    """

    strategy: Strategy = "auto"
    margin: MarginConfig = field(default_factory=MarginConfig)
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    ordering: OrderingConfig = field(default_factory=OrderingConfig)
    handwriting: HandwritingConfig = field(default_factory=HandwritingConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    backends: BackendConfig = field(default_factory=BackendConfig.from_env)

    def __post_init__(self):
        """Validate configuration."""
        if self.strategy not in VALID_STRATEGIES:
            raise ValueError(
                f"strategy must be one of {VALID_STRATEGIES}, got {self.strategy!r}"
            )


# =============================================================================
# LOADING
# =============================================================================

_SECTIONS: dict[str, type] = {
    "margin": MarginConfig,
    "boundary": BoundaryConfig,
    "filter": FilterConfig,
    "ordering": OrderingConfig,
    "handwriting": HandwritingConfig,
    "recognition": RecognitionConfig,
    "backends": BackendConfig,
}


def _build_section(name: str, cls: type, values: Any) -> Any:
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in section '{name}': {sorted(unknown)}")

    if "instruction_keywords" in values:
        values = {**values, "instruction_keywords": tuple(values["instruction_keywords"])}

    try:
        return cls(**values)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid section '{name}': {e}") from e


def config_from_dict(data: dict[str, Any]) -> PipelineConfig:
    """
    Build a PipelineConfig from a plain mapping.

    Missing sections keep their defaults. Backend credentials not given
    in the mapping are taken from the environment.

    Args:
        data: Mapping with optional ``strategy`` and section keys.

    Returns:
        Validated PipelineConfig.

    Raises:
        ConfigurationError: On unknown sections, unknown keys or invalid values.
    """
    unknown = set(data) - set(_SECTIONS) - {"strategy"}
    if unknown:
        raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")

    kwargs: dict[str, Any] = {}
    for name, cls in _SECTIONS.items():
        if name in data:
            kwargs[name] = _build_section(name, cls, data[name])

    if "backends" in kwargs:
        env = BackendConfig.from_env()
        given = kwargs["backends"]
        for f in fields(BackendConfig):
            if getattr(given, f.name) is None:
                setattr(given, f.name, getattr(env, f.name))

    if "strategy" in data:
        kwargs["strategy"] = data["strategy"]

    try:
        return PipelineConfig(**kwargs)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def load_config(path: str | Path) -> PipelineConfig:
    """
    Load pipeline configuration from a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Validated PipelineConfig.

    Raises:
        ConfigurationError: If the file is missing, unparseable or invalid.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return PipelineConfig()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")

    return config_from_dict(data)
