"""
Exception classes for MarkScan.

All MarkScan exceptions inherit from MarkScanError,
making it easy to catch all library errors.

Only TotalFailureError is raised out of the segmentation pipeline.
The other categories are raised by adapters and absorbed by the
pipeline stages that know how to degrade.

Example:
    >>> try:
    ...     result = pipeline.process(image_bytes, question_text)
    ... except markscan.TotalFailureError as e:
    ...     print(f"Page could not be read: {e}")
"""


class MarkScanError(Exception):
    """
    Base exception for all MarkScan errors.

    Catch this to handle any MarkScan-specific error.
    """

    pass


class BackendUnavailableError(MarkScanError):
    """
    Raised when a recognition backend is unreachable or returns a malformed envelope.

    Timeouts are reported through this error as well.
    """

    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"{backend}: {message}")


class NoUsableDataError(MarkScanError):
    """Raised when a backend call succeeds but yields zero usable lines."""

    pass


class GeometryInvalidError(MarkScanError):
    """
    Raised when a bounding box cannot be parsed or is degenerate.

    Never escapes the pipeline: the affected line is dropped.
    """

    pass


class TotalFailureError(MarkScanError):
    """
    Raised when both recognition strategies produced zero lines.

    Example:
        >>> pipeline.process(blank_page)
        TotalFailureError: Both recognition strategies were exhausted ...
    """

    pass


class ConfigurationError(MarkScanError):
    """
    Raised for invalid configuration files.

    Example:
        >>> load_config("bad.yaml")
        ConfigurationError: Unknown configuration section 'orderin'
    """

    pass
