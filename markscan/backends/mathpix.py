"""
Math-aware recognition backend (Mathpix v3/text).

Used twice by the orchestrator:
- once on the full page with per-line data (primary strategy)
- once per cropped region during the fallback strategy

Transport errors, timeouts, non-2xx statuses and non-JSON bodies are
reported as BackendUnavailableError. An ``error`` field in an otherwise
valid body is passed through on the MathResponse.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import requests

from markscan.backends.base import MathBackend, MathRequestOptions, MathResponse
from markscan.config import BACKEND_TIMEOUT_S, MATHPIX_BASE_URL
from markscan.exceptions import BackendUnavailableError

logger = logging.getLogger(__name__)

TEXT_ENDPOINT = "/v3/text"


def _to_data_url(image: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(image).decode("ascii")


class MathpixBackend(MathBackend):
    """
    Mathpix OCR client.

    Attributes:
        app_id: Mathpix application id.
        app_key: Mathpix application key.
        base_url: API root.
        timeout: Per-request timeout in seconds.

    Example:
        >>> backend = MathpixBackend(app_id="my_app", app_key="...")
        >>> response = backend.recognize(png_bytes)
        >>> response.best_text
        'x^{2}+5=14'
    """

    name = "mathpix"

    def __init__(
        self,
        app_id: str | None,
        app_key: str | None,
        base_url: str = MATHPIX_BASE_URL,
        timeout: float = BACKEND_TIMEOUT_S,
        session: requests.Session | None = None,
    ):
        self.app_id = app_id
        self.app_key = app_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def is_available(self) -> bool:
        return bool(self.app_id and self.app_key)

    def _build_payload(self, image: bytes, options: MathRequestOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "src": _to_data_url(image),
            "formats": list(options.formats),
        }
        if options.include_line_data:
            payload["include_line_data"] = True
        if options.disable_array_detection:
            payload["disable_array_detection"] = True
        return payload

    def recognize(
        self, image: bytes, options: MathRequestOptions | None = None
    ) -> MathResponse:
        if not self.is_available:
            raise BackendUnavailableError(self.name, "credentials not configured")

        options = options or MathRequestOptions()
        url = f"{self.base_url}{TEXT_ENDPOINT}"

        try:
            response = self._session.post(
                url,
                headers={
                    "app_id": self.app_id,
                    "app_key": self.app_key,
                    "Content-Type": "application/json",
                },
                json=self._build_payload(image, options),
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise BackendUnavailableError(self.name, f"timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise BackendUnavailableError(self.name, f"request failed: {e}") from e

        if not response.ok:
            raise BackendUnavailableError(
                self.name, f"HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise BackendUnavailableError(self.name, "response body is not JSON") from e

        if not isinstance(body, dict):
            raise BackendUnavailableError(self.name, "response body is not an object")

        return self._parse_body(body)

    def _parse_body(self, body: dict[str, Any]) -> MathResponse:
        lines = body.get("line_data") or []
        if not isinstance(lines, list):
            raise BackendUnavailableError(self.name, "line_data is not a list")

        confidence = body.get("confidence")
        error = body.get("error")
        if error is not None and not isinstance(error, str):
            error = str(error)

        logger.debug(
            "Mathpix returned %d lines (confidence=%s, error=%s)",
            len(lines),
            confidence,
            error,
        )

        return MathResponse(
            lines=[line for line in lines if isinstance(line, dict)],
            text=body.get("text") or "",
            latex_styled=body.get("latex_styled") or "",
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            error=error,
        )
