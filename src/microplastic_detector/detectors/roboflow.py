"""Roboflow hosted-inference client for the particle detector."""

from __future__ import annotations

import base64
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

import httpx

LOG = logging.getLogger(__name__)
DEFAULT_API_BASE: Final[str] = "https://detect.roboflow.com"
DEFAULT_API_KEY_ENV: Final[str] = "ROBOFLOW_API_KEY"
DEFAULT_MODEL_ID: Final[str] = "microplastic_detection/1"


@dataclass(slots=True)
class RoboflowDetector:
    """Call a Roboflow object-detection model over HTTP.

    Attributes:
        model_id: Roboflow model slug and version (for example,
            "microplastic_detection/1").
        api_base: Base URL of the hosted inference API.
        api_key_env: Name of the environment variable holding the API key.
        timeout_s: Request timeout in seconds.
        client_factory: Factory for the HTTP client (injectable for tests).
    """

    model_id: str = DEFAULT_MODEL_ID
    api_base: str = DEFAULT_API_BASE
    api_key_env: str = DEFAULT_API_KEY_ENV
    timeout_s: float = 60.0
    client_factory: Callable[..., httpx.Client] = httpx.Client

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        Raises:
            ValueError: If the model id is not of the form "<project>/<version>".
        """
        project, _, version = self.model_id.partition("/")
        if not project or not version.isdigit():
            raise ValueError(
                f"Invalid model_id: {self.model_id!r}. Expected '<project>/<version>'."
            )

    def get_api_key(self) -> str:
        """Return the API key from the configured environment variable.

        Raises:
            RuntimeError: If the environment variable is not set.
        """
        api_key = os.getenv(self.api_key_env)
        if not api_key:
            raise RuntimeError(f"{self.api_key_env} environment variable is not set")
        return api_key

    def build_url(self) -> str:
        """Return the inference endpoint URL (without credentials)."""
        return f"{self.api_base.rstrip('/')}/{self.model_id}"

    def detect(self, image_bytes: bytes, api_key: str | None = None) -> dict[str, Any]:
        """Run detection on an encoded image and return the raw JSON payload.

        The payload has the shape
        ``{"image": {"width", "height"}, "predictions": [{x, y, width, height,
        confidence, class}, ...]}`` in absolute pixels.

        Raises:
            RuntimeError: If the API key is missing or the reply is not an object.
            httpx.HTTPError: If the HTTP request fails.
        """
        if api_key is None:
            api_key = self.get_api_key()
        body = base64.b64encode(image_bytes).decode("ascii")
        LOG.info("Requesting detection: model=%s bytes=%s", self.model_id, len(image_bytes))
        with self.client_factory(timeout=self.timeout_s) as client:
            resp = client.post(
                self.build_url(),
                params={"api_key": api_key},
                content=body,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            resp.raise_for_status()
            data = resp.json()
        if not isinstance(data, dict):
            raise RuntimeError(f"Unexpected detection response type: {type(data)!r}")
        LOG.info("Detection response received: predictions=%s", len(data.get("predictions") or []))
        return data
