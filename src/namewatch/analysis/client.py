"""HTTP client for a local Ollama service."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from .errors import AnalysisError, ErrorKind

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
HEALTH_TIMEOUT_SECONDS = 10.0


class OllamaClient:
    """Synchronous wrapper around the Ollama generate and tags endpoints.

    Connection failures, timeouts, and 5xx responses raise transient
    :class:`AnalysisError`; 4xx responses and malformed payloads raise permanent ones.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Ollama base URL; ``/api/generate`` or ``/api/chat`` suffixes are
                stripped.
            timeout: Per-request timeout in seconds.
            transport: Optional transport, used by tests to stub responses.
        """
        self._base_url = _normalize_url(base_url)
        self._timeout = timeout
        self._client = httpx.Client(base_url=self._base_url, timeout=timeout, transport=transport)

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def health_check(self) -> None:
        """Verify that the service answers.

        Raises:
            AnalysisError: Transient error when the service cannot be reached.
        """
        try:
            self._client.get("/api/tags", timeout=HEALTH_TIMEOUT_SECONDS)
        except httpx.HTTPError as exc:
            raise AnalysisError(
                f"Cannot connect to Ollama at {self._base_url}: {exc}",
                kind=ErrorKind.TRANSIENT,
            ) from exc

    def list_models(self) -> List[str]:
        """Return the names of locally installed models."""
        payload = self._request("GET", "/api/tags")
        models = payload.get("models")
        if not isinstance(models, list):
            raise AnalysisError("Malformed model list from Ollama.", kind=ErrorKind.PERMANENT)
        return [str(model.get("name")) for model in models if isinstance(model, dict)]

    def model_available(self, model: str) -> bool:
        """Return whether ``model`` (optionally without a tag) is installed."""
        return any(
            name.startswith(model) or name == f"{model}:latest" for name in self.list_models()
        )

    def generate(self, model: str, prompt: str, *, images: Optional[List[str]] = None) -> str:
        """Run a non-streaming completion and return the response text.

        Args:
            model: Model name.
            prompt: Prompt text.
            images: Base64-encoded images for vision models.

        Returns:
            str: Generated text.

        Raises:
            AnalysisError: On transport failures, error statuses, or malformed replies.
        """
        body: dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
        if images:
            body["images"] = images
        LOGGER.debug("Sending %s request to Ollama: model=%s", "vision" if images else "text", model)
        payload = self._request("POST", "/api/generate", json=body)
        text = payload.get("response")
        if not isinstance(text, str):
            raise AnalysisError("Ollama reply has no response text.", kind=ErrorKind.PERMANENT)
        return text

    def generate_with_image(self, model: str, prompt: str, image_base64: str) -> str:
        """Run a vision completion for one base64-encoded image."""
        return self.generate(model, prompt, images=[image_base64])

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise AnalysisError(
                f"Ollama request timed out after {self._timeout:g}s", kind=ErrorKind.TRANSIENT
            ) from exc
        except httpx.TransportError as exc:
            raise AnalysisError(
                f"Cannot connect to Ollama at {self._base_url}: {exc}", kind=ErrorKind.TRANSIENT
            ) from exc

        if response.status_code >= 500:
            raise AnalysisError(
                f"Ollama returned status {response.status_code}", kind=ErrorKind.TRANSIENT
            )
        if response.status_code >= 400:
            raise AnalysisError(
                f"Ollama rejected the request with status {response.status_code}: "
                f"{response.text[:200]}",
                kind=ErrorKind.PERMANENT,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AnalysisError("Malformed JSON from Ollama.", kind=ErrorKind.PERMANENT) from exc
        if not isinstance(payload, dict):
            raise AnalysisError("Malformed JSON from Ollama.", kind=ErrorKind.PERMANENT)
        return payload


def _normalize_url(url: str) -> str:
    url = url.strip().rstrip("/")
    for suffix in ("/api/generate", "/api/chat"):
        if url.endswith(suffix):
            url = url[: -len(suffix)]
    return url


__all__ = ["OllamaClient", "DEFAULT_BASE_URL"]
