"""
Minimal client for the Hugging Face hosted inference API.
"""

import logging

import httpx

from .errors import CollaboratorError

logger = logging.getLogger("dubstudio")


class HuggingFaceClient:
    """POSTs JSON or raw bytes to ``<base_url>/<model>`` with a bearer token."""

    def __init__(
        self,
        token: str | None,
        base_url: str = "https://api-inference.huggingface.co/models",
        timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": "dubstudio/0.1"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    def query(
        self,
        model: str,
        payload,
        *,
        binary_input: bool = False,
        binary_output: bool = False,
        error_cls: type[CollaboratorError] = CollaboratorError,
    ):
        """Run one inference call; failures raise ``error_cls`` with the API's message."""
        try:
            if binary_input:
                resp = self._client.post(
                    model, content=payload, headers={"Content-Type": "application/octet-stream"}
                )
            else:
                resp = self._client.post(model, json=payload)
        except httpx.HTTPError as e:
            raise error_cls(f"Hugging Face request to {model} failed: {e}") from e

        if resp.status_code != 200:
            try:
                body = resp.json()
            except ValueError:
                body = None
            detail = body.get("error") if isinstance(body, dict) else None
            detail = detail or resp.text[:300] or resp.reason_phrase
            logger.error(f"Hugging Face {model} returned {resp.status_code}: {detail}")
            raise error_cls(f"Hugging Face API error ({resp.status_code}): {detail}")

        if binary_output:
            return resp.content
        try:
            return resp.json()
        except ValueError as e:
            raise error_cls(f"Hugging Face {model} returned invalid JSON") from e
