"""Embedding providers — turn text into fixed-length, L2-normalised vectors.

The controller only depends on :class:`EmbeddingProvider`; swap in any
implementation without touching the stores or the controller.

- :class:`HttpEmbeddingProvider` calls an OpenAI-compatible ``/embeddings``
  endpoint and is what :func:`build_embedding_provider` returns.
- :class:`HashingEmbeddingProvider` is a deterministic bag-of-words hash.
  It carries no semantics beyond shared words and exists for tests and
  demos only.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import httpx

from src.config import settings
from src.memory.errors import ConfigurationError, EmbeddingFailure

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


def l2_normalize(vector: Sequence[float]) -> list[float]:
    """Scale *vector* to unit length. A zero vector is returned unchanged."""
    norm = math.sqrt(math.fsum(v * v for v in vector))
    if norm == 0.0:
        return [float(v) for v in vector]
    return [v / norm for v in vector]


class EmbeddingProvider(ABC):
    """Abstract text embedder."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector returned by :meth:`embed`."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return a unit-length vector of length :attr:`dimension` for *text*.

        Raises:
            EmbeddingFailure: the vector could not be produced.
        """


class HashingEmbeddingProvider(EmbeddingProvider):
    """Feature-hashing embedder: each lower-cased word adds ±1 to one bucket.

    Deterministic across processes (sha256, not ``hash()``), so texts that
    share words get a positive cosine similarity and identical texts get 1.
    """

    def __init__(self, dimension: int = 384) -> None:
        if dimension <= 0:
            msg = f"Embedding dimension must be positive, got {dimension}"
            raise ConfigurationError(msg)
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % self._dimension
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    async def embed(self, text: str) -> list[float]:
        tokens = _TOKEN_RE.findall(text.lower()) or [text]
        vector = [0.0] * self._dimension
        for token in tokens:
            index, sign = self._bucket(token)
            vector[index] += sign
        if not any(vector):
            # Every token cancelled out; fall back to the whole text.
            index, sign = self._bucket(text)
            vector[index] = sign
        return l2_normalize(vector)


class HttpEmbeddingProvider(EmbeddingProvider):
    """Embeds via an OpenAI-compatible ``POST {base_url}/embeddings`` endpoint.

    Args:
        base_url: API root, e.g. ``https://api.openai.com/v1``.
        model: Model name sent with each request.
        dimension: Expected vector length; responses of another length fail.
        api_key: Bearer token, if the endpoint needs one.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        dimension: int,
        api_key: str = "",
        timeout: float = 30.0,
    ) -> None:
        self._url = base_url.rstrip("/") + "/embeddings"
        self._model = model
        self._dimension = dimension
        self._api_key = api_key
        self._timeout = timeout

    @property
    def dimension(self) -> int:
        return self._dimension

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def embed(self, text: str) -> list[float]:
        payload = {"model": self._model, "input": text, "dimensions": self._dimension}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload, headers=self._headers())
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Embedding API returned {exc.response.status_code}"
            raise EmbeddingFailure(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Embedding API request failed: {exc}"
            raise EmbeddingFailure(msg) from exc

        try:
            vector = [float(v) for v in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            msg = "Embedding API response has no embedding vector"
            raise EmbeddingFailure(msg) from exc

        if len(vector) != self._dimension:
            msg = f"Expected {self._dimension}-dim embedding, got {len(vector)}"
            raise EmbeddingFailure(msg)
        return l2_normalize(vector)


def build_embedding_provider() -> EmbeddingProvider:
    """Build the configured production provider.

    Raises:
        ConfigurationError: ``EMBEDDING_API_URL`` is not set.
    """
    if not settings.embeddings_configured:
        msg = "EMBEDDING_API_URL is not set; no embedding provider configured"
        raise ConfigurationError(msg)
    logger.info(
        "Embedding provider: %s (%s, %d dims)",
        settings.embedding_api_url,
        settings.embedding_model,
        settings.embedding_dimension,
    )
    return HttpEmbeddingProvider(
        base_url=settings.embedding_api_url,
        model=settings.embedding_model,
        dimension=settings.embedding_dimension,
        api_key=settings.embedding_api_key,
        timeout=settings.embedding_timeout_s,
    )
