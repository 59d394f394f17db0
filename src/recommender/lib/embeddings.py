"""Embedding providers: turn text into fixed-length vectors.

Three variants share the :class:`EmbeddingProvider` interface:

* :class:`RemoteEmbeddingProvider` calls an OpenAI-compatible HTTP endpoint.
* :class:`LocalFallbackProvider` derives a pseudo-embedding from a string
  hash. It is stable and free, but carries no meaning: similarity between
  two texts is effectively random (though repeatable).
* :class:`CustomEmbeddingProvider` is a placeholder that always raises.

The variant is chosen once, at startup, by :func:`build_embedding_provider`.
"""

import logging
import math
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from ..errors import ProviderUnavailable

logger = logging.getLogger(__name__)

# Providers cap input size; longer text is cut before sending.
MAX_INPUT_CHARS = 8000

LOCAL_EMBEDDING_DIM = 384

# Hash vectors get their own model key so they never share records with a
# remote model of another dimension.
LOCAL_MODEL = f"local-hash-{LOCAL_EMBEDDING_DIM}"

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_ENDPOINT = "https://api.openai.com/v1/embeddings"

REMOTE_PROVIDERS = ("openai", "remote")


@dataclass(frozen=True)
class EmbeddingConfig:
    """Which provider to use and how to reach it."""

    provider: str = "local"
    model: str = LOCAL_MODEL
    api_key: str | None = None
    endpoint: str | None = None


def truncate_text(text: str) -> str:
    """Cut *text* to at most ``MAX_INPUT_CHARS`` characters."""
    if len(text) > MAX_INPUT_CHARS:
        return text[:MAX_INPUT_CHARS]
    return text


def embeddings_enabled(config: EmbeddingConfig) -> bool:
    """True when a real (semantic) provider is configured and usable."""
    if config.provider in REMOTE_PROVIDERS:
        return bool(config.api_key)
    return config.provider == "custom"


class EmbeddingProvider(ABC):
    """Abstract base class for embedding backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def embed(self, text: str, config: EmbeddingConfig) -> list[float]:
        """Return the embedding vector of *text*.

        Implementations must truncate with :func:`truncate_text` and raise
        :class:`ProviderUnavailable` when no vector can be produced.
        """
        ...


class RemoteEmbeddingProvider(EmbeddingProvider):
    """Calls ``POST {model, input}`` on an OpenAI-compatible endpoint."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 5.0):
        self._client = client
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "remote"

    async def embed(self, text: str, config: EmbeddingConfig) -> list[float]:
        if not config.api_key:
            raise ProviderUnavailable("Embedding API key not configured")

        endpoint = config.endpoint or DEFAULT_ENDPOINT
        payload = {"model": config.model, "input": truncate_text(text)}
        headers = {"Authorization": f"Bearer {config.api_key}"}

        try:
            resp = await self._client.post(
                endpoint, json=payload, headers=headers, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Embedding request failed: {exc!r}") from exc

        if not resp.is_success:
            raise ProviderUnavailable(
                f"Embedding API error: {resp.status_code} {resp.reason_phrase}"
            )

        try:
            vector = resp.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderUnavailable("Malformed embedding API response") from exc
        return [float(x) for x in vector]


def string_hash(text: str) -> int:
    """32-bit signed ``hash * 31 + unit`` rolling hash over UTF-16 code units.

    Characters outside the BMP contribute their two surrogates, so the hash
    matches the one the web app computes for the same text.
    """
    data = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for unit in struct.unpack(f"<{len(data) // 2}H", data):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


class LocalFallbackProvider(EmbeddingProvider):
    """Deterministic hash-based pseudo-embedding (degraded mode)."""

    def __init__(self, dim: int = LOCAL_EMBEDDING_DIM):
        self._dim = dim
        self._warned = False

    @property
    def name(self) -> str:
        return "local"

    async def embed(self, text: str, config: EmbeddingConfig) -> list[float]:
        if not self._warned:
            logger.warning(
                "Using hash-based fallback embeddings; similarity results are not semantic"
            )
            self._warned = True
        h = string_hash(truncate_text(text))
        return [math.sin(h + i) * 0.5 for i in range(self._dim)]


class CustomEmbeddingProvider(EmbeddingProvider):
    """Extension point for in-house embedding services."""

    @property
    def name(self) -> str:
        return "custom"

    async def embed(self, text: str, config: EmbeddingConfig) -> list[float]:
        raise NotImplementedError("Custom embedding provider not implemented")


def build_embedding_provider(
    config: EmbeddingConfig,
    client: httpx.AsyncClient | None = None,
    timeout: float = 5.0,
) -> EmbeddingProvider:
    """Instantiate the provider named by ``config.provider``."""
    if config.provider in REMOTE_PROVIDERS:
        if client is None:
            raise ValueError("Remote embedding provider needs an HTTP client")
        if not config.api_key:
            logger.warning("Remote embedding provider configured without an API key")
        return RemoteEmbeddingProvider(client, timeout=timeout)
    if config.provider == "local":
        return LocalFallbackProvider()
    if config.provider == "custom":
        return CustomEmbeddingProvider()
    raise ValueError(f"Unknown embedding provider: {config.provider}")
