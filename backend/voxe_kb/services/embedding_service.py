"""
Embedding client for OpenAI-compatible ``/embeddings`` endpoints
(OpenAI, SiliconFlow).

Texts are sent in batches; every response item is matched back to its input
through the ``index`` field. Transient failures (timeouts, connection errors,
429 and 5xx) are retried with bounded exponential backoff via tenacity.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from voxe_kb.core.config import settings
from voxe_kb.core.exceptions import EmbeddingProviderError
from voxe_kb.schemas.embedding import EmbeddingProviderConfig, provider_config_from_settings

logger = structlog.get_logger(__name__)


class EmbeddingProvider(ABC):
    """Anything that turns texts into fixed-length vectors."""

    model: str
    dimensions: int

    @abstractmethod
    async def embed(self, texts: List[str], retry: bool = True) -> List[List[float]]:
        """Return one vector per input text, in input order."""


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, EmbeddingProviderError) and exc.transient


class OpenAICompatibleEmbeddingProvider(EmbeddingProvider):
    def __init__(
        self,
        config: EmbeddingProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.model = config.model
        self.dimensions = config.dimensions
        self._transport = transport

    @property
    def provider(self) -> str:
        return self.config.provider

    def _headers(self) -> Dict[str, str]:
        if self.config.api_key is None or not self.config.api_key.get_secret_value():
            raise EmbeddingProviderError(f"{self.provider} API key not configured")
        return {
            "Authorization": f"Bearer {self.config.api_key.get_secret_value()}",
            "Content-Type": "application/json",
        }

    def _payload(self, batch: List[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": batch,
            "encoding_format": "float",
        }
        if self.config.send_dimensions:
            payload["dimensions"] = self.dimensions
        return payload

    async def _post_batch(self, client: httpx.AsyncClient, batch: List[str]) -> List[List[float]]:
        try:
            response = await client.post(
                f"{self.config.base_url.rstrip('/')}/embeddings",
                headers=self._headers(),
                json=self._payload(batch),
            )
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise EmbeddingProviderError(
                f"Embedding request failed: {e.__class__.__name__}", transient=True
            ) from e

        if response.status_code != 200:
            transient = response.status_code == 429 or response.status_code >= 500
            logger.error(
                "Embedding API error",
                provider=self.provider,
                status=response.status_code,
                detail=response.text[:500],
                transient=transient,
            )
            raise EmbeddingProviderError(
                f"Embedding API error {response.status_code}",
                status=response.status_code,
                transient=transient,
            )

        try:
            items = response.json()["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingProviderError("Malformed embedding response") from e

        return self._reassemble(items, len(batch))

    def _reassemble(self, items: List[Dict[str, Any]], expected: int) -> List[List[float]]:
        if len(items) != expected:
            raise EmbeddingProviderError(
                f"Embedding count mismatch: sent {expected}, got {len(items)}"
            )
        vectors: List[Optional[List[float]]] = [None] * expected
        for position, item in enumerate(items):
            index = item.get("index", position)
            if not isinstance(index, int) or not 0 <= index < expected or vectors[index] is not None:
                raise EmbeddingProviderError(f"Invalid embedding index {index!r}")
            vector = item.get("embedding")
            if not isinstance(vector, list) or len(vector) != self.dimensions:
                got = len(vector) if isinstance(vector, list) else None
                raise EmbeddingProviderError(
                    f"Embedding dimension mismatch: expected {self.dimensions}, got {got}"
                )
            vectors[index] = [float(v) for v in vector]
        return vectors

    async def embed(self, texts: List[str], retry: bool = True) -> List[List[float]]:
        if not texts:
            return []

        attempts = self.config.max_attempts if retry else 1
        vectors: List[List[float]] = []
        async with httpx.AsyncClient(
            timeout=self.config.timeout_seconds, transport=self._transport
        ) as client:
            for start in range(0, len(texts), self.config.batch_size):
                batch = texts[start:start + self.config.batch_size]
                retrying = AsyncRetrying(
                    stop=stop_after_attempt(attempts),
                    wait=wait_exponential(
                        multiplier=self.config.retry_base_delay,
                        max=self.config.retry_max_delay,
                    ),
                    retry=retry_if_exception(_is_transient),
                    reraise=True,
                )
                async for attempt in retrying:
                    with attempt:
                        if attempt.retry_state.attempt_number > 1:
                            logger.warning(
                                "Retrying embedding batch",
                                provider=self.provider,
                                attempt=attempt.retry_state.attempt_number,
                                batch_start=start,
                            )
                        batch_vectors = await self._post_batch(client, batch)
                vectors.extend(batch_vectors)

        logger.info(
            "Generated embeddings",
            provider=self.provider,
            model=self.model,
            count=len(vectors),
        )
        return vectors


def build_embedding_provider(
    config: Optional[EmbeddingProviderConfig] = None,
) -> EmbeddingProvider:
    return OpenAICompatibleEmbeddingProvider(config or provider_config_from_settings(settings))


_provider: Optional[EmbeddingProvider] = None


def get_embedding_provider() -> EmbeddingProvider:
    """Process-wide provider built from settings on first use."""
    global _provider
    if _provider is None:
        _provider = build_embedding_provider()
    return _provider
