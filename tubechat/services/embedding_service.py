import logging
from typing import Protocol

from openai import OpenAI

from tubechat.config import Settings

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Maps texts to embedding vectors, one per input, in order."""

    def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbedder:
    """Embeddings via the OpenAI API, sent in batches of ``batch_size`` texts.

    Transient API failures (rate limits, 5xx, timeouts) are retried by the
    client itself with exponential backoff, up to ``max_retries`` times.
    """

    def __init__(self, settings: Settings):
        if not settings.openai_api_key:
            raise ValueError("No OpenAI API key configured. Set OPENAI_API_KEY.")
        self.client = OpenAI(
            api_key=settings.openai_api_key,
            max_retries=settings.max_retries,
        )
        self.model = settings.embedding_model
        self.batch_size = settings.embedding_batch_size

    def embed(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            response = self.client.embeddings.create(model=self.model, input=batch)
            ordered = sorted(response.data, key=lambda d: d.index)
            vectors.extend(d.embedding for d in ordered)
            logger.debug(
                "Embedded batch %d-%d (%d tokens)",
                start, start + len(batch), response.usage.total_tokens,
            )
        return vectors
