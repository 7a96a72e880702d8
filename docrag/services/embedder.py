# =============================================================================
# Embedding Client — OpenAI-Compatible Embeddings API
# =============================================================================
#
# Used only by the vector store backends: callers hand the store plain text
# and the store turns it into vectors here. Any provider exposing the OpenAI
# embeddings endpoint works by setting EMBEDDING_BASE_URL.
#
# Texts are sent in sub-batches of settings.embedding_batch_size. The output
# list is always aligned with the input list.
#
# DESIGN DECISION: Vectors are placed by response.data[j].index, not by
# arrival order, so a provider that reorders items cannot misalign them.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

from openai import OpenAI

from docrag.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Client — Lazy Singleton
# ---------------------------------------------------------------------------
# Key resolution: OPENAI_API_KEY, then LLM_API_KEY (one key shared by the
# generator and embeddings on OpenAI-compatible providers).
# ---------------------------------------------------------------------------

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        api_key = settings.openai_api_key or settings.llm_api_key
        if not api_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": api_key}
        if settings.embedding_base_url:
            client_kwargs["base_url"] = settings.embedding_base_url

        _client = OpenAI(**client_kwargs)
        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            settings.embedding_model,
            settings.embedding_base_url or "https://api.openai.com/v1",
        )
    return _client


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def embed_batch(
    texts: Sequence[str],
    batch_size: int | None = None,
) -> list[list[float]]:
    """
    Embed texts, returning one vector per input in input order.

    Raises:
        ValueError: No API key is configured.
        openai.APIError: The embeddings call failed.
    """
    if not texts:
        return []

    client = _get_client()
    size = batch_size or settings.embedding_batch_size
    vectors: list[list[float]] = [[] for _ in texts]

    for offset in range(0, len(texts), size):
        batch = list(texts[offset : offset + size])
        logger.debug(
            "Embedding texts %d-%d of %d (model=%s)",
            offset + 1, offset + len(batch), len(texts), settings.embedding_model,
        )

        request: dict = {"model": settings.embedding_model, "input": batch}
        if settings.embedding_dimensions:
            request["dimensions"] = settings.embedding_dimensions

        response = client.embeddings.create(**request)

        # Items carry their position within the batch
        for item in response.data:
            vectors[offset + item.index] = item.embedding

    logger.info(
        "Generated %d embeddings (model=%s, dimensions=%d)",
        len(texts), settings.embedding_model, settings.embedding_dimensions,
    )
    return vectors


def embed_query(text: str) -> list[float]:
    """Embed a single search query."""
    return embed_batch([text], batch_size=1)[0]
