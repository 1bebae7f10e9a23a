"""
Embedding Backends
OpenAI embeddings (remote) or a local SentenceTransformer model.
"""

import asyncio
import logging
from typing import List, Optional

from openai import AsyncOpenAI

from .config import WatcherSettings
from .text_normalizer import normalize_basic

logger = logging.getLogger(__name__)

# Upper bound on characters sent per embedding call
MAX_EMBED_CHARS = 8000


class OpenAIEmbedder:
    """Embeds text with the OpenAI embeddings endpoint."""

    def __init__(self, api_key: str, model: str = 'text-embedding-3-small'):
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model

    async def embed(self, text: str) -> Optional[List[float]]:
        response = await self.client.embeddings.create(model=self.model, input=text)
        if not response.data:
            return None
        return list(response.data[0].embedding)


class LocalEmbedder:
    """Embeds text with a local SentenceTransformer model (no API costs)."""

    def __init__(self, model_name: str = 'all-MiniLM-L6-v2'):
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self.model = SentenceTransformer(model_name)

    async def embed(self, text: str) -> Optional[List[float]]:
        # encode() is CPU bound
        vector = await asyncio.to_thread(self.model.encode, text)
        return vector.tolist()


def create_embedder(settings: WatcherSettings):
    """
    Build the embedding backend named by settings.embed_provider.

    Returns None when the provider is disabled or lacks credentials, which makes
    the semantic gate fail closed.
    """
    provider = settings.embed_provider

    if provider == 'openai':
        if not settings.openai_api_key:
            logger.warning("Semantic mode needs OPENAI_API_KEY; no embedding backend configured")
            return None
        return OpenAIEmbedder(settings.openai_api_key, settings.openai_embed_model)

    if provider == 'local':
        logger.info(f"Loading local embedding model {settings.local_embed_model}")
        return LocalEmbedder(settings.local_embed_model)

    if provider != 'none':
        logger.warning(f"Unknown embedding provider '{provider}'; semantic matching disabled")
    return None


async def embed_text(embedder, text: str) -> Optional[List[float]]:
    """Embed basic-normalized `text`, truncated to MAX_EMBED_CHARS."""
    if embedder is None:
        return None
    prepared = normalize_basic(text)[:MAX_EMBED_CHARS]
    return await embedder.embed(prepared)
