"""Redis connection management - no caching to avoid event loop issues."""

import logging
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redisvl.extensions.cache.embeddings.embeddings import EmbeddingsCache
from redisvl.index.index import AsyncSearchIndex
from redisvl.schema import IndexSchema
from redisvl.utils.vectorize import OpenAITextVectorizer

from .config import Settings, settings as default_settings
from .keys import RedisKeys

logger = logging.getLogger(__name__)


def build_fragment_schema(index_name: str, vector_dim: int) -> Dict[str, Any]:
    """Schema for the fragment index: tag filters plus a cosine vector field."""
    return {
        "index": {
            "name": index_name,
            "prefix": RedisKeys.index_prefix(index_name),
            "storage_type": "hash",
        },
        "fields": [
            {
                "name": "id",
                "type": "tag",
            },
            {
                "name": "title",
                "type": "text",
            },
            {
                "name": "content",
                "type": "text",
            },
            {
                "name": "url",
                "type": "tag",
            },
            {
                "name": "source",
                "type": "tag",
            },
            {
                "name": "category",
                "type": "tag",
            },
            {
                "name": "created_at",
                "type": "numeric",
            },
            {
                "name": "vector",
                "type": "vector",
                "attrs": {
                    "dims": vector_dim,
                    "distance_metric": "cosine",
                    "algorithm": "flat",
                    "datatype": "float32",
                },
            },
        ],
    }


def _redis_url(config: Settings) -> str:
    # Insert password into URL: redis://localhost -> redis://:password@localhost
    redis_url = config.redis_url.get_secret_value()
    redis_password = config.redis_password.get_secret_value() if config.redis_password else None
    if redis_password and "@" not in redis_url:
        redis_url = redis_url.replace("redis://", f"redis://:{redis_password}@")
    return redis_url


def get_redis_client(config: Optional[Settings] = None) -> Redis:
    """Get Redis client (creates fresh client to avoid event loop issues)."""
    config = config or default_settings
    return Redis.from_url(
        url=_redis_url(config),
        decode_responses=False,  # Keep as bytes for RedisVL compatibility
    )


def get_vectorizer(config: Optional[Settings] = None) -> OpenAITextVectorizer:
    """Get OpenAI vectorizer with Redis-backed embeddings cache.

    Returns the native vectorizer; callers should use aembed/aembed_many.
    Cache keys include the model name, so different models won't conflict.
    """
    config = config or default_settings

    cache = EmbeddingsCache(
        name=RedisKeys.EMBEDDINGS_CACHE,
        redis_url=_redis_url(config),
        ttl=config.embeddings_cache_ttl,
    )
    logger.debug(f"Vectorizer created with embeddings cache (ttl={config.embeddings_cache_ttl}s)")

    return OpenAITextVectorizer(
        model=config.embedding_model,
        cache=cache,
        api_config={"api_key": config.openai_api_key},
    )


def get_document_index(config: Optional[Settings] = None) -> AsyncSearchIndex:
    """Get the fragment index (creates fresh to avoid event loop issues)."""
    config = config or default_settings

    redis_client = get_redis_client(config)
    schema = IndexSchema.from_dict(
        build_fragment_schema(config.vector_index_name, config.vector_dim)
    )
    return AsyncSearchIndex(schema=schema, redis_client=redis_client)
