"""
Redis key construction utilities.

Centralizes key construction so the index schema, loaders and deletes agree.
"""


class RedisKeys:
    """Utility class for constructing Redis keys with consistent naming conventions."""

    EMBEDDINGS_CACHE = "docs_embeddings_cache"

    @staticmethod
    def index_prefix(index_name: str) -> str:
        """Key prefix for all fragments stored in an index (":" is added by the loader)."""
        return index_name

    @staticmethod
    def fragment(index_name: str, fragment_id: str) -> str:
        """Key for a single stored fragment."""
        return f"{index_name}:{fragment_id}"
