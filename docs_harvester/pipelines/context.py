"""Explicit wiring of settings, scrapers and the vector index client."""

import logging
from typing import Callable, Optional

from ..core.config import Settings, settings as default_settings
from ..core.errors import ConfigurationError
from ..core.redis import get_document_index, get_vectorizer
from .scraper.base import BaseScraper, SourceType
from .scraper.local_files import LocalFileScraper
from .scraper.repository import RepositoryScraper
from .scraper.website import WebsiteScraper
from .storage.vector_index import RedisVectorBackend, VectorIndexClient

logger = logging.getLogger(__name__)

IndexClientFactory = Callable[[Settings], VectorIndexClient]


def create_redis_index_client(config: Settings) -> VectorIndexClient:
    """Vector index client over the Redis fragment index and the OpenAI vectorizer."""
    return VectorIndexClient(
        backend=RedisVectorBackend(get_document_index(config)),
        embedder=get_vectorizer(config),
        batch_size=config.vector_store_batch_size,
        similarity_threshold=config.similarity_threshold,
        max_results=config.max_query_results,
    )


class PipelineContext:
    """Holds configuration and factories for one CLI invocation or library caller.

    Nothing here is cached at module level: each call to
    ``create_index_client`` returns a fresh client bound to the current loop.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        index_client_factory: Optional[IndexClientFactory] = None,
    ):
        self.settings = settings or default_settings
        self._index_client_factory = index_client_factory or create_redis_index_client

    def create_index_client(self) -> VectorIndexClient:
        return self._index_client_factory(self.settings)

    def create_scraper(self, source_type: SourceType) -> BaseScraper:
        if source_type == SourceType.WEBSITE:
            return WebsiteScraper(self.settings)
        if source_type == SourceType.REPOSITORY:
            return RepositoryScraper(self.settings)
        if source_type == SourceType.FILE:
            return LocalFileScraper(self.settings)
        raise ConfigurationError(f"Unsupported source type: {source_type}")
