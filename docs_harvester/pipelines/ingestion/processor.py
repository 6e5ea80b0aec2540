"""Streaming ingestion: buffers scraped fragments and stores them in fixed-size batches."""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from ...core.errors import ConfigurationError, ErrorKind, wrap_error
from ...core.throttle import BatchRateLimiter
from ..scraper.base import BaseScraper, DocumentChunk, DocumentSource, ScrapingResult, SourceType
from ..storage.vector_index import VectorIndexClient

if TYPE_CHECKING:
    from ..context import PipelineContext

logger = logging.getLogger(__name__)

ScraperFactory = Callable[[SourceType], BaseScraper]


class ProcessingStats(BaseModel):
    received: int = 0
    vectorized: int = 0
    failed: int = 0
    batches: int = 0


class StreamingProcessor:
    """Bridges a scraper's fragment stream to the vector index.

    Fragments handed to ``add_chunks`` are buffered and flushed in batches of
    exactly ``batch_size``; the remainder goes out on ``drain``. N fragments
    therefore cost ``ceil(N / batch_size)`` store calls. Flushes are
    serialized and paced by a ``BatchRateLimiter``; producers wait on the
    flush, which keeps the buffer bounded.
    """

    def __init__(
        self,
        index_client: VectorIndexClient,
        batch_size: int = 20,
        interval: float = 0.05,
        scraper_factory: Optional[ScraperFactory] = None,
    ):
        self.index_client = index_client
        self.batch_size = max(1, batch_size)
        self.scraper_factory = scraper_factory
        self.stats = ProcessingStats()
        self._buffer: List[DocumentChunk] = []
        self._lock = asyncio.Lock()
        self._limiter = BatchRateLimiter(interval)

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def add_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        """Fragment sink for scrapers."""
        if not chunks:
            return
        self.stats.received += len(chunks)
        self._buffer.extend(chunks)

        while len(self._buffer) >= self.batch_size:
            await self._flush(full_only=True)

    async def _flush(self, full_only: bool) -> int:
        async with self._lock:
            # Another producer may have taken the batch while we waited
            if not self._buffer or (full_only and len(self._buffer) < self.batch_size):
                return 0
            batch = self._buffer[: self.batch_size]
            del self._buffer[: self.batch_size]

            async with self._limiter:
                try:
                    stored = await self.index_client.store_documents(batch)
                except Exception as e:
                    logger.error(f"Failed to store batch of {len(batch)} fragments: {e}")
                    stored = 0

            stored = min(stored, len(batch))
            self.stats.batches += 1
            self.stats.vectorized += stored
            self.stats.failed += len(batch) - stored
            logger.info(
                f"Stored batch {self.stats.batches}: {stored}/{len(batch)} fragments "
                f"({self.stats.vectorized} total, {len(self._buffer)} pending)"
            )
            return len(batch)

    async def drain(self) -> None:
        """Flush everything still buffered."""
        max_flushes = -(-len(self._buffer) // self.batch_size) + 1
        for _ in range(max_flushes):
            if not self._buffer:
                return
            await self._flush(full_only=False)
        if self._buffer:
            logger.warning(f"{len(self._buffer)} fragments left unflushed after drain")

    def _resolve_scraper(self, source: DocumentSource, scraper: Optional[BaseScraper]) -> BaseScraper:
        if scraper is not None:
            return scraper
        if self.scraper_factory is None:
            raise ConfigurationError(f"No scraper available for source {source.name}")
        return self.scraper_factory(source.type)

    async def process_source(
        self, source: DocumentSource, scraper: Optional[BaseScraper] = None
    ) -> ScrapingResult:
        """Scrape one source straight into the vector index."""
        logger.info(f"Processing source {source.name} ({source.type.value})")
        try:
            scraper = self._resolve_scraper(source, scraper)
            await self.index_client.initialize()

            result = await scraper.fetch(source, on_chunks=self.add_chunks)
            if result.chunks:
                await self.add_chunks(result.chunks)
                result.chunks = []
            await self.drain()

            result.stats.stored_chunks = self.stats.vectorized
            logger.info(
                f"Source {source.name}: received {self.stats.received}, "
                f"stored {self.stats.vectorized}, failed {self.stats.failed}"
            )
            return result
        except Exception as e:
            error = wrap_error(e, ErrorKind.INTERNAL_ERROR, context={"source": source.name})
            logger.error(f"Processing failed for {source.name}: {error}")
            return ScrapingResult.failure(error, message=f"Failed to process {source.name}: {error}")
        finally:
            await self._close()

    async def process_chunks(self, chunks: Sequence[DocumentChunk]) -> ProcessingStats:
        """Store an already materialized fragment list."""
        try:
            await self.index_client.initialize()
            await self.add_chunks(chunks)
            await self.drain()
            return self.stats
        finally:
            await self._close()

    async def _close(self) -> None:
        try:
            await self.index_client.close()
        except Exception as e:
            logger.warning(f"Error closing vector index client: {e}")


def create_processor(context: "PipelineContext") -> StreamingProcessor:
    settings = context.settings
    return StreamingProcessor(
        context.create_index_client(),
        batch_size=settings.processor_batch_size,
        interval=settings.processor_interval,
        scraper_factory=context.create_scraper,
    )


async def process_document_source(
    source: DocumentSource, context: "PipelineContext"
) -> ScrapingResult:
    """Stream one source into the index with a fresh processor."""
    return await create_processor(context).process_source(source)


async def process_document_sources(
    sources: Sequence[DocumentSource], context: "PipelineContext"
) -> Dict[str, Any]:
    """Stream several sources one after another. One failure never stops the run."""
    summary: Dict[str, Any] = {
        "total": len(sources),
        "successful": 0,
        "failed": 0,
        "total_chunks": 0,
        "stored_chunks": 0,
        "results": {},
    }

    for i, source in enumerate(sources):
        if i > 0:
            await asyncio.sleep(context.settings.source_delay)

        result = await process_document_source(source, context)
        summary["results"][source.name] = result
        summary["total_chunks"] += result.stats.total_chunks
        summary["stored_chunks"] += result.stats.stored_chunks or 0
        if result.success:
            summary["successful"] += 1
        else:
            summary["failed"] += 1
            logger.warning(f"Source {source.name} failed: {result.message}")

    logger.info(
        f"Processed {summary['total']} sources: {summary['successful']} succeeded, "
        f"{summary['failed']} failed, {summary['stored_chunks']} fragments stored"
    )
    return summary
