"""Document manager: source registry, fragment cache, diagnostics and queries."""

import asyncio
import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ConfigurationError, ErrorKind, wrap_error
from ..core.sources import default_sources, load_sources_file
from .chunking import ChunkOptimizer
from .context import PipelineContext
from .ingestion.processor import create_processor
from .scraper.base import (
    DiagnosticResult,
    DiagnosticStatus,
    DocumentChunk,
    DocumentSource,
    ScrapingResult,
    SourceType,
)
from .storage.vector_index import DELETE_ALL, VectorIndexClient

logger = logging.getLogger(__name__)


def cache_file_name(source_name: str) -> str:
    """File name of the cache entry for a source."""
    safe_name = "".join(c if c.isalnum() or c in ("-", "_", ".") else "_" for c in source_name)
    return f"{safe_name.strip('._') or 'source'}.json"


class DocumentManager:
    """Owns the per-source fragment cache and coordinates fetches.

    Fetches of the same source name are serialized by a per-source lock;
    different sources may be fetched concurrently.
    """

    def __init__(
        self,
        context: PipelineContext,
        sources: Optional[Sequence[DocumentSource]] = None,
    ):
        self.context = context
        self.settings = context.settings
        self.cache_dir = Path(self.settings.cache_dir)
        self.sources: List[DocumentSource] = (
            list(sources) if sources is not None else self._configured_sources()
        )
        self.optimizer = ChunkOptimizer(
            min_size=self.settings.min_chunk_length,
            prefix_length=self.settings.dedupe_prefix_length,
            max_size=self.settings.chunk_max_size,
        )
        self._cache: Dict[str, List[DocumentChunk]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._index_client: Optional[VectorIndexClient] = None
        self._initialized = False

    def _configured_sources(self) -> List[DocumentSource]:
        if self.settings.sources_file:
            return load_sources_file(self.settings.sources_file)
        return default_sources()

    async def initialize(self) -> None:
        """Create the cache directory and load cached fragments."""
        if self._initialized:
            return
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._load_cache()
        self._initialized = True
        logger.info(
            f"Document manager ready: {len(self.sources)} sources, "
            f"{sum(len(c) for c in self._cache.values())} cached fragments"
        )

    def _load_cache(self) -> None:
        for cache_file in sorted(self.cache_dir.glob("*.json")):
            try:
                with open(cache_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                chunks = [DocumentChunk.from_dict(item) for item in data]
            except (OSError, json.JSONDecodeError, TypeError, PydanticValidationError) as e:
                logger.warning(f"Skipping unreadable cache file {cache_file}: {e}")
                continue

            for chunk in chunks:
                self._cache.setdefault(chunk.source, []).append(chunk)
            logger.debug(f"Loaded {len(chunks)} fragments from {cache_file}")

    def _save_cache(self, source_name: str, chunks: List[DocumentChunk]) -> Path:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path = self.cache_dir / cache_file_name(source_name)
        with open(cache_path, "w", encoding="utf-8") as f:
            json.dump([chunk.to_dict() for chunk in chunks], f, indent=2, ensure_ascii=False)
        logger.info(f"Cached {len(chunks)} fragments for {source_name}: {cache_path}")
        return cache_path

    def _store_in_cache(self, source_name: str, chunks: List[DocumentChunk]) -> None:
        self._cache[source_name] = chunks
        self._save_cache(source_name, chunks)

    def _lock_for(self, source_name: str) -> asyncio.Lock:
        return self._locks.setdefault(source_name, asyncio.Lock())

    def _get_index_client(self) -> VectorIndexClient:
        if self._index_client is None:
            self._index_client = self.context.create_index_client()
        return self._index_client

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def get_document_sources(self) -> List[DocumentSource]:
        return list(self.sources)

    def add_document_source(self, source: DocumentSource) -> None:
        """Register a source, replacing any source with the same name."""
        self.sources = [s for s in self.sources if s.name != source.name]
        self.sources.append(source)
        logger.info(f"Registered source {source.name} ({source.type.value})")

    def find_source(self, name_or_url: str) -> Optional[DocumentSource]:
        for source in self.sources:
            if source.name == name_or_url or source.url == name_or_url:
                return source
        return None

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_single_source(
        self,
        source_or_url: Union[DocumentSource, str],
        optimize: Optional[bool] = None,
        store: bool = False,
    ) -> ScrapingResult:
        """Fetch one source, refresh its cache entry and optionally index it."""
        await self.initialize()

        if isinstance(source_or_url, DocumentSource):
            source = source_or_url
        else:
            source = self.find_source(source_or_url)
            if source is None:
                return ScrapingResult.failure(
                    ConfigurationError(f"Unknown document source: {source_or_url}"),
                )

        optimize = self.settings.optimize_chunks if optimize is None else optimize

        async with self._lock_for(source.name):
            scraper = self.context.create_scraper(source.type)
            result = await scraper.fetch(source)
            if not result.success:
                return result

            chunks = self.optimizer.optimize(result.chunks) if optimize else result.chunks
            self._store_in_cache(source.name, chunks)
            result.chunks = chunks
            result.stats.total_chunks = len(chunks)

            if store and chunks:
                try:
                    stats = await create_processor(self.context).process_chunks(chunks)
                except Exception as e:
                    error = wrap_error(e, ErrorKind.STORAGE_ERROR, context={"source": source.name})
                    logger.error(f"Failed to index {source.name}: {error}")
                    return ScrapingResult.failure(
                        error,
                        message=f"Fetched {len(chunks)} fragments but indexing failed: {error}",
                        stats=result.stats,
                    )
                result.stats.stored_chunks = stats.vectorized

        return result

    async def fetch_all_sources(
        self, optimize: Optional[bool] = None, store: bool = False
    ) -> Dict[str, Any]:
        """Fetch every enabled source in turn."""
        await self.initialize()
        summary: Dict[str, Any] = {
            "total": len(self.sources),
            "successful": 0,
            "failed": 0,
            "skipped": [],
            "total_chunks": 0,
            "results": {},
        }

        fetched = 0
        for source in self.sources:
            if not source.enabled:
                logger.info(f"Skipping disabled source {source.name}")
                summary["skipped"].append(source.name)
                continue

            if fetched > 0:
                await asyncio.sleep(self.settings.source_delay)
            fetched += 1

            result = await self.fetch_single_source(source, optimize=optimize, store=store)
            summary["results"][source.name] = result
            if result.success:
                summary["successful"] += 1
                summary["total_chunks"] += len(result.chunks)
            else:
                summary["failed"] += 1
                logger.warning(f"Source {source.name} failed: {result.message}")

        logger.info(
            f"Fetched {summary['successful']}/{fetched} sources, "
            f"{summary['total_chunks']} fragments"
        )
        return summary

    async def add_local_directory(
        self,
        directory: Union[str, Path],
        name_prefix: str,
        recursive: bool = True,
        optimize: Optional[bool] = None,
    ) -> List[DocumentChunk]:
        """Ingest a local directory tree into the cache under ``name_prefix``."""
        await self.initialize()
        path = Path(directory).expanduser().resolve()
        optimize = self.settings.optimize_chunks if optimize is None else optimize

        async with self._lock_for(name_prefix):
            scraper = self.context.create_scraper(SourceType.FILE)
            chunks = await scraper.fetch_directory(path, name_prefix, recursive=recursive)
            if optimize:
                chunks = self.optimizer.optimize(chunks)

            self._store_in_cache(name_prefix, chunks)
            self.add_document_source(
                DocumentSource(name=name_prefix, url=path.as_uri(), type=SourceType.FILE, file_path=str(path))
            )

        logger.info(f"Added {len(chunks)} fragments from {path} as {name_prefix}")
        return chunks

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------

    def get_chunks(self, source_name: Optional[str] = None) -> List[DocumentChunk]:
        if source_name is not None:
            return list(self._cache.get(source_name, []))
        return [chunk for chunks in self._cache.values() for chunk in chunks]

    def _counts(self) -> Tuple[int, Dict[str, int], Dict[str, int]]:
        by_source = {name: len(chunks) for name, chunks in self._cache.items()}
        by_category = Counter(chunk.category for chunk in self.get_chunks())
        return sum(by_source.values()), by_source, dict(by_category)

    def get_stats(self) -> Dict[str, Any]:
        total, by_source, by_category = self._counts()
        return {
            "total_chunks": total,
            "cached_sources": len(by_source),
            "configured_sources": len(self.sources),
            "enabled_sources": sum(1 for s in self.sources if s.enabled),
            "by_source": by_source,
            "by_category": by_category,
            "cache_dir": str(self.cache_dir),
        }

    async def query_documents(
        self,
        query: str,
        max_results: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        filters: Optional[Dict[str, str]] = None,
    ) -> List[Tuple[DocumentChunk, float]]:
        """Similarity search over the vector index."""
        return await self._get_index_client().query_by_text(
            query,
            max_results=max_results,
            similarity_threshold=similarity_threshold,
            filters=filters,
        )

    async def clear_cache(self, include_index: bool = False) -> Dict[str, int]:
        """Empty the cache and delete cache files; optionally wipe the index too."""
        cleared_chunks = sum(len(c) for c in self._cache.values())
        self._cache.clear()

        removed_files = 0
        if self.cache_dir.exists():
            for cache_file in self.cache_dir.glob("*.json"):
                cache_file.unlink()
                removed_files += 1

        result = {"chunks": cleared_chunks, "files": removed_files, "index_documents": 0}
        if include_index:
            result["index_documents"] = await self._get_index_client().delete_documents([DELETE_ALL])

        logger.info(
            f"Cleared {cleared_chunks} cached fragments, {removed_files} cache files, "
            f"{result['index_documents']} index documents"
        )
        return result

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def run_diagnostics(self) -> DiagnosticResult:
        """Check cache coverage and fragment quality."""
        await self.initialize()
        total, by_source, by_category = self._counts()
        stats = {"total": total, "by_source": by_source, "by_category": by_category}

        if total == 0:
            return DiagnosticResult(
                status=DiagnosticStatus.ERROR,
                message="No fragments cached; run a fetch first",
                issues=["No fragments found in the cache"],
                stats=stats,
            )

        issues = []
        for source in self.sources:
            if source.enabled and by_source.get(source.name, 0) == 0:
                issues.append(f"Source '{source.name}' has no fragments")

        min_length = self.settings.min_chunk_length
        short = Counter(
            chunk.source for chunk in self.get_chunks() if len(chunk.content.strip()) < min_length
        )
        for source_name, count in short.items():
            issues.append(
                f"{count} fragments from '{source_name}' are shorter than {min_length} characters"
            )

        if not issues:
            status = DiagnosticStatus.OK
            message = f"{total} fragments across {len(by_source)} sources"
        elif len(issues) > self.settings.diagnostics_error_threshold:
            status = DiagnosticStatus.ERROR
            message = f"{len(issues)} issues found"
        else:
            status = DiagnosticStatus.WARNING
            message = f"{len(issues)} issues found"

        return DiagnosticResult(status=status, message=message, issues=issues, stats=stats)

    async def close(self) -> None:
        if self._index_client is not None:
            try:
                await self._index_client.close()
            finally:
                self._index_client = None
