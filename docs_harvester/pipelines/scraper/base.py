"""Base classes for the document scraping pipeline."""

import hashlib
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...core.config import Settings, settings as default_settings
from ...core.errors import DocumentProcessingError, ErrorKind, wrap_error

logger = logging.getLogger(__name__)


class SourceType(str, Enum):
    """Kind of origin a document source points at."""

    WEBSITE = "website"
    REPOSITORY = "repository"
    FILE = "file"


class FileType(str, Enum):
    """Content kind of a local file."""

    MARKDOWN = "markdown"
    TEXT = "text"
    PDF = "pdf"
    UNKNOWN = "unknown"


class ChunkCategory(str, Enum):
    """Category labels attached to fragments."""

    DOCUMENTATION = "documentation"
    README = "readme"
    CODE = "code"


class DocumentSource(BaseModel):
    """A configured origin from which fragments are derived.

    ``name`` is the partition key for cache files and index metadata.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    name: str
    url: str
    type: SourceType
    selector: Optional[str] = None
    file_path: Optional[str] = Field(default=None, alias="filePath")
    file_type: Optional[FileType] = Field(default=None, alias="fileType")
    enabled: bool = True

    @field_validator("type", mode="before")
    @classmethod
    def _accept_github_alias(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower() == "github":
            return SourceType.REPOSITORY
        return value

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DocumentChunk(BaseModel):
    """Atomic retrievable unit of document text."""

    id: str
    content: str
    title: str
    url: str
    source: str
    category: str = ChunkCategory.DOCUMENTATION.value
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert fragment to dictionary for serialization."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentChunk":
        """Create fragment from dictionary."""
        return cls.model_validate(data)


def make_chunk_id(source: str, *parts: Any) -> str:
    """Deterministic fragment id, stable across re-ingestion of the same content."""
    seed = "||".join([source, *(str(p) for p in parts)])
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]
    slug = "".join(c if c.isalnum() else "-" for c in source.lower()).strip("-")[:40]
    return f"{slug or 'source'}-{digest}"


class ScrapingStats(BaseModel):
    total_chunks: int = 0
    total_pages: Optional[int] = None
    time_ms: int = 0
    stored_chunks: Optional[int] = None
    processed_files: Optional[int] = None
    skipped_files: Optional[int] = None


class ScrapingResult(BaseModel):
    """Uniform contract between scrapers, the processor and the manager."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    chunks: List[DocumentChunk] = Field(default_factory=list)
    error: Optional[DocumentProcessingError] = None
    message: Optional[str] = None
    stats: ScrapingStats = Field(default_factory=ScrapingStats)

    @classmethod
    def failure(
        cls,
        error: BaseException,
        message: Optional[str] = None,
        stats: Optional[ScrapingStats] = None,
    ) -> "ScrapingResult":
        wrapped = wrap_error(error, ErrorKind.INTERNAL_ERROR)
        return cls(
            success=False,
            error=wrapped,
            message=message or str(wrapped),
            stats=stats or ScrapingStats(),
        )


class DiagnosticStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class DiagnosticResult(BaseModel):
    status: DiagnosticStatus
    message: str
    issues: List[str] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)


ChunkSink = Callable[[List[DocumentChunk]], Awaitable[Any]]


class ChunkEmitter:
    """Routes fragments to a streaming sink or collects them in memory.

    Enforces an optional fragment ceiling; fragments beyond it are dropped and
    ``full`` turns True so scrapers can stop early.
    """

    def __init__(self, on_chunks: Optional[ChunkSink] = None, limit: Optional[int] = None):
        self.on_chunks = on_chunks
        self.limit = limit
        self.chunks: List[DocumentChunk] = []
        self.total = 0

    @property
    def streaming(self) -> bool:
        return self.on_chunks is not None

    @property
    def full(self) -> bool:
        return self.limit is not None and self.total >= self.limit

    async def emit(self, chunks: List[DocumentChunk]) -> None:
        if not chunks:
            return
        if self.limit is not None:
            chunks = chunks[: max(self.limit - self.total, 0)]
            if not chunks:
                return
        self.total += len(chunks)
        if self.on_chunks is not None:
            await self.on_chunks(chunks)
        else:
            self.chunks.extend(chunks)


class BaseScraper(ABC):
    """Abstract base class for document scrapers."""

    name: str = "base"

    def __init__(self, settings: Optional[Settings] = None, config: Optional[Dict[str, Any]] = None):
        self.settings = settings or default_settings
        self.config = config or {}
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def scrape(self, source: DocumentSource, emitter: ChunkEmitter) -> Dict[str, Any]:
        """Scrape fragments from the source into the emitter.

        Returns extra stats (``total_pages``, ``processed_files``...). Must be
        implemented by subclasses.
        """

    def chunk_limit(self) -> Optional[int]:
        """Per-source fragment ceiling, None for unbounded."""
        return None

    async def fetch(
        self, source: DocumentSource, on_chunks: Optional[ChunkSink] = None
    ) -> ScrapingResult:
        """Run the scraper for one source.

        With ``on_chunks`` fragments are streamed to the sink as they are produced
        and the returned result carries no chunks; otherwise they are collected.
        Failures are reported in the result rather than raised.
        """
        started = time.monotonic()
        emitter = ChunkEmitter(on_chunks, limit=self.chunk_limit())
        self.logger.info(f"Starting {self.name} scrape for {source.name} ({source.url})")

        try:
            extra = await self.scrape(source, emitter)
        except Exception as e:
            error = wrap_error(e, ErrorKind.INTERNAL_ERROR, context={"source": source.name})
            self.logger.error(f"Scraping failed for {source.name}: {error}")
            return ScrapingResult.failure(
                error,
                message=f"Failed to scrape {source.name}: {error}",
                stats=ScrapingStats(
                    total_chunks=emitter.total,
                    time_ms=int((time.monotonic() - started) * 1000),
                ),
            )

        stats = ScrapingStats(
            total_chunks=emitter.total,
            time_ms=int((time.monotonic() - started) * 1000),
            **(extra or {}),
        )
        self.logger.info(
            f"Scrape completed for {source.name}: {stats.total_chunks} fragments in {stats.time_ms}ms"
        )
        return ScrapingResult(
            success=True,
            chunks=emitter.chunks,
            message=f"Scraped {stats.total_chunks} fragments from {source.name}",
            stats=stats,
        )

    def _clean_content(self, content: str) -> str:
        """Clean and normalize content text."""
        if not content:
            return ""

        # Remove excessive whitespace, keep paragraph breaks
        lines = [line.strip() for line in content.split("\n")]
        cleaned: List[str] = []
        for line in lines:
            if line or (cleaned and cleaned[-1]):
                cleaned.append(line)
        return "\n".join(cleaned).strip()

    def _metadata(self, **extra: Any) -> Dict[str, Any]:
        """Base fragment metadata. Override ``name`` in subclasses."""
        return {"scraper": self.name, **extra}
