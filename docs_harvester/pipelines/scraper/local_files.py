"""Local file scraper for markdown, text and PDF documents."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from pypdf import PdfReader

from ...core.errors import (
    DocumentProcessingError,
    ParsingError,
    ResourceNotFoundError,
    ValidationError,
)
from ..chunking import split_into_chunks, split_markdown_sections
from .base import (
    BaseScraper,
    ChunkCategory,
    ChunkEmitter,
    DocumentChunk,
    DocumentSource,
    FileType,
    make_chunk_id,
)

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = {".md", ".markdown"}
TEXT_EXTENSIONS = {".txt", ".text", ".rst", ".html", ".htm", ".xml", ".json", ".csv"}
HTML_EXTENSIONS = {".html", ".htm"}
SKIPPED_DIRECTORIES = {"node_modules", "__pycache__"}

_BLANK_LINES = re.compile(r"\n\s*\n")


def infer_file_type(path: str | Path) -> FileType:
    """Infer the content kind of a file from its extension."""
    ext = Path(path).suffix.lower()
    if ext in MARKDOWN_EXTENSIONS:
        return FileType.MARKDOWN
    if ext in TEXT_EXTENSIONS:
        return FileType.TEXT
    if ext == ".pdf":
        return FileType.PDF
    return FileType.UNKNOWN


def path_from_source(source: DocumentSource) -> Path:
    """Resolve the filesystem path of a file source."""
    if source.file_path:
        return Path(source.file_path).expanduser()
    parsed = urlparse(source.url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if not parsed.scheme:
        return Path(source.url).expanduser()
    raise ValidationError(f"Source {source.name} has no local file path: {source.url}")


class LocalFileScraper(BaseScraper):
    """Turns local files and directory trees into fragments.

    Directories are walked with explicit caps (files per directory,
    subdirectories per level, file size) and files are processed in small
    sequential batches with a short pause between batches.
    """

    name = "file"

    def __init__(self, settings=None, config: Optional[Dict[str, Any]] = None):
        super().__init__(settings, config)

        s = self.settings
        self.config = {
            "max_chunk_size": s.chunk_max_size,
            "min_chunk_size": s.chunk_min_size,
            "chunk_overlap": s.chunk_overlap,
            "min_chunk_length": s.min_chunk_length,
            "batch_size": s.file_chunk_batch_size,
            "max_files_per_batch": s.file_max_files_per_batch,
            "max_files_per_dir": s.file_max_files_per_dir,
            "max_size_kb": s.file_max_size_kb,
            "max_dirs": s.file_max_dirs,
            "batch_pause": s.file_batch_pause,
            **self.config,
        }

    async def scrape(self, source: DocumentSource, emitter: ChunkEmitter) -> Dict[str, Any]:
        path = path_from_source(source).resolve()
        stats = {"processed_files": 0, "skipped_files": 0}

        if not path.exists():
            raise ResourceNotFoundError(f"File not found: {path}", context={"path": str(path)})

        if path.is_dir():
            await self._walk_directory(path, source.name, emitter, stats, recursive=True)
        else:
            await self._process_file(path, source.name, emitter, stats, source.file_type)

        return stats

    async def fetch_directory(
        self, directory: str | Path, source_name: str, recursive: bool = True
    ) -> List[DocumentChunk]:
        """Collect fragments for every supported file under a directory."""
        path = Path(directory).expanduser().resolve()
        if not path.is_dir():
            raise ResourceNotFoundError(
                f"Directory not found: {path}", context={"path": str(path)}
            )

        emitter = ChunkEmitter()
        stats = {"processed_files": 0, "skipped_files": 0}
        await self._walk_directory(path, source_name, emitter, stats, recursive=recursive)

        self.logger.info(
            f"Extracted {emitter.total} fragments from {path} "
            f"({stats['processed_files']} files processed, {stats['skipped_files']} skipped)"
        )
        return emitter.chunks

    async def _walk_directory(
        self,
        directory: Path,
        source_name: str,
        emitter: ChunkEmitter,
        stats: Dict[str, int],
        recursive: bool,
    ) -> None:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
        files = [p for p in entries if p.is_file() and not p.name.startswith(".")]
        subdirs = [
            p
            for p in entries
            if p.is_dir() and not p.name.startswith(".") and p.name not in SKIPPED_DIRECTORIES
        ]

        max_files = self.config["max_files_per_dir"]
        if len(files) > max_files:
            self.logger.warning(
                f"{directory} has {len(files)} files, processing the first {max_files}"
            )
            files = files[:max_files]

        per_batch = max(1, self.config["max_files_per_batch"])
        for start in range(0, len(files), per_batch):
            for path in files[start : start + per_batch]:
                try:
                    await self._process_file(path, source_name, emitter, stats)
                except (DocumentProcessingError, OSError) as e:
                    self.logger.warning(f"Skipping {path}: {e}")
                    stats["skipped_files"] += 1
            if start + per_batch < len(files):
                await asyncio.sleep(self.config["batch_pause"])

        if not recursive:
            return

        max_dirs = self.config["max_dirs"]
        if len(subdirs) > max_dirs:
            self.logger.warning(
                f"{directory} has {len(subdirs)} subdirectories, processing the first {max_dirs}"
            )
            subdirs = subdirs[:max_dirs]

        for subdir in subdirs:
            await asyncio.sleep(self.config["batch_pause"])
            try:
                await self._walk_directory(subdir, source_name, emitter, stats, recursive)
            except OSError as e:
                self.logger.warning(f"Skipping directory {subdir}: {e}")
                stats["skipped_files"] += 1

    async def _process_file(
        self,
        path: Path,
        source_name: str,
        emitter: ChunkEmitter,
        stats: Dict[str, int],
        file_type: Optional[FileType] = None,
    ) -> None:
        size = path.stat().st_size
        max_bytes = self.config["max_size_kb"] * 1024
        if size > max_bytes:
            self.logger.warning(
                f"Skipping oversized file {path} ({size // 1024}KB > {self.config['max_size_kb']}KB)"
            )
            stats["skipped_files"] += 1
            return

        file_type = file_type or infer_file_type(path)
        if file_type == FileType.UNKNOWN:
            self.logger.debug(f"Skipping unsupported file type: {path}")
            stats["skipped_files"] += 1
            return

        content = await self._read_content(path, file_type)
        chunks = self.build_chunks(content, path, source_name, file_type)
        stats["processed_files"] += 1

        batch_size = max(1, self.config["batch_size"])
        for start in range(0, len(chunks), batch_size):
            await emitter.emit(chunks[start : start + batch_size])

    async def _read_content(self, path: Path, file_type: FileType) -> str:
        if file_type == FileType.PDF:
            return await asyncio.to_thread(self._read_pdf, path)

        text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        if path.suffix.lower() in HTML_EXTENSIONS:
            soup = BeautifulSoup(text, "html.parser")
            for tag in soup(["script", "style"]):
                tag.decompose()
            text = soup.get_text("\n")
        return text

    @staticmethod
    def _read_pdf(path: Path) -> str:
        try:
            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as e:
            raise ParsingError(f"Could not read PDF {path}: {e}", cause=e) from e
        return "\n\n".join(p.strip() for p in pages if p.strip())

    def _split(self, text: str) -> List[str]:
        pieces = split_into_chunks(
            text,
            max_size=self.config["max_chunk_size"],
            min_size=self.config["min_chunk_size"],
            overlap=self.config["chunk_overlap"],
        )
        return [p for p in pieces if len(p) >= self.config["min_chunk_length"]]

    def build_chunks(
        self, content: str, path: Path, source_name: str, file_type: FileType
    ) -> List[DocumentChunk]:
        """Turn one file's content into fragments."""
        min_length = self.config["min_chunk_length"]
        if not content or len(content.strip()) < min_length:
            return []

        file_path = str(path)
        url = path.as_uri() if path.is_absolute() else f"file://{file_path}"
        metadata = self._metadata(
            file_type=file_type.value, file_name=path.name, file_path=file_path
        )

        chunks: List[DocumentChunk] = []
        if file_type == FileType.MARKDOWN:
            default_title = path.stem
            sections = split_markdown_sections(content, default_title, min_length)
            for i, (title, body) in enumerate(sections):
                for j, piece in enumerate(self._split(body)):
                    chunks.append(
                        DocumentChunk(
                            id=make_chunk_id(source_name, file_path, i, j),
                            content=piece,
                            title=title,
                            url=url,
                            source=source_name,
                            category=ChunkCategory.DOCUMENTATION.value,
                            metadata=dict(metadata),
                        )
                    )
            return chunks

        paragraphs = [p.strip() for p in _BLANK_LINES.split(content) if p.strip()]
        for i, piece in enumerate(self._split("\n\n".join(paragraphs))):
            chunks.append(
                DocumentChunk(
                    id=make_chunk_id(source_name, file_path, i),
                    content=piece,
                    title=path.name,
                    url=url,
                    source=source_name,
                    category=ChunkCategory.DOCUMENTATION.value,
                    metadata=dict(metadata),
                )
            )
        return chunks
