"""GitHub repository scraper: README, documentation trees and code comments."""

import asyncio
import base64
import binascii
import logging
import posixpath
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp

from ...core.errors import DocumentProcessingError, ParsingError, ResourceNotFoundError, ValidationError
from ...core.network import fetch_json
from ..chunking import split_into_chunks, split_markdown_sections
from .base import (
    BaseScraper,
    ChunkCategory,
    ChunkEmitter,
    DocumentChunk,
    DocumentSource,
    make_chunk_id,
)

logger = logging.getLogger(__name__)

DOCS_DIRECTORIES = ["docs", "doc", "documentation", "wiki", "specs", "rfcs"]
CODE_DIRECTORIES = ["src", "lib", "packages", "core", "modules"]
CANDIDATE_BRANCHES = ["main", "master", "develop", "dev"]
CORE_REPOSITORY_MARKERS = ["nervosnetwork", "ckb-", "sporeprotocol"]

IGNORED_DIRS = {".git", "node_modules", "dist", "build", ".cache", "public"}
IGNORED_FILES = [".gitignore", ".ds_store", "package-lock.json", "yarn.lock"]
IMPORTANT_DIR_MARKERS = ["doc", "spec", "rfc", "src", "lib"]
IMPORTANT_FILE_MARKERS = ["interface", "type", "config", "schema"]

MARKDOWN_EXTENSIONS = (".md", ".markdown")
CODE_EXTENSIONS = (
    ".js", ".ts", ".tsx", ".jsx", ".py", ".java", ".c", ".cpp", ".h", ".cs", ".go", ".rb",
    ".rs", ".scala", ".php", ".swift", ".kt", ".kts", ".sh", ".bash", ".pl", ".pm", ".r",
    ".md", ".markdown", ".rst", ".adoc",
    ".json", ".yaml", ".yml", ".toml", ".ini",
    ".sol", ".mol", ".capsule",
)
C_STYLE_EXTENSIONS = {".js", ".ts", ".jsx", ".tsx", ".java", ".c", ".cpp", ".cs", ".go", ".swift", ".kt"}
HASH_STYLE_EXTENSIONS = {".py", ".rb"}

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_DOCSTRING = re.compile(r'"{3}.*?"{3}|\'{3}.*?\'{3}', re.DOTALL)
_COMMENT_MARKERS = re.compile(r"/\*+|\*+/|#+\s*|//+\s*|\"{3}|'{3}")
_LEADING_STARS = re.compile(r"\*\s+")
_WHITESPACE = re.compile(r"\s+")


def parse_repository_url(url: str) -> Tuple[str, str]:
    """Return (owner, repo) for a GitHub repository URL."""
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    parsed = urlparse(candidate)
    host = parsed.netloc.lower()
    if host not in ("github.com", "www.github.com"):
        raise ValidationError(f"Not a GitHub repository URL: {url}", context={"url": url})

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        raise ValidationError(f"Not a GitHub repository URL: {url}", context={"url": url})

    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


def is_core_repository(url: str) -> bool:
    """Repositories whose source code comments are worth indexing."""
    return any(marker in url for marker in CORE_REPOSITORY_MARKERS)


def is_important_dir(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in IMPORTANT_DIR_MARKERS)


def is_important_file(name: str) -> bool:
    lowered = name.lower()
    return lowered.endswith(".d.ts") or any(marker in lowered for marker in IMPORTANT_FILE_MARKERS)


def _comment_runs(lines: List[str], marker: str, min_length: int) -> List[str]:
    """Group consecutive line comments into blocks."""
    blocks = []
    current: List[str] = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith(marker):
            current.append(stripped[len(marker) :].strip())
            continue
        if current:
            block = "\n".join(current)
            if len(block) >= min_length:
                blocks.append(block)
            current = []
    if current:
        block = "\n".join(current)
        if len(block) >= min_length:
            blocks.append(block)
    return blocks


def extract_comment_blocks(content: str, extension: str, min_length: int = 20) -> List[str]:
    """Pull documentation comments out of source code, markers removed."""
    extension = extension.lower()
    lines = content.split("\n")
    if extension in C_STYLE_EXTENSIONS:
        raw = _BLOCK_COMMENT.findall(content) + _comment_runs(lines, "//", min_length)
    elif extension in HASH_STYLE_EXTENSIONS:
        raw = _DOCSTRING.findall(content) + _comment_runs(lines, "#", min_length)
    else:
        return []

    blocks = []
    for block in raw:
        cleaned = _COMMENT_MARKERS.sub(" ", block.strip())
        cleaned = _LEADING_STARS.sub(" ", cleaned)
        cleaned = _WHITESPACE.sub(" ", cleaned).strip()
        if len(cleaned) >= min_length:
            blocks.append(cleaned)
    return blocks


class RepositoryScraper(BaseScraper):
    """Scraper for GitHub repositories through the REST contents API."""

    name = "repository"

    def __init__(self, settings=None, config: Optional[Dict[str, Any]] = None):
        super().__init__(settings, config)

        s = self.settings
        self.config = {
            "api_url": s.github_api_url,
            "token": s.github_token,
            "max_depth": s.github_max_depth,
            "batch_size": s.github_chunk_batch_size,
            "limit_files": s.github_limit_files,
            "skip_code": s.github_skip_code,
            "only_dirs": s.github_only_dirs_list(),
            "file_delay": s.github_file_delay,
            "dir_delay": s.github_dir_delay,
            "max_code_files": s.github_max_code_files,
            "max_file_bytes": s.github_max_file_bytes,
            "important_file_chars": s.github_important_file_chars,
            "max_chunk_size": s.chunk_max_size,
            "min_chunk_size": s.chunk_min_size,
            "chunk_overlap": s.chunk_overlap,
            "min_chunk_length": s.min_chunk_length,
            "timeout": s.request_timeout,
            "max_retries": s.retry_max_retries,
            "initial_delay": s.retry_initial_delay,
            "backoff_factor": s.retry_backoff_factor,
            "user_agent": s.user_agent,
            **self.config,
        }

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self.config["user_agent"],
        }
        if self.config["token"]:
            headers["Authorization"] = f"token {self.config['token']}"
        return headers

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config["timeout"]),
            headers=self._headers(),
        )

    async def _api(
        self,
        session: aiohttp.ClientSession,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return await fetch_json(
            session,
            f"{self.config['api_url'].rstrip('/')}/{path.lstrip('/')}",
            provider="github",
            params=params,
            max_retries=self.config["max_retries"],
            initial_delay=self.config["initial_delay"],
            backoff_factor=self.config["backoff_factor"],
        )

    async def get_rate_limit_status(self) -> Dict[str, Any]:
        """Current API quota as reported by ``/rate_limit``."""
        async with self._session() as session:
            data = await self._api(session, "rate_limit")
        return data.get("resources", {}) or {"core": data.get("rate", {})}

    async def resolve_default_branch(
        self, session: aiohttp.ClientSession, owner: str, repo: str
    ) -> str:
        try:
            info = await self._api(session, f"repos/{owner}/{repo}")
            branch = info.get("default_branch")
            if branch:
                return branch
        except DocumentProcessingError as e:
            self.logger.warning(f"Could not read repository info for {owner}/{repo}: {e}")

        for branch in CANDIDATE_BRANCHES:
            try:
                await self._api(
                    session, f"repos/{owner}/{repo}/contents/README.md", {"ref": branch}
                )
                self.logger.info(f"Detected branch '{branch}' for {owner}/{repo}")
                return branch
            except DocumentProcessingError:
                continue

        self.logger.warning(f"No known branch found for {owner}/{repo}, assuming 'master'")
        return "master"

    @staticmethod
    def _decode(payload: Dict[str, Any], path: str) -> str:
        content = payload.get("content") or ""
        if payload.get("encoding", "base64") != "base64":
            return content
        try:
            return base64.b64decode(content).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as e:
            raise ParsingError(f"Could not decode {path}: {e}", provider="github", cause=e) from e

    async def _list_dir(
        self, session: aiohttp.ClientSession, owner: str, repo: str, branch: str, path: str
    ) -> List[Dict[str, Any]]:
        contents = await self._api(
            session, f"repos/{owner}/{repo}/contents/{path}", {"ref": branch}
        )
        if not isinstance(contents, list) or not contents:
            raise ResourceNotFoundError(
                f"Directory {path} does not exist or is empty", provider="github"
            )
        return contents

    async def _file_content(
        self, session: aiohttp.ClientSession, owner: str, repo: str, branch: str, path: str
    ) -> str:
        payload = await self._api(
            session, f"repos/{owner}/{repo}/contents/{path}", {"ref": branch}
        )
        return self._decode(payload, path)

    async def scrape(self, source: DocumentSource, emitter: ChunkEmitter) -> Dict[str, Any]:
        owner, repo = parse_repository_url(source.url)
        stats = {"processed_files": 0, "skipped_files": 0}

        async with self._session() as session:
            branch = await self.resolve_default_branch(session, owner, repo)
            self.logger.info(f"Scraping {owner}/{repo} on branch {branch}")
            walk = (session, owner, repo, branch, source, emitter, stats)

            await self._scrape_readme(*walk)

            only_dirs = self.config["only_dirs"]
            for directory in only_dirs or DOCS_DIRECTORIES:
                await self._scrape_top_level(self._walk_docs, directory, walk)

            if not only_dirs:
                await self._scrape_root_markdown(*walk)

            if self.config["skip_code"]:
                self.logger.info("Skipping source code analysis")
            elif is_core_repository(source.url):
                self.logger.info(f"Core repository {owner}/{repo}, analysing source comments")
                for directory in CODE_DIRECTORIES:
                    await self._scrape_top_level(self._walk_code, directory, walk)

        return stats

    async def _scrape_top_level(self, walker, directory: str, walk: Tuple) -> None:
        try:
            await walker(*walk, directory, 0)
        except ResourceNotFoundError:
            self.logger.debug(f"No {directory} directory")
        except DocumentProcessingError as e:
            self.logger.warning(f"Error processing {directory}: {e}")

    async def _scrape_readme(self, session, owner, repo, branch, source, emitter, stats) -> None:
        try:
            payload = await self._api(session, f"repos/{owner}/{repo}/readme", {"ref": branch})
            content = self._decode(payload, "README")
        except DocumentProcessingError as e:
            self.logger.warning(f"Could not fetch README for {owner}/{repo}: {e}")
            return

        url = payload.get("html_url") or source.url
        chunks = self.markdown_chunks(
            content, "README", url, source.name, ChunkCategory.README, payload.get("path", "README.md")
        )
        stats["processed_files"] += 1
        await self._emit(emitter, chunks)

    async def _scrape_root_markdown(self, session, owner, repo, branch, source, emitter, stats) -> None:
        try:
            entries = await self._list_dir(session, owner, repo, branch, "")
        except DocumentProcessingError as e:
            self.logger.warning(f"Could not list repository root: {e}")
            return

        for entry in entries:
            if emitter.full:
                return
            name = entry.get("name", "")
            if entry.get("type") != "file" or not name.lower().endswith(".md"):
                continue
            if name.lower() == "readme.md":
                continue
            await self._scrape_markdown_file(session, owner, repo, branch, source, emitter, stats, entry)
            await asyncio.sleep(self.config["file_delay"])

    async def _scrape_markdown_file(
        self, session, owner, repo, branch, source, emitter, stats, entry
    ) -> None:
        try:
            content = await self._file_content(session, owner, repo, branch, entry["path"])
        except DocumentProcessingError as e:
            self.logger.warning(f"Could not fetch {entry['path']}: {e}")
            stats["skipped_files"] += 1
            return

        chunks = self.markdown_chunks(
            content,
            entry["name"],
            entry.get("html_url") or source.url,
            source.name,
            ChunkCategory.DOCUMENTATION,
            entry["path"],
        )
        stats["processed_files"] += 1
        await self._emit(emitter, chunks)

    def _subdirectories(self, entries: List[Dict[str, Any]], depth: int, path: str) -> List[Dict[str, Any]]:
        subdirs = [
            e
            for e in entries
            if e.get("type") == "dir" and e.get("name", "").lower() not in IGNORED_DIRS
        ]
        if depth >= self.config["max_depth"] - 1:
            important = [d for d in subdirs if is_important_dir(d["name"])]
            if len(important) < len(subdirs):
                self.logger.info(
                    f"Near depth limit in {path}, entering {len(important)}/{len(subdirs)} subdirectories"
                )
            return important
        return subdirs

    async def _walk_subdirectories(self, walker, walk, entries, depth: int, path: str) -> None:
        for subdir in self._subdirectories(entries, depth, path):
            try:
                await walker(*walk, subdir["path"], depth + 1)
            except DocumentProcessingError as e:
                self.logger.warning(f"Error processing {subdir['path']}: {e}")
            await asyncio.sleep(self.config["dir_delay"])

    async def _walk_docs(
        self, session, owner, repo, branch, source, emitter, stats, path: str, depth: int
    ) -> None:
        if depth > self.config["max_depth"] or emitter.full:
            return

        entries = await self._list_dir(session, owner, repo, branch, path)
        for entry in entries:
            if emitter.full:
                return
            if entry.get("type") != "file" or not entry.get("name", "").lower().endswith(MARKDOWN_EXTENSIONS):
                continue
            await self._scrape_markdown_file(session, owner, repo, branch, source, emitter, stats, entry)
            await asyncio.sleep(self.config["file_delay"])

        walk = (session, owner, repo, branch, source, emitter, stats)
        await self._walk_subdirectories(self._walk_docs, walk, entries, depth, path)

    def _select_code_files(self, entries: List[Dict[str, Any]], path: str) -> List[Dict[str, Any]]:
        files = [
            e
            for e in entries
            if e.get("type") == "file"
            and e.get("name", "").lower().endswith(CODE_EXTENSIONS)
            and not any(ignored in e["name"].lower() for ignored in IGNORED_FILES)
        ]
        limit = self.config["max_code_files"]
        if not self.config["limit_files"] or len(files) <= limit:
            return files

        important = [f for f in files if is_important_file(f["name"])]
        others = [f for f in files if not is_important_file(f["name"])]
        selected = (important + others)[:limit]
        self.logger.info(
            f"{path} has {len(files)} code files, processing {len(selected)} "
            f"({min(len(important), limit)} important)"
        )
        return selected

    async def _walk_code(
        self, session, owner, repo, branch, source, emitter, stats, path: str, depth: int
    ) -> None:
        if depth > self.config["max_depth"] or emitter.full:
            return

        entries = await self._list_dir(session, owner, repo, branch, path)
        for entry in self._select_code_files(entries, path):
            if emitter.full:
                return
            size = entry.get("size") or 0
            if size > self.config["max_file_bytes"]:
                self.logger.warning(f"Skipping large file {entry['path']} ({size} bytes)")
                stats["skipped_files"] += 1
                continue
            try:
                content = await self._file_content(session, owner, repo, branch, entry["path"])
            except DocumentProcessingError as e:
                self.logger.warning(f"Could not fetch {entry['path']}: {e}")
                stats["skipped_files"] += 1
                continue

            chunks = self.code_chunks(
                content, entry["name"], entry["path"], entry.get("html_url") or source.url, source.name
            )
            stats["processed_files"] += 1
            await self._emit(emitter, chunks)
            await asyncio.sleep(self.config["file_delay"])

        walk = (session, owner, repo, branch, source, emitter, stats)
        await self._walk_subdirectories(self._walk_code, walk, entries, depth, path)

    async def _emit(self, emitter: ChunkEmitter, chunks: List[DocumentChunk]) -> None:
        batch_size = max(1, self.config["batch_size"])
        for start in range(0, len(chunks), batch_size):
            await emitter.emit(chunks[start : start + batch_size])

    def markdown_chunks(
        self,
        content: str,
        file_name: str,
        url: str,
        source_name: str,
        category: ChunkCategory,
        file_path: str,
    ) -> List[DocumentChunk]:
        """Fragments for one markdown file, one or more per heading section."""
        min_length = self.config["min_chunk_length"]
        title = re.sub(r"\.(md|markdown)$", "", file_name, flags=re.IGNORECASE)

        chunks = []
        for i, (section_title, body) in enumerate(split_markdown_sections(content, title, min_length)):
            pieces = split_into_chunks(
                body,
                max_size=self.config["max_chunk_size"],
                min_size=self.config["min_chunk_size"],
                overlap=self.config["chunk_overlap"],
            )
            for j, piece in enumerate(p for p in pieces if len(p) >= min_length):
                chunks.append(
                    DocumentChunk(
                        id=make_chunk_id(source_name, file_path, i, j),
                        content=piece,
                        title=section_title or title,
                        url=url,
                        source=source_name,
                        category=category.value,
                        metadata=self._metadata(
                            file_type="markdown", file_name=file_name, file_path=file_path
                        ),
                    )
                )
        return chunks

    def code_chunks(
        self, content: str, file_name: str, file_path: str, url: str, source_name: str
    ) -> List[DocumentChunk]:
        """Comment fragments for a code file, plus full content for important files."""
        min_length = self.config["min_chunk_length"]
        if not content or len(content.strip()) < min_length:
            return []

        extension = posixpath.splitext(file_name)[1].lower()
        metadata = self._metadata(
            file_type="code", file_name=file_name, file_path=file_path, language=extension.lstrip(".")
        )

        chunks = [
            DocumentChunk(
                id=make_chunk_id(source_name, file_path, "comment", i),
                content=block,
                title=f"{file_name} - code comments",
                url=url,
                source=source_name,
                category=ChunkCategory.CODE.value,
                metadata=dict(metadata),
            )
            for i, block in enumerate(extract_comment_blocks(content, extension, min_length))
        ]

        if is_important_file(file_name):
            chunks.append(
                DocumentChunk(
                    id=make_chunk_id(source_name, file_path, "full"),
                    content=content[: self.config["important_file_chars"]],
                    title=f"{file_name} - full source",
                    url=url,
                    source=source_name,
                    category=ChunkCategory.CODE.value,
                    metadata={**metadata, "is_full_file": True},
                )
            )
        return chunks
