"""Website scraper using a managed crawl service with a direct-fetch fallback."""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Set

import aiohttp
from bs4 import BeautifulSoup

from ...core.errors import ConfigurationError, DocumentProcessingError, ExternalApiError, ParsingError
from ...core.network import DEFAULT_HTTP_HEADERS, fetch_json, fetch_text
from ..chunking import split_into_chunks
from .base import (
    BaseScraper,
    ChunkCategory,
    ChunkEmitter,
    DocumentChunk,
    DocumentSource,
    make_chunk_id,
)

logger = logging.getLogger(__name__)

CRAWL_INCLUDE_PATHS = ["/docs/.*", "/rfcs/.*", "/guide/.*"]
CRAWL_EXCLUDE_PATHS = ["/blog/.*", "/news/.*", "/tags/.*", "/authors/.*"]

# Tried in order when the configured selector yields nothing useful
ALTERNATIVE_SELECTORS = [
    "article",
    ".markdown",
    ".content",
    "main",
    ".main-content",
    ".document-content",
    ".docs-content",
    ".page-content",
]
TITLE_SELECTORS = ["h1", "title"]
NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside"]

_BLANK_LINES = re.compile(r"\n\s*\n")
_LINES = re.compile(r"\n+")


class WebsiteScraper(BaseScraper):
    """Scraper for documentation websites.

    Prefers the managed crawl service; falls back to fetching and parsing the
    source URL directly when no key is configured, the job cannot be started,
    or the crawl yields no fragments.
    """

    name = "website"

    def __init__(self, settings=None, config: Optional[Dict[str, Any]] = None):
        super().__init__(settings, config)

        s = self.settings
        self.config = {
            "api_key": s.firecrawl_api_key,
            "api_url": s.firecrawl_api_url,
            "max_pages": s.crawl_max_pages,
            "max_depth": s.crawl_max_depth,
            "poll_interval": s.crawl_poll_interval,
            "max_polls": s.crawl_max_polls,
            "batch_size": s.website_batch_size,
            "max_chunks": s.website_max_chunks,
            "max_paragraphs_per_page": s.website_max_paragraphs_per_page,
            "max_chunk_size": s.chunk_max_size,
            "min_chunk_size": s.chunk_min_size,
            "chunk_overlap": s.chunk_overlap,
            "min_chunk_length": s.min_chunk_length,
            "timeout": s.request_timeout,
            "max_redirects": s.max_redirects,
            "max_retries": s.retry_max_retries,
            "initial_delay": s.retry_initial_delay,
            "backoff_factor": s.retry_backoff_factor,
            "user_agent": s.user_agent,
            **self.config,
        }

    def chunk_limit(self) -> Optional[int]:
        return self.config["max_chunks"]

    def _retry_kwargs(self) -> Dict[str, Any]:
        return {
            "max_retries": self.config["max_retries"],
            "initial_delay": self.config["initial_delay"],
            "backoff_factor": self.config["backoff_factor"],
        }

    async def scrape(self, source: DocumentSource, emitter: ChunkEmitter) -> Dict[str, Any]:
        headers = {**DEFAULT_HTTP_HEADERS, "User-Agent": self.config["user_agent"]}
        pages = 0

        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config["timeout"]), headers=headers
        ) as session:
            if self.config["api_key"]:
                try:
                    pages = await self._crawl(session, source, emitter)
                except DocumentProcessingError as e:
                    self.logger.warning(f"Crawl failed for {source.url}: {e}")
            else:
                self.logger.info("No crawl service key configured, using direct fetch")

            if emitter.total == 0:
                self.logger.info(f"Falling back to direct fetch for {source.url}")
                pages = await self._scrape_direct(session, source, emitter)

        return {"total_pages": pages}

    # ------------------------------------------------------------------
    # Managed crawl
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        api_key = self.config["api_key"]
        if not api_key:
            raise ConfigurationError("Crawl service API key is not configured", provider="crawl")
        if not api_key.startswith("fc-"):
            api_key = f"fc-{api_key}"
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def _crawl_payload(self, source: DocumentSource) -> Dict[str, Any]:
        return {
            "url": source.url,
            "excludePaths": CRAWL_EXCLUDE_PATHS,
            "includePaths": CRAWL_INCLUDE_PATHS,
            "maxDepth": self.config["max_depth"],
            "limit": self.config["max_pages"],
            "ignoreQueryParameters": True,
            "scrapeOptions": {
                "formats": ["markdown"],
                "onlyMainContent": True,
                "waitFor": 300,
                "blockAds": True,
                "timeout": 8000,
            },
        }

    async def _start_crawl(self, session: aiohttp.ClientSession, source: DocumentSource) -> str:
        data = await fetch_json(
            session,
            f"{self.config['api_url'].rstrip('/')}/crawl",
            method="POST",
            provider="crawl",
            headers=self._auth_headers(),
            json_body=self._crawl_payload(source),
            **self._retry_kwargs(),
        )
        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id or data.get("success") is False:
            raise ExternalApiError(
                f"Crawl job could not be started for {source.url}",
                provider="crawl",
                context={"response": str(data)[:500]},
            )
        self.logger.info(f"Started crawl job {job_id} for {source.url}")
        return job_id

    async def _crawl(
        self, session: aiohttp.ClientSession, source: DocumentSource, emitter: ChunkEmitter
    ) -> int:
        job_id = await self._start_crawl(session, source)
        status_url = f"{self.config['api_url'].rstrip('/')}/crawl/{job_id}"
        seen_urls: Set[str] = set()
        pages = 0

        for poll in range(self.config["max_polls"]):
            if emitter.full:
                break
            await asyncio.sleep(self.config["poll_interval"])

            status = await fetch_json(
                session, status_url, provider="crawl", headers=self._auth_headers(),
                **self._retry_kwargs(),
            )
            # Pages are processed as soon as each poll returns them
            pages += await self._process_crawl_pages(status.get("data") or [], source, emitter, seen_urls)

            state = status.get("status")
            self.logger.debug(f"Crawl {job_id} poll {poll + 1}: {state}, {pages} pages")

            if state == "completed":
                next_url = status.get("next")
                if next_url and not emitter.full:
                    more = await fetch_json(
                        session, next_url, provider="crawl", headers=self._auth_headers(),
                        **self._retry_kwargs(),
                    )
                    pages += await self._process_crawl_pages(
                        more.get("data") or [], source, emitter, seen_urls
                    )
                break
            if state == "failed":
                self.logger.warning(f"Crawl job {job_id} failed for {source.url}")
                break
        else:
            self.logger.warning(
                f"Crawl job {job_id} did not finish after {self.config['max_polls']} polls"
            )

        self.logger.info(f"Crawl for {source.url} yielded {pages} pages, {emitter.total} fragments")
        return pages

    async def _process_crawl_pages(
        self,
        pages: List[Dict[str, Any]],
        source: DocumentSource,
        emitter: ChunkEmitter,
        seen_urls: Set[str],
    ) -> int:
        processed = 0
        for page in pages:
            if emitter.full:
                break
            metadata = page.get("metadata") or {}
            page_url = metadata.get("sourceURL") or metadata.get("url") or source.url
            if page_url in seen_urls:
                continue
            seen_urls.add(page_url)

            markdown = page.get("markdown") or ""
            if not markdown.strip():
                continue
            title = metadata.get("title") or source.name
            await self._emit_page(
                markdown,
                page_url,
                title,
                source,
                emitter,
                scraper="crawl",
                max_paragraphs=self.config["max_paragraphs_per_page"],
            )
            processed += 1
        return processed

    # ------------------------------------------------------------------
    # Direct fetch
    # ------------------------------------------------------------------

    def _select_content(self, soup: BeautifulSoup, selector: Optional[str]):
        min_length = self.config["min_chunk_length"]
        candidates = [selector or "body", *ALTERNATIVE_SELECTORS, "body"]
        for candidate in candidates:
            element = soup.select_one(candidate)
            if element and len(element.get_text(strip=True)) > min_length:
                if candidate != (selector or "body"):
                    self.logger.info(f"Using alternative selector '{candidate}'")
                return element
        return None

    def _extract_title(self, soup: BeautifulSoup, fallback: str) -> str:
        for selector in TITLE_SELECTORS:
            element = soup.select_one(selector)
            if element and element.get_text(strip=True):
                return element.get_text(strip=True)
        return fallback

    async def _scrape_direct(
        self, session: aiohttp.ClientSession, source: DocumentSource, emitter: ChunkEmitter
    ) -> int:
        html = await fetch_text(
            session,
            source.url,
            provider="website",
            max_redirects=self.config["max_redirects"],
            **self._retry_kwargs(),
        )
        soup = BeautifulSoup(html, "html.parser")
        title = self._extract_title(soup, source.name)

        for tag in soup(NOISE_TAGS):
            tag.decompose()

        element = self._select_content(soup, source.selector)
        if element is None:
            raise ParsingError(f"No extractable content at {source.url}", provider="website")

        text = self._clean_content(element.get_text("\n"))
        await self._emit_page(
            text, source.url, title, source, emitter, scraper=self.name, by_line=True
        )
        return 1

    # ------------------------------------------------------------------
    # Fragment creation
    # ------------------------------------------------------------------

    def page_fragments(
        self, text: str, max_paragraphs: Optional[int] = None, by_line: bool = False
    ) -> List[str]:
        """Paragraph-filter page text and run it through the splitter.

        Markdown pages split on blank lines; extracted HTML text splits on
        every line break.
        """
        min_length = self.config["min_chunk_length"]
        separator = _LINES if by_line else _BLANK_LINES
        paragraphs = [p.strip() for p in separator.split(text) if len(p.strip()) > min_length]
        if max_paragraphs is not None:
            paragraphs = paragraphs[:max_paragraphs]
        if not paragraphs:
            return []

        pieces = split_into_chunks(
            "\n\n".join(paragraphs),
            max_size=self.config["max_chunk_size"],
            min_size=self.config["min_chunk_size"],
            overlap=self.config["chunk_overlap"],
        )
        return [p for p in pieces if len(p) >= min_length]

    async def _emit_page(
        self,
        text: str,
        page_url: str,
        title: str,
        source: DocumentSource,
        emitter: ChunkEmitter,
        scraper: str,
        max_paragraphs: Optional[int] = None,
        by_line: bool = False,
    ) -> None:
        pieces = self.page_fragments(text, max_paragraphs, by_line)
        chunks = [
            DocumentChunk(
                id=make_chunk_id(source.name, page_url, i),
                content=piece,
                title=title,
                url=page_url,
                source=source.name,
                category=ChunkCategory.DOCUMENTATION.value,
                metadata={"scraper": scraper, "page_url": page_url, "page_title": title, "index": i},
            )
            for i, piece in enumerate(pieces)
        ]

        batch_size = max(1, self.config["batch_size"])
        for start in range(0, len(chunks), batch_size):
            if emitter.full:
                self.logger.info(
                    f"Reached fragment ceiling ({self.config['max_chunks']}) for {source.name}"
                )
                return
            await emitter.emit(chunks[start : start + batch_size])
