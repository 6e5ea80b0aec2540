"""
Test configuration and fixtures for Docs Harvester.
"""

import hashlib
import math
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from docs_harvester.core.config import Settings
from docs_harvester.pipelines.context import PipelineContext
from docs_harvester.pipelines.scraper.base import DocumentChunk
from docs_harvester.pipelines.storage.vector_index import VectorIndexClient

_WORDS = re.compile(r"\w+")


class FakeEmbedder:
    """Deterministic bag-of-words embedder; similar texts get similar vectors."""

    def __init__(self, dim: int = 64):
        self.dim = dim
        self.batch_calls: List[List[str]] = []
        self.fail_batches = False

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for word in _WORDS.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        return [v / norm for v in vec] if norm else vec

    async def aembed_many(self, texts: List[str], **kwargs: Any) -> List[List[float]]:
        self.batch_calls.append(list(texts))
        if self.fail_batches:
            raise RuntimeError("batch embedding unavailable")
        return [self.vector(text) for text in texts]

    async def aembed(self, text: str, **kwargs: Any) -> List[float]:
        return self.vector(text)


class InMemoryVectorBackend:
    """Vector index backend keeping records in a dict."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.created = False
        self.closed = False
        self.upsert_calls = 0

    async def exists(self) -> bool:
        return self.created

    async def create(self, overwrite: bool = False) -> None:
        if overwrite:
            self.records.clear()
        self.created = True

    async def upsert(self, records: List[Dict[str, Any]]) -> int:
        self.upsert_calls += 1
        for record in records:
            self.records[record["id"]] = dict(record)
        return len(records)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filters: Optional[Dict[str, str]] = None,
    ) -> List[Tuple[Dict[str, Any], float]]:
        matches = []
        for record in self.records.values():
            if filters and any(record.get(k) != v for k, v in filters.items()):
                continue
            score = sum(a * b for a, b in zip(vector, record["vector"]))
            matches.append(({k: v for k, v in record.items() if k != "vector"}, score))
        matches.sort(key=lambda pair: pair[1], reverse=True)
        return matches[:top_k]

    async def delete(self, ids: Sequence[str]) -> int:
        deleted = 0
        for fragment_id in ids:
            if self.records.pop(fragment_id, None) is not None:
                deleted += 1
        return deleted

    async def rebuild(self) -> int:
        previous = len(self.records)
        self.records.clear()
        self.created = True
        return previous

    async def count(self) -> int:
        return len(self.records)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings(tmp_path):
    """Settings with no credentials, no delays and a temporary cache directory."""
    return Settings(
        cache_dir=str(tmp_path / "cache"),
        openai_api_key=None,
        firecrawl_api_key=None,
        github_token=None,
        github_only_dirs=None,
        sources_file=None,
        retry_initial_delay=0.0,
        crawl_poll_interval=0.0,
        github_file_delay=0.0,
        github_dir_delay=0.0,
        file_batch_pause=0.0,
        processor_interval=0.0,
        source_delay=0.0,
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def backend():
    return InMemoryVectorBackend()


@pytest.fixture
def index_client(backend, embedder):
    return VectorIndexClient(backend, embedder, batch_size=10, similarity_threshold=0.0)


@pytest.fixture
def context(settings, index_client):
    """Pipeline context whose index client is the in-memory one."""
    return PipelineContext(settings, index_client_factory=lambda _settings: index_client)


@pytest.fixture
def make_chunk():
    """Factory for fragments with sensible defaults."""

    def _make(
        content: str,
        id: Optional[str] = None,
        title: str = "Page",
        url: str = "https://docs.example.com/page",
        source: str = "Example Docs",
        category: str = "documentation",
        created_at: int = 1_700_000_000_000,
        **metadata: Any,
    ) -> DocumentChunk:
        return DocumentChunk(
            id=id or hashlib.sha1(f"{source}{url}{content}".encode()).hexdigest()[:12],
            content=content,
            title=title,
            url=url,
            source=source,
            category=category,
            created_at=created_at,
            metadata=metadata,
        )

    return _make
