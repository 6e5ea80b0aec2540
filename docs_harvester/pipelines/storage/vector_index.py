"""Vector index client: embeds fragments, upserts them and answers similarity queries."""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from redisvl.index.index import AsyncSearchIndex
from redisvl.query import VectorQuery
from redisvl.query.filter import FilterExpression, Tag
from redisvl.redis.utils import array_to_buffer

from ...core.errors import ErrorKind, StorageError, ValidationError, wrap_error
from ...core.keys import RedisKeys
from ..scraper.base import DocumentChunk

logger = logging.getLogger(__name__)

DELETE_ALL = "*"
FILTERABLE_FIELDS = ("id", "url", "source", "category")
RETURN_FIELDS = ["id", "title", "content", "url", "source", "category", "created_at", "metadata"]


class Embedder(Protocol):
    """Batch text -> vector call (redisvl vectorizers satisfy this)."""

    async def aembed_many(self, texts: List[str], **kwargs: Any) -> List[List[float]]: ...

    async def aembed(self, text: str, **kwargs: Any) -> List[float]: ...


class VectorIndexBackend(Protocol):
    """Storage capabilities the client relies on.

    Every backend implements the full set; there is no runtime probing.
    """

    async def exists(self) -> bool: ...

    async def create(self, overwrite: bool = False) -> None: ...

    async def upsert(self, records: List[Dict[str, Any]]) -> int: ...

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filters: Optional[Dict[str, str]] = None,
    ) -> List[Tuple[Dict[str, Any], float]]: ...

    async def delete(self, ids: Sequence[str]) -> int: ...

    async def rebuild(self) -> int: ...

    async def count(self) -> int: ...

    async def close(self) -> None: ...


class RedisVectorBackend:
    """Redis search index backend built on redisvl."""

    def __init__(self, index: AsyncSearchIndex):
        self.index = index

    @property
    def index_name(self) -> str:
        return self.index.schema.index.name

    async def exists(self) -> bool:
        return await self.index.exists()

    async def create(self, overwrite: bool = False) -> None:
        await self.index.create(overwrite=overwrite)

    async def upsert(self, records: List[Dict[str, Any]]) -> int:
        data = []
        for record in records:
            data.append(
                {
                    **record,
                    "metadata": json.dumps(record.get("metadata") or {}, ensure_ascii=False),
                    "vector": array_to_buffer(record["vector"], dtype="float32"),
                }
            )
        keys = await self.index.load(data=data, id_field="id")
        return len(keys)

    def _filter_expression(self, filters: Dict[str, str]) -> Optional[FilterExpression]:
        expression: Optional[FilterExpression] = None
        for field, value in filters.items():
            if field not in FILTERABLE_FIELDS:
                raise ValidationError(
                    f"Unsupported filter field '{field}' (expected one of {FILTERABLE_FIELDS})"
                )
            clause = Tag(field) == value
            expression = clause if expression is None else expression & clause
        return expression

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filters: Optional[Dict[str, str]] = None,
    ) -> List[Tuple[Dict[str, Any], float]]:
        vector_query = VectorQuery(
            vector=vector,
            vector_field_name="vector",
            return_fields=RETURN_FIELDS,
            num_results=top_k,
        )
        if filters:
            expression = self._filter_expression(filters)
            if expression is not None:
                vector_query.set_filter(expression)

        results = await self.index.query(vector_query)

        matches = []
        for doc in results:
            # Cosine distance -> similarity
            distance = float(doc.get("vector_distance", 1.0))
            record = {field: doc.get(field) for field in RETURN_FIELDS}
            raw_metadata = record.get("metadata")
            try:
                record["metadata"] = json.loads(raw_metadata) if raw_metadata else {}
            except (TypeError, ValueError):
                record["metadata"] = {}
            matches.append((record, 1.0 - distance))
        return matches

    async def delete(self, ids: Sequence[str]) -> int:
        keys = [RedisKeys.fragment(self.index_name, fragment_id) for fragment_id in ids]
        return await self.index.drop_keys(keys)

    async def count(self) -> int:
        info = await self.index.info()
        return int(info.get("num_docs", 0))

    async def rebuild(self) -> int:
        exists = await self.exists()
        previous = await self.count() if exists else 0
        if exists:
            await self.index.delete(drop=True)
        await self.index.create(overwrite=True)
        return previous

    async def close(self) -> None:
        await self.index.disconnect()


class VectorIndexClient:
    """Embeds and upserts fragment batches; answers similarity queries."""

    def __init__(
        self,
        backend: VectorIndexBackend,
        embedder: Embedder,
        batch_size: int = 10,
        similarity_threshold: float = 0.7,
        max_results: int = 10,
    ):
        self.backend = backend
        self.embedder = embedder
        self.batch_size = max(1, batch_size)
        self.similarity_threshold = similarity_threshold
        self.max_results = max_results
        self._initialized = False

    async def initialize(self) -> None:
        """Open or create the index. Safe to call repeatedly."""
        if self._initialized:
            return
        try:
            if not await self.backend.exists():
                await self.backend.create()
                logger.info("Created vector index")
            else:
                logger.debug("Vector index already exists")
        except Exception as e:
            raise StorageError(
                f"Failed to initialize vector index: {e}", provider="vector_index", cause=e
            ) from e
        self._initialized = True

    @staticmethod
    def _to_record(chunk: DocumentChunk, vector: List[float]) -> Dict[str, Any]:
        return {
            "id": chunk.id,
            "title": chunk.title,
            "content": chunk.content,
            "url": chunk.url,
            "source": chunk.source,
            "category": chunk.category,
            "created_at": chunk.created_at,
            "metadata": chunk.metadata,
            "vector": vector,
        }

    async def _embed(self, chunks: List[DocumentChunk]) -> List[Tuple[DocumentChunk, List[float]]]:
        texts = [chunk.content for chunk in chunks]
        try:
            vectors = await self.embedder.aembed_many(texts)
            return list(zip(chunks, vectors))
        except Exception as e:
            logger.warning(f"Batch embedding failed ({e}); embedding {len(chunks)} items one by one")

        embedded = []
        for chunk in chunks:
            try:
                embedded.append((chunk, await self.embedder.aembed(chunk.content)))
            except Exception as e:
                logger.error(f"Failed to embed fragment {chunk.id}: {e}")
        return embedded

    async def _upsert(self, records: List[Dict[str, Any]]) -> int:
        try:
            return await self.backend.upsert(records)
        except Exception as e:
            logger.warning(f"Bulk upsert failed ({e}); upserting {len(records)} items one by one")

        stored = 0
        for record in records:
            try:
                stored += await self.backend.upsert([record])
            except Exception as e:
                logger.error(f"Failed to upsert fragment {record['id']}: {e}")
        return stored

    async def store_documents(self, chunks: List[DocumentChunk]) -> int:
        """Embed and upsert fragments in sub-batches. Returns the stored count."""
        if not chunks:
            return 0
        await self.initialize()

        stored = 0
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start : start + self.batch_size]
            embedded = await self._embed(batch)
            if not embedded:
                continue
            records = [self._to_record(chunk, vector) for chunk, vector in embedded]
            stored += await self._upsert(records)

        logger.debug(f"Stored {stored}/{len(chunks)} fragments")
        return stored

    async def query_by_text(
        self,
        text: str,
        max_results: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        filters: Optional[Dict[str, str]] = None,
    ) -> List[Tuple[DocumentChunk, float]]:
        """Return (fragment, score) pairs above the threshold, best first."""
        await self.initialize()
        top_k = max_results or self.max_results
        threshold = (
            self.similarity_threshold if similarity_threshold is None else similarity_threshold
        )

        try:
            vector = await self.embedder.aembed(text)
            matches = await self.backend.query(vector, top_k, filters)
        except ValidationError:
            raise
        except Exception as e:
            raise wrap_error(e, ErrorKind.STORAGE_ERROR, provider="vector_index") from e

        results = []
        for record, score in matches:
            if score < threshold:
                continue
            chunk = DocumentChunk(
                id=str(record.get("id") or ""),
                content=record.get("content") or "",
                title=record.get("title") or "",
                url=record.get("url") or "",
                source=record.get("source") or "",
                category=record.get("category") or "documentation",
                created_at=int(float(record.get("created_at") or 0)),
                metadata=record.get("metadata") or {},
            )
            results.append((chunk, score))

        results.sort(key=lambda pair: pair[1], reverse=True)
        return results[:top_k]

    async def delete_documents(self, ids: Sequence[str]) -> int:
        """Delete fragments by id; ``["*"]`` drops and recreates the index."""
        if not ids:
            return 0
        await self.initialize()

        if list(ids) == [DELETE_ALL]:
            try:
                deleted = await self.backend.rebuild()
            except Exception as e:
                raise StorageError(
                    f"Failed to rebuild vector index: {e}", provider="vector_index", cause=e
                ) from e
            logger.info(f"Rebuilt vector index, removed {deleted} fragments")
            return deleted

        try:
            return await self.backend.delete(list(ids))
        except Exception as e:
            logger.warning(f"Bulk delete failed ({e}); deleting {len(ids)} ids one by one")

        deleted = 0
        for fragment_id in ids:
            try:
                deleted += await self.backend.delete([fragment_id])
            except Exception as e:
                logger.error(f"Failed to delete fragment {fragment_id}: {e}")
        return deleted

    async def count(self) -> int:
        await self.initialize()
        return await self.backend.count()

    async def close(self) -> None:
        """Release the backend connection."""
        try:
            await self.backend.close()
        finally:
            self._initialized = False
