"""Unit tests for the vector index client."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docs_harvester.core.errors import StorageError
from docs_harvester.pipelines.storage.vector_index import (
    DELETE_ALL,
    RedisVectorBackend,
    VectorIndexClient,
)


@pytest.fixture
def fragments(make_chunk):
    return [
        make_chunk(
            "Cells are the basic storage unit holding capacity lock and data.",
            id="cells",
            url="https://docs.example.com/cells",
            category="documentation",
        ),
        make_chunk(
            "Transactions consume input cells and create output cells.",
            id="tx",
            url="https://docs.example.com/tx",
            category="documentation",
        ),
        make_chunk(
            "The readme explains how to build the node from source with cargo.",
            id="readme",
            url="https://github.com/a/b",
            source="Node Repo",
            category="readme",
        ),
    ]


class TestVectorIndexClient:
    """Test storing and querying through the backend protocol."""

    @pytest.mark.asyncio
    async def test_initialize_creates_index_once(self, index_client, backend):
        backend.create = AsyncMock(wraps=backend.create)

        await index_client.initialize()
        await index_client.initialize()

        backend.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_initialize_failure_is_storage_error(self, embedder):
        backend = MagicMock()
        backend.exists = AsyncMock(side_effect=ConnectionError("refused"))
        client = VectorIndexClient(backend, embedder)

        with pytest.raises(StorageError):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_store_then_query_returns_best_match(self, index_client, fragments):
        stored = await index_client.store_documents(fragments)

        results = await index_client.query_by_text("how do transactions consume cells", max_results=3)

        assert stored == 3
        assert results[0][0].id == "tx"
        assert results[0][0].content == fragments[1].content
        scores = [score for _, score in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_store_empty_is_noop(self, index_client, backend):
        assert await index_client.store_documents([]) == 0
        assert backend.upsert_calls == 0

    @pytest.mark.asyncio
    async def test_store_uses_sub_batches(self, backend, embedder, make_chunk):
        client = VectorIndexClient(backend, embedder, batch_size=2)
        chunks = [make_chunk(f"fragment number {i} about cells", id=f"c{i}") for i in range(5)]

        stored = await client.store_documents(chunks)

        assert stored == 5
        assert [len(call) for call in embedder.batch_calls] == [2, 2, 1]
        assert backend.upsert_calls == 3

    @pytest.mark.asyncio
    async def test_batch_embedding_failure_falls_back_to_single(self, index_client, embedder, fragments):
        embedder.fail_batches = True

        stored = await index_client.store_documents(fragments)

        assert stored == 3

    @pytest.mark.asyncio
    async def test_bulk_upsert_failure_falls_back_to_single(self, embedder, fragments):
        backend = MagicMock()
        backend.exists = AsyncMock(return_value=True)
        # Bulk call fails, the first single call fails, the others succeed
        backend.upsert = AsyncMock(side_effect=[RuntimeError("pipeline"), RuntimeError("one"), 1, 1])
        client = VectorIndexClient(backend, embedder)

        stored = await client.store_documents(fragments)

        assert stored == 2
        assert backend.upsert.await_count == 4

    @pytest.mark.asyncio
    async def test_query_filters(self, index_client, fragments):
        await index_client.store_documents(fragments)

        results = await index_client.query_by_text("build the node", filters={"category": "readme"})

        assert [chunk.id for chunk, _ in results] == ["readme"]
        assert results[0][0].source == "Node Repo"

    @pytest.mark.asyncio
    async def test_query_threshold(self, index_client, fragments):
        await index_client.store_documents(fragments)

        results = await index_client.query_by_text("cells", similarity_threshold=0.99)

        assert results == []

    @pytest.mark.asyncio
    async def test_query_failure_is_storage_error(self, index_client, backend):
        backend.query = AsyncMock(side_effect=RuntimeError("index offline"))

        with pytest.raises(StorageError):
            await index_client.query_by_text("anything")

    @pytest.mark.asyncio
    async def test_delete_by_id(self, index_client, backend, fragments):
        await index_client.store_documents(fragments)

        deleted = await index_client.delete_documents(["tx", "missing"])

        assert deleted == 1
        assert set(backend.records) == {"cells", "readme"}

    @pytest.mark.asyncio
    async def test_delete_all_rebuilds_index(self, index_client, backend, fragments):
        await index_client.store_documents(fragments)

        deleted = await index_client.delete_documents([DELETE_ALL])

        assert deleted == 3
        assert await index_client.count() == 0
        assert backend.created is True

    @pytest.mark.asyncio
    async def test_close(self, index_client, backend):
        await index_client.initialize()
        await index_client.close()

        assert backend.closed is True


class TestRedisVectorBackend:
    """Test the redisvl adapter against a mocked AsyncSearchIndex."""

    @pytest.fixture
    def index(self):
        index = MagicMock()
        index.schema.index.name = "docs_fragments"
        index.exists = AsyncMock(return_value=True)
        index.create = AsyncMock()
        index.delete = AsyncMock()
        index.load = AsyncMock(return_value=["docs_fragments:a"])
        index.drop_keys = AsyncMock(return_value=2)
        index.info = AsyncMock(return_value={"num_docs": "7"})
        index.query = AsyncMock(
            return_value=[
                {
                    "id": "a",
                    "title": "Cells",
                    "content": "Cells hold state.",
                    "url": "https://docs.example.com/cells",
                    "source": "Example Docs",
                    "category": "documentation",
                    "created_at": "1700000000000",
                    "metadata": '{"page_title": "Cells"}',
                    "vector_distance": "0.25",
                }
            ]
        )
        return index

    @pytest.mark.asyncio
    async def test_upsert_serializes_metadata_and_vector(self, index):
        backend = RedisVectorBackend(index)

        stored = await backend.upsert([{"id": "a", "metadata": {"k": "v"}, "vector": [0.1, 0.2]}])

        assert stored == 1
        data = index.load.call_args.kwargs["data"]
        assert data[0]["metadata"] == '{"k": "v"}'
        assert isinstance(data[0]["vector"], bytes)
        assert index.load.call_args.kwargs["id_field"] == "id"

    @pytest.mark.asyncio
    async def test_query_converts_distance_to_similarity(self, index):
        backend = RedisVectorBackend(index)

        matches = await backend.query([0.1, 0.2], top_k=5, filters={"source": "Example Docs"})

        record, score = matches[0]
        assert score == pytest.approx(0.75)
        assert record["metadata"] == {"page_title": "Cells"}

    @pytest.mark.asyncio
    async def test_delete_uses_prefixed_keys(self, index):
        backend = RedisVectorBackend(index)

        await backend.delete(["a", "b"])

        index.drop_keys.assert_awaited_once_with(["docs_fragments:a", "docs_fragments:b"])

    @pytest.mark.asyncio
    async def test_rebuild_returns_previous_count(self, index):
        backend = RedisVectorBackend(index)

        previous = await backend.rebuild()

        assert previous == 7
        index.delete.assert_awaited_once_with(drop=True)
        index.create.assert_awaited_once_with(overwrite=True)
