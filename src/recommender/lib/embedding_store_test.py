"""Tests for the embedding store."""

import asyncio

import pytest

from ..config import Settings
from ..errors import EmbeddingGenerationFailed, ProviderUnavailable
from .elasticsearch import EMBEDDINGS_INDEX, PAPERS_INDEX, POSTS_INDEX
from .embedding_store import EmbeddingKey, EmbeddingStore
from .embeddings import EmbeddingConfig, EmbeddingProvider, LocalFallbackProvider
from .similarity import SimilarityEngine

CONFIG = EmbeddingConfig(provider="local", model="m1")


class CountingProvider(EmbeddingProvider):
    """Returns a fixed vector per call number and counts calls."""

    def __init__(self, fail_on: set[str] | None = None):
        self.calls: list[str] = []
        self._fail_on = fail_on or set()

    @property
    def name(self) -> str:
        return "counting"

    async def embed(self, text, config):
        self.calls.append(text)
        if text in self._fail_on:
            raise ProviderUnavailable("boom")
        return [float(len(self.calls)), 1.0]


# ---------------------------------------------------------------------------
# EmbeddingKey
# ---------------------------------------------------------------------------

class TestEmbeddingKey:
    def test_doc_id_joins_parts(self):
        assert EmbeddingKey("post", "p1", "m1").doc_id == "post:p1:m1"

    def test_separator_in_parts_cannot_collide(self):
        a = EmbeddingKey("post", "a:b", "c")
        b = EmbeddingKey("post", "a", "b:c")
        assert a.doc_id != b.doc_id


# ---------------------------------------------------------------------------
# get_or_create
# ---------------------------------------------------------------------------

class TestGetOrCreate:
    @pytest.mark.asyncio
    async def test_second_call_returns_stored_vector_and_ignores_text(self, fake_es):
        provider = CountingProvider()
        store = EmbeddingStore(fake_es, provider)

        first = await store.get_or_create("post", "p1", "original text", CONFIG)
        second = await store.get_or_create("post", "p1", "edited text", CONFIG)

        assert first == second
        assert provider.calls == ["original text"]
        assert len(fake_es.docs(EMBEDDINGS_INDEX)) == 1

    @pytest.mark.asyncio
    async def test_new_model_creates_new_record(self, fake_es):
        store = EmbeddingStore(fake_es, CountingProvider())
        await store.get_or_create("post", "p1", "text", CONFIG)
        await store.get_or_create("post", "p1", "text", EmbeddingConfig(model="m2"))
        assert len(fake_es.docs(EMBEDDINGS_INDEX)) == 2

    @pytest.mark.asyncio
    async def test_record_fields(self, fake_es):
        store = EmbeddingStore(fake_es, CountingProvider())
        await store.get_or_create("paper", "x1", "t" * 600, CONFIG)
        (record,) = fake_es.docs(EMBEDDINGS_INDEX)
        assert record["content_type"] == "paper"
        assert record["content_id"] == "x1"
        assert record["model"] == "m1"
        assert len(record["source_text_snippet"]) == 500

    @pytest.mark.asyncio
    async def test_conflicting_create_keeps_first_vector(self, fake_es):
        store = EmbeddingStore(fake_es, CountingProvider())
        key = EmbeddingKey("post", "p1", "m1")
        real_get = fake_es.get

        async def racing_get(*, index, id, **kwargs):
            # The first lookup misses; another writer then stores the key.
            if not racing_get.raced:
                racing_get.raced = True
                try:
                    return await real_get(index=index, id=id)
                finally:
                    fake_es.add(
                        EMBEDDINGS_INDEX,
                        {
                            "content_type": "post",
                            "content_id": "p1",
                            "model": "m1",
                            "vector": [9.0, 9.0],
                            "source_text_snippet": "",
                            "created_at": "2024-01-01T00:00:00+00:00",
                        },
                        id=key.doc_id,
                    )
            return await real_get(index=index, id=id)

        racing_get.raced = False
        fake_es.get = racing_get

        vector = await store.get_or_create("post", "p1", "text", CONFIG)

        assert vector == [9.0, 9.0]
        assert len(fake_es.docs(EMBEDDINGS_INDEX)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_store_one_record(self, fake_es):
        store = EmbeddingStore(fake_es, LocalFallbackProvider())
        vectors = await asyncio.gather(
            *(store.get_or_create("post", "p1", "same text", CONFIG) for _ in range(5))
        )
        assert all(v == vectors[0] for v in vectors)
        assert len(fake_es.docs(EMBEDDINGS_INDEX)) == 1

    @pytest.mark.asyncio
    async def test_provider_failure_writes_nothing(self, fake_es):
        store = EmbeddingStore(fake_es, CountingProvider(fail_on={"bad"}))
        with pytest.raises(EmbeddingGenerationFailed):
            await store.get_or_create("post", "p1", "bad", CONFIG)
        assert fake_es.docs(EMBEDDINGS_INDEX) == []

    @pytest.mark.asyncio
    async def test_unknown_content_type_rejected(self, fake_es):
        store = EmbeddingStore(fake_es, CountingProvider())
        with pytest.raises(ValueError):
            await store.get_or_create("comment", "c1", "text", CONFIG)


# ---------------------------------------------------------------------------
# User profiles, backfill and purge
# ---------------------------------------------------------------------------

class TestCreateUserProfileEmbedding:
    @pytest.mark.asyncio
    async def test_joins_interests(self, fake_es):
        provider = CountingProvider()
        store = EmbeddingStore(fake_es, provider)
        await store.create_user_profile_embedding("u1", ["genomics", "statistics"], CONFIG)
        assert provider.calls == ["genomics. statistics"]
        (record,) = fake_es.docs(EMBEDDINGS_INDEX)
        assert record["content_type"] == "user_profile"


class TestBatchBackfill:
    @pytest.mark.asyncio
    async def test_counts_processed_and_errors(self, fake_es):
        fake_es.add(POSTS_INDEX, {"id": "p1", "title": "Good", "content": "one", "published": True})
        fake_es.add(POSTS_INDEX, {"id": "p2", "title": "Bad", "content": "two", "published": True})
        fake_es.add(POSTS_INDEX, {"id": "p3", "title": "Draft", "content": "x", "published": False})
        store = EmbeddingStore(fake_es, CountingProvider(fail_on={"Bad two"}))

        result = await store.batch_backfill("post", CONFIG, batch_size=10)

        assert result.processed == 1
        assert result.errors == 1
        assert [r["content_id"] for r in fake_es.docs(EMBEDDINGS_INDEX)] == ["p1"]

    @pytest.mark.asyncio
    async def test_papers_use_title_and_abstract(self, fake_es):
        fake_es.add(PAPERS_INDEX, {"id": "x1", "title": "Title", "abstract": "Abstract"})
        provider = CountingProvider()
        store = EmbeddingStore(fake_es, provider)

        result = await store.batch_backfill("paper", CONFIG)

        assert result.processed == 1
        assert provider.calls == ["Title Abstract"]


class TestPurgeModel:
    @pytest.mark.asyncio
    async def test_removes_only_that_model(self, fake_es):
        store = EmbeddingStore(fake_es, CountingProvider())
        await store.get_or_create("post", "p1", "text", EmbeddingConfig(model="old"))
        await store.get_or_create("post", "p1", "text", EmbeddingConfig(model="new"))

        deleted = await store.purge_model("old")

        assert deleted == 1
        assert [r["model"] for r in fake_es.docs(EMBEDDINGS_INDEX)] == ["new"]


# ---------------------------------------------------------------------------
# Switching providers under the default model name
# ---------------------------------------------------------------------------

class WideProvider(EmbeddingProvider):
    """Stands in for a remote model with 1536-dim vectors."""

    @property
    def name(self) -> str:
        return "wide"

    async def embed(self, text, config):
        return [1.0] * 1536


class TestProviderSwitch:
    @pytest.mark.asyncio
    async def test_hash_and_remote_vectors_never_share_a_key(self, fake_es, monkeypatch):
        monkeypatch.delenv("EMBEDDING_MODEL", raising=False)
        monkeypatch.setenv("EMBEDDING_PROVIDER", "local")
        local_config = Settings().embedding_config
        local_store = EmbeddingStore(fake_es, LocalFallbackProvider())
        await local_store.get_or_create("post", "p1", "first text", local_config)
        await local_store.get_or_create("post", "p2", "second text", local_config)

        monkeypatch.setenv("EMBEDDING_PROVIDER", "openai")
        monkeypatch.setenv("EMBEDDING_API_KEY", "sk-test")
        remote_config = Settings().embedding_config
        remote_store = EmbeddingStore(fake_es, WideProvider())
        vector = await remote_store.get_or_create("post", "p1", "first text", remote_config)

        assert local_config.model != remote_config.model
        assert len(vector) == 1536
        assert len(fake_es.docs(EMBEDDINGS_INDEX)) == 3

        similar = await SimilarityEngine(fake_es).find_similar(
            vector, "post", min_similarity=0.0, model=remote_config.model
        )
        assert [s.content_id for s in similar] == ["p1"]
