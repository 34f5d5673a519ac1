"""
Tests for the Main Pipeline System

Remote clients are replaced with in-process fakes so that ingestion,
search and the lifecycle can be checked end to end.
"""

import pytest
from unittest.mock import Mock, patch

from news_rag.config import Config
from news_rag.embeddings.embedding_service import EmbeddingServiceError
from news_rag.main_pipeline import INGESTION_SOURCE, NewsQuerySystem
from news_rag.models import Article
from news_rag.query.llm_service import LLMService
from news_rag.storage.point_ids import PointIdGenerator

from conftest import InMemoryVectorStore, KeywordEmbeddingService


class FailingEmbeddingService(KeywordEmbeddingService):
    """Fails for any batch containing the given marker."""

    def __init__(self, marker):
        super().__init__()
        self.marker = marker

    def embed_batch(self, texts, batch_size=None, delay=None):
        if any(self.marker in text for text in texts):
            raise EmbeddingServiceError("provider unavailable", 503)
        return super().embed_batch(texts)


class PartialEmbeddingService(KeywordEmbeddingService):
    """Drops the embedding of every second text."""

    def embed_batch(self, texts, batch_size=None, delay=None):
        vectors = super().embed_batch(texts)
        return [v if i % 2 == 0 else None for i, v in enumerate(vectors)]


@pytest.fixture
def config():
    return Config(embedding_dimension=5, chunk_soft_limit=200, chunk_max_length=400)


@pytest.fixture
def vector_store():
    return InMemoryVectorStore()


@pytest.fixture
def llm_service():
    return Mock(spec=LLMService)


def build_system(config, conversation_store, llm_service, vector_store=None, embedding_service=None):
    return NewsQuerySystem(
        config=config,
        embedding_service=embedding_service or KeywordEmbeddingService(),
        vector_store=vector_store or InMemoryVectorStore(),
        conversation_store=conversation_store,
        llm_service=llm_service,
        id_generator=PointIdGenerator(clock=lambda: 1000),
    )


@pytest.fixture
def system(config, conversation_store, llm_service, vector_store):
    system = build_system(config, conversation_store, llm_service, vector_store=vector_store)
    system.initialize()
    yield system
    system.close()


def article(title, content, link=None):
    return Article(title=title, link=link or f"https://news.example.com/{title.lower().replace(' ', '-')}",
                   content=content)


class TestLifecycle:
    """Test initialization and teardown."""

    def test_initialize_creates_collection(self, system, vector_store):
        assert vector_store.dimension == 5

    def test_initialize_is_idempotent(self, config, conversation_store, llm_service):
        store = Mock(wraps=InMemoryVectorStore())
        system = build_system(config, conversation_store, llm_service, vector_store=store)

        system.initialize()
        system.initialize()

        store.ensure_collection.assert_called_once_with(5)

    def test_initialize_pings_redis(self, config, llm_service):
        redis_store = Mock()
        system = build_system(config, redis_store, llm_service)

        system.initialize()

        redis_store.ping.assert_called_once()

    def test_initialize_propagates_unreachable_store(self, config, conversation_store, llm_service):
        store = Mock()
        store.health_check.side_effect = RuntimeError("Unable to reach Qdrant")
        system = build_system(config, conversation_store, llm_service, vector_store=store)

        with pytest.raises(RuntimeError):
            system.initialize()
        store.ensure_collection.assert_not_called()

    def test_context_manager_closes_clients(self, config, llm_service):
        vector_store = InMemoryVectorStore()
        redis_store = Mock()

        with build_system(config, redis_store, llm_service, vector_store=vector_store) as system:
            assert system.vector_store is vector_store

        assert vector_store.closed is True
        redis_store.close.assert_called_once()

    def test_components_share_collaborators(self, system):
        assert system.rag_service.vector_store is system.vector_store
        assert system.chat_handler.rag_service is system.rag_service
        assert system.chat_handler.conversation_store is system.conversation_store

    def test_errors_exposed_outside_production(self, conversation_store, llm_service):
        dev = build_system(Config(), conversation_store, llm_service)
        prod = build_system(Config(app_env='production'), conversation_store, llm_service)

        assert dev.chat_handler.expose_errors is True
        assert prod.chat_handler.expose_errors is False

    def test_default_clients_are_built_from_config(self, monkeypatch):
        monkeypatch.setenv('JINA_API_KEY', 'test-key')
        monkeypatch.setenv('QDRANT_COLLECTION', 'custom_news')

        with patch('news_rag.query.llm_service.ChatOllama'):
            system = NewsQuerySystem(config=Config())

        assert system.embedding_service.api_key == 'test-key'
        assert system.vector_store.collection_name == 'custom_news'
        assert system.rag_service.score_threshold == 0.7
        assert system.chat_handler.history_limit == 10


class TestIngestArticle:
    """Test single-article ingestion."""

    def test_payload_fields(self, system, vector_store):
        result = system.ingest_article(article("Election night", "The election was decided late."))

        assert result['success'] is True
        assert result['skipped'] is False
        assert result['chunks_created'] == 1
        assert result['points_stored'] == 1
        assert result['processing_time'] >= 0

        point = vector_store.points[1000]
        assert point.vector == [1.0, 0.0, 0.0, 0.0, 0.05]
        assert point.payload['title'] == "Election night"
        assert point.payload['link'] == "https://news.example.com/election-night"
        assert point.payload['content'] == "The election was decided late."
        assert point.payload['source'] == INGESTION_SOURCE
        assert point.payload['timestamp']

    def test_payload_content_is_truncated(self, conversation_store, llm_service, vector_store):
        config = Config(embedding_dimension=5, payload_content_limit=1000)
        system = build_system(config, conversation_store, llm_service, vector_store=vector_store)
        long_text = "Market update. " * 200

        system.ingest_article(article("Markets", long_text))

        point = next(iter(vector_store.points.values()))
        assert len(point.payload['content']) == 1000

    def test_long_article_is_chunked(self, system, vector_store):
        text = " ".join(f"Sentence {i} about the election outcome." for i in range(30))

        result = system.ingest_article(article("Long read", text))

        assert result['chunks_created'] > 1
        assert result['points_stored'] == result['chunks_created']
        assert sorted(vector_store.points) == list(range(1000, 1000 + result['points_stored']))
        assert {p.payload['link'] for p in vector_store.points.values()} == {
            "https://news.example.com/long-read"
        }

    @pytest.mark.parametrize("content", ["", "   \n  ", "short"])
    def test_empty_or_tiny_content_is_skipped(self, system, vector_store, content):
        result = system.ingest_article(article("Empty", content))

        assert result['success'] is True
        assert result['skipped'] is True
        assert result['points_stored'] == 0
        assert vector_store.points == {}

    def test_missing_embeddings_are_dropped(self, config, conversation_store, llm_service, vector_store):
        system = build_system(config, conversation_store, llm_service, vector_store=vector_store,
                              embedding_service=PartialEmbeddingService())
        text = " ".join(f"Sentence {i} about the weather front." for i in range(30))

        result = system.ingest_article(article("Weather", text))

        assert result['success'] is True
        assert 0 < result['points_stored'] < result['chunks_created']
        assert len(vector_store.points) == result['points_stored']

    def test_embedding_failure_is_reported(self, config, conversation_store, llm_service, vector_store):
        system = build_system(config, conversation_store, llm_service, vector_store=vector_store,
                              embedding_service=FailingEmbeddingService("poison"))

        result = system.ingest_article(article("Bad", "This article contains poison text."))

        assert result['success'] is False
        assert "provider unavailable" in result['error']
        assert vector_store.points == {}


class TestIngestArticles:
    """Test batch ingestion."""

    def test_one_failure_does_not_abort_the_run(self, config, conversation_store, llm_service, vector_store):
        system = build_system(config, conversation_store, llm_service, vector_store=vector_store,
                              embedding_service=FailingEmbeddingService("poison"))
        articles = [
            article("First", "Election coverage from the capital."),
            article("Second", "This one carries poison content."),
            article("Third", "Weather warnings across the coast."),
            article("Fourth", ""),
        ]

        summary = system.ingest_articles(articles, show_progress=False)

        assert summary['total'] == 4
        assert summary['successful'] == 2
        assert summary['failed'] == 1
        assert summary['skipped'] == 1
        assert summary['points_stored'] == 2
        assert len(summary['details']) == 4
        assert summary['details'][1]['link'] == "https://news.example.com/second"
        assert len(vector_store.points) == 2

    def test_accepts_any_iterable(self, system):
        articles = (article(f"Story {i}", f"Market story number {i} today.") for i in range(3))

        summary = system.ingest_articles(articles, show_progress=False)

        assert summary['total'] == 3
        assert summary['points_stored'] == 3

    def test_ids_are_unique_across_articles(self, system, vector_store):
        articles = [article(f"Story {i}", f"Sport result number {i} tonight.") for i in range(5)]

        system.ingest_articles(articles, show_progress=False)

        assert sorted(vector_store.points) == [1000, 1001, 1002, 1003, 1004]


class TestQueries:
    """Test search and statistics."""

    def test_search_returns_relevant_chunks(self, system):
        system.ingest_articles([
            article("Vote", "Election results were certified."),
            article("Storm", "Weather service issues a storm warning."),
        ], show_progress=False)

        results = system.search("election")

        assert [r.title for r in results] == ["Vote"]

    def test_search_empty_query(self, system):
        assert system.search("") == []
        assert system.search("   ") == []

    def test_search_top_k(self, system):
        system.ingest_articles(
            [article(f"Vote {i}", f"Election update number {i}.") for i in range(4)],
            show_progress=False,
        )

        assert len(system.search("election", top_k=2)) == 2

    def test_stats(self, system):
        system.ingest_article(article("Vote", "Election results were certified."))

        stats = system.get_stats()

        assert stats['points_count'] == 1
        assert stats['dimension'] == 5
        assert stats['embedding_model'] == "jina-embeddings-v2-base-en"
        assert stats['llm_model'] == "llama3.1:latest"
        assert stats['score_threshold'] == 0.7
