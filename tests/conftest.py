"""
Shared fixtures and fakes for the test suite.
"""

import os
from typing import Dict, List, Optional, Sequence

import fakeredis
import pytest

from news_rag.config import reset_config
from news_rag.embeddings.embedding_service import cosine_similarity
from news_rag.models import SearchResult, VectorPoint
from news_rag.query.conversation_store import ConversationStore


CONFIG_ENV_KEYS = [
    'EMBEDDING_API_URL', 'JINA_API_KEY', 'EMBEDDING_MODEL', 'EMBEDDING_DIMENSION',
    'EMBEDDING_TIMEOUT', 'EMBEDDING_MAX_RETRIES', 'EMBEDDING_BASE_DELAY',
    'EMBEDDING_BACKOFF_UNIT', 'EMBEDDING_BATCH_SIZE', 'EMBEDDING_BATCH_DELAY',
    'EMBEDDING_ITEM_DELAY', 'CHUNK_SOFT_LIMIT', 'CHUNK_MIN_LENGTH', 'CHUNK_MAX_LENGTH',
    'QDRANT_URL', 'QDRANT_API_KEY', 'QDRANT_COLLECTION', 'QDRANT_TIMEOUT',
    'SCORE_THRESHOLD', 'TOP_K_DEFAULT', 'PAYLOAD_CONTENT_LIMIT', 'REDIS_URL',
    'SESSION_TTL', 'CHAT_HISTORY_TTL', 'HISTORY_CONTEXT_LIMIT', 'MAX_STORED_MESSAGES',
    'OLLAMA_BASE_URL', 'LLM_MODEL', 'LLM_TEMPERATURE', 'LLM_TOP_K', 'LLM_TOP_P',
    'LLM_MAX_TOKENS', 'LLM_TIMEOUT', 'NEWS_FEEDS', 'NEWS_SITEMAP_URL', 'MIN_ARTICLES',
    'FEED_TIMEOUT', 'APP_ENV',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate every test from a developer's .env and shell settings."""
    for key in CONFIG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def conversation_store(redis_client):
    return ConversationStore(redis_client, session_ttl=86400, history_ttl=3600, max_messages=100)


def make_result(point_id: int, score: float, title: str, link: Optional[str] = None,
                content: str = '') -> SearchResult:
    return SearchResult(
        id=point_id,
        score=score,
        payload={
            'title': title,
            'link': link or f"https://news.example.com/{point_id}",
            'content': content or f"Content of {title}",
        },
    )


TOPICS = ('election', 'weather', 'market', 'sport')


def topic_vector(text: str) -> List[float]:
    """Embed text as counts of topic keywords, plus a small constant axis."""
    lowered = text.lower()
    vector = [float(lowered.count(topic)) for topic in TOPICS]
    vector.append(0.05)
    return vector


class KeywordEmbeddingService:
    """Deterministic stand-in for the remote embedding provider."""

    def __init__(self):
        self.queries: List[str] = []
        self.batches: List[List[str]] = []

    def embed_query(self, text: str) -> List[float]:
        self.queries.append(text)
        return topic_vector(text)

    def embed_batch(self, texts: Sequence[str], batch_size=None, delay=None):
        self.batches.append(list(texts))
        return [topic_vector(text) for text in texts]

    def close(self):
        pass


class InMemoryVectorStore:
    """Collection semantics of the vector index held in a dict."""

    def __init__(self):
        self.points: Dict[int, VectorPoint] = {}
        self.dimension: Optional[int] = None
        self.closed = False

    def health_check(self) -> bool:
        return True

    def ensure_collection(self, dimension: int) -> bool:
        if self.dimension == dimension:
            return False
        self.points.clear()
        self.dimension = dimension
        return True

    def upsert(self, points: Sequence[VectorPoint]):
        for point in points:
            self.points[point.id] = point
        return {'status': 'completed'}

    def search(self, query_vector, k: int = 5, score_threshold: float = 0.7) -> List[SearchResult]:
        scored = [
            SearchResult(
                id=point.id,
                score=cosine_similarity(query_vector, point.vector),
                payload=point.payload,
            )
            for point in self.points.values()
        ]
        scored = [r for r in scored if r.score >= score_threshold]
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:k]

    def count(self) -> int:
        return len(self.points)

    def get_stats(self):
        return {
            'collection': 'test',
            'exists': self.dimension is not None,
            'total_points': len(self.points),
            'dimension': self.dimension,
            'distance': 'Cosine',
        }

    def close(self):
        self.closed = True
