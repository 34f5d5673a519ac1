"""
Main Pipeline System

Wires all components into one explicitly constructed system with an
init/teardown lifecycle:
- Article ingestion (chunk → embed → store)
- Semantic search
- Chat question answering with conversation history
- System statistics
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from tqdm import tqdm

from .config import Config, get_config
from .embeddings.embedding_service import EmbeddingService, is_retryable_embedding_error
from .embeddings.text_processing import TextChunker
from .models import Article, SearchResult, VectorPoint, utc_now_iso
from .query.conversation_store import ConversationStore
from .query.handler import ChatHandler
from .query.llm_service import LLMService
from .query.rag_service import RAGService
from .retry import RetryPolicy
from .storage.point_ids import PointIdGenerator
from .storage.vector_store import QdrantVectorStore

logger = logging.getLogger(__name__)

INGESTION_SOURCE = "news_ingestion"


class NewsQuerySystem:
    """
    Main pipeline system that integrates all components.

    Every client is built from ``Config`` unless an instance is injected.
    Call ``initialize()`` before use and ``close()`` afterwards, or use the
    system as a context manager.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[QdrantVectorStore] = None,
        conversation_store: Optional[ConversationStore] = None,
        llm_service: Optional[LLMService] = None,
        chunker: Optional[TextChunker] = None,
        id_generator: Optional[PointIdGenerator] = None
    ):
        """
        Initialize the news query system.

        Args:
            config: Configuration (default: global config)
            embedding_service: EmbeddingService instance (or None for default)
            vector_store: QdrantVectorStore instance (or None for default)
            conversation_store: ConversationStore instance (or None for default)
            llm_service: LLMService instance (or None for default)
            chunker: TextChunker instance (or None for default)
            id_generator: PointIdGenerator instance (or None for default)
        """
        self.config = config or get_config()
        cfg = self.config

        self.embedding_service = embedding_service or EmbeddingService(
            api_key=cfg.embedding_api_key,
            api_url=cfg.embedding_api_url,
            model=cfg.embedding_model,
            expected_dimension=cfg.embedding_dimension,
            timeout=cfg.embedding_timeout,
            retry_policy=RetryPolicy(
                max_attempts=cfg.embedding_max_retries,
                base_delay=cfg.embedding_base_delay,
                backoff_unit=cfg.embedding_backoff_unit,
                is_retryable=is_retryable_embedding_error,
            ),
            batch_size=cfg.embedding_batch_size,
            batch_delay=cfg.embedding_batch_delay,
            item_delay=cfg.embedding_item_delay,
        )
        self.vector_store = vector_store or QdrantVectorStore(
            base_url=cfg.qdrant_url,
            collection_name=cfg.qdrant_collection,
            api_key=cfg.qdrant_api_key or None,
            timeout=cfg.qdrant_timeout,
        )
        self.conversation_store = conversation_store or ConversationStore.from_url(
            cfg.redis_url,
            session_ttl=cfg.session_ttl,
            history_ttl=cfg.chat_history_ttl,
            max_messages=cfg.max_stored_messages,
        )
        self.llm_service = llm_service or LLMService(
            model=cfg.llm_model,
            base_url=cfg.ollama_base_url,
            temperature=cfg.llm_temperature,
            top_k=cfg.llm_top_k,
            top_p=cfg.llm_top_p,
            max_tokens=cfg.llm_max_tokens,
            timeout=cfg.llm_timeout,
        )
        self.chunker = chunker or TextChunker(
            soft_limit=cfg.chunk_soft_limit,
            min_length=cfg.chunk_min_length,
            max_length=cfg.chunk_max_length,
        )
        self.id_generator = id_generator or PointIdGenerator()

        self.rag_service = RAGService(
            embedding_service=self.embedding_service,
            vector_store=self.vector_store,
            llm_service=self.llm_service,
            top_k=cfg.top_k_default,
            score_threshold=cfg.score_threshold,
        )
        self.chat_handler = ChatHandler(
            rag_service=self.rag_service,
            conversation_store=self.conversation_store,
            history_limit=cfg.history_context_limit,
            expose_errors=not cfg.is_production,
        )

        self._initialized = False

    # Lifecycle

    def initialize(self) -> None:
        """
        Connect to the remote stores and make sure the collection exists.

        Raises:
            VectorStoreError: If Qdrant is unreachable
            ConversationStoreError: If Redis is unreachable
        """
        if self._initialized:
            return

        self.vector_store.health_check()
        self.vector_store.ensure_collection(self.config.embedding_dimension)
        self.conversation_store.ping()

        self._initialized = True
        logger.info("NewsQuerySystem initialized successfully")

    def close(self) -> None:
        """Release every client connection."""
        self.embedding_service.close()
        self.vector_store.close()
        self.conversation_store.close()
        self._initialized = False
        logger.info("NewsQuerySystem closed")

    def __enter__(self) -> 'NewsQuerySystem':
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    # Ingestion

    def _build_payload(self, article: Article, chunk_text: str, timestamp: str) -> Dict[str, Any]:
        return {
            'title': article.title,
            'link': article.link,
            'content': chunk_text[:self.config.payload_content_limit],
            'source': INGESTION_SOURCE,
            'timestamp': timestamp,
        }

    def ingest_article(self, article: Article) -> Dict[str, Any]:
        """
        Ingest a single article: chunk → embed → store.

        Args:
            article: Article record

        Returns:
            Dictionary with ingestion results:
                - success: bool
                - skipped: bool (empty or too-short content)
                - link: str
                - chunks_created: int
                - points_stored: int
                - processing_time: float
                - error: str (if failed)
        """
        start_time = time.time()
        result = {
            'success': False,
            'skipped': False,
            'link': article.link,
            'chunks_created': 0,
            'points_stored': 0,
        }

        try:
            if not article.content or not article.content.strip():
                logger.debug(f"Skipping article without content: {article.link}")
                result.update(success=True, skipped=True)
                return result

            chunks = self.chunker.chunk_article(article)
            result['chunks_created'] = len(chunks)
            if not chunks:
                logger.debug(f"Article produced no chunks: {article.link}")
                result.update(success=True, skipped=True)
                return result

            vectors = self.embedding_service.embed_batch([chunk.text for chunk in chunks])

            embedded = [
                (chunk, vector) for chunk, vector in zip(chunks, vectors)
                if vector is not None
            ]
            if not embedded:
                result['error'] = 'Failed to generate embeddings'
                return result

            timestamp = utc_now_iso()
            ids = self.id_generator.reserve(len(embedded))
            points = [
                VectorPoint(
                    id=point_id,
                    vector=vector,
                    payload=self._build_payload(article, chunk.text, timestamp),
                )
                for point_id, (chunk, vector) in zip(ids, embedded)
            ]

            self.vector_store.upsert(points)
            result.update(success=True, points_stored=len(points))

            logger.info(
                f"Ingested article: {article.title} "
                f"({len(points)}/{len(chunks)} chunks stored)"
            )
            return result

        except Exception as e:
            logger.error(f"Error ingesting article {article.link}: {e}")
            result['error'] = str(e)
            return result

        finally:
            result['processing_time'] = time.time() - start_time

    def ingest_articles(
        self,
        articles: Iterable[Article],
        show_progress: bool = True
    ) -> Dict[str, Any]:
        """
        Ingest a stream of articles; one failure never aborts the run.

        Args:
            articles: Article records
            show_progress: Show progress bar

        Returns:
            Dictionary with batch results:
                - total, successful, skipped, failed: int
                - points_stored: int
                - processing_time: float
                - details: List of individual results
        """
        start_time = time.time()
        articles = list(articles)
        results = []

        iterator = tqdm(articles, desc="Ingesting articles") if show_progress else articles

        for article in iterator:
            results.append(self.ingest_article(article))

        skipped = sum(1 for r in results if r['skipped'])
        successful = sum(1 for r in results if r['success'] and not r['skipped'])
        failed = sum(1 for r in results if not r['success'])
        points_stored = sum(r['points_stored'] for r in results)

        logger.info(
            f"Ingestion completed: {successful} stored, {skipped} skipped, "
            f"{failed} failed, {points_stored} points"
        )

        return {
            'total': len(articles),
            'successful': successful,
            'skipped': skipped,
            'failed': failed,
            'points_stored': points_stored,
            'processing_time': time.time() - start_time,
            'details': results,
        }

    # Querying

    def search(self, query_text: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """
        Perform semantic search over ingested chunks (no generation).

        Args:
            query_text: Query string
            top_k: Number of results to return

        Returns:
            Results above the score threshold, best first
        """
        if not query_text or not query_text.strip():
            return []
        return self.rag_service.search(query_text.strip(), top_k=top_k)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get system statistics.

        Returns:
            Dictionary with collection statistics and model settings
        """
        stats = self.vector_store.get_stats()
        stats['points_count'] = self.vector_store.count()
        stats['embedding_model'] = self.config.embedding_model
        stats['llm_model'] = self.config.llm_model
        stats['score_threshold'] = self.config.score_threshold
        return stats
