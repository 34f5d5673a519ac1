"""
RAG Service for Question Answering over News Articles

Orchestrates the retrieval-augmented pipeline for a single query:
1. News-relatedness classification
2. Query expansion and embedding
3. Context retrieval from the vector store
4. Grounded generation, or a context-free answer when nothing is retrieved
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..embeddings.embedding_service import EmbeddingService
from ..models import Message, SearchResult, Source
from ..storage.vector_store import QdrantVectorStore
from .llm_service import LLMService

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """Outcome of the classify/retrieve steps for one query."""
    query: str
    is_news_related: bool
    search_query: Optional[str] = None
    documents: List[SearchResult] = field(default_factory=list)

    @property
    def sources(self) -> List[Source]:
        return [Source.from_search_result(doc) for doc in self.documents]


class RAGService:
    """
    RAG (Retrieval-Augmented Generation) service for news question answering.

    Non-news queries never touch the embedding provider or the vector store.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: QdrantVectorStore,
        llm_service: LLMService,
        top_k: int = 5,
        score_threshold: float = 0.7
    ):
        """
        Initialize the RAG service.

        Args:
            embedding_service: Service for generating query embeddings
            vector_store: Vector store for semantic search
            llm_service: Generative model adapter
            top_k: Number of chunks to retrieve
            score_threshold: Minimum similarity score for retrieved chunks
        """
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.llm_service = llm_service
        self.top_k = top_k
        self.score_threshold = score_threshold

    def build_search_query(self, query: str) -> str:
        """Concatenate the query with its model-generated expansion."""
        expanded = self.llm_service.expand_query(query)
        return f"{query} {expanded}".strip()

    def search(self, search_query: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """
        Embed a search query and fetch similar chunks.

        Args:
            search_query: Text to embed
            top_k: Number of results (overrides default)

        Returns:
            Results above the score threshold, best first
        """
        k = top_k if top_k is not None else self.top_k
        query_vector = self.embedding_service.embed_query(search_query)
        return self.vector_store.search(query_vector, k=k, score_threshold=self.score_threshold)

    def retrieve_context(self, query: str) -> RetrievalResult:
        """
        Classify a query and, for news queries, retrieve supporting chunks.

        Args:
            query: User query

        Returns:
            RetrievalResult (documents empty for non-news queries or empty retrieval)
        """
        is_news = self.llm_service.is_news_related(query)
        result = RetrievalResult(query=query, is_news_related=is_news)

        if not is_news:
            logger.info("Query classified as general; skipping retrieval")
            return result

        result.search_query = self.build_search_query(query)
        result.documents = self.search(result.search_query)

        if result.documents:
            average = sum(doc.score for doc in result.documents) / len(result.documents)
            logger.info(
                f"Retrieved {len(result.documents)} documents (average score {average:.3f})"
            )
        else:
            logger.info("No documents above threshold; falling back to a context-free answer")

        return result

    def answer(
        self,
        query: str,
        history: Optional[Sequence[Message]] = None
    ) -> Dict[str, Any]:
        """
        Process a query and generate a complete answer.

        Args:
            query: User query
            history: Previous conversation messages, oldest first

        Returns:
            Dictionary with:
                - answer: Generated answer
                - sources: List of Source records (empty without retrieval)
                - is_news_related: Classification outcome
                - response_time: Time taken to generate the response

        Raises:
            ValueError: If the query is empty
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        start_time = time.time()

        retrieval = self.retrieve_context(query)
        answer = self.llm_service.generate_answer(query, retrieval.documents, history)

        return {
            'answer': answer,
            'sources': retrieval.sources,
            'is_news_related': retrieval.is_news_related,
            'response_time': time.time() - start_time,
        }

    def stream_answer(
        self,
        retrieval: RetrievalResult,
        history: Optional[Sequence[Message]] = None
    ) -> Iterator[str]:
        """
        Stream the answer for an already-retrieved query.

        Args:
            retrieval: Output of ``retrieve_context``
            history: Previous conversation messages, oldest first

        Returns:
            Iterator of text increments; closing it stops generation
        """
        return self.llm_service.stream_answer(retrieval.query, retrieval.documents, history)
