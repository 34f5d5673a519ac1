"""
Vector Store backed by the Qdrant HTTP API

Manages a single named collection of news-chunk embeddings:
collection lifecycle with dimension check, synchronous point upsert,
and k-nearest-neighbor search with a cosine score threshold.

The store performs no retries; failures surface as VectorStoreError.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..models import SearchResult, VectorPoint

logger = logging.getLogger(__name__)


class VectorStoreError(Exception):
    """Raised when the vector index service is unreachable or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class QdrantVectorStore:
    """
    Client for one Qdrant collection.

    Collection-mutating operations (ensure/delete/upsert) are serialized
    through a re-entrant lock, so a delete-and-recreate never interleaves
    with an upsert issued through the same store.
    """

    DISTANCE = "Cosine"

    def __init__(
        self,
        base_url: str = "http://localhost:6333",
        collection_name: str = "news_embeddings",
        api_key: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the vector store client.

        Args:
            base_url: Qdrant HTTP endpoint
            collection_name: Collection holding the news embeddings
            api_key: Optional Qdrant API key
            timeout: Request timeout in seconds
            session: Optional ``requests.Session`` to reuse connections
        """
        self.base_url = base_url.rstrip('/')
        self.collection_name = collection_name
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self._mutation_lock = threading.RLock()

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self.session.close()

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['api-key'] = self.api_key
        return headers

    def _collection_url(self, suffix: str = '') -> str:
        return f"{self.base_url}/collections/{self.collection_name}{suffix}"

    def _request(
        self,
        method: str,
        url: str,
        allow_not_found: bool = False,
        **kwargs
    ) -> Optional[Dict[str, Any]]:
        """
        Issue an HTTP request and decode the JSON body.

        Returns:
            Decoded body, or None for a 404 when ``allow_not_found`` is set

        Raises:
            VectorStoreError: On connectivity failures or non-2xx responses
        """
        try:
            response = self.session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise VectorStoreError(f"Unable to reach Qdrant at {self.base_url}: {e}")

        if allow_not_found and response.status_code == 404:
            return None

        if not response.ok:
            raise VectorStoreError(
                f"Qdrant {method} {url} failed: HTTP {response.status_code} - {response.text}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            raise VectorStoreError(f"Qdrant returned a non-JSON response for {method} {url}")

    def health_check(self) -> bool:
        """
        Verify the Qdrant service is reachable.

        Returns:
            True if reachable

        Raises:
            VectorStoreError: If unreachable
        """
        self._request('GET', f"{self.base_url}/")
        logger.info(f"Qdrant reachable at {self.base_url}")
        return True

    def get_collection_info(self) -> Optional[Dict[str, Any]]:
        """
        Fetch collection metadata.

        Returns:
            The ``result`` object of the collection, or None if it does not exist
        """
        body = self._request('GET', self._collection_url(), allow_not_found=True)
        if body is None:
            return None
        return body.get('result') or {}

    def get_collection_dimension(self) -> Optional[int]:
        """Vector size of the collection, or None if it does not exist."""
        info = self.get_collection_info()
        if info is None:
            return None
        vectors = info.get('config', {}).get('params', {}).get('vectors', {})
        size = vectors.get('size') if isinstance(vectors, dict) else None
        return int(size) if size is not None else None

    def create_collection(self, dimension: int) -> None:
        """Create the collection with the given dimension and cosine distance."""
        with self._mutation_lock:
            self._request(
                'PUT',
                self._collection_url(),
                json={'vectors': {'size': dimension, 'distance': self.DISTANCE}}
            )
        logger.info(f"Qdrant collection '{self.collection_name}' created ({dimension} dimensions)")

    def delete_collection(self) -> None:
        """Delete the collection and every point in it."""
        with self._mutation_lock:
            self._request('DELETE', self._collection_url())
        logger.info(f"Qdrant collection '{self.collection_name}' deleted")

    def ensure_collection(self, dimension: int) -> bool:
        """
        Make sure the collection exists with the given dimension.

        A collection with a different dimension is deleted and recreated;
        its points are lost and must be re-ingested.

        Args:
            dimension: Required vector size

        Returns:
            True if the collection was (re)created, False if it already matched
        """
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")

        with self._mutation_lock:
            current = self.get_collection_dimension()

            if current == dimension:
                logger.info(
                    f"Qdrant collection '{self.collection_name}' found with correct dimensions ({dimension})"
                )
                return False

            if current is not None:
                logger.info(
                    f"Deleting collection '{self.collection_name}' with wrong dimensions ({current})"
                )
                self.delete_collection()

            self.create_collection(dimension)
            return True

    def upsert(self, points: Sequence[VectorPoint]) -> Dict[str, Any]:
        """
        Insert or overwrite points and wait until the write is acknowledged.

        Args:
            points: Points to write

        Returns:
            Qdrant's operation result
        """
        if not points:
            return {}

        with self._mutation_lock:
            try:
                body = self._request(
                    'PUT',
                    self._collection_url('/points'),
                    params={'wait': 'true'},
                    json={'points': [point.to_dict() for point in points]}
                )
            except VectorStoreError as e:
                logger.error(
                    f"Qdrant upsert failed for {len(points)} points "
                    f"(ids={[p.id for p in points][:5]}, "
                    f"dimension={len(points[0].vector)}): {e}"
                )
                raise

        logger.debug(f"Upserted {len(points)} points into '{self.collection_name}'")
        return body.get('result') or {}

    def search(
        self,
        query_vector: Sequence[float],
        k: int = 5,
        score_threshold: float = 0.7
    ) -> List[SearchResult]:
        """
        Find the top-k points by cosine similarity.

        Args:
            query_vector: Query embedding
            k: Maximum number of results
            score_threshold: Minimum similarity score

        Returns:
            Results ordered by descending score, all scoring at least
            ``score_threshold``; empty if nothing clears the threshold

        Raises:
            ValueError: If k is negative
            VectorStoreError: On service failure
        """
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        if k == 0:
            return []

        body = self._request(
            'POST',
            self._collection_url('/points/search'),
            json={
                'vector': [float(v) for v in query_vector],
                'limit': k,
                'with_payload': True,
                'score_threshold': score_threshold,
            }
        )

        results = [
            SearchResult(
                id=point.get('id'),
                score=float(point.get('score', 0.0)),
                payload=point.get('payload') or {},
            )
            for point in body.get('result') or []
        ]
        results = [r for r in results if r.score >= score_threshold]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:k]

    def count(self) -> int:
        """Exact number of points in the collection (0 if it does not exist)."""
        body = self._request(
            'POST',
            self._collection_url('/points/count'),
            allow_not_found=True,
            json={'exact': True}
        )
        if body is None:
            return 0
        return int((body.get('result') or {}).get('count', 0))

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the collection.

        Returns:
            Dictionary with statistics
        """
        info = self.get_collection_info()
        if info is None:
            return {
                'collection': self.collection_name,
                'exists': False,
                'total_points': 0,
                'dimension': None,
            }

        vectors = info.get('config', {}).get('params', {}).get('vectors', {})
        return {
            'collection': self.collection_name,
            'exists': True,
            'status': info.get('status'),
            'total_points': info.get('points_count') or 0,
            'dimension': vectors.get('size'),
            'distance': vectors.get('distance'),
        }

    def __repr__(self) -> str:
        return (
            f"QdrantVectorStore(base_url={self.base_url!r}, "
            f"collection={self.collection_name!r})"
        )
