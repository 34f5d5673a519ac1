"""
Embedding Service

Client for a remote embedding provider speaking the
``{model, input} -> {data: [{embedding}], usage, model}`` protocol.
Provides:
- Input validation and cleaning
- Retry with exponential backoff for rate limits and transient failures
- Sequential batching with per-item fallback for failed batches
- Cosine similarity helper
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import requests

from ..retry import RetryPolicy
from .text_processing import prepare_text_for_embedding, MAX_CHUNK_LENGTH

logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 8192

Vector = List[float]


class EmbeddingError(Exception):
    """Base class for embedding provider failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingAuthenticationError(EmbeddingError):
    """Raised when the provider rejects the credentials (401/403)."""
    pass


class EmbeddingRateLimitError(EmbeddingError):
    """Raised when the provider rate-limits the request (429)."""
    pass


class EmbeddingValidationError(EmbeddingError):
    """Raised when input is rejected, locally or by the provider (422)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
        request_data: Any = None
    ):
        super().__init__(message, status_code)
        self.details = details
        self.request_data = request_data


class EmbeddingServiceError(EmbeddingError):
    """Raised on timeouts, connectivity problems, server errors or malformed responses."""
    pass


class EmbeddingDimensionError(EmbeddingServiceError):
    """Raised when embedding dimensions don't match the expected value."""
    pass


def is_retryable_embedding_error(error: Exception) -> bool:
    """
    Decide whether an embedding failure may be retried.

    Authentication failures and locally rejected input are final; provider
    validation errors (422), rate limits and transient failures are retried.
    """
    if isinstance(error, EmbeddingAuthenticationError):
        return False
    if isinstance(error, EmbeddingValidationError):
        return error.status_code == 422
    return isinstance(error, EmbeddingError)


def cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors.

    Args:
        vector_a: First vector
        vector_b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 if either vector has zero magnitude

    Raises:
        ValueError: If the vectors are empty or their dimensions differ
    """
    a = np.asarray(vector_a, dtype=np.float64)
    b = np.asarray(vector_b, dtype=np.float64)

    if a.ndim != 1 or a.size == 0 or a.shape != b.shape:
        raise ValueError("Vectors must be valid and have the same dimension")

    magnitude = np.linalg.norm(a) * np.linalg.norm(b)
    if magnitude == 0:
        return 0.0

    return float(np.clip(np.dot(a, b) / magnitude, -1.0, 1.0))


class EmbeddingService:
    """
    Service for generating embeddings through a remote provider.

    Batches are always processed sequentially to stay within the
    provider's rate limits.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.jina.ai/v1/embeddings",
        model: str = "jina-embeddings-v2-base-en",
        expected_dimension: Optional[int] = 768,
        timeout: int = 60,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = 5,
        batch_delay: float = 2.0,
        item_delay: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the embedding service.

        Args:
            api_key: Provider API key (sent as a bearer token)
            api_url: Embeddings endpoint
            model: Embedding model name
            expected_dimension: Verify every vector has this length (None disables the check)
            timeout: Request timeout in seconds
            retry_policy: Retry policy for ``embed_with_retry``
            batch_size: Default batch size for ``embed_batch``
            batch_delay: Default delay in seconds between batches
            item_delay: Delay in seconds between per-item fallback calls
            session: Optional ``requests.Session`` to reuse connections
        """
        if not api_key:
            raise ValueError("An embedding API key is required (set JINA_API_KEY)")

        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.expected_dimension = expected_dimension
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3,
            base_delay=1.0,
            backoff_unit=1.0,
            is_retryable=is_retryable_embedding_error,
        )
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.item_delay = item_delay
        self.session = session or requests.Session()

        logger.info(f"Initialized EmbeddingService with model: {self.model}")

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self.session.close()

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json',
        }

    @staticmethod
    def _is_valid_text(text: Any) -> bool:
        if not text or not isinstance(text, str):
            return False
        trimmed = text.strip()
        return 0 < len(trimmed) <= MAX_INPUT_LENGTH

    def embed(self, texts: Union[str, Sequence[str]]) -> List[Vector]:
        """
        Generate embeddings for one or more texts with a single provider call.

        Invalid entries (empty, or longer than 8192 characters once trimmed)
        are dropped before the call, so the result may be shorter than the input.

        Args:
            texts: Text or sequence of texts

        Returns:
            One vector per valid input text, in input order

        Raises:
            EmbeddingValidationError: If no valid text remains, or the provider returns 422
            EmbeddingAuthenticationError: On 401/403
            EmbeddingRateLimitError: On 429
            EmbeddingServiceError: On any other provider or network failure
        """
        input_texts = [texts] if isinstance(texts, str) else list(texts)
        valid_texts = [text for text in input_texts if self._is_valid_text(text)]

        if not valid_texts:
            raise EmbeddingValidationError("No valid texts provided for embedding")

        if len(valid_texts) != len(input_texts):
            logger.warning(
                f"Filtered out {len(input_texts) - len(valid_texts)} invalid texts "
                f"({len(valid_texts)}/{len(input_texts)} sent)"
            )

        processed = [prepare_text_for_embedding(text, MAX_CHUNK_LENGTH) for text in valid_texts]
        payload = {
            'model': self.model,
            'input': processed,
            'encoding_format': 'float',
        }

        logger.debug(
            f"Generating embeddings for {len(processed)} texts "
            f"(lengths={[len(t) for t in processed]})"
        )

        try:
            response = self.session.post(
                self.api_url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise EmbeddingServiceError(f"Embedding request timed out after {self.timeout}s")
        except requests.exceptions.ConnectionError:
            raise EmbeddingServiceError(f"Unable to connect to embedding provider at {self.api_url}")
        except requests.exceptions.RequestException as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}")

        if not response.ok:
            raise self._error_from_response(response, payload)

        try:
            data = response.json()
            items = data['data']
        except (ValueError, KeyError, TypeError):
            raise EmbeddingServiceError("Invalid response format from embedding provider")

        embeddings = []
        for item in items:
            embedding = item.get('embedding') if isinstance(item, dict) else None
            if not isinstance(embedding, list):
                raise EmbeddingServiceError("Invalid embedding format in response")
            self._verify_dimension(embedding)
            embeddings.append(embedding)

        if len(embeddings) != len(processed):
            raise EmbeddingServiceError(
                f"Provider returned {len(embeddings)} embeddings for {len(processed)} texts"
            )

        logger.info(
            f"Generated embeddings for {len(processed)} texts "
            f"(model={data.get('model', self.model)}, usage={data.get('usage')}, "
            f"dimensions={len(embeddings[0]) if embeddings else 0})"
        )
        return embeddings

    def _error_from_response(self, response: requests.Response, payload: Dict) -> EmbeddingError:
        """Translate an HTTP error response into the matching error kind."""
        status = response.status_code
        try:
            details = response.json()
        except ValueError:
            details = response.text

        logger.error(f"Embedding API error {status}: {details}")

        if status in (401, 403):
            return EmbeddingAuthenticationError(
                "Embedding provider rejected the API key. Please check JINA_API_KEY.",
                status_code=status
            )
        if status == 422:
            return EmbeddingValidationError(
                f"Embedding provider validation error: {details}",
                status_code=status,
                details=details,
                request_data={
                    'model': payload['model'],
                    'input_lengths': [len(t) for t in payload['input']],
                }
            )
        if status == 429:
            return EmbeddingRateLimitError(
                "Embedding provider rate limit exceeded", status_code=status
            )
        return EmbeddingServiceError(
            f"Embedding provider returned HTTP {status}", status_code=status
        )

    def _verify_dimension(self, embedding: Vector) -> None:
        if self.expected_dimension is None:
            return
        if len(embedding) != self.expected_dimension:
            raise EmbeddingDimensionError(
                f"Expected {self.expected_dimension} dimensions, got {len(embedding)}"
            )

    def embed_with_retry(
        self,
        texts: Union[str, Sequence[str]],
        max_retries: Optional[int] = None
    ) -> List[Vector]:
        """
        Generate embeddings, retrying according to the retry policy.

        Authentication failures abort immediately. A provider validation
        failure on the final attempt is logged with its full diagnostic
        payload before being raised.

        Args:
            texts: Text or sequence of texts
            max_retries: Override the policy's attempt cap

        Returns:
            One vector per valid input text
        """
        try:
            return self.retry_policy.call(
                self.embed,
                texts,
                description="Embedding",
                max_attempts=max_retries
            )
        except EmbeddingValidationError as e:
            if e.status_code == 422:
                logger.error(
                    f"Final validation error details: request={e.request_data}, "
                    f"response={e.details}"
                )
            raise

    def embed_query(self, text: str) -> Vector:
        """
        Embed a single query text.

        Args:
            text: Query text

        Returns:
            Embedding vector
        """
        return self.embed_with_retry([text])[0]

    def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
        delay: Optional[float] = None
    ) -> List[Optional[Vector]]:
        """
        Embed many texts in sequential batches.

        A batch that fails as a whole (or yields fewer vectors than inputs)
        is retried item by item; items that still fail come back as ``None``.

        Args:
            texts: Texts to embed
            batch_size: Items per provider call (default: service batch size)
            delay: Seconds to wait between batches (default: service batch delay)

        Returns:
            List the same length as ``texts`` with ``None`` for failed items
        """
        batch_size = batch_size or self.batch_size
        delay = self.batch_delay if delay is None else delay
        total = len(texts)
        total_batches = (total + batch_size - 1) // batch_size
        results: List[Optional[Vector]] = []

        logger.info(f"Processing {total} texts in batches of {batch_size}")

        for start in range(0, total, batch_size):
            batch = list(texts[start:start + batch_size])
            batch_number = start // batch_size + 1

            logger.debug(f"Processing batch {batch_number}/{total_batches} ({len(batch)} items)")

            try:
                embeddings = self.embed_with_retry(batch)
                if len(embeddings) != len(batch):
                    raise EmbeddingValidationError(
                        f"Batch {batch_number} returned {len(embeddings)} vectors for {len(batch)} texts"
                    )
                results.extend(embeddings)
                logger.debug(f"Batch {batch_number} completed successfully")

            except EmbeddingAuthenticationError:
                raise
            except EmbeddingError as e:
                logger.error(f"Failed to process batch {batch_number}: {e}")
                logger.info(f"Attempting individual processing for failed batch {batch_number}")
                results.extend(self._embed_individually(batch))

            if start + batch_size < total and delay > 0:
                logger.debug(f"Waiting {delay}s before next batch")
                time.sleep(delay)

        success_count = sum(1 for r in results if r is not None)
        logger.info(f"Batch processing completed: {success_count}/{total} successful")

        return results

    def _embed_individually(self, batch: List[str]) -> List[Optional[Vector]]:
        """Per-item fallback isolating poison items in a failed batch."""
        results: List[Optional[Vector]] = []

        for index, text in enumerate(batch):
            try:
                results.append(self.embed_with_retry([text])[0])
            except EmbeddingAuthenticationError:
                raise
            except EmbeddingError as e:
                logger.error(f"Failed to process individual text: {e}")
                results.append(None)

            if index < len(batch) - 1 and self.item_delay > 0:
                time.sleep(self.item_delay)

        return results
