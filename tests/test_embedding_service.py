"""
Tests for the Embedding Service

Tests cover:
- Cosine similarity
- Request construction and response parsing
- HTTP error classification
- Retry with backoff
- Sequential batching with per-item fallback
"""

import pytest
import numpy as np
import requests
from unittest.mock import Mock, patch

from news_rag.embeddings.embedding_service import (
    EmbeddingService,
    EmbeddingAuthenticationError,
    EmbeddingDimensionError,
    EmbeddingRateLimitError,
    EmbeddingServiceError,
    EmbeddingValidationError,
    cosine_similarity,
    is_retryable_embedding_error,
)
from news_rag.retry import RetryPolicy

DIMENSION = 8


def make_response(status_code=200, body=None, text=''):
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


def vectors_for(texts, dimension=DIMENSION):
    """One distinct vector per text, derived from its length."""
    return [[float(len(text) % 7 + 1)] * dimension for text in texts]


def success_body(texts, dimension=DIMENSION):
    return {
        'data': [{'embedding': v, 'index': i} for i, v in enumerate(vectors_for(texts, dimension))],
        'usage': {'total_tokens': 10},
        'model': 'jina-embeddings-v2-base-en',
    }


def echoing_session():
    """Session whose POST returns one vector per input text."""
    session = Mock()
    session.post.side_effect = lambda url, json, headers, timeout: make_response(
        200, success_body(json['input'])
    )
    return session


@pytest.fixture
def service():
    return EmbeddingService(
        api_key='test-key',
        api_url='https://embeddings.example.com/v1/embeddings',
        expected_dimension=DIMENSION,
        session=echoing_session(),
    )


@pytest.fixture
def mock_sleep():
    with patch('news_rag.retry.time.sleep') as sleep:
        yield sleep


class TestCosineSimilarity:
    """Test the cosine similarity helper."""

    def test_identical_vectors(self):
        v = [0.3, -1.2, 4.0, 0.5]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        v = np.array([0.3, -1.2, 4.0, 0.5])
        assert cosine_similarity(v, -v) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1, 2], [1, 2, 3])

    def test_empty_vectors(self):
        with pytest.raises(ValueError):
            cosine_similarity([], [])

    def test_random_vectors_in_range(self):
        rng = np.random.default_rng(7)
        for _ in range(20):
            a, b = rng.normal(size=16), rng.normal(size=16)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0


class TestRetryablePredicate:
    """Test which embedding failures are retried."""

    def test_classification(self):
        assert is_retryable_embedding_error(EmbeddingRateLimitError("429", 429))
        assert is_retryable_embedding_error(EmbeddingServiceError("500", 500))
        assert is_retryable_embedding_error(EmbeddingValidationError("422", 422))
        assert not is_retryable_embedding_error(EmbeddingValidationError("local"))
        assert not is_retryable_embedding_error(EmbeddingAuthenticationError("401", 401))
        assert not is_retryable_embedding_error(RuntimeError("other"))


class TestEmbeddingServiceInitialization:
    """Test service construction."""

    def test_requires_api_key(self):
        with pytest.raises(ValueError, match="API key"):
            EmbeddingService(api_key='')

    def test_defaults(self):
        service = EmbeddingService(api_key='k', session=Mock())

        assert service.model == "jina-embeddings-v2-base-en"
        assert service.expected_dimension == 768
        assert service.batch_size == 5
        assert service.retry_policy.max_attempts == 3


class TestEmbed:
    """Test single provider calls."""

    def test_request_payload_and_headers(self, service):
        service.embed(["  Markets rallied   today. "])

        _, kwargs = service.session.post.call_args
        assert kwargs['json'] == {
            'model': 'jina-embeddings-v2-base-en',
            'input': ["Markets rallied today."],
            'encoding_format': 'float',
        }
        assert kwargs['headers']['Authorization'] == "Bearer test-key"
        assert kwargs['timeout'] == 60

    def test_single_string_input(self, service):
        vectors = service.embed("One headline")
        assert len(vectors) == 1
        assert len(vectors[0]) == DIMENSION

    def test_filters_invalid_texts(self, service):
        vectors = service.embed(["valid text", "", "   ", None, "x" * 9000, "another"])

        assert len(vectors) == 2
        sent = service.session.post.call_args[1]['json']['input']
        assert sent == ["valid text", "another"]

    def test_no_valid_texts(self, service):
        with pytest.raises(EmbeddingValidationError, match="No valid texts"):
            service.embed(["", "  "])
        service.session.post.assert_not_called()

    @pytest.mark.parametrize("status,error_type", [
        (401, EmbeddingAuthenticationError),
        (403, EmbeddingAuthenticationError),
        (422, EmbeddingValidationError),
        (429, EmbeddingRateLimitError),
        (500, EmbeddingServiceError),
        (503, EmbeddingServiceError),
    ])
    def test_http_error_classification(self, service, status, error_type):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(status, {'detail': 'nope'})

        with pytest.raises(error_type) as exc_info:
            service.embed(["some text"])
        assert exc_info.value.status_code == status

    def test_validation_error_carries_diagnostics(self, service):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(422, {'detail': [{'msg': 'bad input'}]})

        with pytest.raises(EmbeddingValidationError) as exc_info:
            service.embed(["some text"])

        assert exc_info.value.details == {'detail': [{'msg': 'bad input'}]}
        assert exc_info.value.request_data['input_lengths'] == [9]

    def test_network_failures(self, service):
        for error in (requests.exceptions.Timeout(), requests.exceptions.ConnectionError()):
            service.session.post.side_effect = error
            with pytest.raises(EmbeddingServiceError):
                service.embed(["some text"])

    def test_malformed_response(self, service):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(200, {'unexpected': True})

        with pytest.raises(EmbeddingServiceError, match="Invalid response format"):
            service.embed(["some text"])

    def test_dimension_mismatch(self, service):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(
            200, success_body(["some text"], dimension=DIMENSION + 1)
        )

        with pytest.raises(EmbeddingDimensionError):
            service.embed(["some text"])

    def test_count_mismatch(self, service):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(200, success_body(["only one"]))

        with pytest.raises(EmbeddingServiceError, match="returned 1 embeddings for 2 texts"):
            service.embed(["first text", "second text"])


class TestEmbedWithRetry:
    """Test retry behavior."""

    def test_rate_limited_twice_then_succeeds(self, service, mock_sleep):
        responses = [
            make_response(429, {'detail': 'slow down'}),
            make_response(429, {'detail': 'slow down'}),
            make_response(200, success_body(["election news"])),
        ]
        service.session.post.side_effect = responses

        vectors = service.embed_with_retry("election news")

        assert len(vectors) == 1
        assert service.session.post.call_count == 3
        waits = [c.args[0] for c in mock_sleep.call_args_list]
        # base delay before every attempt plus 2s and 4s of backoff
        assert waits == [1.0, 3.0, 5.0]
        assert sum(waits) - 3 * 1.0 == pytest.approx(2.0 + 4.0)

    def test_authentication_error_not_retried(self, service, mock_sleep):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(401, {'detail': 'bad key'})

        with pytest.raises(EmbeddingAuthenticationError):
            service.embed_with_retry(["text"])
        assert service.session.post.call_count == 1

    def test_exhausted_retries_raise_last_error(self, service, mock_sleep):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(503, text='unavailable')

        with pytest.raises(EmbeddingServiceError):
            service.embed_with_retry(["text"])
        assert service.session.post.call_count == 3

    def test_final_validation_error_is_logged(self, service, mock_sleep, caplog):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(422, {'detail': 'too long'})

        with pytest.raises(EmbeddingValidationError):
            service.embed_with_retry(["text"])

        assert service.session.post.call_count == 3
        assert "Final validation error details" in caplog.text

    def test_custom_policy(self, mock_sleep):
        session = Mock()
        session.post.return_value = make_response(500, text='err')
        service = EmbeddingService(
            api_key='k',
            expected_dimension=DIMENSION,
            retry_policy=RetryPolicy(max_attempts=2, base_delay=0.0, backoff_unit=0.0),
            session=session,
        )

        with pytest.raises(EmbeddingServiceError):
            service.embed_with_retry(["text"])
        assert session.post.call_count == 2
        mock_sleep.assert_not_called()

    def test_embed_query(self, service, mock_sleep):
        vector = service.embed_query("Who won the election?")
        assert len(vector) == DIMENSION


class TestEmbedBatch:
    """Test sequential batching with per-item fallback."""

    def test_output_matches_input_length(self, service, mock_sleep):
        texts = [f"news item number {i}" for i in range(12)]

        results = service.embed_batch(texts, batch_size=5)

        assert len(results) == 12
        assert all(r is not None for r in results)
        # three provider calls, one per batch
        assert service.session.post.call_count == 3

    def test_batches_are_sequential_with_delay(self, service, mock_sleep):
        texts = [f"news item number {i}" for i in range(10)]

        service.embed_batch(texts, batch_size=5, delay=2.0)

        waits = [c.args[0] for c in mock_sleep.call_args_list]
        assert waits.count(2.0) == 1

    def test_malformed_item_becomes_none(self, service, mock_sleep):
        texts = [
            "first article text",
            "second article text",
            "x" * 9000,
            "fourth article text",
            "fifth article text",
        ]

        results = service.embed_batch(texts)

        assert len(results) == 5
        assert results[2] is None
        assert sum(1 for r in results if r is not None) == 4
        for index in (0, 1, 3, 4):
            assert results[index] == vectors_for([texts[index]])[0]

    def test_failed_batch_falls_back_to_individual_items(self, service, mock_sleep):
        def post(url, json, headers, timeout):
            if len(json['input']) > 1:
                return make_response(500, text='batch failure')
            if json['input'][0] == 'poison':
                return make_response(500, text='item failure')
            return make_response(200, success_body(json['input']))

        service.session.post.side_effect = post

        results = service.embed_batch(["good one", "poison", "good two"], batch_size=3)

        assert results[0] is not None
        assert results[1] is None
        assert results[2] is not None

    def test_authentication_error_aborts_batch(self, service, mock_sleep):
        service.session.post.side_effect = None
        service.session.post.return_value = make_response(401, {'detail': 'bad key'})

        with pytest.raises(EmbeddingAuthenticationError):
            service.embed_batch(["a text", "b text"])

    def test_empty_input(self, service, mock_sleep):
        assert service.embed_batch([]) == []
        service.session.post.assert_not_called()
