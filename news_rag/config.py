"""
Centralized Configuration Module

Provides a single source of truth for all system configuration parameters.
Loads settings from environment variables with sensible defaults and validation.
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional
from urllib.parse import urlparse
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


DEFAULT_NEWS_FEEDS = [
    "http://feeds.bbci.co.uk/news/rss.xml",
    "https://feeds.npr.org/1004/rss.xml",
    "https://www.theguardian.com/world/rss",
]

DEFAULT_SITEMAP_URL = (
    "https://www.reuters.com/arc/outboundfeeds/sitemap-index/?outputType=xml"
)

SECRET_FIELDS = ('embedding_api_key', 'qdrant_api_key')


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class Config:
    """
    Centralized configuration for the news RAG system.

    All configuration parameters are loaded from environment variables
    with sensible defaults. Validation is performed on initialization.
    """

    # Embedding Provider Settings
    embedding_api_url: str = field(default="https://api.jina.ai/v1/embeddings")
    embedding_api_key: str = field(default="")
    embedding_model: str = field(default="jina-embeddings-v2-base-en")
    embedding_dimension: int = field(default=768)
    embedding_timeout: int = field(default=60)

    # Embedding Retry and Batching
    embedding_max_retries: int = field(default=3)
    embedding_base_delay: float = field(default=1.0)
    embedding_backoff_unit: float = field(default=1.0)
    embedding_batch_size: int = field(default=5)
    embedding_batch_delay: float = field(default=2.0)
    embedding_item_delay: float = field(default=1.0)

    # Chunking Limits
    chunk_soft_limit: int = field(default=7500)
    chunk_min_length: int = field(default=10)
    chunk_max_length: int = field(default=8000)

    # Vector Index Settings
    qdrant_url: str = field(default="http://localhost:6333")
    qdrant_api_key: str = field(default="")
    qdrant_collection: str = field(default="news_embeddings")
    qdrant_timeout: int = field(default=30)
    score_threshold: float = field(default=0.7)
    top_k_default: int = field(default=5)
    payload_content_limit: int = field(default=1000)

    # Conversation Store Settings
    redis_url: str = field(default="redis://localhost:6379")
    session_ttl: int = field(default=86400)
    chat_history_ttl: int = field(default=3600)
    history_context_limit: int = field(default=10)
    max_stored_messages: int = field(default=100)

    # Generative Model Settings
    ollama_base_url: str = field(default="http://localhost:11434")
    llm_model: str = field(default="llama3.1:latest")
    llm_temperature: float = field(default=0.7)
    llm_top_k: int = field(default=40)
    llm_top_p: float = field(default=0.95)
    llm_max_tokens: int = field(default=1024)
    llm_timeout: int = field(default=60)

    # Ingestion Settings
    news_feeds: List[str] = field(default_factory=lambda: list(DEFAULT_NEWS_FEEDS))
    news_sitemap_url: str = field(default=DEFAULT_SITEMAP_URL)
    min_articles: int = field(default=50)
    feed_timeout: int = field(default=30)

    # Runtime
    app_env: str = field(default="development")

    def __post_init__(self):
        """Load configuration from environment and validate."""
        self._load_from_environment()
        self._validate()

    def _load_from_environment(self):
        """Load configuration from environment variables."""
        # Embedding Provider Settings
        self.embedding_api_url = self._get_env_str('EMBEDDING_API_URL', self.embedding_api_url)
        self.embedding_api_key = self._get_env_str('JINA_API_KEY', self.embedding_api_key)
        self.embedding_model = self._get_env_str('EMBEDDING_MODEL', self.embedding_model)
        self.embedding_dimension = self._get_env_int('EMBEDDING_DIMENSION', self.embedding_dimension)
        self.embedding_timeout = self._get_env_int('EMBEDDING_TIMEOUT', self.embedding_timeout)

        # Embedding Retry and Batching
        self.embedding_max_retries = self._get_env_int('EMBEDDING_MAX_RETRIES', self.embedding_max_retries)
        self.embedding_base_delay = self._get_env_float('EMBEDDING_BASE_DELAY', self.embedding_base_delay)
        self.embedding_backoff_unit = self._get_env_float('EMBEDDING_BACKOFF_UNIT', self.embedding_backoff_unit)
        self.embedding_batch_size = self._get_env_int('EMBEDDING_BATCH_SIZE', self.embedding_batch_size)
        self.embedding_batch_delay = self._get_env_float('EMBEDDING_BATCH_DELAY', self.embedding_batch_delay)
        self.embedding_item_delay = self._get_env_float('EMBEDDING_ITEM_DELAY', self.embedding_item_delay)

        # Chunking Limits
        self.chunk_soft_limit = self._get_env_int('CHUNK_SOFT_LIMIT', self.chunk_soft_limit)
        self.chunk_min_length = self._get_env_int('CHUNK_MIN_LENGTH', self.chunk_min_length)
        self.chunk_max_length = self._get_env_int('CHUNK_MAX_LENGTH', self.chunk_max_length)

        # Vector Index Settings
        self.qdrant_url = self._get_env_str('QDRANT_URL', self.qdrant_url)
        self.qdrant_api_key = self._get_env_str('QDRANT_API_KEY', self.qdrant_api_key)
        self.qdrant_collection = self._get_env_str('QDRANT_COLLECTION', self.qdrant_collection)
        self.qdrant_timeout = self._get_env_int('QDRANT_TIMEOUT', self.qdrant_timeout)
        self.score_threshold = self._get_env_float('SCORE_THRESHOLD', self.score_threshold)
        self.top_k_default = self._get_env_int('TOP_K_DEFAULT', self.top_k_default)
        self.payload_content_limit = self._get_env_int('PAYLOAD_CONTENT_LIMIT', self.payload_content_limit)

        # Conversation Store Settings
        self.redis_url = self._get_env_str('REDIS_URL', self.redis_url)
        self.session_ttl = self._get_env_int('SESSION_TTL', self.session_ttl)
        self.chat_history_ttl = self._get_env_int('CHAT_HISTORY_TTL', self.chat_history_ttl)
        self.history_context_limit = self._get_env_int('HISTORY_CONTEXT_LIMIT', self.history_context_limit)
        self.max_stored_messages = self._get_env_int('MAX_STORED_MESSAGES', self.max_stored_messages)

        # Generative Model Settings
        self.ollama_base_url = self._get_env_str('OLLAMA_BASE_URL', self.ollama_base_url)
        self.llm_model = self._get_env_str('LLM_MODEL', self.llm_model)
        self.llm_temperature = self._get_env_float('LLM_TEMPERATURE', self.llm_temperature)
        self.llm_top_k = self._get_env_int('LLM_TOP_K', self.llm_top_k)
        self.llm_top_p = self._get_env_float('LLM_TOP_P', self.llm_top_p)
        self.llm_max_tokens = self._get_env_int('LLM_MAX_TOKENS', self.llm_max_tokens)
        self.llm_timeout = self._get_env_int('LLM_TIMEOUT', self.llm_timeout)

        # Ingestion Settings
        self.news_feeds = self._get_env_list('NEWS_FEEDS', self.news_feeds)
        self.news_sitemap_url = self._get_env_str('NEWS_SITEMAP_URL', self.news_sitemap_url)
        self.min_articles = self._get_env_int('MIN_ARTICLES', self.min_articles)
        self.feed_timeout = self._get_env_int('FEED_TIMEOUT', self.feed_timeout)

        # Runtime
        self.app_env = self._get_env_str('APP_ENV', self.app_env).lower()

    def _get_env_str(self, key: str, default: str) -> str:
        """Get string value from environment."""
        value = os.getenv(key, default)
        if isinstance(value, str):
            value = value.strip()
        return value

    def _get_env_int(self, key: str, default: int) -> int:
        """Get integer value from environment."""
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigValidationError(
                f"Invalid integer value for {key}: '{value}'"
            )

    def _get_env_float(self, key: str, default: float) -> float:
        """Get float value from environment."""
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigValidationError(
                f"Invalid float value for {key}: '{value}'"
            )

    def _get_env_list(self, key: str, default: List[str]) -> List[str]:
        """Get comma-separated list value from environment."""
        value = os.getenv(key)
        if value is None:
            return default
        return [item.strip() for item in value.split(',') if item.strip()]

    def _validate(self):
        """Validate configuration parameters."""
        # Validate non-empty strings
        for field_name in ('embedding_model', 'qdrant_collection', 'llm_model'):
            if not getattr(self, field_name):
                raise ConfigValidationError(f"{field_name} cannot be empty")

        # Validate positive integers
        positive_int_fields = [
            ('embedding_dimension', self.embedding_dimension),
            ('embedding_timeout', self.embedding_timeout),
            ('embedding_max_retries', self.embedding_max_retries),
            ('embedding_batch_size', self.embedding_batch_size),
            ('chunk_soft_limit', self.chunk_soft_limit),
            ('chunk_min_length', self.chunk_min_length),
            ('chunk_max_length', self.chunk_max_length),
            ('qdrant_timeout', self.qdrant_timeout),
            ('top_k_default', self.top_k_default),
            ('payload_content_limit', self.payload_content_limit),
            ('session_ttl', self.session_ttl),
            ('chat_history_ttl', self.chat_history_ttl),
            ('history_context_limit', self.history_context_limit),
            ('max_stored_messages', self.max_stored_messages),
            ('llm_top_k', self.llm_top_k),
            ('llm_max_tokens', self.llm_max_tokens),
            ('llm_timeout', self.llm_timeout),
            ('min_articles', self.min_articles),
            ('feed_timeout', self.feed_timeout),
        ]

        for field_name, value in positive_int_fields:
            if value <= 0:
                raise ConfigValidationError(
                    f"{field_name} must be positive, got {value}"
                )

        # Delays may be zero but never negative
        for field_name in ('embedding_base_delay', 'embedding_backoff_unit',
                           'embedding_batch_delay', 'embedding_item_delay'):
            if getattr(self, field_name) < 0:
                raise ConfigValidationError(
                    f"{field_name} must be non-negative, got {getattr(self, field_name)}"
                )

        if not -1.0 <= self.score_threshold <= 1.0:
            raise ConfigValidationError(
                f"score_threshold must be within [-1, 1], got {self.score_threshold}"
            )

        if not 0.0 <= self.llm_temperature <= 2.0:
            raise ConfigValidationError(
                f"llm_temperature must be within [0, 2], got {self.llm_temperature}"
            )

        if not 0.0 < self.llm_top_p <= 1.0:
            raise ConfigValidationError(
                f"llm_top_p must be within (0, 1], got {self.llm_top_p}"
            )

        # Chunk limits must nest
        if not self.chunk_min_length < self.chunk_soft_limit <= self.chunk_max_length:
            raise ConfigValidationError(
                "chunk limits must satisfy chunk_min_length < chunk_soft_limit <= chunk_max_length"
            )

        # Validate URL format
        for field_name in ('embedding_api_url', 'qdrant_url', 'redis_url', 'ollama_base_url'):
            url = getattr(self, field_name)
            parsed = urlparse(url)
            if not parsed.scheme or not parsed.netloc:
                raise ConfigValidationError(
                    f"Invalid URL for {field_name}: {url}"
                )

    @property
    def is_production(self) -> bool:
        """Whether the system runs in a production configuration."""
        return self.app_env == 'production'

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    def __repr__(self) -> str:
        """String representation of configuration with secrets masked."""
        items = []
        for key, value in self.to_dict().items():
            if key in SECRET_FIELDS and value:
                value = '***'
            items.append(f"{key}={value!r}")
        return f"Config({', '.join(items)})"

    def update(self, **kwargs):
        """
        Update configuration values with validation.

        Args:
            **kwargs: Configuration parameters to update

        Raises:
            ConfigValidationError: If validation fails
        """
        # Store original values for rollback
        original_values = {}

        try:
            for key, value in kwargs.items():
                if not hasattr(self, key):
                    raise ConfigValidationError(f"Unknown configuration parameter: {key}")
                original_values[key] = getattr(self, key)
                setattr(self, key, value)

            self._validate()

        except Exception:
            # Rollback on validation failure
            for key, value in original_values.items():
                setattr(self, key, value)
            raise

    def get_embedding_config(self) -> Dict[str, Any]:
        """Get embedding-related configuration."""
        return {
            'model': self.embedding_model,
            'dimension': self.embedding_dimension,
            'max_retries': self.embedding_max_retries,
            'batch_size': self.embedding_batch_size,
            'batch_delay': self.embedding_batch_delay,
        }

    def get_storage_config(self) -> Dict[str, Any]:
        """Get storage-related configuration."""
        return {
            'qdrant_url': self.qdrant_url,
            'qdrant_collection': self.qdrant_collection,
            'redis_url': self.redis_url,
            'session_ttl': self.session_ttl,
            'chat_history_ttl': self.chat_history_ttl,
        }


# Singleton instance
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance (singleton pattern).

    Returns:
        Config: Global configuration instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def reset_config():
    """Reset the global configuration instance."""
    global _config_instance
    _config_instance = None
