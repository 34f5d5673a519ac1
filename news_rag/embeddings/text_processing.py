"""
Text Normalization and Chunking

Turns raw article text into clean, provider-safe chunks:
- Strips control, non-printable and zero-width characters
- Normalizes Unicode (NFC) and collapses whitespace
- Packs sentences greedily into chunks bounded by a soft limit
"""

import re
import logging
import unicodedata
from typing import List

from ..models import Article, Chunk

logger = logging.getLogger(__name__)

CONTROL_CHARS = re.compile(r'[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]')
ZERO_WIDTH_CHARS = re.compile(r'[\u200B-\u200D\uFEFF]')
WHITESPACE_RUNS = re.compile(r'\s+')
NON_PRINTABLE = re.compile(r'[^\x20-\x7E\u00A0-\U0010FFFF]')
SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+')

SOFT_LIMIT = 7500
MIN_CHUNK_LENGTH = 10
MAX_CHUNK_LENGTH = 8000


def clean_text(text: str) -> str:
    """
    Normalize raw text. Idempotent.

    Args:
        text: Raw text

    Returns:
        Cleaned text (may be empty)
    """
    if not text or not isinstance(text, str):
        return ""

    cleaned = CONTROL_CHARS.sub('', text)
    cleaned = unicodedata.normalize('NFC', cleaned)
    cleaned = ZERO_WIDTH_CHARS.sub('', cleaned)
    cleaned = WHITESPACE_RUNS.sub(' ', cleaned).strip()
    cleaned = NON_PRINTABLE.sub('', cleaned)
    return cleaned


def prepare_text_for_embedding(text: str, max_length: int = MAX_CHUNK_LENGTH) -> str:
    """
    Clean text and cap it at ``max_length`` characters.

    When truncation is needed the cut is moved back to the last sentence
    end, provided that end lies in the final eighth of the allowed length.

    Args:
        text: Raw or already chunked text
        max_length: Maximum number of characters sent to the provider

    Returns:
        Provider-safe text
    """
    processed = clean_text(text)

    if len(processed) > max_length:
        processed = processed[:max_length]
        last_sentence_end = max(
            processed.rfind('.'),
            processed.rfind('!'),
            processed.rfind('?'),
        )
        if last_sentence_end > max_length * 7 // 8:
            processed = processed[:last_sentence_end + 1]

    return processed


class TextChunker:
    """
    Deterministic sentence-packing chunker.

    Every chunk it emits has a length within [min_length, max_length].
    """

    def __init__(
        self,
        soft_limit: int = SOFT_LIMIT,
        min_length: int = MIN_CHUNK_LENGTH,
        max_length: int = MAX_CHUNK_LENGTH
    ):
        """
        Initialize the chunker.

        Args:
            soft_limit: Target maximum chunk size in characters
            min_length: Chunks shorter than this are dropped
            max_length: Chunks longer than this are dropped
        """
        if not min_length < soft_limit <= max_length:
            raise ValueError(
                "Chunk limits must satisfy min_length < soft_limit <= max_length"
            )
        self.soft_limit = soft_limit
        self.min_length = min_length
        self.max_length = max_length

    def split_text(self, text: str) -> List[str]:
        """
        Split text into clean, size-bounded chunks.

        Args:
            text: Raw text

        Returns:
            Ordered list of chunk strings (empty if the cleaned text is too short)
        """
        cleaned = clean_text(text)

        if len(cleaned) < self.min_length:
            return []

        if len(cleaned) <= self.soft_limit:
            return [cleaned]

        chunks = self._pack_sentences(cleaned)

        # Fallback: fixed-width slicing
        if not chunks:
            chunks = [
                cleaned[i:i + self.soft_limit]
                for i in range(0, len(cleaned), self.soft_limit)
            ]

        valid_chunks = [
            chunk for chunk in chunks
            if self.min_length <= len(chunk.strip()) <= self.max_length
        ]

        logger.debug(
            f"Processed text into {len(valid_chunks)} chunks "
            f"(original={len(text)}, cleaned={len(cleaned)}, "
            f"dropped={len(chunks) - len(valid_chunks)})"
        )
        return valid_chunks

    def _pack_sentences(self, cleaned: str) -> List[str]:
        """Greedily pack sentences into chunks no longer than the soft limit."""
        sentences = [s.strip() for s in SENTENCE_BOUNDARY.split(cleaned) if s.strip()]

        chunks = []
        current = ""

        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence

            if len(candidate) <= self.soft_limit:
                current = candidate
                continue

            if current:
                chunks.append(current)

            # A single oversized sentence is hard-truncated
            current = sentence[:self.soft_limit]

        if current:
            chunks.append(current)

        return chunks

    def chunk_article(self, article: Article) -> List[Chunk]:
        """
        Chunk an article's content.

        Args:
            article: Source article

        Returns:
            Chunks tagged with the article's link
        """
        return [
            Chunk(text=text, source_article_link=article.link)
            for text in self.split_text(article.content)
        ]
