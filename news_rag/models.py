"""
Data Model

Plain records shared across ingestion, retrieval and conversation history.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Article:
    """A news article handed to the core by an article source."""
    title: str
    link: str
    content: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Article':
        return cls(
            title=(data.get('title') or 'Untitled').strip(),
            link=(data.get('link') or data.get('url') or '').strip(),
            content=data.get('content') or '',
        )


@dataclass(frozen=True)
class Chunk:
    """A size-bounded slice of an article's cleaned content."""
    text: str
    source_article_link: str


@dataclass
class VectorPoint:
    """A vector plus payload stored in the vector index."""
    id: int
    vector: List[float]
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'vector': list(self.vector), 'payload': self.payload}


@dataclass
class SearchResult:
    """A vector index hit annotated with its similarity score."""
    id: int
    score: float
    payload: Dict[str, Any]

    @property
    def title(self) -> str:
        return self.payload.get('title') or 'Untitled'

    @property
    def link(self) -> str:
        return self.payload.get('link', '')

    @property
    def content(self) -> str:
        return self.payload.get('content', '')


@dataclass
class Source:
    """Citation attached to an assistant message."""
    title: str
    link: str
    score: float

    @classmethod
    def from_search_result(cls, result: SearchResult) -> 'Source':
        return cls(title=result.title, link=result.link, score=result.score)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Session:
    """Conversation session metadata."""
    id: str
    created_at: str
    messages_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Message:
    """One message in a session's history."""
    role: str
    content: str
    sources: List[Source] = field(default_factory=list)
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'role': self.role,
            'content': self.content,
            'sources': [source.to_dict() for source in self.sources],
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        return cls(
            role=data.get('role', 'user'),
            content=data.get('content', ''),
            sources=[
                Source(
                    title=s.get('title', 'Untitled'),
                    link=s.get('link', ''),
                    score=float(s.get('score', 0.0)),
                )
                for s in data.get('sources') or []
            ],
            timestamp=data.get('timestamp'),
        )
