"""
Chat Handler

Caller-facing surface of the question-answering pipeline. Validates
incoming messages, resolves sessions, delivers answers (complete or as an
event stream) and records each exchange in the conversation store: the
question at intake, the answer once delivered.

Stream events are plain dictionaries tagged by ``type``:

- ``metadata``: ``{sessionId, timestamp}``
- ``sources``:  ``{sources: [{title, link, score}]}`` (only when documents were retrieved)
- ``content``:  ``{content}`` one per text increment
- ``complete``: ``{fullResponse}``
- ``error``:    ``{error, details?}``
"""

import logging
import uuid
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from ..models import Message, Session, Source, utc_now_iso
from .conversation_store import ConversationStore, ConversationStoreError
from .rag_service import RAGService

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Failed to process message"


class MessageValidationError(ValueError):
    """Raised when an incoming message or session id is rejected at intake."""
    pass


class SessionNotFoundError(LookupError):
    """Raised when a session does not exist or has expired."""
    pass


class ChatProcessingError(Exception):
    """
    Single user-visible failure of a chat request.

    ``details`` carries the underlying error message only when the handler
    is configured to expose diagnostics.
    """

    def __init__(self, message: str = GENERIC_FAILURE, details: Optional[str] = None):
        super().__init__(message)
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {'error': str(self)}
        if self.details:
            body['details'] = self.details
        return body


class ChatHandler:
    """
    Handles chat messages and session operations.

    Every request is independent; the only shared state lives in the
    remote stores behind the RAG service and the conversation store.
    """

    def __init__(
        self,
        rag_service: RAGService,
        conversation_store: ConversationStore,
        history_limit: int = 10,
        max_message_length: int = 8000,
        expose_errors: bool = False
    ):
        """
        Initialize the chat handler.

        Args:
            rag_service: Classify/retrieve/generate pipeline
            conversation_store: Session and history store
            history_limit: Number of previous messages given to the model
            max_message_length: Longest accepted message in characters
            expose_errors: Include diagnostic detail in failures (non-production only)
        """
        self.rag_service = rag_service
        self.conversation_store = conversation_store
        self.history_limit = history_limit
        self.max_message_length = max_message_length
        self.expose_errors = expose_errors

    # Intake

    @staticmethod
    def _validate_session_id(session_id: Any) -> str:
        if not session_id or not isinstance(session_id, str) or not session_id.strip():
            raise MessageValidationError("Session ID is required")
        return session_id.strip()

    def _validate(self, message: Any, session_id: Any) -> Tuple[str, str]:
        if not message or not isinstance(message, str) or not message.strip():
            raise MessageValidationError("Message is required and must be a non-empty string")

        text = message.strip()
        if len(text) > self.max_message_length:
            raise MessageValidationError(
                f"Message is too long ({len(text)} characters, maximum {self.max_message_length})"
            )

        return text, self._validate_session_id(session_id)

    def _prepare_session(self, session_id: str) -> List[Message]:
        """Resolve or create the session and load the history used as context."""
        if self.conversation_store.get_session(session_id) is None:
            self.conversation_store.create_session(session_id)
            return []
        return self.conversation_store.get_messages(session_id, limit=self.history_limit)

    def _failure(self, error: Exception) -> ChatProcessingError:
        details = str(error) if self.expose_errors else None
        return ChatProcessingError(GENERIC_FAILURE, details=details)

    # Record

    def _record(self, session_id: str, message: Message) -> None:
        """Append one message; failures are logged only."""
        try:
            self.conversation_store.append_message(session_id, message)
        except ConversationStoreError as e:
            logger.error(f"Failed to record {message.role} message for session {session_id}: {e}")

    def _record_question(self, session_id: str, user_text: str) -> None:
        self._record(session_id, Message(role='user', content=user_text))

    def _record_answer(self, session_id: str, answer: str, sources: Sequence[Source]) -> None:
        self._record(
            session_id, Message(role='assistant', content=answer, sources=list(sources))
        )

    # Delivery

    def send_message(self, message: Any, session_id: Any) -> Dict[str, Any]:
        """
        Answer a message and return the complete response.

        Args:
            message: User message
            session_id: Session identifier (created if it does not exist)

        Returns:
            Dictionary with sessionId, message, sources, timestamp

        Raises:
            MessageValidationError: If the message or session id is invalid
            ChatProcessingError: If any pipeline step fails
        """
        text, session_id = self._validate(message, session_id)
        logger.info(f"Processing chat message for session {session_id} ({len(text)} characters)")

        try:
            history = self._prepare_session(session_id)
            self._record_question(session_id, text)
            result = self.rag_service.answer(text, history)
        except Exception as e:
            logger.error(f"Error processing message for session {session_id}: {e}")
            raise self._failure(e) from e

        sources = result['sources']
        self._record_answer(session_id, result['answer'], sources)

        return {
            'sessionId': session_id,
            'message': result['answer'],
            'sources': [source.to_dict() for source in sources],
            'timestamp': utc_now_iso(),
        }

    def stream_message(self, message: Any, session_id: Any) -> Iterator[Dict[str, Any]]:
        """
        Answer a message as a stream of events.

        Validation happens immediately; everything else happens while the
        returned iterator is consumed. Closing the iterator early stops
        generation; any content already delivered is recorded once.

        Args:
            message: User message
            session_id: Session identifier (created if it does not exist)

        Returns:
            Iterator of event dictionaries

        Raises:
            MessageValidationError: If the message or session id is invalid
        """
        text, session_id = self._validate(message, session_id)
        logger.info(f"Processing streaming chat message for session {session_id}")
        return self._stream_events(text, session_id)

    def _stream_events(self, text: str, session_id: str) -> Iterator[Dict[str, Any]]:
        delivered: List[str] = []
        sources: List[Source] = []
        tokens = None
        completed = False
        failure: Optional[ChatProcessingError] = None

        try:
            history = self._prepare_session(session_id)
            self._record_question(session_id, text)

            yield {'type': 'metadata', 'sessionId': session_id, 'timestamp': utc_now_iso()}

            retrieval = self.rag_service.retrieve_context(text)
            sources = retrieval.sources
            if sources:
                yield {'type': 'sources', 'sources': [source.to_dict() for source in sources]}

            tokens = self.rag_service.stream_answer(retrieval, history)
            for token in tokens:
                delivered.append(token)
                yield {'type': 'content', 'content': token}

            completed = True
            yield {'type': 'complete', 'fullResponse': ''.join(delivered)}

        except GeneratorExit:
            logger.info(f"Stream for session {session_id} cancelled by consumer")
            raise
        except Exception as e:
            logger.error(f"Error in streaming message for session {session_id}: {e}")
            failure = self._failure(e)
        finally:
            if tokens is not None and hasattr(tokens, 'close'):
                tokens.close()
            if failure is None and (completed or delivered):
                self._record_answer(session_id, ''.join(delivered), sources)

        if failure is not None:
            yield {'type': 'error', **failure.to_dict()}

    # Sessions

    def create_session(self) -> Session:
        """Create a session with a fresh random id."""
        return self.conversation_store.create_session(str(uuid.uuid4()))

    def get_session(self, session_id: Any) -> Session:
        """
        Get session metadata.

        Raises:
            MessageValidationError: If the session id is missing
            SessionNotFoundError: If the session does not exist
        """
        session_id = self._validate_session_id(session_id)
        session = self.conversation_store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def get_history(self, session_id: Any, limit: int = 50) -> Dict[str, Any]:
        """
        Get a session's message history.

        Args:
            session_id: Session identifier
            limit: Maximum number of most recent messages

        Returns:
            Dictionary with sessionId, session, messages (oldest first), count
        """
        session = self.get_session(session_id)
        messages = self.conversation_store.get_messages(session.id, limit=limit)

        return {
            'sessionId': session.id,
            'session': session.to_dict(),
            'messages': [message.to_dict() for message in messages],
            'count': len(messages),
        }

    def clear_session(self, session_id: Any) -> None:
        """Delete a session together with its history."""
        session_id = self._validate_session_id(session_id)
        self.conversation_store.delete_session(session_id)
