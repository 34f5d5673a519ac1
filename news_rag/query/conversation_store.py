"""
Conversation Store for Multi-turn Dialogues

Keeps per-session metadata and a bounded message history in Redis.

Two independently expiring keys exist per session:
- ``session:{id}``  hash with id, createdAt, messagesCount (session TTL)
- ``messages:{id}`` list of JSON messages, most recent first (history TTL,
  refreshed on every append)

Because the keys expire independently, ``messagesCount`` may exceed the
number of messages still stored. That drift is expected.
"""

import json
import logging
from typing import List, Optional

import redis

from ..models import Message, Session, utc_now_iso

logger = logging.getLogger(__name__)


class ConversationStoreError(Exception):
    """Raised when the session store cannot be reached or returns bad data."""
    pass


class ConversationStore:
    """
    Redis-backed session and message history store.

    All operations are scoped to one session key; concurrent writers to the
    same session may interleave message order.
    """

    SESSION_PREFIX = "session:"
    MESSAGES_PREFIX = "messages:"

    def __init__(
        self,
        client: redis.Redis,
        session_ttl: int = 86400,
        history_ttl: int = 3600,
        max_messages: int = 100
    ):
        """
        Initialize the conversation store.

        Args:
            client: Redis client created with ``decode_responses=True``
            session_ttl: Seconds before session metadata expires
            history_ttl: Seconds before a message list expires (reset on append)
            max_messages: Maximum messages kept per session
        """
        self.client = client
        self.session_ttl = session_ttl
        self.history_ttl = history_ttl
        self.max_messages = max_messages

    @classmethod
    def from_url(cls, url: str, **kwargs) -> 'ConversationStore':
        """Create a store connected to the Redis instance at ``url``."""
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _session_key(self, session_id: str) -> str:
        return f"{self.SESSION_PREFIX}{session_id}"

    def _messages_key(self, session_id: str) -> str:
        return f"{self.MESSAGES_PREFIX}{session_id}"

    def ping(self) -> bool:
        """
        Verify the Redis connection.

        Raises:
            ConversationStoreError: If Redis is unreachable
        """
        try:
            self.client.ping()
        except redis.RedisError as e:
            raise ConversationStoreError(f"Redis connection failed: {e}") from e
        logger.info("Redis connection established")
        return True

    def close(self) -> None:
        """Release the Redis connection pool."""
        self.client.close()

    def create_session(self, session_id: str) -> Session:
        """
        Create (or overwrite) session metadata.

        Calling this on an existing id resets ``createdAt`` and the
        message counter; check ``get_session`` first.

        Args:
            session_id: Session identifier

        Returns:
            The new session
        """
        session = Session(id=session_id, created_at=utc_now_iso(), messages_count=0)
        key = self._session_key(session_id)

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(key, mapping={
                'id': session.id,
                'createdAt': session.created_at,
                'messagesCount': session.messages_count,
            })
            pipe.expire(key, self.session_ttl)
            pipe.execute()
        except redis.RedisError as e:
            raise ConversationStoreError(f"Failed to create session {session_id}: {e}") from e

        logger.info(f"Created session: {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        """
        Fetch session metadata.

        Args:
            session_id: Session identifier

        Returns:
            The session, or None if it does not exist or has expired
        """
        try:
            data = self.client.hgetall(self._session_key(session_id))
        except redis.RedisError as e:
            raise ConversationStoreError(f"Failed to read session {session_id}: {e}") from e

        # A bare counter left by an append after expiry is not a session
        if not data or 'id' not in data:
            return None

        try:
            messages_count = int(data.get('messagesCount', 0))
        except ValueError:
            raise ConversationStoreError(f"Corrupt messagesCount for session {session_id}")

        return Session(
            id=data['id'],
            created_at=data.get('createdAt', ''),
            messages_count=messages_count,
        )

    def delete_session(self, session_id: str) -> None:
        """
        Delete session metadata and message history together.

        Args:
            session_id: Session identifier
        """
        try:
            self.client.delete(self._session_key(session_id), self._messages_key(session_id))
        except redis.RedisError as e:
            raise ConversationStoreError(f"Failed to delete session {session_id}: {e}") from e

        logger.info(f"Deleted session {session_id}")

    def append_message(self, session_id: str, message: Message) -> Message:
        """
        Push a message to the front of the session's history.

        Increments ``messagesCount``, trims the list to ``max_messages`` and
        resets the list's expiry.

        Args:
            session_id: Session identifier
            message: Message to store (timestamp is filled in if missing)

        Returns:
            The stored message
        """
        if message.timestamp is None:
            message.timestamp = utc_now_iso()

        messages_key = self._messages_key(session_id)
        session_key = self._session_key(session_id)

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.lpush(messages_key, json.dumps(message.to_dict()))
            pipe.ltrim(messages_key, 0, self.max_messages - 1)
            pipe.hincrby(session_key, 'messagesCount', 1)
            # bounds a counter re-created after expiry; live sessions keep their TTL
            pipe.expire(session_key, self.session_ttl, nx=True)
            pipe.expire(messages_key, self.history_ttl)
            pipe.execute()
        except redis.RedisError as e:
            raise ConversationStoreError(f"Failed to append message to {session_id}: {e}") from e

        logger.debug(f"Appended {message.role} message to session {session_id}")
        return message

    def get_messages(self, session_id: str, limit: int = 50) -> List[Message]:
        """
        Get the most recent messages of a session, oldest first.

        Args:
            session_id: Session identifier
            limit: Maximum number of messages

        Returns:
            Up to ``limit`` messages in chronological order
        """
        if limit <= 0:
            return []

        try:
            raw_messages = self.client.lrange(self._messages_key(session_id), 0, limit - 1)
        except redis.RedisError as e:
            raise ConversationStoreError(f"Failed to read messages for {session_id}: {e}") from e

        messages = []
        for raw in raw_messages:
            try:
                messages.append(Message.from_dict(json.loads(raw)))
            except (json.JSONDecodeError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping undecodable message in session {session_id}: {e}")

        messages.reverse()
        return messages
