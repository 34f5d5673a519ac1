"""
LLM Service

Wraps the generative model (Ollama chat models through LangChain) with the
prompts the RAG pipeline needs:
1. News-relatedness classification
2. Query expansion for retrieval
3. Grounded answers over retrieved articles
4. Context-free fallback answers
5. Token streaming for both answer kinds
"""

import logging
from typing import Iterator, List, Optional, Sequence

from langchain_ollama import ChatOllama

from ..models import Message, SearchResult

logger = logging.getLogger(__name__)


class LLMServiceError(Exception):
    """Raised when the generative model fails to produce a response."""
    pass


GROUNDED_SYSTEM_PROMPT = """You are a helpful news assistant that answers questions based on recent news articles.

IMPORTANT INSTRUCTIONS:
1. Answer using the information provided in the articles below
2. Mention the article titles you rely on when it helps the reader
3. If the articles do not contain the answer, say so clearly instead of guessing
4. Be concise but comprehensive
5. Do not make up facts that are not supported by the articles"""

FALLBACK_SYSTEM_PROMPT = """You are a helpful assistant for a news question-answering service.
Answer the user's message directly and concisely. If the user asks about specific
recent events you have no information about, say that you could not find related
news articles."""

CLASSIFY_PROMPT = """Decide whether the following user message asks about news, current events,
politics, business, markets, sports results, weather events, or other recent happenings.

Message: {message}

Reply with exactly one word: YES or NO."""

EXPAND_PROMPT = """Rewrite the following news question as a short list of search keywords and
closely related terms (names, places, topics) that would help find relevant news articles.
Return only the keywords separated by spaces, with no explanation.

Question: {query}

Keywords:"""


class LLMService:
    """
    Generative model adapter for the RAG pipeline.

    Every call is bounded by ``timeout`` seconds at the HTTP client level.
    """

    def __init__(
        self,
        model: str = "llama3.1:latest",
        base_url: str = "http://localhost:11434",
        temperature: float = 0.7,
        top_k: int = 40,
        top_p: float = 0.95,
        max_tokens: int = 1024,
        timeout: int = 60
    ):
        """
        Initialize the LLM service.

        Args:
            model: Ollama model name for answer generation
            base_url: Base URL for the Ollama service
            temperature: Sampling temperature for answers
            top_k: Top-k sampling parameter
            top_p: Nucleus sampling parameter
            max_tokens: Maximum tokens in a generated answer
            timeout: Request timeout in seconds
        """
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.top_k = top_k
        self.top_p = top_p
        self.max_tokens = max_tokens
        self.timeout = timeout

        self.llm = ChatOllama(
            model=model,
            base_url=base_url,
            temperature=temperature,
            top_k=top_k,
            top_p=top_p,
            num_predict=max_tokens,
            client_kwargs={'timeout': timeout}
        )

        # Short deterministic completions for classification and expansion
        self.utility_llm = ChatOllama(
            model=model,
            base_url=base_url,
            temperature=0.0,
            num_predict=64,
            client_kwargs={'timeout': timeout}
        )

    @staticmethod
    def _content_of(response) -> str:
        if hasattr(response, 'content'):
            return response.content or ''
        return str(response)

    def _invoke(self, llm: ChatOllama, prompt: str, purpose: str) -> str:
        try:
            return self._content_of(llm.invoke(prompt)).strip()
        except Exception as e:
            logger.error(f"Error during {purpose}: {e}")
            raise LLMServiceError(f"Error during {purpose} with LLM: {e}") from e

    def is_news_related(self, message: str) -> bool:
        """
        Ask the model whether a message is about news or current events.

        Args:
            message: User message

        Returns:
            True if the message should be answered from news articles
        """
        answer = self._invoke(
            self.utility_llm,
            CLASSIFY_PROMPT.format(message=message),
            "news classification"
        )
        is_news = answer.upper().lstrip(' "\'*').startswith('YES')
        logger.debug(f"Classified message as {'news' if is_news else 'general'} ({answer!r})")
        return is_news

    def expand_query(self, query: str) -> str:
        """
        Generate retrieval keywords for a query.

        Args:
            query: User question

        Returns:
            Space-separated keywords (may be empty)
        """
        expansion = self._invoke(
            self.utility_llm,
            EXPAND_PROMPT.format(query=query),
            "query expansion"
        )
        return ' '.join(expansion.split())

    @staticmethod
    def _format_history(history: Optional[Sequence[Message]]) -> str:
        if not history:
            return ""

        lines = ["", "", "PREVIOUS CONVERSATION:"]
        for message in history:
            lines.append(f"{message.role.capitalize()}: {message.content}")
        return "\n".join(lines)

    @staticmethod
    def format_context(documents: Sequence[SearchResult]) -> str:
        """
        Format retrieved documents as a context block.

        Args:
            documents: Retrieved search results

        Returns:
            Numbered title/content sections
        """
        parts = []
        for i, doc in enumerate(documents, 1):
            parts.append(f"[{i}] Title: {doc.title}\nContent: {doc.content}")
        return "\n\n".join(parts)

    def build_grounded_prompt(
        self,
        question: str,
        documents: Sequence[SearchResult],
        history: Optional[Sequence[Message]] = None
    ) -> str:
        """Build the prompt for an answer grounded in retrieved articles."""
        return (
            f"{GROUNDED_SYSTEM_PROMPT}"
            f"{self._format_history(history)}\n\n"
            f"RECENT NEWS ARTICLES:\n{self.format_context(documents)}\n\n"
            f"QUESTION: {question}\n\n"
            f"ANSWER:"
        )

    def build_fallback_prompt(
        self,
        question: str,
        history: Optional[Sequence[Message]] = None
    ) -> str:
        """Build the prompt for a context-free answer."""
        return (
            f"{FALLBACK_SYSTEM_PROMPT}"
            f"{self._format_history(history)}\n\n"
            f"USER: {question}\n\n"
            f"ASSISTANT:"
        )

    def _prompt_for(
        self,
        question: str,
        documents: Optional[Sequence[SearchResult]],
        history: Optional[Sequence[Message]]
    ) -> str:
        if documents:
            return self.build_grounded_prompt(question, documents, history)
        return self.build_fallback_prompt(question, history)

    def generate_answer(
        self,
        question: str,
        documents: Optional[Sequence[SearchResult]] = None,
        history: Optional[Sequence[Message]] = None
    ) -> str:
        """
        Generate a complete answer.

        Args:
            question: User question
            documents: Retrieved articles; a context-free answer is produced when empty
            history: Previous conversation messages, oldest first

        Returns:
            Generated answer text
        """
        prompt = self._prompt_for(question, documents, history)
        return self._invoke(self.llm, prompt, "answer generation")

    def stream_answer(
        self,
        question: str,
        documents: Optional[Sequence[SearchResult]] = None,
        history: Optional[Sequence[Message]] = None
    ) -> Iterator[str]:
        """
        Stream an answer as text increments.

        Closing the returned generator stops the underlying model stream.

        Args:
            question: User question
            documents: Retrieved articles; a context-free answer is produced when empty
            history: Previous conversation messages, oldest first

        Yields:
            Non-empty text increments
        """
        prompt = self._prompt_for(question, documents, history)
        stream = None

        try:
            stream = self.llm.stream(prompt)
            for chunk in stream:
                text = self._content_of(chunk)
                if text:
                    yield text
        except GeneratorExit:
            raise
        except Exception as e:
            logger.error(f"Error during streaming generation: {e}")
            raise LLMServiceError(f"Error during streaming generation with LLM: {e}") from e
        finally:
            close = getattr(stream, 'close', None)
            if callable(close):
                close()

    def get_model_info(self) -> List[str]:
        """Model settings as printable lines."""
        return [
            f"model={self.model}",
            f"temperature={self.temperature}",
            f"top_k={self.top_k}",
            f"top_p={self.top_p}",
            f"max_tokens={self.max_tokens}",
            f"timeout={self.timeout}s",
        ]
