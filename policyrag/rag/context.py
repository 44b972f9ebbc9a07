"""
RAG Context Builder - Assembles search results into LLM-ready context.

Joins retrieved policy passages for inclusion in LLM prompts, keeping the
assembled text within a token budget.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import tiktoken

from policyrag.rag.search import SearchResult
from policyrag.utils import setup_logging

logger = setup_logging()

# Default token budgets
DEFAULT_MAX_TOKENS = 4000
CHUNK_SEPARATOR = "\n\n---\n\n"


class Encoding(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


@dataclass
class RAGContext:
    """Assembled RAG context ready for LLM prompt injection."""

    context_text: str
    total_tokens: int
    chunks_included: int
    chunks_truncated: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "context_text": self.context_text,
            "total_tokens": self.total_tokens,
            "chunks_included": self.chunks_included,
            "chunks_truncated": self.chunks_truncated,
        }


class RAGContextBuilder:
    """
    Builds LLM-ready context from search results.

    Results are taken in ranking order until the budget is spent; the first
    passage that does not fit is truncated if a useful remainder is left.
    """

    # Smallest remainder worth truncating a passage into
    MIN_TRUNCATED_TOKENS = 100

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        model: str = "gpt-4",
        encoding: Encoding | None = None,
    ):
        """
        Initialize context builder.

        Args:
            max_tokens: Maximum tokens for assembled context
            model: Model name for tokenization (affects token counting)
            encoding: Explicit tokenizer, overrides ``model``
        """
        self.max_tokens = max_tokens

        if encoding is not None:
            self.encoding = encoding
        else:
            try:
                self.encoding = tiktoken.encoding_for_model(model)
            except KeyError:
                # Fallback to cl100k_base (GPT-4 family)
                self.encoding = tiktoken.get_encoding("cl100k_base")

    def count_tokens(self, text: str) -> int:
        """Count tokens in text."""
        return len(self.encoding.encode(text))

    def assemble_context(self, results: list[SearchResult]) -> RAGContext:
        parts: list[str] = []
        tokens_used = 0
        chunks_truncated = 0
        separator_tokens = self.count_tokens(CHUNK_SEPARATOR)

        for result in results:
            overhead = separator_tokens if parts else 0
            chunk_tokens = self.count_tokens(result.chunk_text)

            if tokens_used + overhead + chunk_tokens <= self.max_tokens:
                parts.append(result.chunk_text)
                tokens_used += overhead + chunk_tokens
                continue

            remaining = self.max_tokens - tokens_used - overhead
            if remaining >= self.MIN_TRUNCATED_TOKENS:
                parts.append(self._truncate_to_tokens(result.chunk_text, remaining))
                tokens_used += overhead + remaining
                chunks_truncated += 1
            break

        if len(parts) < len(results):
            logger.debug(
                f"Context budget {self.max_tokens} reached: "
                f"{len(parts)} of {len(results)} passages included"
            )

        return RAGContext(
            context_text=CHUNK_SEPARATOR.join(parts),
            total_tokens=tokens_used,
            chunks_included=len(parts),
            chunks_truncated=chunks_truncated,
        )

    def _truncate_to_tokens(self, text: str, max_tokens: int) -> str:
        """Truncate text to fit within token budget."""
        tokens = self.encoding.encode(text)
        if len(tokens) <= max_tokens:
            return text

        truncated_text = self.encoding.decode(tokens[:max_tokens])

        # Add ellipsis to indicate truncation
        return truncated_text.rstrip() + "..."
