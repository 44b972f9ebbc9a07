"""
Embedding Service - Generates vector embeddings via Azure OpenAI.

Uses the text-embedding-3-small model (1536 dimensions) by default.
Supports batch processing with retry logic and exponential backoff.
Provider payloads are decoded through a validated boundary so that format
drift surfaces as a provider error rather than a malformed vector.
"""

from __future__ import annotations

import time
from typing import Any

import requests
from pydantic import BaseModel, ValidationError

from policyrag.config import OpenAISettings, RAGSettings
from policyrag.errors import EmbeddingError, Err, FailureKind, Ok, Result
from policyrag.utils import setup_logging

logger = setup_logging()


class EmbeddingItem(BaseModel):
    index: int
    embedding: list[float]


class EmbeddingResponse(BaseModel):
    data: list[EmbeddingItem]


def decode_embedding_response(
    payload: Any,
    expected_count: int,
    dimensions: int,
) -> Result[list[list[float]]]:
    """
    Validate a provider embeddings payload.

    Args:
        payload: Parsed JSON body returned by the provider
        expected_count: Number of input texts sent
        dimensions: Configured embedding dimensionality

    Returns:
        Ok with vectors in input order, or Err(PROVIDER_ERROR)
    """
    try:
        response = EmbeddingResponse.model_validate(payload)
    except ValidationError as e:
        return Err(FailureKind.PROVIDER_ERROR, f"Malformed embedding response: {e.error_count()} errors")

    items = sorted(response.data, key=lambda item: item.index)
    if len(items) != expected_count:
        return Err(
            FailureKind.PROVIDER_ERROR,
            f"Expected {expected_count} embeddings, got {len(items)}",
        )
    if [item.index for item in items] != list(range(expected_count)):
        return Err(FailureKind.PROVIDER_ERROR, "Embedding indices are not contiguous")

    for item in items:
        if len(item.embedding) != dimensions:
            return Err(
                FailureKind.PROVIDER_ERROR,
                f"Embedding {item.index} has {len(item.embedding)} dimensions, expected {dimensions}",
            )

    return Ok([item.embedding for item in items])


class EmbeddingService:
    """
    Service for generating text embeddings using Azure OpenAI.

    Supports:
    - Single text embedding
    - Batch embedding (up to 100 texts), all-or-nothing
    - Retry with exponential backoff
    """

    # Azure OpenAI batch limit
    MAX_BATCH_SIZE = 100

    def __init__(
        self,
        openai_settings: OpenAISettings,
        rag_settings: RAGSettings | None = None,
        embedding_deployment: str | None = None,
        session: requests.Session | None = None,
    ):
        """
        Initialize the embedding service.

        Args:
            openai_settings: Azure OpenAI configuration
            rag_settings: RAG configuration (for model/dimensions)
            embedding_deployment: Optional deployment name override for embeddings
            session: Optional HTTP session (injected in tests)
        """
        self.settings = openai_settings
        self.rag_settings = rag_settings or RAGSettings()
        self.session = session or requests.Session()

        # Use embedding-specific deployment: explicit override > RAG settings > error
        self.embedding_deployment = (
            embedding_deployment
            or self.rag_settings.embedding_deployment
        )

        if not self.embedding_deployment:
            raise EmbeddingError(
                "No embedding deployment configured. "
                "Set EMBEDDING_DEPLOYMENT environment variable to your Azure OpenAI embedding model deployment name."
            )

        # Model configuration
        self.model = self.rag_settings.embedding_model
        self.dimensions = self.rag_settings.embedding_dimensions
        self.timeout = self.settings.request_timeout

    def generate(
        self,
        text: str,
        max_retries: int = 3,
        retry_backoff: float = 2.0,
    ) -> list[float]:
        """
        Generate embedding for a single text.

        Raises:
            EmbeddingError: If embedding generation fails after retries
        """
        return self.generate_batch(
            [text],
            max_retries=max_retries,
            retry_backoff=retry_backoff,
        )[0]

    def generate_batch(
        self,
        texts: list[str],
        max_retries: int = 3,
        retry_backoff: float = 2.0,
    ) -> list[list[float]]:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: List of texts to embed (max 100)
            max_retries: Number of retry attempts
            retry_backoff: Exponential backoff multiplier

        Returns:
            One vector per input text, in input order

        Raises:
            ValueError: If any text is empty
            EmbeddingError: If embedding generation fails after retries
        """
        if not texts:
            return []

        if any(not text.strip() for text in texts):
            raise ValueError("Cannot embed empty text")

        if len(texts) > self.MAX_BATCH_SIZE:
            raise EmbeddingError(
                f"Batch size {len(texts)} exceeds maximum {self.MAX_BATCH_SIZE}. "
                "Split into smaller batches."
            )

        # Validate settings
        if not self.settings.endpoint or not self.settings.api_key:
            raise EmbeddingError(
                "Azure OpenAI settings incomplete. "
                "Set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY."
            )

        url = f"{self.settings.endpoint}/openai/deployments/{self.embedding_deployment}/embeddings"
        params = {"api-version": self.settings.api_version}
        headers = {
            "Content-Type": "application/json",
            "api-key": self.settings.api_key,
        }
        payload: dict[str, Any] = {
            "input": texts,
            "model": self.model,
        }

        # Add dimensions if not default (for newer models)
        if self.dimensions and self.dimensions != 1536:
            payload["dimensions"] = self.dimensions

        last_error: Exception | None = None
        for attempt in range(max_retries):
            try:
                response = self.session.post(
                    url,
                    params=params,
                    headers=headers,
                    json=payload,
                    timeout=self.timeout,
                )

                if response.status_code == 200:
                    try:
                        body = response.json()
                    except ValueError as e:
                        raise EmbeddingError(f"Embedding API returned invalid JSON: {e}") from e

                    decoded = decode_embedding_response(body, len(texts), self.dimensions)
                    if isinstance(decoded, Err):
                        raise EmbeddingError(decoded.message)

                    logger.debug(f"Generated {len(decoded.value)} embeddings")
                    return decoded.value

                # Handle rate limiting
                if response.status_code == 429:
                    retry_after = float(response.headers.get("Retry-After", retry_backoff ** attempt))
                    logger.warning(f"Rate limited, retrying after {retry_after}s...")
                    last_error = EmbeddingError("Embedding API rate limited")
                    time.sleep(retry_after)
                    continue

                last_error = EmbeddingError(
                    f"Embedding API error {response.status_code}: {response.text[:500]}"
                )

                # Don't retry client errors (4xx except 429)
                if 400 <= response.status_code < 500:
                    raise last_error

            except requests.exceptions.Timeout:
                last_error = EmbeddingError("Embedding API timeout")
                logger.warning(f"Attempt {attempt + 1}/{max_retries}: Timeout")
            except requests.exceptions.RequestException as e:
                last_error = EmbeddingError(f"Network error: {e}")
                logger.warning(f"Attempt {attempt + 1}/{max_retries}: {e}")

            # Exponential backoff
            if attempt < max_retries - 1:
                sleep_time = retry_backoff ** attempt
                logger.debug(f"Retrying in {sleep_time}s...")
                time.sleep(sleep_time)

        raise last_error or EmbeddingError("Embedding generation failed")
