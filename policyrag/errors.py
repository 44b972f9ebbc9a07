"""
Error types shared by the retrieval core.

Components raise ``PolicyRAGError`` subclasses internally. Every public
operation converts them into an explicit ``Ok`` / ``Err`` result so callers
handle each failure kind instead of relying on exception propagation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class FailureKind(str, Enum):
    """Named failure kinds reported to callers."""

    # Input errors
    PLAN_NOT_FOUND = "plan_not_found"
    DOCUMENT_NOT_FOUND = "document_not_found"
    NO_DOCUMENTS = "no_documents"
    NO_PROCESSED_DOCUMENTS = "no_processed_documents"
    EMPTY_DOCUMENT = "empty_document"
    INVALID_DOCUMENT = "invalid_document"
    ALREADY_PROCESSED = "already_processed"
    INVALID_INPUT = "invalid_input"

    # Collaborator errors
    PROVIDER_ERROR = "provider_error"
    STORAGE_ERROR = "storage_error"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: FailureKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


Result = Union[Ok[T], Err]


class PolicyRAGError(Exception):
    """Base exception for the retrieval core."""

    kind: FailureKind = FailureKind.INVALID_INPUT

    def __init__(self, message: str, kind: FailureKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    def to_err(self) -> Err:
        return Err(self.kind, str(self))


class EmbeddingError(PolicyRAGError):
    """Raised when embedding generation fails."""

    kind = FailureKind.PROVIDER_ERROR


class TextGenerationError(PolicyRAGError):
    """Raised when the text-generation provider fails or returns garbage."""

    kind = FailureKind.PROVIDER_ERROR


class StorageError(PolicyRAGError):
    """Raised when the policy store or blob storage cannot be reached."""

    kind = FailureKind.STORAGE_ERROR


class PdfExtractionError(PolicyRAGError):
    """Raised when a policy file is not a readable PDF."""

    kind = FailureKind.INVALID_DOCUMENT
