"""
Domain records for insurance plans, their policy documents and embedded chunks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class InsurancePlan:
    """One sellable insurance product offered by an insurance company."""

    id: str
    company_name: str
    plan_name: str
    description: str = ""
    categories: list[str] = field(default_factory=list)

    # Pricing tiers in minor currency units
    yearly_price_in_cents: int | None = None
    two_yearly_price_in_cents: int | None = None

    coverage_percentage: int = 0
    deductible_in_cents: int = 0
    is_active: bool = True

    coverage_description: str | None = None
    right_of_withdrawal: str | None = None
    generated_summary: str | None = None
    top_reasons: list[str] = field(default_factory=list)

    def covers_category(self, category: str) -> bool:
        wanted = category.lower()
        return any(c.lower() == wanted for c in self.categories)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "plan_name": self.plan_name,
            "description": self.description,
            "categories": list(self.categories),
            "yearly_price_in_cents": self.yearly_price_in_cents,
            "two_yearly_price_in_cents": self.two_yearly_price_in_cents,
            "coverage_percentage": self.coverage_percentage,
            "deductible_in_cents": self.deductible_in_cents,
            "is_active": self.is_active,
            "coverage_description": self.coverage_description,
            "right_of_withdrawal": self.right_of_withdrawal,
            "generated_summary": self.generated_summary,
            "top_reasons": list(self.top_reasons),
        }


# Plan attributes an admin edit may change
EDITABLE_PLAN_FIELDS = frozenset({
    "company_name",
    "plan_name",
    "description",
    "categories",
    "yearly_price_in_cents",
    "two_yearly_price_in_cents",
    "coverage_percentage",
    "deductible_in_cents",
    "is_active",
    "coverage_description",
    "right_of_withdrawal",
})

# Editable attributes that must never be cleared to None
REQUIRED_PLAN_FIELDS = frozenset({
    "company_name",
    "plan_name",
    "description",
    "categories",
    "coverage_percentage",
    "deductible_in_cents",
    "is_active",
})


@dataclass
class PolicyDocument:
    """An uploaded policy file belonging to exactly one plan."""

    id: str
    plan_id: str
    file_name: str
    storage_key: str
    storage_url: str
    file_size_in_bytes: int = 0
    mime_type: str = "application/pdf"
    is_processed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "file_name": self.file_name,
            "storage_key": self.storage_key,
            "storage_url": self.storage_url,
            "file_size_in_bytes": self.file_size_in_bytes,
            "mime_type": self.mime_type,
            "is_processed": self.is_processed,
        }


@dataclass
class EmbeddedChunk:
    """A chunk ready to be appended to the store."""

    index: int
    text: str
    embedding: list[float]


@dataclass
class PolicyChunk:
    """A stored, embedded text segment of a policy document."""

    id: str
    document_id: str
    chunk_index: int
    chunk_text: str
    embedding: list[float]
