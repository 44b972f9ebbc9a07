"""
Recommendation scorer for insurance plans.

A plan's value score is the net coverage it buys for a product per cent of
annual premium:

    (coverage% / 100 * product price - min(deductible, product price)) / annual price
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from policyrag.errors import Err, FailureKind, Ok, PolicyRAGError, Result
from policyrag.models import InsurancePlan
from policyrag.rag.repository import PolicyStore
from policyrag.utils import setup_logging

logger = setup_logging()


def annual_reference_price(plan: InsurancePlan) -> float:
    """Yearly price, else half the two-yearly price, else 0."""
    if plan.yearly_price_in_cents:
        return float(plan.yearly_price_in_cents)
    if plan.two_yearly_price_in_cents:
        return plan.two_yearly_price_in_cents / 2
    return 0.0


def calculate_value_score(plan: InsurancePlan, product_price_in_cents: int) -> float:
    reference_price = annual_reference_price(plan)
    if reference_price == 0 or product_price_in_cents == 0:
        return 0.0

    coverage_value = plan.coverage_percentage / 100 * product_price_in_cents
    effective_deductible = min(plan.deductible_in_cents, product_price_in_cents)
    return (coverage_value - effective_deductible) / reference_price


@dataclass
class Recommendation:
    plan: InsurancePlan
    value_score: float
    is_recommended: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.plan.to_dict(),
            "value_score": round(self.value_score, 4),
            "is_recommended": self.is_recommended,
        }


def rank_plans(
    plans: list[InsurancePlan],
    product_category: str,
    product_price_in_cents: int,
) -> list[Recommendation]:
    """
    Score the active plans covering the category, best first.

    Ties keep the input order. The first entry is flagged as recommended.
    """
    recommendations = [
        Recommendation(plan=plan, value_score=calculate_value_score(plan, product_price_in_cents))
        for plan in plans
        if plan.is_active and plan.covers_category(product_category)
    ]
    recommendations.sort(key=lambda r: r.value_score, reverse=True)

    if recommendations:
        recommendations[0].is_recommended = True
    return recommendations


class RecommendationService:
    def __init__(self, store: PolicyStore):
        self.store = store

    async def recommend(
        self,
        product_category: str,
        product_price_in_cents: int,
    ) -> Result[list[Recommendation]]:
        if product_price_in_cents < 0:
            return Err(FailureKind.INVALID_INPUT, "Product price must not be negative")
        if not product_category.strip():
            return Err(FailureKind.INVALID_INPUT, "Product category must not be empty")

        try:
            plans = await self.store.list_active_plans()
        except PolicyRAGError as e:
            logger.error(f"Loading plans for recommendations failed: {e}")
            return e.to_err()

        recommendations = rank_plans(plans, product_category, product_price_in_cents)
        logger.info(
            f"Ranked {len(recommendations)} plans for category '{product_category}' "
            f"at {product_price_in_cents} cents"
        )
        return Ok(recommendations)
