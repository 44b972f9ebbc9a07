"""Tests for the recommendation scorer."""

import pytest

from conftest import make_plan
from policyrag.errors import Err, FailureKind
from policyrag.recommendations import annual_reference_price, calculate_value_score, rank_plans


def test_value_score_scenario():
    plan = make_plan(coverage_percentage=80, deductible_in_cents=5000, yearly_price_in_cents=6000)

    assert calculate_value_score(plan, 80000) == pytest.approx(59000 / 6000)
    assert calculate_value_score(plan, 80000) == pytest.approx(9.8333, abs=1e-4)


def test_zero_product_price_scores_zero():
    assert calculate_value_score(make_plan(), 0) == 0.0


def test_zero_reference_price_scores_zero():
    plan = make_plan(yearly_price_in_cents=None, two_yearly_price_in_cents=None)

    assert calculate_value_score(plan, 50000) == 0.0


@pytest.mark.parametrize("price", [1, 100, 4999, 5000, 20000, 80000])
def test_deductible_never_exceeds_product_price(price):
    plan = make_plan(coverage_percentage=50, deductible_in_cents=1_000_000, yearly_price_in_cents=1)

    numerator = calculate_value_score(plan, price) * annual_reference_price(plan)

    assert numerator == pytest.approx(0.5 * price - price)
    assert abs(numerator) <= price


def test_two_yearly_price_is_annualized():
    plan = make_plan(yearly_price_in_cents=None, two_yearly_price_in_cents=10000)

    assert annual_reference_price(plan) == 5000
    assert calculate_value_score(plan, 10000) == pytest.approx((8000 - 5000) / 5000)


def test_rank_plans_filters_and_orders():
    cheap = make_plan(id="cheap", plan_name="Basis", yearly_price_in_cents=3000)
    pricey = make_plan(id="pricey", plan_name="Premium", yearly_price_in_cents=9000)
    inactive = make_plan(id="inactive", yearly_price_in_cents=1000, is_active=False)
    laptop = make_plan(id="laptop", categories=["Laptops"], yearly_price_in_cents=1000)

    ranked = rank_plans([pricey, inactive, laptop, cheap], "smartphones", 80000)

    assert [r.plan.id for r in ranked] == ["cheap", "pricey"]
    assert [r.is_recommended for r in ranked] == [True, False]


def test_rank_plans_keeps_input_order_on_ties():
    first = make_plan(id="first")
    second = make_plan(id="second")

    ranked = rank_plans([first, second], "Smartphones", 80000)

    assert [r.plan.id for r in ranked] == ["first", "second"]


@pytest.mark.asyncio
async def test_recommend_reads_active_plans(store, recommendation_service):
    await store.create_plan(make_plan(plan_name="Basis", yearly_price_in_cents=3000))
    await store.create_plan(make_plan(plan_name="Premium", yearly_price_in_cents=9000))
    await store.create_plan(make_plan(plan_name="Alt", is_active=False))

    result = await recommendation_service.recommend("Smartphones", 80000)

    assert result.ok
    assert [r.plan.plan_name for r in result.value] == ["Basis", "Premium"]
    assert result.value[0].to_dict()["is_recommended"] is True


@pytest.mark.asyncio
async def test_recommend_rejects_negative_price(recommendation_service):
    result = await recommendation_service.recommend("Smartphones", -1)

    assert isinstance(result, Err)
    assert result.kind == FailureKind.INVALID_INPUT


@pytest.mark.asyncio
async def test_recommend_without_matching_plans(store, recommendation_service):
    await store.create_plan(make_plan(categories=["Laptops"]))

    result = await recommendation_service.recommend("Kameras", 50000)

    assert result.ok
    assert result.value == []
