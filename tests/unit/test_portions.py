"""
Unit tests for portion scaling and rounding.
"""

import pytest

from diettrack.models import ConfidenceRange, MacroRates, NutritionFacts, ServingSize
from diettrack.services.portions import (
    FALLBACK_GRAMS,
    confidence_range,
    make_portion,
    per_100g_from_serving,
    resolve_grams,
    round1,
    round_half_up,
    scale,
    scale_nutrition,
    serving_category,
)


class TestRounding:

    @pytest.mark.unit
    def test_round_half_up_integers(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.49) == 2

    @pytest.mark.unit
    def test_round1_half_up(self):
        assert round1(0.25) == 0.3
        assert round1(1.04) == 1.0
        assert round1(4.0) == 4.0

    @pytest.mark.unit
    def test_nutrition_facts_enforces_wire_contract(self):
        facts = NutritionFacts(calories=99.5, protein=-3, carbs=float("nan"), fat=1.26, sodium=4.4)
        assert facts.calories == 100
        assert facts.protein == 0
        assert facts.carbs == 0
        assert facts.fat == 1.3
        assert facts.sodium == 4
        assert isinstance(facts.calories, int)


class TestScale:

    @pytest.mark.unit
    def test_scale_per_100g_to_serving(self):
        per_100g = MacroRates(calories=130, protein=2.6, carbs=28, fat=0.5, sodium=1, fiber=0.4)
        result = scale(per_100g, 150)
        assert result.calories == 195
        assert result.protein == 3.9
        assert result.carbs == 42.0
        assert result.fat == 0.8  # 0.75 rounds up
        assert result.fiber == 0.6
        assert result.sodium == 2  # 1.5 rounds up

    @pytest.mark.unit
    def test_scale_uses_unrounded_reference_values(self):
        per_100g = MacroRates(calories=116.4, protein=7.25)
        result = scale(per_100g, 200)
        assert result.calories == 233
        assert result.protein == 14.5

    @pytest.mark.unit
    def test_scale_zero_grams(self):
        assert scale(MacroRates(calories=500), 0).calories == 0

    @pytest.mark.unit
    def test_scale_nutrition_identity(self):
        facts = NutritionFacts(calories=200, protein=4, carbs=44, fat=0.5, fiber=0.5, sodium=5)
        assert scale_nutrition(facts, 1.0) == facts

    @pytest.mark.unit
    @pytest.mark.parametrize("grams", [37, 80, 150, 213.5, 480])
    def test_rescale_back_to_original_grams_is_stable(self, grams):
        per_100g = MacroRates(calories=347, protein=22.3, carbs=59.1, fat=1.7, fiber=15.2, sugar=2.1, sodium=12, cholesterol=3)
        stored = scale(per_100g, grams)
        doubled = scale_nutrition(stored, 2)
        back = scale_nutrition(doubled, 0.5)
        for field in ("calories", "sodium", "cholesterol"):
            assert abs(getattr(back, field) - getattr(stored, field)) <= 1
        for field in ("protein", "carbs", "fat", "fiber", "sugar"):
            assert abs(getattr(back, field) - getattr(stored, field)) <= 0.1 + 1e-9

    @pytest.mark.unit
    def test_per_100g_from_serving(self):
        serving = NutritionFacts(calories=200, protein=4, carbs=44, fat=0.5)
        snapshot = per_100g_from_serving(serving, 150)
        assert snapshot.calories == 133
        assert snapshot.protein == 2.7
        assert snapshot.carbs == 29.3
        assert snapshot.fat == 0.3

    @pytest.mark.unit
    def test_per_100g_from_serving_without_grams(self):
        assert per_100g_from_serving(NutritionFacts(calories=50), 0).is_zero()


class TestResolveGrams:

    @pytest.mark.unit
    def test_override_wins(self):
        assert resolve_grams(250, 150, 100) == 250

    @pytest.mark.unit
    def test_estimate_before_default(self):
        assert resolve_grams(None, 150, 100) == 150

    @pytest.mark.unit
    def test_default_serving(self):
        assert resolve_grams(None, None, 180) == 180

    @pytest.mark.unit
    def test_fallback(self):
        assert resolve_grams() == FALLBACK_GRAMS

    @pytest.mark.unit
    def test_non_positive_values_skipped(self):
        assert resolve_grams(0, -5, "abc") == FALLBACK_GRAMS


class TestServingCategory:

    @pytest.mark.unit
    @pytest.mark.parametrize("grams,expected", [
        (79.9, ServingSize.SMALL),
        (80, ServingSize.MEDIUM),
        (200, ServingSize.MEDIUM),
        (200.1, ServingSize.LARGE),
    ])
    def test_boundaries(self, grams, expected):
        assert serving_category(grams) == expected

    @pytest.mark.unit
    def test_category_does_not_change_macros(self):
        per_100g = MacroRates(calories=100, protein=10)
        just_small = scale(per_100g, 79)
        just_medium = scale(per_100g, 80)
        assert just_medium.calories - just_small.calories == 1
        assert round(just_medium.protein - just_small.protein, 1) == 0.1


class TestPortion:

    @pytest.mark.unit
    def test_confidence_range_is_fifteen_percent(self):
        assert confidence_range(150) == ConfidenceRange(min=128, max=173)

    @pytest.mark.unit
    def test_make_portion_keeps_existing_range(self):
        existing = ConfidenceRange(min=100, max=120)
        portion = make_portion(110, existing)
        assert portion.confidence_range == existing
        assert portion.size_category == ServingSize.MEDIUM
