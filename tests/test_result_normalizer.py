"""Unit tests for analysis normalization."""

import math

import pytest

from conftest import GOOD_ANALYSIS
from meal_vision_api.models.analysis import ConfidenceLevel, ModelInfo, NormalizedAnalysis
from meal_vision_api.services.result_normalizer import (
    DEFAULT_FEEDBACK,
    DEFAULT_SUGGESTIONS,
    EMPTY_FALLBACK_DESCRIPTION,
    coerce_number,
    create_empty_fallback,
    normalize,
    normalize_nutrients,
    normalize_with_report,
)


class TestTotality:
    """normalize never raises and always returns a complete record."""

    @pytest.mark.parametrize(
        "data",
        [
            None,
            "a string",
            42,
            [1, 2, 3],
            {},
            {"description": None, "nutrients": None},
            {"nutrients": "lots", "feedback": 7, "goalScore": "great"},
            {"detailedIngredients": [None, 3, {"category": "x"}], "confidence": "high"},
        ],
    )
    def test_any_input_yields_complete_record(self, data):
        analysis = normalize(data)

        assert isinstance(analysis, NormalizedAnalysis)
        assert analysis.description
        assert len(analysis.feedback) >= 1
        assert len(analysis.suggestions) >= 1
        assert 0.0 <= analysis.confidence <= 1.0

    def test_non_mapping_is_empty_fallback(self):
        analysis = normalize(None, reason="No image uploaded")

        assert analysis.description == EMPTY_FALLBACK_DESCRIPTION
        assert analysis.nutrients == ()
        assert analysis.feedback == DEFAULT_FEEDBACK
        assert analysis.suggestions == DEFAULT_SUGGESTIONS
        assert analysis.fallback is True
        assert analysis.low_confidence is True
        assert analysis.reasoning_logs == ("No image uploaded",)

    def test_synthesized_critical_field_forces_fallback(self):
        outcome = normalize_with_report({"feedback": ["fine"], "suggestions": ["ok"]})

        assert outcome.synthesized_critical
        assert outcome.analysis.fallback is True
        assert outcome.analysis.low_confidence is True


class TestIdempotence:
    """normalize(dump(normalize(x))) == normalize(x)."""

    @pytest.mark.parametrize(
        "data",
        [
            GOOD_ANALYSIS,
            None,
            {"description": "Oatmeal", "nutrients": {"calories": "310 kcal", "carbs": "54"}},
            {"description": "Pizza", "goalScore": 72, "confidence": 8, "fallback": False},
            {"feedback": "single string", "detailedIngredients": ["cheese", "dough"]},
        ],
    )
    @pytest.mark.parametrize("mode", ["python", "json"])
    def test_round_trip(self, data, mode):
        first = normalize(data, model_info=ModelInfo(model="gpt-4o", provider="openai"))
        second = normalize(first.model_dump(mode=mode, by_alias=True))

        assert second == first


class TestNutrients:
    """Nutrient shape coercion."""

    def test_keyed_object_is_ordered(self):
        nutrients = normalize_nutrients(
            {"sodium": 480, "fat": 22, "fiber": 7, "calories": 540, "carbohydrates": 42, "protein": 38}
        )

        assert [n.name for n in nutrients] == [
            "Calories", "Protein", "Carbohydrates", "Fat", "Sodium", "Fiber",
        ]
        assert [n.unit for n in nutrients] == ["kcal", "g", "g", "g", "mg", "g"]
        assert [n.is_highlight for n in nutrients] == [True, True, True, True, False, False]

    def test_carbs_alias(self):
        nutrients = normalize_nutrients({"carbs": 30})

        assert nutrients[0].name == "Carbohydrates"
        assert nutrients[0].value == 30

    def test_unknown_extra_is_title_cased(self):
        nutrients = normalize_nutrients({"vitamin_c": "12 mg"})

        assert nutrients[0].name == "Vitamin C"
        assert nutrients[0].unit == "mg"
        assert nutrients[0].value == 12

    def test_array_passes_through(self):
        nutrients = normalize_nutrients(
            [
                {"name": "Calories", "value": 200, "unit": "kcal", "isHighlight": True},
                {"nutrient": "Iron", "amount": "2.5", "unit": "mg"},
                {"value": 10},
                "junk",
            ]
        )

        assert len(nutrients) == 2
        assert nutrients[1].name == "Iron"
        assert nutrients[1].value == 2.5
        assert nutrients[1].is_highlight is False


class TestNumericCoercion:
    """Numeric strings, junk, NaN and negatives."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (12, 12.0),
            (12.5, 12.5),
            ("12.5", 12.5),
            ("12.5 g", 12.5),
            ("1,200kcal", 1200.0),
            ("unknown", 0.0),
            ("", 0.0),
            (None, 0.0),
            (True, 0.0),
            (float("nan"), 0.0),
            (math.inf, 0.0),
            ("nan", 0.0),
            (-5, 0.0),
        ],
    )
    def test_coerce_number(self, value, expected):
        assert coerce_number(value) == expected

    def test_string_nutrient_values(self):
        analysis = normalize({"description": "Rice", "nutrients": {"protein": "12.5", "fat": "unknown"}})

        values = {n.name: n.value for n in analysis.nutrients}
        assert values == {"Protein": 12.5, "Fat": 0.0}


class TestScales:
    """Confidence and goal score rescaling."""

    @pytest.mark.parametrize(
        "raw,expected",
        [(0.7, 0.7), (7, 0.7), (70, 0.7), (1.5, 1.0), (1.2, 1.0), (2, 0.2), (None, 0.5), ("high", 0.5)],
    )
    def test_confidence(self, raw, expected):
        analysis = normalize({"description": "x", "confidence": raw})

        assert analysis.confidence == pytest.approx(expected)

    @pytest.mark.parametrize(
        "raw,expected",
        [(7, 7.0), (85, 8.5), ({"overall": 6, "specific": {"Weight Loss": 40}}, 6.0), (None, 5.0)],
    )
    def test_goal_score(self, raw, expected):
        analysis = normalize({"description": "x", "goalScore": raw})

        assert analysis.goal_score.overall == pytest.approx(expected)

    def test_specific_goal_scores_rescaled(self):
        analysis = normalize({"goalScore": {"overall": 6, "specific": {"Weight Loss": 40}}})

        assert analysis.goal_score.specific == {"Weight Loss": 4.0}

    def test_ingredient_confidence_tiers(self):
        analysis = normalize(
            {
                "detailedIngredients": [
                    {"name": "egg", "confidence": 9},
                    {"name": "toast", "confidence": 0.6},
                    {"name": "sauce", "confidence": 20},
                    {"name": "salt"},
                ]
            }
        )

        tiers = [i.confidence_tier for i in analysis.detailed_ingredients]
        assert tiers == [
            ConfidenceLevel.HIGH,
            ConfidenceLevel.MEDIUM,
            ConfidenceLevel.LOW,
            ConfidenceLevel.MEDIUM,
        ]


class TestFlags:
    """Asserted flags and the label-detection signal."""

    def test_explicit_flags_are_asserted(self):
        outcome = normalize_with_report({"description": "x", "nutrients": [], "lowConfidence": True})

        assert outcome.flags_asserted is True
        assert outcome.analysis.low_confidence is True
        assert outcome.analysis.fallback is False

    def test_missing_flags_are_not_asserted(self):
        outcome = normalize_with_report(GOOD_ANALYSIS)

        assert outcome.flags_asserted is False

    @pytest.mark.parametrize(
        "data",
        [{"labelDetection": {"confidence": 0.9}}, {"labelConfidence": 90}],
    )
    def test_label_confidence(self, data):
        outcome = normalize_with_report(data)

        assert outcome.label_confidence == pytest.approx(0.9)

    def test_empty_fallback_model_info(self):
        analysis = create_empty_fallback("boom", ModelInfo(model="gpt-4o", provider="openai"))

        assert analysis.model_info.model == "gpt-4o"
        assert analysis.goal_score.overall == 3.0
