import math
import logging

import pytest
from pydantic import ValidationError

from schemas.enhancement_schemas import (
    AIAdjustments,
    AIAnalysis,
    EnhancementParameters,
    EnhancementRequest,
    EnhancementResult,
    EnhancementState,
    PARAMETER_BOUNDS,
)
from schemas.subscription_schemas import SUBSCRIPTION_LIMITS, UNLIMITED, get_plan_limits


def test_parameters_defaults_are_identity():
    params = EnhancementParameters()
    assert params.brightness == 1.0
    assert params.contrast == 1.0
    assert params.saturation == 1.0
    assert params.warmth == 0.0
    assert params.sharpen == 0.0
    assert params.normalize is False


@pytest.mark.parametrize("field, value, expected", [
    ("brightness", 10.0, 3.0),
    ("contrast", 0.0, 0.5),
    ("saturation", -1.0, 0.5),
    ("warmth", 250.0, 100.0),
    ("warmth", -250.0, -100.0),
    ("sharpen", 9.0, 3.0),
    ("vibrance", -5.0, 0.0),
    ("exposure", 4.0, 2.0),
])
def test_parameters_out_of_range_are_clamped(field, value, expected, caplog):
    caplog.set_level(logging.WARNING)
    params = EnhancementParameters(**{field: value})
    assert getattr(params, field) == expected
    assert "clamped" in caplog.text


def test_parameters_clamped_on_assignment():
    params = EnhancementParameters()
    params.contrast = 5.0
    assert params.contrast == 3.0


def test_parameters_nan_uses_default():
    params = EnhancementParameters(brightness=math.nan, warmth=math.nan)
    assert params.brightness == 1.0
    assert params.warmth == 0.0


def test_parameters_reject_non_numeric():
    with pytest.raises(ValidationError):
        EnhancementParameters(brightness="bright")


def test_every_bound_is_a_valid_range():
    for name, (low, high) in PARAMETER_BOUNDS.items():
        assert low < high, name
        assert name in EnhancementParameters.model_fields


def test_from_adjustments_derives_sharpen_and_normalize():
    params = EnhancementParameters.from_adjustments(AIAdjustments(clarity=50, highlights=-20, shadows=0))
    assert params.sharpen == pytest.approx(1.0)
    assert params.normalize is True
    assert params.clarity == 50


def test_from_adjustments_without_clarity_does_not_sharpen():
    params = EnhancementParameters.from_adjustments(AIAdjustments(clarity=0, highlights=0, shadows=0))
    assert params.sharpen == 0.0
    assert params.normalize is False


def test_from_adjustments_clamps_ai_values():
    params = EnhancementParameters.from_adjustments(AIAdjustments(brightness=9.0, warmth=400, exposure=-7))
    assert params.brightness == 3.0
    assert params.warmth == 100.0
    assert params.exposure == -2.0


def test_with_overrides_ignores_none():
    params = EnhancementParameters(brightness=1.2, contrast=1.3).with_overrides(brightness=None, contrast=1.8)
    assert params.brightness == 1.2
    assert params.contrast == 1.8


def test_ai_analysis_fills_missing_adjustments():
    analysis = AIAnalysis.model_validate_json('{"dish": "ramen", "adjustments": {"brightness": 1.3}}')
    assert analysis.dish == "ramen"
    assert analysis.adjustments.brightness == 1.3
    assert analysis.adjustments.contrast == 1.2
    assert analysis.adjustments.clarity == 30.0


def test_ai_analysis_rejects_wrong_types():
    with pytest.raises(ValidationError):
        AIAnalysis.model_validate_json('{"dish": "soup", "adjustments": {"brightness": "very"}}')


def test_enhancement_request_overrides_and_ids():
    first = EnhancementRequest(input_path="/tmp/a.jpg", brightness=1.4)
    second = EnhancementRequest(input_path="/tmp/b.jpg")
    assert first.overrides() == {"brightness": 1.4, "contrast": None, "saturation": None}
    assert first.request_id != second.request_id


def test_enhancement_result_is_immutable():
    result = EnhancementResult(request_id="abc", success=False, state=EnhancementState.FAILED, error="boom")
    with pytest.raises(ValidationError):
        result.success = True


def test_plan_limits():
    assert get_plan_limits("FREE").monthly_photos == 10
    assert get_plan_limits("PRO").max_batch_size == 50
    assert SUBSCRIPTION_LIMITS["ENTERPRISE"].monthly_photos == UNLIMITED
    # Unknown plans get the default plan's limits
    assert get_plan_limits("GOLD") == SUBSCRIPTION_LIMITS["FREE"]
