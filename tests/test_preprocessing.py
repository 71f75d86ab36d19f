import math                                   # For comparing floating point SMI values

import pytest                                 # Pytest framework for testing and assertions

from src.models.preprocessing import (        # Functions and constants under test
    DEFAULT_IMPUTATION_MEANS,
    FEATURES,
    MeasurementSet,
    MeasurementValidationError,
    compute_smi,
    impute,
    parse_imputation_means,
    parse_measurements,
)


@pytest.mark.parametrize("feature", FEATURES, ids=[f.key for f in FEATURES])
@pytest.mark.parametrize("bad_value", ["abc", "0", "-5", "nan", "inf"])
def test_invalid_field_names_that_field(feature, bad_value):
    """A single bad field with all others blank is reported by its label"""
    with pytest.raises(MeasurementValidationError) as exc_info:
        parse_measurements({feature.key: bad_value})

    assert exc_info.value.key == feature.key          # Offending field key is carried
    assert exc_info.value.label == feature.label      # So is its display label
    assert str(exc_info.value) == (
        f"Please enter a valid positive number for {feature.label} or leave it empty"
    )


def test_all_blank_is_valid():
    measurements = parse_measurements({f.key: "" for f in FEATURES})  # Every field left empty

    assert measurements == MeasurementSet()            # Nothing present, nothing rejected
    assert measurements.missing() == [f.key for f in FEATURES]


def test_first_failing_field_wins():
    """Validation stops at the first bad field in form order"""
    with pytest.raises(MeasurementValidationError) as exc_info:
        parse_measurements({"ldh": "-1", "height": "x", "weight": "70"})

    assert exc_info.value.label == "Height"            # Height comes before LDH


def test_height_negative_reports_height():
    with pytest.raises(MeasurementValidationError, match="Height"):
        parse_measurements({"height": "-5"})


def test_numbers_and_padded_text_are_accepted():
    measurements = parse_measurements({"weight": 70, "height": " 1.75 ", "age": "   "})

    assert measurements.weight == 70.0                 # JSON numbers pass through
    assert measurements.height == 1.75                 # Surrounding whitespace ignored
    assert measurements.age is None                    # Whitespace-only counts as blank


def test_impute_fills_only_missing_positions():
    values = [70.0, 1.75] + [None] * 8                 # Only weight and height supplied

    vector = impute(values)

    assert vector == [70.0, 1.75, 45.0, 150.0, 1.2, 250.0, 150.0, 5.5, 7.5, 70.0]


def test_impute_all_missing_returns_means():
    assert impute([None] * 10) == DEFAULT_IMPUTATION_MEANS


def test_impute_rejects_wrong_length():
    with pytest.raises(ValueError):
        impute([1.0, 2.0])                             # Model needs exactly ten features


def test_smi_uses_raw_height():
    assert math.isclose(compute_smi(26.25, 1.75), 26.25 / (1.75 * 1.75))
    assert compute_smi(26.25, None) is None            # No height, no SMI
    assert compute_smi(26.25, 0.0) is None


def test_imputation_means_override():
    text = "60,1.6,50,120,1.0,200,140,5.0,7.0,60"      # Ten custom means

    assert parse_imputation_means(text) == [60, 1.6, 50, 120, 1.0, 200, 140, 5.0, 7.0, 60]
    assert parse_imputation_means(None) == DEFAULT_IMPUTATION_MEANS
    assert parse_imputation_means("  ") == DEFAULT_IMPUTATION_MEANS


@pytest.mark.parametrize("text", ["1,2,3", "60,1.6,50,120,1.0,200,140,5.0,7.0,-1", "a,b,c,d,e,f,g,h,i,j"])
def test_imputation_means_override_rejects_bad_values(text):
    with pytest.raises(ValueError):
        parse_imputation_means(text)


@pytest.mark.parametrize("text", ["1_000", "7_0"])
def test_digit_grouping_underscores_rejected(text):
    with pytest.raises(MeasurementValidationError, match="Weight"):
        parse_measurements({"weight": text})         # Not a plain number in a form field
