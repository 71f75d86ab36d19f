import math
from dataclasses import dataclass, fields, astuple
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence, Union


class FeatureSpec(NamedTuple):
    key: str
    label: str
    unit: str
    placeholder: str
    mean: float


# Order matters: the trained model expects exactly this feature layout.
FEATURES: List[FeatureSpec] = [
    FeatureSpec("weight", "Weight", "kg", "e.g., 70", 70.0),
    FeatureSpec("height", "Height", "m", "e.g., 1.75", 1.7),
    FeatureSpec("age", "Age", "year", "e.g., 30", 45.0),
    FeatureSpec("alp", "ALP", "U/L", "e.g., 100", 150.0),
    FeatureSpec("creatinine", "Creatinine", "mg/dL", "e.g., 1.0", 1.2),
    FeatureSpec("ldh", "LDH", "U/L", "e.g., 200", 250.0),
    FeatureSpec("triglycerides", "Triglycerides", "mg/dL", "e.g., 150", 150.0),
    FeatureSpec("uric_acid", "Uric acid", "mg/dL", "e.g., 5.0", 5.5),
    FeatureSpec("wbc", "White blood cell count", "10³/μL", "e.g., 7.0", 7.5),
    FeatureSpec("pancreatic_amylase", "Pancreatic amylase", "U/L", "e.g., 50", 70.0),
]

FEATURE_NAMES: List[str] = [f.key for f in FEATURES]
FEATURES_BY_KEY: Dict[str, FeatureSpec] = {f.key: f for f in FEATURES}

DEFAULT_IMPUTATION_MEANS: List[float] = [f.mean for f in FEATURES]

# Sarcopenia cut-offs for SMI (kg/m^2)
SMI_THRESHOLDS: Dict[str, float] = {"male": 7.0, "female": 5.4}

RawValue = Union[str, float, int, None]


class MeasurementValidationError(ValueError):
    def __init__(self, key: str, label: str):
        self.key = key
        self.label = label
        super().__init__(
            f"Please enter a valid positive number for {label} or leave it empty"
        )


@dataclass
class MeasurementSet:
    weight: Optional[float] = None
    height: Optional[float] = None
    age: Optional[float] = None
    alp: Optional[float] = None
    creatinine: Optional[float] = None
    ldh: Optional[float] = None
    triglycerides: Optional[float] = None
    uric_acid: Optional[float] = None
    wbc: Optional[float] = None
    pancreatic_amylase: Optional[float] = None

    def as_list(self) -> List[Optional[float]]:
        return list(astuple(self))

    def missing(self) -> List[str]:
        return [f.name for f in fields(self) if getattr(self, f.name) is None]


def is_blank(value: RawValue) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def parse_value(value: RawValue) -> Optional[float]:
    """Return the positive float in `value`, None when blank.

    Raises ValueError for anything non-numeric, non-finite or <= 0.
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        raise ValueError("booleans are not measurements")
    if isinstance(value, str) and "_" in value:
        raise ValueError(f"{value!r} is not a plain number")
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        raise ValueError(f"{value!r} is not a positive number")
    return number


def parse_measurements(raw: Mapping[str, RawValue]) -> MeasurementSet:
    """Validate raw form input field by field, in feature order.

    The first failing field raises MeasurementValidationError; keys that are
    absent from `raw` count as blank.
    """
    values = {}
    for feature in FEATURES:
        try:
            values[feature.key] = parse_value(raw.get(feature.key))
        except (TypeError, ValueError):
            raise MeasurementValidationError(feature.key, feature.label) from None
    return MeasurementSet(**values)


def impute(
    values: Sequence[Optional[float]],
    means: Sequence[float] = DEFAULT_IMPUTATION_MEANS,
) -> List[float]:
    if len(values) != len(means):
        raise ValueError(
            f"Expected {len(means)} values, got {len(values)}"
        )
    return [
        float(mean) if value is None else float(value)
        for value, mean in zip(values, means)
    ]


def compute_smi(alm: float, height: Optional[float]) -> Optional[float]:
    """ALM / height^2 from the raw (non-imputed) height."""
    if height is None or height <= 0:
        return None
    return alm / (height * height)


def parse_imputation_means(text: Optional[str]) -> List[float]:
    """Parse the IMPUTATION_MEANS override; blank means use the defaults."""
    if text is None or not text.strip():
        return list(DEFAULT_IMPUTATION_MEANS)

    parts = [p.strip() for p in text.split(",")]
    if len(parts) != len(FEATURES):
        raise ValueError(
            f"IMPUTATION_MEANS needs {len(FEATURES)} values, got {len(parts)}"
        )
    try:
        means = [parse_value(p) for p in parts]
    except ValueError:
        raise ValueError(
            "IMPUTATION_MEANS values must be positive numbers"
        ) from None
    if any(m is None for m in means):
        raise ValueError("IMPUTATION_MEANS values must not be empty")
    return means
