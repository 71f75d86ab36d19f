import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from src.models.model_utils import RegressionModel, build_feature_frame
from src.models.preprocessing import (
    DEFAULT_IMPUTATION_MEANS,
    FEATURES,
    MeasurementSet,
    compute_smi,
    impute,
)


PREDICTION_ERROR_MESSAGE = (
    "An error occurred during prediction. Please check your input values."
)


class PredictionError(RuntimeError):
    def __init__(self, message: str = PREDICTION_ERROR_MESSAGE):
        super().__init__(message)


@dataclass
class PredictionResult:
    alm: float
    smi: Optional[float]
    features: List[float]
    imputed: List[str] = field(default_factory=list)


class ALMPredictor:
    """Imputes a MeasurementSet and runs it through the regression backend."""

    def __init__(
        self,
        model: RegressionModel,
        imputation_means: Sequence[float] = DEFAULT_IMPUTATION_MEANS,
    ):
        if len(imputation_means) != len(FEATURES):
            raise ValueError(
                f"Expected {len(FEATURES)} imputation means, "
                f"got {len(imputation_means)}"
            )
        self.model = model
        self.imputation_means = [float(m) for m in imputation_means]

    def prepare(self, measurements: MeasurementSet) -> List[float]:
        return impute(measurements.as_list(), self.imputation_means)

    def predict(self, measurements: MeasurementSet) -> PredictionResult:
        vector = self.prepare(measurements)

        try:
            output = self.model.predict(build_feature_frame(vector))
            alm = float(output[0])
            if not math.isfinite(alm):
                raise ValueError(f"Model returned non-finite value {alm}")
        except Exception as exc:
            raise PredictionError() from exc

        return PredictionResult(
            alm=alm,
            smi=compute_smi(alm, measurements.height),
            features=vector,
            imputed=measurements.missing(),
        )
