import os
import pickle
from typing import Any, Protocol, Sequence

import numpy as np
import pandas as pd

from src.models.preprocessing import FEATURE_NAMES


class RegressionModel(Protocol):
    def predict(self, X) -> Sequence[float]:
        ...


class MockModel:
    """Rule-based stand-in for the trained regressor (pytest / CI)."""

    def predict(self, X):
        rows = np.asarray(X, dtype=float)
        if rows.ndim != 2 or rows.shape[1] != len(FEATURE_NAMES):
            raise ValueError(
                f"Expected rows of {len(FEATURE_NAMES)} features, got shape {rows.shape}"
            )
        weight = rows[:, 0]
        height = rows[:, 1]
        return (0.25 * weight + 5.0 * height).tolist()


def load_model(model_path: str) -> Any:
    if not os.path.exists(model_path):
        raise FileNotFoundError(f"Model file not found at {model_path}")

    with open(model_path, "rb") as file:
        model = pickle.load(file)

    if not hasattr(model, "predict"):
        raise TypeError("Loaded object has no predict() method")
    return model


def build_feature_frame(vector: Sequence[float]) -> pd.DataFrame:
    if len(vector) != len(FEATURE_NAMES):
        raise ValueError(
            f"Expected {len(FEATURE_NAMES)} features, got {len(vector)}"
        )
    return pd.DataFrame([list(vector)], columns=FEATURE_NAMES)
