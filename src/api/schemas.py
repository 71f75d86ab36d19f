from typing import Dict, List, Optional, Union    # Typing helpers for nullable and mixed fields

from pydantic import BaseModel                  # BaseModel provides data validation and serialization
from pydantic import StrictBool, StrictFloat, StrictInt, StrictStr  # No silent bool -> float coercion

# Form text, a JSON number, or null (= missing); booleans are kept so the
# measurement validator can reject them by field label
RawField = Optional[Union[StrictStr, StrictInt, StrictFloat, StrictBool]]


class MeasurementRequest(BaseModel):            # Request schema for ALM prediction input
    weight: RawField = None                     # kg
    height: RawField = None                     # m
    age: RawField = None                        # years
    alp: RawField = None                        # U/L
    creatinine: RawField = None                 # mg/dL
    ldh: RawField = None                        # U/L
    triglycerides: RawField = None              # mg/dL
    uric_acid: RawField = None                  # mg/dL
    wbc: RawField = None                        # 10^3/uL
    pancreatic_amylase: RawField = None         # U/L


class FieldUpdate(BaseModel):                   # Body for updating one session field
    value: RawField = None                      # Empty string or null clears the field


class PredictionResponse(BaseModel):            # Response schema returned after prediction
    alm: float                                  # Predicted Appendicular Lean Mass (kg)
    smi: Optional[float] = None                 # ALM / height^2 (kg/m^2), only when height was entered
    imputed: List[str]                          # Keys of the fields filled with their mean
    features: List[float]                       # The ten values actually sent to the model
    thresholds: Dict[str, float]                # Sarcopenia SMI cut-offs by sex


class ValidationErrorResponse(BaseModel):       # Response schema for a rejected field
    error: str                                  # Always "validation_error"
    field: str                                  # Key of the first offending field
    label: str                                  # Display label of that field
    message: str                                # User-facing message


class FieldMetadata(BaseModel):                 # Metadata for rendering one form input
    key: str
    label: str
    unit: str
    placeholder: str
    mean: float                                 # Value used when the field is left empty


class SummaryRow(BaseModel):                    # One entry of the input data summary
    key: str
    label: str
    display: str                                # "<value> <unit>" or "Missing (NaN)"


class SessionResponse(BaseModel):               # Snapshot of a prediction session
    id: str
    state: str                                  # idle | predicting | done
    fields: Dict[str, str]                      # Raw text per field
    result: Optional[PredictionResponse] = None
    error: Optional[str] = None
    error_field: Optional[str] = None
    summary: List[SummaryRow]
