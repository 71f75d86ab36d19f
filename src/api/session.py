"""Per-user prediction session.

A session owns the raw text of the ten form fields and walks through
Idle -> Predicting -> Done. Clearing returns it to Idle. Sessions are only
touched from the event loop; the model call itself runs in a worker thread.
"""

import enum
import uuid
from collections import OrderedDict
from typing import Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from src.api.config import get_logger
from src.models.predictor import ALMPredictor, PredictionError, PredictionResult
from src.models.preprocessing import (
    FEATURES,
    FEATURES_BY_KEY,
    MeasurementValidationError,
    is_blank,
    parse_measurements,
)


logger = get_logger()


class SessionState(str, enum.Enum):
    IDLE = "idle"
    PREDICTING = "predicting"
    DONE = "done"


class SessionBusyError(RuntimeError):
    pass


class UnknownFieldError(KeyError):
    pass


class PredictionSession:
    def __init__(self, session_id: Optional[str] = None):
        self.id = session_id or uuid.uuid4().hex
        self.state = SessionState.IDLE
        self.fields: Dict[str, str] = {f.key: "" for f in FEATURES}
        self.result: Optional[PredictionResult] = None
        self.error: Optional[str] = None
        self.error_field: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.state is SessionState.PREDICTING

    def update_field(self, key: str, value: Optional[str]) -> None:
        if key not in FEATURES_BY_KEY:
            raise UnknownFieldError(key)
        self.fields[key] = "" if value is None else str(value)
        # Editing an input dismisses the error banner, like the form does.
        self.error = None
        self.error_field = None

    def clear(self) -> None:
        if self.busy:
            raise SessionBusyError("Cannot clear while a prediction is running")
        self.fields = {f.key: "" for f in FEATURES}
        self.result = None
        self.error = None
        self.error_field = None
        self.state = SessionState.IDLE

    def has_input(self) -> bool:
        return any(not is_blank(v) for v in self.fields.values())

    def summary(self) -> List[Dict[str, str]]:
        """Per-field display of the current input, empty when nothing is entered."""
        if not self.has_input():
            return []
        rows = []
        for feature in FEATURES:
            value = self.fields[feature.key]
            rows.append({
                "key": feature.key,
                "label": feature.label,
                "display": "Missing (NaN)" if is_blank(value)
                else f"{value.strip()} {feature.unit}",
            })
        return rows

    async def run_prediction(self, predictor: ALMPredictor) -> Optional[PredictionResult]:
        if self.busy:
            raise SessionBusyError("A prediction is already running")

        self.result = None
        self.error = None
        self.error_field = None

        try:
            measurements = parse_measurements(self.fields)
        except MeasurementValidationError as exc:
            self.error = str(exc)
            self.error_field = exc.key
            self.state = SessionState.DONE
            raise

        self.state = SessionState.PREDICTING
        try:
            self.result = await run_in_threadpool(predictor.predict, measurements)
        except PredictionError as exc:
            logger.error("Prediction failed for session %s", self.id, exc_info=exc)
            self.error = str(exc)
            raise
        finally:
            self.state = SessionState.DONE

        return self.result


class SessionStore:
    def __init__(self, max_sessions: int = 1000):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, PredictionSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create(self) -> PredictionSession:
        session = PredictionSession()
        self._sessions[session.id] = session
        # oldest first; sessions mid-prediction are never evicted
        candidates = [
            sid for sid, s in self._sessions.items()
            if sid != session.id and not s.busy
        ]
        while len(self._sessions) > self.max_sessions and candidates:
            del self._sessions[candidates.pop(0)]
        return session

    def get(self, session_id: str) -> Optional[PredictionSession]:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def reset(self) -> None:
        self._sessions.clear()
