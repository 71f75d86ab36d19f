import os
import time
import json
from collections import defaultdict
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import Response, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from prometheus_client import Counter, Histogram, generate_latest
from starlette.concurrency import run_in_threadpool

from src.api.config import (
    APP_NAME,
    BASE_DIR,
    IMPUTATION_MEANS,
    MAX_SESSIONS,
    MODEL_PATH,
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW,
    get_logger,
)
from src.api.schemas import (
    FieldMetadata,
    FieldUpdate,
    MeasurementRequest,
    PredictionResponse,
    SessionResponse,
    ValidationErrorResponse,
)
from src.api.session import (
    PredictionSession,
    SessionBusyError,
    SessionStore,
    UnknownFieldError,
)
from src.models.model_utils import MockModel, load_model
from src.models.predictor import ALMPredictor, PredictionError, PredictionResult
from src.models.preprocessing import (
    FEATURES,
    SMI_THRESHOLDS,
    MeasurementValidationError,
    parse_measurements,
)


STATIC_DIR = os.path.join(os.path.dirname(__file__), "static")

logger = get_logger()


# =================================================
# Prometheus metrics
# =================================================
REQUEST_COUNT = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "api_request_latency_seconds",
    "API request latency",
    ["endpoint"],
)

PREDICTIONS_TOTAL = Counter(
    "model_predictions_total",
    "Total number of predictions",
)

PREDICTION_ERRORS_TOTAL = Counter(
    "model_prediction_errors_total",
    "Total prediction errors",
)

VALIDATION_ERRORS_TOTAL = Counter(
    "input_validation_errors_total",
    "Total rejected measurement inputs",
    ["field"],
)

PREDICTION_LATENCY = Histogram(
    "model_prediction_latency_seconds",
    "Prediction latency",
)


# =================================================
# Rate limiting + session storage
# =================================================
rate_limit_store = defaultdict(list)
sessions = SessionStore(max_sessions=MAX_SESSIONS)


# =================================================
# FastAPI app
# =================================================
app = FastAPI(title=APP_NAME)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


# =================================================
# Global predictor
# =================================================
predictor: Optional[ALMPredictor] = None


# =================================================
# Startup: load model
# =================================================
@app.on_event("startup")
def load_predictor():
    global predictor

    if os.getenv("PYTEST_CURRENT_TEST"):
        logger.info("pytest detected – using MockModel")
        predictor = ALMPredictor(MockModel(), IMPUTATION_MEANS)
        return

    if not MODEL_PATH:
        logger.warning("MODEL_PATH not set – API running without model")
        return

    model_path = os.path.join(BASE_DIR, MODEL_PATH)

    try:
        model = load_model(model_path)
    except FileNotFoundError:
        logger.warning("Model file not found at %s", model_path)
        return

    predictor = ALMPredictor(model, IMPUTATION_MEANS)
    logger.info("Model loaded successfully")


def get_predictor() -> ALMPredictor:
    global predictor

    if predictor is None and os.getenv("PYTEST_CURRENT_TEST"):
        logger.info("Injecting MockModel lazily during pytest")
        predictor = ALMPredictor(MockModel(), IMPUTATION_MEANS)

    if predictor is None:
        PREDICTION_ERRORS_TOTAL.inc()
        raise HTTPException(
            status_code=503,
            detail="model_not_loaded",
        )
    return predictor


# =================================================
# Middleware: logging + metrics
# =================================================
@app.middleware("http")
async def log_and_metrics(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # route templates keep session ids out of metric labels
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status=str(response.status_code),
    ).inc()

    REQUEST_LATENCY.labels(
        endpoint=endpoint
    ).observe(duration)

    logger.info(
        "%s %s status=%s latency=%.4fs",
        request.method,
        request.url.path,
        response.status_code,
        duration,
    )

    return response


# =================================================
# Helpers
# =================================================
def check_rate_limit(request: Request) -> None:
    client_ip = request.client.host if request.client else "unknown"
    now = time.time()

    # drop clients whose whole window has expired
    for ip in list(rate_limit_store):
        recent = [t for t in rate_limit_store[ip] if now - t < RATE_LIMIT_WINDOW]
        if recent:
            rate_limit_store[ip] = recent
        else:
            del rate_limit_store[ip]

    if len(rate_limit_store[client_ip]) >= RATE_LIMIT_REQUESTS:
        PREDICTION_ERRORS_TOTAL.inc()
        raise HTTPException(
            status_code=429,
            detail="rate_limit_exceeded",
        )

    rate_limit_store[client_ip].append(now)


def to_prediction_response(result: PredictionResult) -> PredictionResponse:
    return PredictionResponse(
        alm=result.alm,
        smi=result.smi,
        imputed=result.imputed,
        features=result.features,
        thresholds=SMI_THRESHOLDS,
    )


def to_session_response(session: PredictionSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        state=session.state.value,
        fields=dict(session.fields),
        result=to_prediction_response(session.result) if session.result else None,
        error=session.error,
        error_field=session.error_field,
        summary=session.summary(),
    )


def validation_error_response(exc: MeasurementValidationError) -> JSONResponse:
    VALIDATION_ERRORS_TOTAL.labels(field=exc.key).inc()
    body = ValidationErrorResponse(
        error="validation_error",
        field=exc.key,
        label=exc.label,
        message=str(exc),
    )
    return JSONResponse(status_code=422, content=body.model_dump())


def record_prediction(result: PredictionResult, start_time: float) -> None:
    PREDICTIONS_TOTAL.inc()
    PREDICTION_LATENCY.observe(time.time() - start_time)

    logger.info(
        json.dumps(
            {
                "event": "prediction",
                "alm": round(result.alm, 4),
                "smi": round(result.smi, 4) if result.smi is not None else None,
                "imputed": result.imputed,
            }
        )
    )


def find_session(session_id: str) -> PredictionSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=404,
            detail="session_not_found",
        )
    return session


# =================================================
# Health check + UI
# =================================================
@app.get("/")
def health():
    return {"status": "ok", "model_loaded": predictor is not None}


@app.get("/ui", include_in_schema=False)
def ui_redirect():
    return RedirectResponse(url="/static/index.html", status_code=307)


@app.get("/fields")
def fields():
    return {
        "fields": [
            FieldMetadata(**{**f._asdict(), "mean": mean}).model_dump()
            for f, mean in zip(FEATURES, IMPUTATION_MEANS)
        ],
        "thresholds": SMI_THRESHOLDS,
    }


# =================================================
# Stateless prediction endpoint
# =================================================
@app.post("/predict")
async def predict(request: Request):
    start_time = time.time()

    check_rate_limit(request)

    try:
        body = await request.json()
        data = MeasurementRequest(**body)
    except ValidationError as exc:
        PREDICTION_ERRORS_TOTAL.inc()
        return JSONResponse(
            status_code=422,
            content={"details": exc.errors(include_url=False, include_context=False)},
        )
    except Exception:
        PREDICTION_ERRORS_TOTAL.inc()
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_json"},
        )

    try:
        measurements = parse_measurements(data.model_dump())
    except MeasurementValidationError as exc:
        return validation_error_response(exc)

    alm_predictor = get_predictor()

    try:
        result = await run_in_threadpool(alm_predictor.predict, measurements)
    except PredictionError as exc:
        PREDICTION_ERRORS_TOTAL.inc()
        logger.error("Prediction failed", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "prediction_failed", "message": str(exc)},
        )

    record_prediction(result, start_time)
    return to_prediction_response(result)


# =================================================
# Session endpoints
# =================================================
@app.post("/sessions", status_code=201)
async def create_session():
    return to_session_response(sessions.create())


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    return to_session_response(find_session(session_id))


@app.put("/sessions/{session_id}/fields/{field_key}")
async def update_session_field(session_id: str, field_key: str, update: FieldUpdate):
    session = find_session(session_id)
    try:
        session.update_field(field_key, update.value)
    except UnknownFieldError:
        raise HTTPException(
            status_code=404,
            detail="unknown_field",
        )
    return to_session_response(session)


@app.post("/sessions/{session_id}/predict")
async def predict_session(session_id: str, request: Request):
    start_time = time.time()
    session = find_session(session_id)

    if session.busy:
        raise HTTPException(
            status_code=409,
            detail="session_busy",
        )

    check_rate_limit(request)
    alm_predictor = get_predictor()

    try:
        result = await session.run_prediction(alm_predictor)
    except SessionBusyError:
        raise HTTPException(
            status_code=409,
            detail="session_busy",
        )
    except MeasurementValidationError as exc:
        VALIDATION_ERRORS_TOTAL.labels(field=exc.key).inc()
        return JSONResponse(
            status_code=422,
            content=to_session_response(session).model_dump(),
        )
    except PredictionError:
        PREDICTION_ERRORS_TOTAL.inc()
        return JSONResponse(
            status_code=500,
            content=to_session_response(session).model_dump(),
        )

    record_prediction(result, start_time)
    return to_session_response(session)


@app.post("/sessions/{session_id}/clear")
async def clear_session(session_id: str):
    session = find_session(session_id)
    try:
        session.clear()
    except SessionBusyError:
        raise HTTPException(
            status_code=409,
            detail="session_busy",
        )
    return to_session_response(session)


@app.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str):
    session = find_session(session_id)
    if session.busy:
        raise HTTPException(
            status_code=409,
            detail="session_busy",
        )
    sessions.discard(session_id)
    return Response(status_code=204)


# =================================================
# Metrics endpoint
# =================================================
@app.get("/metrics")
def metrics():
    return Response(
        generate_latest(),
        media_type="text/plain",
    )
