"""HTTP surface for the Learner Knowledge State Engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

import db
from engines.bkt import BKTEngine
from engines.graph_path_planner import generate_learning_path
from engines.intervention_system import create_trigger_context, evaluate_triggers
from engines.learner_state import LearnerStateService
from engines.metrics import effective_sample_size, wilson_score_interval
from engines.parameter_fitting import fit_skill_parameters
from engines.recommendation import generate_recommendations
from engines.validation import GraphIntegrityError, ValidationError
from engines.zpd import compute_zpd
from env_validation import EngineSettings, validate_environment
from schemas import (
    AttemptRequest,
    FitRequest,
    LearningPathRequest,
    RecommendationRequest,
    TriggerRequest,
    ZPDRequest,
)

logger = logging.getLogger(__name__)

_ENGINE_LOGGER = logging.getLogger("klse.engine")
if not _ENGINE_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _ENGINE_LOGGER.addHandler(_handler)
_ENGINE_LOGGER.setLevel(logging.INFO)
_ENGINE_LOGGER.propagate = False

_SERVICE: Optional[LearnerStateService] = None
_SETTINGS: EngineSettings = EngineSettings()


def configure(store=None, settings: Optional[EngineSettings] = None) -> LearnerStateService:
    """Install the learner store and settings used by the endpoints."""

    global _SERVICE, _SETTINGS
    if settings is not None:
        _SETTINGS = settings
    if store is None:
        store = db.SQLiteLearnerStore(_SETTINGS.db_path)
    _SERVICE = LearnerStateService(store)
    return _SERVICE


def get_service() -> LearnerStateService:
    if _SERVICE is None:
        return configure()
    return _SERVICE


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        settings = validate_environment()
        configure(settings=settings)
        logger.info("Learner state store ready at %s", settings.db_path)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Learner Knowledge State Engine", version="0.1.0", lifespan=_lifespan)


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(_request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def _raise_http(exc: Exception) -> None:
    if isinstance(exc, GraphIntegrityError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ValidationError, PydanticValidationError, ValueError)):
        raise HTTPException(status_code=400, detail=str(exc))
    logger.error("Unexpected error in engine endpoint: %s", exc, exc_info=True)
    raise HTTPException(status_code=500, detail="Internal server error")


def _or_default(value, default):
    return default if value is None else value


def _mastered_for(request: ZPDRequest) -> list[str]:
    if request.mastered_skill_ids or not request.learner_id:
        return list(request.mastered_skill_ids)
    return get_service().mastered_skill_ids(request.learner_id, request.notebook_id)


# ----------------------------------------------------------------------
@app.post("/learners/{learner_id}/skills/{skill_id}/attempts")
async def record_attempt(learner_id: str, skill_id: str, attempt: AttemptRequest) -> Dict[str, Any]:
    try:
        state = get_service().record_practice_attempt(
            learner_id,
            skill_id,
            attempt.is_correct,
            notebook_id=attempt.notebook_id,
            mastery_threshold=_or_default(attempt.mastery_threshold, _SETTINGS.mastery_threshold),
            response_time_ms=attempt.response_time_ms,
            expected_time_ms=attempt.expected_time_ms,
        )
    except Exception as exc:
        _raise_http(exc)
    return state.to_dict()


@app.get("/learners/{learner_id}/skills/{skill_id}/state")
async def get_skill_state(learner_id: str, skill_id: str) -> Dict[str, Any]:
    state = get_service().get_state(learner_id, skill_id)
    if state is None:
        raise HTTPException(status_code=404, detail="No state recorded for this learner and skill")
    n_eff = effective_sample_size(state.total_attempts, state.bkt_params.p_t)
    interval = wilson_score_interval(state.p_mastery, n_eff, _SETTINGS.confidence_level)
    payload = state.to_dict()
    payload["mastery_estimate"] = {
        "p_mastery": state.p_mastery,
        "confidence_interval": {
            "lower": interval.lower,
            "upper": interval.upper,
            "level": interval.level,
        },
        "n_effective": n_eff,
    }
    return payload


@app.get("/learners/{learner_id}/progress")
async def get_progress(learner_id: str, notebook_id: Optional[str] = None) -> Dict[str, Any]:
    return get_service().progress_summary(learner_id, notebook_id)


@app.delete("/learners/{learner_id}/notebooks/{notebook_id}")
async def reset_notebook(learner_id: str, notebook_id: str) -> Dict[str, Any]:
    removed = get_service().reset_notebook(learner_id, notebook_id)
    return {"learner_id": learner_id, "notebook_id": notebook_id, "removed": removed}


@app.post("/skills/{skill_id}/fit")
async def fit_skill(skill_id: str, request: FitRequest) -> Dict[str, Any]:
    try:
        result = fit_skill_parameters(
            skill_id,
            request.attempts,
            get_service().store,
            notebook_id=request.notebook_id,
            persist_poor=_SETTINGS.persist_poor_fits,
            max_iterations=_or_default(request.max_iterations, _SETTINGS.em_max_iterations),
            tolerance=_or_default(request.tolerance, _SETTINGS.em_tolerance),
        )
        metrics = BKTEngine(result.params).validation_metrics(request.attempts)
    except Exception as exc:
        _raise_http(exc)
    payload = result.to_dict()
    payload["skill_id"] = skill_id
    payload["validation"] = metrics.to_dict()
    return payload


@app.post("/graph/zpd")
async def zone_of_proximal_development(request: ZPDRequest) -> Dict[str, Any]:
    try:
        graph = request.graph.to_graph()
        zone = compute_zpd(graph, _mastered_for(request))
    except Exception as exc:
        _raise_http(exc)
    return {"skills": [item.to_dict() for item in zone]}


@app.post("/graph/learning-path")
async def learning_path(request: LearningPathRequest) -> Dict[str, Any]:
    try:
        graph = request.graph.to_graph()
        path = generate_learning_path(graph, request.goal_skill_id, _mastered_for(request))
    except Exception as exc:
        _raise_http(exc)
    return path.to_dict()


@app.post("/recommendations")
async def recommendations(request: RecommendationRequest) -> Dict[str, Any]:
    try:
        graph = request.graph.to_graph()
        zone = compute_zpd(graph, _mastered_for(request))
        result = generate_recommendations(
            zone,
            request.profile,
            request.recent_performance,
            limit=request.limit or _SETTINGS.recommendation_limit,
        )
    except Exception as exc:
        _raise_http(exc)
    return result.to_dict()


@app.post("/interventions/triggers")
async def intervention_triggers(request: TriggerRequest) -> Dict[str, Any]:
    try:
        context = create_trigger_context(
            request.profile,
            consecutive_successes=request.consecutive_successes,
            consecutive_failures=request.consecutive_failures,
            current_errors=request.current_errors,
            session_duration_ms=request.session_duration_ms,
            last_activity_type=request.last_activity_type,
            recent_difficulties=request.recent_difficulties,
        )
        active = evaluate_triggers(context, request.dismissed)
    except Exception as exc:
        _raise_http(exc)
    return {
        "triggers": [trigger.to_dict() for trigger in active],
        "top": active[0].to_dict() if active else None,
    }
