"""
FastAPI Backend for Pathwise - Adaptive assessment and learning paths.

Endpoints:
    - Sessions: start, answer, report
    - Concept graph: concepts, prerequisite edges, chains, validation
    - Learning paths: generate, step attempts, progress
Engine errors are returned as {"error", "detail", "retryable", ...}.
"""

from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.config import ITEM_BANK_DIR, AssessmentConfig, StudentProfile
from core.errors import (
    ConcurrencyConflict,
    ConstraintViolation,
    EngineError,
    ExhaustedPool,
    InvalidState,
    NotFound,
)
from core.item_bank import ItemBank
from core.log import setup_logging
from core.models import Concept
from engine import AdaptiveEngine
from learning.progress_tracker import ProgressChannel
from redis_store import RedisStore

# ==================== Initialize ====================

app = FastAPI(
    title="Pathwise API",
    description="Adaptive assessment and concept-dependency engine",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_engine() -> AdaptiveEngine:
    """Engine bound to the environment's Redis and item bank."""
    setup_logging()
    return AdaptiveEngine(RedisStore(), ItemBank.from_directory(ITEM_BANK_DIR))


# Most specific class first
ERROR_STATUS = [
    (NotFound, 404),
    (ConcurrencyConflict, 409),
    (InvalidState, 409),
    (ConstraintViolation, 422),
    (ExhaustedPool, 503),
]


def status_for(error: EngineError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError):
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


# ==================== Request/Response Models ====================

class StartSessionRequest(BaseModel):
    student_id: str
    jurisdiction_id: str
    config: Optional[AssessmentConfig] = None


class AnswerRequest(BaseModel):
    item_id: str
    selected_option: str
    elapsed_seconds: float = Field(0.0, ge=0)


class ConceptRequest(BaseModel):
    id: str
    jurisdiction_id: str
    slug: str
    name: str = ""
    category: str = "general"
    difficulty_tier: int = Field(1, ge=1)
    estimated_minutes: int = Field(20, ge=1)
    prerequisites: List[str] = Field(default_factory=list)


class PrerequisiteRequest(BaseModel):
    prerequisite_id: str


class GeneratePathRequest(BaseModel):
    session_id: str
    profile: StudentProfile


class StepAttemptRequest(BaseModel):
    item_id: Optional[str] = None
    is_correct: bool
    elapsed_seconds: float = Field(0.0, ge=0)


# ==================== Core Endpoints ====================

@app.get("/")
def root():
    return {
        "status": "ok",
        "message": "Pathwise API is running",
        "version": "0.1.0",
    }


# ==================== Sessions ====================

@app.post("/sessions")
def start_session(request: StartSessionRequest, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.start_session(request.student_id, request.jurisdiction_id, request.config)


@app.post("/sessions/{session_id}/responses")
def submit_response(session_id: str, request: AnswerRequest,
                    engine: AdaptiveEngine = Depends(get_engine)):
    return engine.submit_response(
        session_id, request.item_id, request.selected_option, request.elapsed_seconds,
    )


@app.get("/sessions/{session_id}")
def get_session(session_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    session = engine.get_session(session_id)
    data = session.to_dict()
    data["questions_asked"] = session.questions_asked
    return data


@app.get("/sessions/{session_id}/report")
def get_report(session_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.get_report(session_id).to_dict()


# ==================== Concept Graph ====================

@app.post("/concepts")
def create_concept(request: ConceptRequest, engine: AdaptiveEngine = Depends(get_engine)):
    concept = engine.create_concept(Concept(**request.model_dump()))
    return concept.to_dict()


@app.get("/concepts/{concept_id}")
def get_concept(concept_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.get_concept(concept_id).to_dict()


@app.delete("/concepts/{concept_id}")
def delete_concept(concept_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.delete_concept(concept_id)


@app.post("/concepts/{concept_id}/prerequisites")
def add_prerequisite(concept_id: str, request: PrerequisiteRequest,
                     engine: AdaptiveEngine = Depends(get_engine)):
    return engine.add_prerequisite(concept_id, request.prerequisite_id)


@app.delete("/concepts/{concept_id}/prerequisites/{prerequisite_id}")
def remove_prerequisite(concept_id: str, prerequisite_id: str,
                        engine: AdaptiveEngine = Depends(get_engine)):
    return engine.remove_prerequisite(concept_id, prerequisite_id)


@app.get("/concepts/{concept_id}/chain")
def get_prerequisite_chain(concept_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return [c.to_dict() for c in engine.get_prerequisite_chain(concept_id)]


@app.get("/jurisdictions/{jurisdiction_id}/graph/validation")
def validate_graph(jurisdiction_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.validate_graph(jurisdiction_id)


@app.get("/jurisdictions/{jurisdiction_id}/graph")
def graph_visualization(jurisdiction_id: str, student_id: Optional[str] = None,
                        engine: AdaptiveEngine = Depends(get_engine)):
    return engine.graph_visualization(jurisdiction_id, student_id)


# ==================== Learning Paths ====================

@app.post("/paths")
def generate_path(request: GeneratePathRequest, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.generate_path(request.profile, session_id=request.session_id).to_dict()


@app.get("/paths/{path_id}")
def get_path(path_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.get_path(path_id).to_dict()


@app.get("/paths/{path_id}/progress")
def path_progress(path_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.path_progress(path_id)


@app.post("/steps/{step_id}/attempts")
def record_step_attempt(step_id: str, request: StepAttemptRequest,
                        engine: AdaptiveEngine = Depends(get_engine)):
    channel = ProgressChannel()
    result = engine.record_step_attempt(
        step_id, request.item_id, request.is_correct, request.elapsed_seconds, channel=channel,
    )
    result["events"] = [event.to_dict() for event in channel.history]
    return result


@app.get("/students/{student_id}/concepts/{concept_id}/mastery")
def get_mastery(student_id: str, concept_id: str, engine: AdaptiveEngine = Depends(get_engine)):
    return engine.get_mastery(student_id, concept_id)


@app.get("/students/{student_id}/streak")
def get_streak(student_id: str, engine: AdaptiveEngine = Depends(get_engine)) -> Dict:
    return engine.get_streak(student_id)


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
