"""
Engine errors - Typed failures returned at the engine boundary.

Taxonomy:
    - NotFound: session, item, concept, path or step id does not resolve
    - InvalidState: operation not allowed in the record's current state
    - ConstraintViolation: edge would create a cycle, concept still in use
    - ExhaustedPool: item selector found no eligible candidate
    - ConcurrencyConflict: optimistic write lost the race (retry once)
"""

from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """Base class for every failure the engine surfaces to callers."""

    code = "ENGINE_ERROR"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> dict:
        payload = {
            "error": self.code,
            "detail": self.message,
            "retryable": self.retryable,
        }
        payload.update(self.details)
        return payload


class NotFound(EngineError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} '{identifier}' not found", kind=kind, id=identifier)


class InvalidState(EngineError):
    code = "INVALID_STATE"


class SessionExpired(InvalidState):
    code = "SESSION_EXPIRED"


class ConstraintViolation(EngineError):
    code = "CONSTRAINT_VIOLATION"


class CycleRejectedError(ConstraintViolation):
    code = "CYCLE_REJECTED"

    def __init__(self, concept_id: str, prerequisite_id: str):
        super().__init__(
            f"adding '{prerequisite_id}' as a prerequisite of '{concept_id}' would create a cycle",
            concept_id=concept_id,
            prerequisite_id=prerequisite_id,
        )


class ExhaustedPool(EngineError):
    code = "EXHAUSTED_POOL"


class ConcurrencyConflict(EngineError):
    code = "CONCURRENCY_CONFLICT"
    retryable = True


class CycleError(EngineError):
    """Raised by topological sorting when the graph is not a DAG."""

    code = "CYCLE_DETECTED"

    def __init__(self, unresolved: Optional[List[str]] = None):
        unresolved = sorted(unresolved or [])
        super().__init__(
            "cycle detected in concept graph - prerequisites form a loop",
            unresolved=unresolved,
        )
        self.unresolved = unresolved
