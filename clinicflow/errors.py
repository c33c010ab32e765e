# clinicflow/errors.py
"""
Workflow error taxonomy.

Services raise these; `main.py` maps them to HTTP responses. Every error carries a
human-readable message plus a `detail` dict the caller can act on (open slots,
existing bill id, the step that still needs a retry).
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    kind = "workflow_error"
    status_code = 500

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, "detail": self.detail}


class ConflictError(WorkflowError):
    """Slot already booked, test already has a result."""
    kind = "conflict"
    status_code = 409


class ValidationError(WorkflowError):
    """Bad input or an illegal state transition. Raised before any write."""
    kind = "validation_error"
    status_code = 422


class NotFoundError(WorkflowError):
    kind = "not_found"
    status_code = 404


class PartialFailureError(WorkflowError):
    """
    The primary record was written but a follow-up step was not.
    `step` names what to retry; `entity_id` is the record that survived.
    """
    kind = "partial_failure"
    status_code = 207

    def __init__(self, message: str, step: str, entity_id: int, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"step": step, "entity_id": entity_id, **(detail or {})})
        self.step = step
        self.entity_id = entity_id


class StoreError(WorkflowError):
    """Connectivity or storage fault. The whole operation may be retried."""
    kind = "store_error"
    status_code = 503
