"""Correlation ids for log records.

HTTP requests carry a request id; worker chunks carry the job id they run.
Both live in ContextVars so they survive thread and async hand-offs.
"""

import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Current request ID, or "no-request-id" outside a request."""
    return request_id_var.get() or "no-request-id"


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_job_id() -> Optional[str]:
    return job_id_var.get()


def set_job_id(job_id: Optional[str]) -> None:
    """Bind the job being processed to subsequent log records (None clears it)."""
    job_id_var.set(job_id)
