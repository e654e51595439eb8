"""JobStatus state machine for the matching job lifecycle"""

from typing import Optional, Dict, List

from models.matching_job import JobStatus


class JobStateError(Exception):
    """Raised on an illegal job status transition"""
    pass


# State transition rules
ALLOWED_TRANSITIONS: Dict[Optional[JobStatus], List[JobStatus]] = {
    None: [JobStatus.QUEUED],
    JobStatus.QUEUED: [JobStatus.PROCESSING, JobStatus.CANCELLED],
    JobStatus.PROCESSING: [
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
        JobStatus.QUEUED,  # Cost ceiling pause
    ],
    JobStatus.COMPLETED: [],  # Terminal
    JobStatus.CANCELLED: [],  # Terminal
    JobStatus.FAILED: [JobStatus.QUEUED]  # Retry
}

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.CANCELLED)
ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)


def _coerce(status) -> Optional[JobStatus]:
    if status is None or isinstance(status, JobStatus):
        return status
    return JobStatus(status)


def can_transition(from_status: Optional[JobStatus], to_status: JobStatus) -> bool:
    """Validate if status transition is allowed

    Args:
        from_status: Current status (None for new jobs)
        to_status: Target status

    Returns:
        True if transition is allowed, False otherwise

    Example:
        >>> can_transition(JobStatus.QUEUED, JobStatus.PROCESSING)
        True
        >>> can_transition(JobStatus.COMPLETED, JobStatus.PROCESSING)
        False
    """
    allowed = ALLOWED_TRANSITIONS.get(_coerce(from_status), [])
    return _coerce(to_status) in allowed


def get_allowed_transitions(from_status: Optional[JobStatus]) -> List[JobStatus]:
    """Get list of allowed transitions from current status"""
    return ALLOWED_TRANSITIONS.get(_coerce(from_status), [])


def transition(job, to_status: JobStatus) -> None:
    """Move a MatchingJob to a new status.

    Raises:
        JobStateError: If the transition is not allowed
    """
    if not can_transition(job.status, to_status):
        raise JobStateError(f"Job {job.id} cannot move from {job.status} to {_coerce(to_status).value}")
    job.status = _coerce(to_status).value
