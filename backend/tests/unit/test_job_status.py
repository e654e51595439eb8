"""Unit tests for the MatchingJob status state machine"""

import pytest

from jobs.job_status import (
    ALLOWED_TRANSITIONS,
    JobStateError,
    can_transition,
    get_allowed_transitions,
    transition,
)
from models.matching_job import MatchingJob, JobStatus


class TestJobStatusStateMachine:
    """Test JobStatus enum and state transition validation"""

    def test_job_status_enum_values(self):
        """Test JobStatus enum has all required values"""
        assert JobStatus.QUEUED.value == "queued"
        assert JobStatus.PROCESSING.value == "processing"
        assert JobStatus.COMPLETED.value == "completed"
        assert JobStatus.FAILED.value == "failed"
        assert JobStatus.CANCELLED.value == "cancelled"

    def test_initial_state_transition(self):
        """Test new jobs can only start as QUEUED"""
        assert can_transition(None, JobStatus.QUEUED) is True
        assert can_transition(None, JobStatus.PROCESSING) is False
        assert can_transition(None, JobStatus.COMPLETED) is False

    def test_queued_to_processing(self):
        """Test QUEUED → PROCESSING transition (claimed by a worker)"""
        assert can_transition(JobStatus.QUEUED, JobStatus.PROCESSING) is True

    def test_queued_to_cancelled(self):
        """Test QUEUED → CANCELLED transition (cancelled before start)"""
        assert can_transition(JobStatus.QUEUED, JobStatus.CANCELLED) is True

    def test_queued_invalid_transitions(self):
        """Test invalid transitions from QUEUED"""
        assert can_transition(JobStatus.QUEUED, JobStatus.COMPLETED) is False
        assert can_transition(JobStatus.QUEUED, JobStatus.FAILED) is False

    def test_processing_transitions(self):
        """Test PROCESSING can finish, fail, cancel or pause back to QUEUED"""
        for target in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.QUEUED):
            assert can_transition(JobStatus.PROCESSING, target) is True

    def test_failed_can_be_retried(self):
        """Test FAILED → QUEUED transition (retry)"""
        assert can_transition(JobStatus.FAILED, JobStatus.QUEUED) is True
        assert can_transition(JobStatus.FAILED, JobStatus.PROCESSING) is False

    def test_terminal_states(self):
        """Test COMPLETED and CANCELLED have no outgoing transitions"""
        assert get_allowed_transitions(JobStatus.COMPLETED) == []
        assert get_allowed_transitions(JobStatus.CANCELLED) == []

    def test_all_states_covered(self):
        """Test every status appears in the transition table"""
        for status in JobStatus:
            assert status in ALLOWED_TRANSITIONS

    def test_string_statuses_accepted(self):
        """Test stored string values are accepted"""
        assert can_transition("queued", "processing") is True


class TestTransition:
    """Test transition() on a job instance"""

    def test_valid_transition_updates_status(self):
        """Test the status column takes the enum value"""
        job = MatchingJob(status=JobStatus.QUEUED.value)
        transition(job, JobStatus.PROCESSING)
        assert job.status == "processing"

    def test_invalid_transition_raises(self):
        """Test illegal transitions raise JobStateError"""
        job = MatchingJob(status=JobStatus.COMPLETED.value)
        with pytest.raises(JobStateError):
            transition(job, JobStatus.PROCESSING)
        assert job.status == "completed"
