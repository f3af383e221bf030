"""
Error classes for stagehand.

These error types enable retry classification at the staging and run
boundaries:
- TransientError: Safe to retry (network issues, concurrent writers, 5xx)
- PermanentError: Do not retry (unreadable artifacts, access denied, rejected jobs)

The stager catches at the upload boundary for retry/backoff. The job runner
never retries; callers decide whether to resubmit a whole job.

A workload that finishes in the Failed phase is not an error: it is reported
as an empty result.
"""


class StagehandError(Exception):
    """Base exception for stagehand."""
    pass


class TransientError(StagehandError):
    """
    Transient error - safe to retry.

    Examples:
    - Connection reset while uploading
    - Object store temporarily unavailable
    - Another writer created the object first
    """
    pass


class PermanentError(StagehandError):
    """
    Permanent error - do not retry.

    Examples:
    - Local artifact cannot be read
    - Authorization failed (401/403)
    - Scheduler rejected the job
    """
    pass


class ConfigError(StagehandError):
    """Configuration validation error."""
    pass


# =============================================================================
# STAGING
# =============================================================================


class StagingError(PermanentError):
    """Staging of an artifact failed; aborts the whole staging call."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class ArtifactReadError(StagingError):
    """A local file or directory could not be read."""
    pass


class PermissionDeniedError(StagingError):
    """The object store rejected a write for access reasons. Never retried."""

    def __init__(self, message: str, path: str | None = None, location: str | None = None):
        super().__init__(message, path=path)
        self.location = location


class TransientUploadError(StagingError):
    """
    Upload kept failing after the retry budget was spent.

    The last underlying failure is chained as __cause__.
    """

    def __init__(self, message: str, path: str | None = None, attempts: int = 0):
        super().__init__(message, path=path)
        self.attempts = attempts


class ObjectExistsError(TransientError):
    """Exclusive create failed because the object already exists."""

    def __init__(self, location: str):
        super().__init__(f"Object already exists: {location}")
        self.location = location


# =============================================================================
# RUNNER
# =============================================================================


class RunnerError(PermanentError):
    """Runner-level fault (distinct from a workload that failed)."""
    pass


class SubmissionError(RunnerError):
    """The scheduler rejected job creation."""
    pass


class PollingError(RunnerError):
    """Reading the job status failed while waiting for completion."""
    pass


class RunCancelled(StagehandError):
    """
    The caller cancelled the wait for a job.

    This is a cancellation outcome, not a runner fault. The remote job has
    already been deleted when this is raised.
    """

    def __init__(self, job_name: str):
        super().__init__(f"Cancelled while waiting for job {job_name}")
        self.job_name = job_name
