from typing import Any, Optional


class JobError(Exception):
    """Base class for failures surfaced by the job dispatcher"""

    http_status = 500

    def __init__(self, message: str, run_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.run_id = run_id

    def to_dict(self) -> dict:
        return {"error": self.message}


class DispatchError(JobError):
    """The runner accepted the event but returned no run identifier"""


class UpstreamError(JobError):
    """Network, auth or protocol failure while talking to the runner"""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message, run_id)
        self.status = status


class MissingOutputError(JobError):
    pass


class JobFailedError(JobError):
    def __init__(self, run_id: str, status: Any, error: Optional[str] = None):
        super().__init__(
            f"Job run {run_id} ended with status {status}: {error or 'no error reported'}",
            run_id,
        )
        self.status = status
        self.error = error


class PollTimeoutError(JobError, TimeoutError):
    http_status = 504

    def __init__(self, run_id: str, attempts: int, elapsed: float):
        super().__init__(
            f"Job run {run_id} did not complete after {attempts} attempts ({elapsed:.1f}s)",
            run_id,
        )
        self.attempts = attempts
        self.elapsed = elapsed


class JobCancelledError(JobError):
    # nginx convention for "client closed request"
    http_status = 499


class TokenRefreshError(Exception):
    pass
