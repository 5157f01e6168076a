import json
import time
from enum import Enum
from typing import Any, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    queued = "Queued"
    running = "Running"
    completed = "Completed"
    failed = "Failed"
    cancelled = "Cancelled"
    unknown = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        """Map a raw runner status onto a member; unrecognized values are non-terminal"""
        try:
            return cls(value)
        except ValueError:
            return cls.unknown


class JobSubmission(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    data: dict
    ts: int = Field(default_factory=lambda: int(time.time() * 1000))


class JobRun(BaseModel):
    run_id: str
    status: JobStatus
    output: Any = None
    error: Any = None
    raw_response: dict = Field(default_factory=dict)

    @property
    def has_output(self) -> bool:
        return self.output is not None

    @property
    def failure_detail(self) -> Optional[str]:
        """Render the reported error as text, falling back to the run output"""
        detail = self.error if self.error is not None else self.output
        if detail is None or isinstance(detail, str):
            return detail
        return json.dumps(detail, default=str)


class PollAttempt(BaseModel):
    attempt: int
    elapsed_time: float
    status: JobStatus
    run: JobRun


class StatusPollingConfig(BaseModel):
    initial_delay: float = 0.5
    max_delay: float = 8.0
    backoff_factor: float = 2.0
    max_attempts: int = Field(default=30, ge=1)
    timeout: float = Field(default=120.0, gt=0)
    jitter: bool = True
    success_statuses: FrozenSet[JobStatus] = frozenset({JobStatus.completed})
    failure_statuses: FrozenSet[JobStatus] = frozenset(
        {JobStatus.failed, JobStatus.cancelled}
    )

    def is_terminal(self, status: JobStatus) -> bool:
        return status in self.success_statuses or status in self.failure_statuses
