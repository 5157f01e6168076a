from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from career_job_client.models import StatusPollingConfig


class JobType(str, Enum):
    """Workflows known to the runner, keyed by the event name that triggers them"""

    resume_analysis = "AiResumeAgent"
    roadmap = "AiRoadmapAgent"
    test_evaluation = "test.evaluation.requested"

    @property
    def event_name(self) -> str:
        return self.value


class JobPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_event_data(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ResumeAnalysisPayload(JobPayload):
    record_id: str = Field(min_length=1)
    base64_resume_file: str = Field(min_length=1)
    pdf_text: str = ""
    user_email: Optional[str] = None


class RoadmapPayload(JobPayload):
    roadmap_id: str = Field(min_length=1)
    user_input: str = Field(min_length=1)
    time_duration: str = "4_months"
    user_email: Optional[str] = None


class EvaluationPayload(JobPayload):
    test_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    questions_for_evaluation: List[Dict[str, Any]]
    user_email: Optional[str] = None


PAYLOAD_MODELS: Dict[JobType, Type[JobPayload]] = {
    JobType.resume_analysis: ResumeAnalysisPayload,
    JobType.roadmap: RoadmapPayload,
    JobType.test_evaluation: EvaluationPayload,
}

# Resume reports are quick; roadmaps run several model calls in sequence.
DEFAULT_POLLING: Dict[JobType, StatusPollingConfig] = {
    JobType.resume_analysis: StatusPollingConfig(
        initial_delay=0.5, max_delay=4.0, max_attempts=300, timeout=150.0
    ),
    JobType.roadmap: StatusPollingConfig(
        initial_delay=1.0, max_delay=8.0, max_attempts=100, timeout=300.0
    ),
}


def build_payload(job_type: JobType, data: dict) -> JobPayload:
    """Validate raw request data against the payload model of a job type"""
    return PAYLOAD_MODELS[job_type].model_validate(data)


def event_data(payload: Union[JobPayload, dict]) -> dict:
    if isinstance(payload, JobPayload):
        return payload.to_event_data()
    return dict(payload)


def polling_config_for(job_type: JobType) -> StatusPollingConfig:
    return DEFAULT_POLLING.get(job_type, StatusPollingConfig())


def smoke_roadmap_payload() -> RoadmapPayload:
    return RoadmapPayload(
        roadmap_id="debug-123",
        user_input="Learn DSA via smoke test",
        time_duration="4_6_months",
        user_email="smoke@example.com",
    )
