import pytest
from career_job_client.jobs import (
    EvaluationPayload,
    JobType,
    ResumeAnalysisPayload,
    build_payload,
    event_data,
    polling_config_for,
    smoke_roadmap_payload,
)
from career_job_client.models import (
    JobRun,
    JobStatus,
    JobSubmission,
    StatusPollingConfig,
)
from career_job_client.settings import RunnerSettings, ServerSettings
from pydantic import ValidationError


def test_status_parsing_is_case_sensitive():
    assert JobStatus.parse("Completed") is JobStatus.completed
    assert JobStatus.parse("completed") is JobStatus.unknown
    assert JobStatus.parse(None) is JobStatus.unknown


def test_terminal_statuses():
    config = StatusPollingConfig()

    assert config.is_terminal(JobStatus.completed)
    assert config.is_terminal(JobStatus.failed)
    assert config.is_terminal(JobStatus.cancelled)
    assert not config.is_terminal(JobStatus.queued)
    assert not config.is_terminal(JobStatus.running)
    assert not config.is_terminal(JobStatus.unknown)


def test_polling_budget_must_be_positive():
    with pytest.raises(ValidationError):
        StatusPollingConfig(timeout=0)
    with pytest.raises(ValidationError):
        StatusPollingConfig(max_attempts=0)


def test_failure_detail_rendering():
    run = JobRun(run_id="r1", status=JobStatus.failed, error="boom")
    assert run.failure_detail == "boom"

    run = JobRun(run_id="r1", status=JobStatus.failed, error={"message": "quota"})
    assert run.failure_detail == '{"message": "quota"}'

    run = JobRun(run_id="r1", status=JobStatus.failed, output={"reason": "oom"})
    assert run.failure_detail == '{"reason": "oom"}'

    assert JobRun(run_id="r1", status=JobStatus.failed).failure_detail is None


def test_submission_is_immutable():
    submission = JobSubmission(name="AiRoadmapAgent", data={"roadmapId": "x"})

    assert submission.ts > 0
    with pytest.raises(ValidationError):
        submission.name = "other"


def test_payload_uses_wire_names():
    payload = build_payload(
        JobType.resume_analysis,
        {"recordId": "rec-1", "base64ResumeFile": "JVBE", "pdfText": "text"},
    )

    assert isinstance(payload, ResumeAnalysisPayload)
    assert event_data(payload) == {
        "recordId": "rec-1",
        "base64ResumeFile": "JVBE",
        "pdfText": "text",
    }


def test_evaluation_payload_requires_ids():
    with pytest.raises(ValidationError):
        build_payload(
            JobType.test_evaluation,
            {"testId": "", "userId": "u-1", "questionsForEvaluation": []},
        )

    payload = build_payload(
        JobType.test_evaluation,
        {"testId": "t-1", "userId": "u-1", "questionsForEvaluation": []},
    )
    assert isinstance(payload, EvaluationPayload)


def test_dict_payload_passes_through():
    assert event_data({"a": 1}) == {"a": 1}


def test_smoke_payload():
    assert event_data(smoke_roadmap_payload()) == {
        "roadmapId": "debug-123",
        "userInput": "Learn DSA via smoke test",
        "timeDuration": "4_6_months",
        "userEmail": "smoke@example.com",
    }


def test_default_polling_per_job_type():
    assert polling_config_for(JobType.resume_analysis).max_attempts == 300
    assert polling_config_for(JobType.roadmap).max_attempts == 100
    assert polling_config_for(JobType.test_evaluation) == StatusPollingConfig()


def test_runner_settings_from_env(monkeypatch):
    monkeypatch.setenv("INNGEST_BASE_URL", "http://runner:8288")
    monkeypatch.setenv("INNGEST_EVENT_KEY", "evt-key")
    monkeypatch.setenv("INNGEST_API_KEY", "signing-key")
    monkeypatch.delenv("INNGEST_SERVER_HOST", raising=False)
    monkeypatch.delenv("INNGEST_REQUEST_TIMEOUT", raising=False)

    settings = RunnerSettings.from_env()

    assert settings.event_api_url == "http://runner:8288"
    assert settings.api_host == "http://runner:8288"
    assert settings.event_key == "evt-key"
    assert settings.api_key == "signing-key"
    assert settings.request_timeout == 10.0


def test_server_settings_from_env(monkeypatch):
    monkeypatch.setenv("PORT", "4100")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = ServerSettings.from_env()

    assert settings.port == 4100
    assert settings.log_level == "DEBUG"
