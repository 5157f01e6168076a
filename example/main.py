import asyncio

from job_runner_server import JobRunnerServer

from career_job_client.job_dispatch_client import JobDispatchClient
from career_job_client.jobs import JobType, RoadmapPayload
from career_job_client.models import StatusPollingConfig
from career_job_client.settings import RunnerSettings


async def status_changed(poll_attempt):
    print(f"Status changed to: {poll_attempt.status.value}")
    print(f"Elapsed time: {poll_attempt.elapsed_time:.6f}s")


async def main():
    PORT = 8288
    server = JobRunnerServer(
        statuses=["Queued", "Running", "Running", "Running", "Completed"],
        output={"roadmapTitle": "Data Engineer in 4 months", "initialNodes": []},
    )
    runner = await server.start(port=PORT)
    print(f"Job runner started on http://localhost:{PORT}")

    settings = RunnerSettings(
        event_api_url=f"http://localhost:{PORT}", api_host=f"http://localhost:{PORT}"
    )
    config = StatusPollingConfig(
        initial_delay=0.5, max_delay=4.0, backoff_factor=2.0, timeout=60.0
    )
    client = JobDispatchClient(settings, config, on_status_change=status_changed)

    payload = RoadmapPayload(
        roadmap_id="example-1",
        user_input="Become a data engineer",
        user_email="jane@example.com",
    )
    try:
        output = await client.run_job(JobType.roadmap, payload)
        print(f"Roadmap output: {output}")
    except TimeoutError as e:
        print(f"Polling timed out: {e}")
    except Exception as e:
        print(f"Error occurred: {e}")
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
