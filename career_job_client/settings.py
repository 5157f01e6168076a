import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_RUNNER_URL = "http://localhost:8288"


class RunnerSettings(BaseModel):
    event_api_url: str = DEFAULT_RUNNER_URL
    event_key: str = "local"
    api_host: str = DEFAULT_RUNNER_URL
    api_key: Optional[str] = None
    request_timeout: float = Field(default=10.0, gt=0)

    @classmethod
    def from_env(cls) -> "RunnerSettings":
        load_dotenv()
        event_api_url = os.environ.get("INNGEST_BASE_URL", DEFAULT_RUNNER_URL)
        return cls(
            event_api_url=event_api_url,
            event_key=os.environ.get("INNGEST_EVENT_KEY", "local"),
            api_host=os.environ.get("INNGEST_SERVER_HOST", event_api_url),
            api_key=os.environ.get("INNGEST_API_KEY") or None,
            request_timeout=float(os.environ.get("INNGEST_REQUEST_TIMEOUT", "10")),
        )


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerSettings":
        load_dotenv()
        return cls(
            host=os.environ.get("HOST", "127.0.0.1"),
            port=int(os.environ.get("PORT", "3000")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
