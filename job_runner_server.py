import uuid
from typing import Any, Dict, Iterable, List, Optional

from aiohttp import web
from loguru import logger


class JobRunnerServer:
    """Local stand-in for the job runner's event and run-status endpoints.

    Every submitted event gets a run whose status walks through ``statuses``,
    one entry per status query; the last entry repeats once the script runs out.
    """

    def __init__(
        self,
        statuses: Iterable[str] = ("Queued", "Running", "Completed"),
        output: Any = None,
        error: Any = None,
        emit_ids: bool = True,
        run_ids: Optional[Iterable[str]] = None,
        api_key: Optional[str] = None,
        include_output: bool = True,
    ):
        self.statuses = list(statuses)
        self.output = output
        self.error = error
        self.emit_ids = emit_ids
        self.run_ids = list(run_ids or [])
        self.api_key = api_key
        self.include_output = include_output
        self.events: List[dict] = []
        self.status_queries: Dict[str, int] = {}
        self.app = web.Application()
        self.app.router.add_post("/e/{event_key}", self.handle_event)
        self.app.router.add_get("/v1/events/{run_id}/runs", self.handle_runs)
        self.logger = logger

    def _next_run_id(self) -> str:
        if self.run_ids:
            return self.run_ids.pop(0)
        return uuid.uuid4().hex

    async def handle_event(self, request):
        event = await request.json()
        self.events.append(event)

        if not self.emit_ids:
            self.logger.info(f"Accepted {event.get('name')} without a run id")
            return web.json_response({"ids": [], "status": 200})

        run_id = self._next_run_id()
        self.status_queries.setdefault(run_id, 0)
        self.logger.info(f"Accepted {event.get('name')} as run {run_id}")
        return web.json_response({"ids": [run_id], "status": 200})

    async def handle_runs(self, request):
        if self.api_key is not None:
            expected = f"Bearer {self.api_key}"
            if request.headers.get("Authorization") != expected:
                return web.json_response({"error": "unauthorized"}, status=401)

        run_id = request.match_info["run_id"]
        if run_id not in self.status_queries:
            return web.json_response({"data": []})

        count = self.status_queries[run_id]
        self.status_queries[run_id] = count + 1
        status = self.statuses[min(count, len(self.statuses) - 1)]
        self.logger.info(f"Returning {status} for run {run_id} (query {count + 1})")

        record = {"run_id": f"run-{run_id}", "event_id": run_id, "status": status}
        if status == "Completed" and self.include_output:
            record["output"] = self.output
        if status == "Failed":
            if self.error is not None:
                record["error"] = self.error
            if self.output is not None:
                record["output"] = self.output
        return web.json_response({"data": [record]})

    async def start(self, host: str = "localhost", port: int = 8288):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        self.logger.info(f"Job runner started on port {port}")
        return runner
