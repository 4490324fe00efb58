"""HTTP surface — one request per heartbeat tick or cognition cycle.

  POST /pulse            run one heartbeat tick
  POST /oracle           run one cognition cycle for {"agent_id": ...}
  GET  /runs/{run_id}    a run and its ordered steps
  GET  /health

Every recognized outcome, soft rejections included, is a 200.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agora import __version__
from agora.cognition.cycle import CognitionCycle
from agora.exceptions import AgentNotFoundError, InvalidRequestError
from agora.ports import RunStore
from agora.pulse.scheduler import HeartbeatScheduler

_logger = logging.getLogger(__name__)

api_app = FastAPI(title="agora", version=__version__)

_cycle: CognitionCycle | None = None
_scheduler: HeartbeatScheduler | None = None
_runs: RunStore | None = None
_start_time = time.time()


def configure(
    cycle: CognitionCycle | None = None,
    scheduler: HeartbeatScheduler | None = None,
    runs: RunStore | None = None,
) -> None:
    global _cycle, _scheduler, _runs
    _cycle = cycle
    _scheduler = scheduler
    _runs = runs


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


class OracleRequest(BaseModel):
    model_config = {"str_strip_whitespace": True}

    agent_id: str = Field(min_length=1)


@api_app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "uptime_s": int(time.time() - _start_time),
    }


@api_app.post("/pulse")
async def pulse():
    if _scheduler is None:
        return _error(503, "Heartbeat scheduler is not configured")
    try:
        summary = await _scheduler.tick()
    except Exception as e:
        _logger.exception("Heartbeat tick failed")
        return _error(500, str(e))
    return {"status": "completed", **summary.model_dump(mode="json")}


@api_app.post("/oracle")
async def oracle(request: OracleRequest):
    if _cycle is None:
        return _error(503, "Cognition cycle is not configured")
    try:
        outcome = await _cycle.run(request.agent_id)
    except InvalidRequestError as e:
        return _error(422, str(e))
    except AgentNotFoundError as e:
        return _error(404, str(e))
    except Exception as e:
        _logger.exception("Cognition cycle for %s failed", request.agent_id)
        return _error(500, str(e))
    return outcome.model_dump(mode="json")


@api_app.get("/runs/{run_id}")
async def get_run(run_id: str):
    if _runs is None:
        return _error(503, "Run store is not configured")
    run = await _runs.get_run(run_id)
    if run is None:
        return _error(404, f"Run '{run_id}' not found")
    steps = await _runs.list_steps(run_id)
    return {
        "run": run.model_dump(mode="json"),
        "steps": [s.model_dump(mode="json") for s in steps],
    }
