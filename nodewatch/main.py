from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import asyncio
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from nodewatch.logging_config import setup_logging
from nodewatch.metrics import render_metrics
from nodewatch.monitor import Monitor, from_env
from nodewatch.types import worst_status

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
	code: str
	message: str


class ProbeOut(BaseModel):
	name: str
	status: str
	message: str
	alert_key: Optional[str] = None
	tier: Optional[str] = None
	data: Dict[str, Any] = {}


class StatusOut(BaseModel):
	ts: datetime
	status: str
	mode: str
	connection: Optional[str] = None
	active_alerts: List[str]
	probes: List[ProbeOut]


app = FastAPI(title="nodewatch", description="Мониторинг пары Ethereum-узлов и RPC", version="0.1.0")

_monitor: Optional[Monitor] = None
_monitor_task: Optional[asyncio.Task] = None
_mode = os.getenv("MONITOR_MODE", "poll").lower()


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
	return JSONResponse(status_code=exc.status_code, content=ErrorResponse(code=str(exc.status_code), message=str(exc.detail)).model_dump())


async def _run_monitor(monitor: Monitor) -> None:
	async with monitor:
		if _mode == "push":
			await monitor.run_push()
		else:
			await monitor.run_poll()


@app.on_event("startup")
async def on_startup():
	# логирование
	setup_logging()
	global _monitor, _monitor_task
	_monitor = from_env()
	_monitor_task = asyncio.create_task(_run_monitor(_monitor))


@app.on_event("shutdown")
async def on_shutdown():
	global _monitor, _monitor_task
	if _monitor is not None:
		_monitor.stop()
	if _monitor_task is not None:
		try:
			await asyncio.wait_for(_monitor_task, timeout=5)
		except asyncio.TimeoutError:
			_monitor_task.cancel()
		except Exception as e:
			logger.warning("monitor task finished with error: %s", e)


@app.get("/health")
def health():
	return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
	payload, content_type = render_metrics()
	return PlainTextResponse(payload.decode("utf-8"), media_type=content_type)


@app.get("/ready", include_in_schema=False)
def ready():
	if _monitor_task is None or _monitor_task.done():
		raise HTTPException(status_code=503, detail="monitor not running")
	return {"status": "ready"}


@app.get("/status", response_model=StatusOut)
def status():
	if _monitor is None:
		raise HTTPException(status_code=503, detail="monitor not running")
	results = _monitor.latest_results()
	return StatusOut(
		ts=datetime.now(timezone.utc),
		status=worst_status(results).value,
		mode=_mode,
		connection=_monitor.reconnector.state.value if _mode == "push" else None,
		active_alerts=sorted(_monitor.dispatcher.gate.snapshot()),
		probes=[
			ProbeOut(
				name=r.name,
				status=r.status.value,
				message=r.message,
				alert_key=r.alert_key.value if r.alert_key else None,
				tier=r.tier.value if r.tier else None,
				data={k: (list(v) if isinstance(v, tuple) else v) for k, v in r.data.items()},
			)
			for r in results
		],
	)
