"""
HLS Web Backend - FastAPI application
Runs the HLS helper scripts through hls_runner.JobSupervisor, streams live
progress via WebSocket, exposes REST endpoints for configuration and
session control.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from hls_runner import (
    DEFAULT_QUALITY,
    DEFAULT_RESOLUTIONS,
    QUALITY_PRESETS,
    EventKind,
    JobSupervisor,
    LaunchPlan,
    Session,
    build_launch_plan,
    parse_resolutions,
    probe_duration,
)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

CONFIG_FILE = Path(os.environ.get("CONFIG_FILE", "/config/hls_settings.json"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("hls-web")

# ---------------------------------------------------------------------------
# Default config
# ---------------------------------------------------------------------------

DEFAULT_CONFIG = {
    "input":       "",
    "scripts_dir": "",
    "quality":     DEFAULT_QUALITY,
    "resolutions": DEFAULT_RESOLUTIONS,
    "hw":          False,
    "overlay":     False,
    "basic":       False,
    "ffprobe":     os.environ.get("FFPROBE_BIN", "ffprobe"),
}

# ---------------------------------------------------------------------------
# Config persistence
# ---------------------------------------------------------------------------

def load_config() -> dict:
    if CONFIG_FILE.exists():
        try:
            with open(CONFIG_FILE) as f:
                saved = json.load(f)
            return {**DEFAULT_CONFIG, **saved}
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
    return dict(DEFAULT_CONFIG)


def save_config(cfg: dict) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_FILE, "w") as f:
        json.dump(cfg, f, indent=2)


def plan_from_config(cfg: dict) -> LaunchPlan:
    return build_launch_plan(
        cfg["input"],
        enhanced=not cfg.get("basic"),
        overlay=bool(cfg.get("overlay")),
        hw=bool(cfg.get("hw")),
        resolutions=cfg.get("resolutions") or DEFAULT_RESOLUTIONS,
        quality=cfg.get("quality") or DEFAULT_QUALITY,
        scripts_dir=cfg.get("scripts_dir") or None,
    )


# ---------------------------------------------------------------------------
# Session manager
# ---------------------------------------------------------------------------

class HlsService:
    """
    Owns at most one running JobSupervisor. A background task consumes its
    events (next_event blocks, so it runs in a worker thread) and keeps a
    tail of the script output for the log endpoints.
    """

    def __init__(self) -> None:
        self.supervisor:    Optional[JobSupervisor] = None
        self.plan:          Optional[LaunchPlan] = None
        self.duration:      int  = 0
        self.started_at:    Optional[float] = None
        self.log_tail:      list[str] = []     # last N log lines (ring buffer)
        self._log_max:      int  = 500
        self._lock:         asyncio.Lock = asyncio.Lock()
        self._pump_task:    Optional[asyncio.Task] = None

    async def start(self, plan: LaunchPlan, ffprobe_bin: str = "ffprobe") -> None:
        async with self._lock:
            if self.is_running():
                raise RuntimeError("A session is already running")

            duration = await asyncio.to_thread(probe_duration, plan.probe_path, ffprobe_bin)
            supervisor = JobSupervisor(duration_sec=duration, total_jobs=plan.total_jobs)
            supervisor.start(plan.executable, list(plan.argv), plan.work_dir, script=plan.script)

            self.supervisor = supervisor
            self.plan       = plan
            self.duration   = duration
            self.started_at = time.monotonic()
            self.log_tail   = []

            logger.info(f"Session started: {plan.name} duration={duration}s jobs={plan.total_jobs}")
            self._pump_task = asyncio.create_task(self._pump(supervisor))

    async def cancel(self) -> bool:
        async with self._lock:
            if not self.is_running():
                return False
            self.supervisor.cancel()
            try:
                await asyncio.wait_for(asyncio.shield(self._pump_task), timeout=15)
            except asyncio.TimeoutError:
                logger.warning("Session did not report termination within 15s")
            logger.info("Session cancelled")
            return True

    async def wait(self) -> None:
        if self._pump_task is not None:
            await self._pump_task

    async def _pump(self, supervisor: JobSupervisor) -> None:
        while True:
            event = await asyncio.to_thread(supervisor.next_event)
            if event.kind is EventKind.LINE:
                self._append_log(event.line)
            if event.terminal:
                if event.error is not None:
                    self._append_log(f"error: {event.error}")
                logger.info(f"Session ended: {event.kind.value} (rc={event.returncode})")
                return

    def _append_log(self, line: str) -> None:
        self.log_tail.append(line)
        if len(self.log_tail) > self._log_max:
            self.log_tail = self.log_tail[-self._log_max:]

    def snapshot(self) -> Session:
        if self.supervisor is None:
            return Session()
        return self.supervisor.snapshot()

    def get_uptime(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    def is_running(self) -> bool:
        return self._pump_task is not None and not self._pump_task.done()

    def status(self) -> dict:
        snap = self.snapshot()
        return {
            "service_status": "running" if self.is_running() else snap.state.value,
            "uptime":         round(self.get_uptime()),
            "pid":            self.supervisor.pid if self.is_running() else None,
            "duration":       self.duration,
            "plan":           self.plan.to_dict() if self.plan else None,
            "session":        snap.to_dict(),
        }


# Global service instance
service = HlsService()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Don't leave a script running behind a stopped server
    if service.is_running():
        logger.info("Shutting down, cancelling running session")
        await service.cancel()


app = FastAPI(title="HLS Dashboard", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class ConfigModel(BaseModel):
    input:       str
    scripts_dir: str = ""
    quality:     str = DEFAULT_QUALITY
    resolutions: str = DEFAULT_RESOLUTIONS
    hw:          bool = False
    overlay:     bool = False
    basic:       bool = False
    ffprobe:     str = Field(default_factory=lambda: DEFAULT_CONFIG["ffprobe"])

    @field_validator("quality")
    @classmethod
    def check_quality(cls, v: str) -> str:
        if v not in QUALITY_PRESETS:
            raise ValueError(f"quality must be one of {', '.join(QUALITY_PRESETS)}")
        return v

    @field_validator("resolutions")
    @classmethod
    def check_resolutions(cls, v: str) -> str:
        try:
            return parse_resolutions(v)
        except argparse.ArgumentTypeError as e:
            raise ValueError(str(e)) from e


# ---------------------------------------------------------------------------
# REST endpoints
# ---------------------------------------------------------------------------

@app.get("/api/config")
async def get_config():
    return load_config()


@app.post("/api/config")
async def post_config(cfg: ConfigModel):
    data = cfg.model_dump()
    save_config(data)
    return {"ok": True}


@app.get("/api/status")
async def get_status():
    return service.status()


@app.post("/api/session/start")
async def start_session():
    if service.is_running():
        raise HTTPException(400, "A session is already running")
    cfg = load_config()
    if not cfg.get("input"):
        raise HTTPException(400, "No input configured")

    plan = plan_from_config(cfg)
    if not Path(plan.probe_path).exists():
        raise HTTPException(400, f"Input file does not exist: {plan.probe_path}")

    try:
        await service.start(plan, cfg.get("ffprobe") or "ffprobe")
    except RuntimeError as e:
        raise HTTPException(400, str(e))
    return {"ok": True, "plan": plan.to_dict(), "duration": service.duration}


@app.post("/api/session/cancel")
async def cancel_session():
    if not service.is_running():
        raise HTTPException(400, "No session is running")
    await service.cancel()
    return {"ok": True, "session": service.snapshot().to_dict()}


@app.get("/api/logs")
async def get_logs(lines: int = 200):
    return {"lines": service.log_tail[-lines:] if lines > 0 else []}


@app.get("/api/probe")
async def probe(path: str):
    """Duration of a media file in seconds; 0 when ffprobe can't tell."""
    cfg = load_config()
    duration = await asyncio.to_thread(probe_duration, path, cfg.get("ffprobe") or "ffprobe")
    return {"path": path, "duration": duration}


# ---------------------------------------------------------------------------
# WebSocket - live dashboard feed
# ---------------------------------------------------------------------------

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    try:
        while True:
            try:
                msg = {
                    "type":     "state",
                    **service.status(),
                    "log_tail": service.log_tail[-50:],
                    "ts":       time.time(),
                }
                await ws.send_json(msg)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"WS send error: {e}")
                break
            # Wait out the interval on receive so a closed socket ends the loop
            try:
                await asyncio.wait_for(ws.receive_text(), timeout=0.75)
            except asyncio.TimeoutError:
                pass
    except WebSocketDisconnect:
        pass
