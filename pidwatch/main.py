"""
Pidwatch FastAPI application.

Provides a REST API for creating, starting, stopping and inspecting
supervised processes. On startup it reloads processes left on disk by a
previous run and starts a crash monitor that restarts children whose pid
file outlived them.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import __version__
from .config import config
from .errors import PidwatchError, QueryError
from .manager import get_process_set

# Configure logging with rotation
log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Rotating file handler (auto-compaction)
file_handler = RotatingFileHandler(
    config.pidwatch_log,
    maxBytes=config.log_max_bytes,
    backupCount=config.log_backup_count,
)
file_handler.setFormatter(log_formatter)

# Console handler
console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)

# Configure root logger
logging.basicConfig(
    level=logging.INFO,
    handlers=[file_handler, console_handler],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting pidwatch...")

    process_set = get_process_set()
    loaded = process_set.load_all()
    logger.info(f"Loaded {len(loaded)} supervised processes from {process_set.data_dir}")

    crash_monitor_task = asyncio.create_task(crash_monitor_loop())

    yield

    logger.info("Shutting down pidwatch...")
    crash_monitor_task.cancel()
    try:
        await crash_monitor_task
    except asyncio.CancelledError:
        pass


async def crash_monitor_loop():
    """Background task to restart crashed processes."""
    while True:
        try:
            await get_process_set().check_and_restart_crashed()
        except Exception as e:
            logger.error(f"Error in crash monitor: {e}")
        await asyncio.sleep(config.check_interval)


app = FastAPI(
    title="Pidwatch",
    description="Supervisor for pid-file based processes",
    version=__version__,
    lifespan=lifespan,
)


# Pydantic models for API
class ProcessCreate(BaseModel):
    command: str = Field(..., min_length=1, description="Executable to run")
    kind: str = Field(..., min_length=1, description="Process kind, e.g. 'proxy'")
    args: list[str] = Field(default_factory=list, description="Command arguments")
    ctx: dict[str, str] = Field(default_factory=dict, description="Caller metadata")
    start: bool = Field(True, description="Start the process right away")


class ProcessResponse(BaseModel):
    id: str
    kind: str
    command: str
    args: list[str]
    ctx: dict[str, str]
    pid: Optional[int] = None
    alive: bool = False
    needs_restart: bool = False
    restart_count: int = 0
    pid_path: str
    data_path: str
    log_path: str


@app.get("/api/health")
async def health():
    """Liveness of pidwatch itself."""
    return {"status": "ok", "processes": len(get_process_set().list_processes())}


@app.get("/api/processes", response_model=list[ProcessResponse])
async def list_processes():
    """List all supervised processes."""
    process_set = get_process_set()
    return [process_set.status(proc) for proc in process_set.list_processes()]


@app.post("/api/processes", response_model=ProcessResponse)
async def create_process(data: ProcessCreate):
    """Register a process and optionally start it."""
    process_set = get_process_set()
    proc = process_set.create(data.command, data.kind, args=data.args, ctx=data.ctx)

    if data.start:
        try:
            await asyncio.to_thread(process_set.start, proc.id)
        except PidwatchError as e:
            logger.error(f"Failed to start {proc.base_name}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return process_set.status(proc)


@app.get("/api/processes/{proc_id}", response_model=ProcessResponse)
async def get_process(proc_id: str):
    """Get a specific process."""
    process_set = get_process_set()
    proc = process_set.get(proc_id)
    if not proc:
        raise HTTPException(status_code=404, detail=f"Process '{proc_id}' not found")
    return process_set.status(proc)


@app.post("/api/processes/{proc_id}/start", response_model=ProcessResponse)
async def start_process(proc_id: str):
    """Start a registered process."""
    process_set = get_process_set()
    proc = process_set.get(proc_id)
    if not proc:
        raise HTTPException(status_code=404, detail=f"Process '{proc_id}' not found")

    try:
        await asyncio.to_thread(process_set.start, proc_id)
    except PidwatchError as e:
        logger.error(f"Failed to start {proc.base_name}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return process_set.status(proc)


@app.post("/api/processes/{proc_id}/stop")
async def stop_process(proc_id: str):
    """Stop a process and remove its marker files."""
    process_set = get_process_set()
    proc = process_set.get(proc_id)
    if not proc:
        raise HTTPException(status_code=404, detail=f"Process '{proc_id}' not found")

    try:
        await asyncio.to_thread(process_set.stop, proc_id)
    except QueryError as e:
        logger.error(f"Failed to stop {proc.base_name}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"status": "stopped", "id": proc_id}
