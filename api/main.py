"""
Job Multi-Poster API - FastAPI Backend
Queue ingress for posting jobs, operator retries and live progress.

The engine itself lives in core/; this module only wires collaborators from
api.config and exposes them over HTTP and websockets.
"""

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, validator

from ai.providers import UsageTracker
from api.config import AppConfig, config
from api.database import SqliteRepository
from api.logging_config import log_ai_request, log_posting, log_request, logger, setup_logging
from api.screenshots import ArchivingExecutor, ScreenshotArchive
from boards import BOARD_CATALOG, StrategyRegistry
from core.errors import InvalidTransitionError
from core.executor import PostingExecutor
from core.models import Job, Posting, Task, count_outcomes
from core.notifier import JOB_COMPLETE, POSTING_UPDATE, ProgressEvent, ProgressNotifier
from core.repository import PostingRepository
from core.scheduler import PostingScheduler


# === Service Wiring ===

@dataclass
class Services:
    """Everything the routes need, built once per application."""
    repository: PostingRepository
    scheduler: PostingScheduler
    notifier: ProgressNotifier
    registry: StrategyRegistry
    usage: UsageTracker
    discovery: Optional[object] = None
    driver: Optional[object] = None
    start_scheduler: bool = True


def _log_progress(event: ProgressEvent):
    if event.kind != POSTING_UPDATE:
        return
    p = event.payload
    log_posting(
        event.job_id,
        p.get("board_name") or p["board_id"],
        p["status"],
        error=p.get("error_message"),
        external_url=p.get("external_url"),
    )


async def build_services(cfg: AppConfig) -> Services:
    """Build the production collaborator graph from configuration."""
    repository = SqliteRepository(cfg.DATABASE_PATH)
    await repository.init_database(BOARD_CATALOG)

    usage = UsageTracker()
    discovery = cfg.build_discovery(usage=usage)
    if discovery is None:
        logger.warning("No LLM API key configured; boards without a strategy will fail")

    registry = StrategyRegistry(element_timeout=cfg.ELEMENT_TIMEOUT_SECONDS)
    driver = cfg.build_driver()
    executor = PostingExecutor(
        driver,
        registry,
        discovery,
        config=cfg.executor_config(),
        credentials=cfg.posting_credentials(),
    )
    archive = ScreenshotArchive(Path(cfg.SCREENSHOT_DIR))

    notifier = ProgressNotifier(webhook_url=cfg.PROGRESS_WEBHOOK_URL)
    scheduler = PostingScheduler(
        repository,
        ArchivingExecutor(executor, archive),
        notifier=notifier,
        driver=driver,
        config=cfg.scheduler_config(),
    )
    return Services(
        repository=repository,
        scheduler=scheduler,
        notifier=notifier,
        registry=registry,
        usage=usage,
        discovery=discovery,
        driver=driver,
    )


# === Serialization ===

def _board_dict(board, registry: StrategyRegistry) -> dict:
    return {
        "id": board.id,
        "name": board.name,
        "code": board.code,
        "base_url": board.base_url,
        "post_url": board.post_url,
        "location": board.location,
        "enabled": board.enabled,
        "has_strategy": board.name in registry or bool(board.code and board.code in registry),
    }


def _job_dict(job: Job) -> dict:
    return {
        "id": job.id,
        "title": job.title,
        "company": job.company,
        "location": job.location,
        "contact_email": job.contact_email,
        "salary_min": job.salary_min,
        "salary_max": job.salary_max,
        "employment_type": job.employment_type,
        "department": job.department,
        "status": job.status.value,
        "created_at": job.created_at.isoformat(),
    }


def _posting_dict(posting: Posting) -> dict:
    return {
        "id": posting.id,
        "board_id": posting.board_id,
        "board_name": posting.board.name if posting.board else None,
        "status": posting.status.value,
        "external_url": posting.external_url,
        "error_message": posting.error_message,
        "retry_count": posting.retry_count,
        "posted_at": posting.posted_at.isoformat() if posting.posted_at else None,
        "last_attempt_at": posting.last_attempt_at.isoformat() if posting.last_attempt_at else None,
    }


def _task_dict(task: Task) -> dict:
    return {
        "id": task.id,
        "job_id": task.job_id,
        "attempt": task.attempt,
        "max_attempts": task.max_attempts,
        "reason": task.reason.value,
        "scheduled_at": task.scheduled_at,
        "posting_ids": list(task.posting_ids) if task.posting_ids else None,
    }


# === Pydantic Models with Validation ===

class JobCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=20000)
    location: str = Field(..., min_length=1, max_length=200)
    company: str = Field(..., min_length=1, max_length=200)
    contact_email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    salary_min: Optional[int] = Field(default=None, ge=0)
    salary_max: Optional[int] = Field(default=None, ge=0)
    employment_type: Optional[str] = Field(default=None, max_length=50)
    department: Optional[str] = Field(default=None, max_length=200)
    board_ids: List[str] = Field(..., min_length=1)
    post_now: bool = False

    @validator("salary_max")
    def salary_range(cls, v, values):
        low = values.get("salary_min")
        if v is not None and low is not None and v < low:
            raise ValueError("salary_max must be >= salary_min")
        return v


# === Application Factory ===

def create_app(services: Optional[Services] = None, cfg: Optional[AppConfig] = None) -> FastAPI:
    """
    Build the API. Tests pass prebuilt ``services``; otherwise the lifespan
    wires the production graph from ``cfg``.
    """
    cfg = cfg or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting Job Multi-Poster API...")
        svc = services
        if svc is None:
            setup_logging(cfg.LOG_LEVEL, Path(cfg.LOG_DIR))
            for problem in cfg.validate():
                logger.warning(f"Missing configuration: {problem}")
            svc = await build_services(cfg)
        svc.notifier.add_listener(_log_progress)
        app.state.services = svc

        if svc.start_scheduler:
            await svc.scheduler.start()
            logger.info("Posting scheduler started")

        yield
        # Shutdown
        logger.info("Shutting down Job Multi-Poster API...")
        await svc.scheduler.stop()
        if svc.driver is not None:
            await svc.driver.close()
            logger.info("Browser driver closed")

    app = FastAPI(
        title="Job Multi-Poster API",
        description="Posts employer job listings to university job boards",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.DEBUG else None,
        redoc_url="/redoc" if cfg.DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=cfg.CORS_ALLOW_CREDENTIALS,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # === Request Logging Middleware ===

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = datetime.now()
        response = await call_next(request)
        duration = (datetime.now() - start_time).total_seconds() * 1000
        log_request(request.method, request.url.path, response.status_code, duration)
        return response

    def get_services() -> Services:
        return app.state.services

    # === Health ===

    @app.get("/")
    async def root():
        return {"service": "Job Multi-Poster API", "version": "1.0.0", "status": "running"}

    @app.get("/health")
    async def health():
        svc = get_services()
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "scheduler_running": svc.scheduler.is_running,
            "queued_tasks": len(svc.scheduler.pending_tasks()),
            "discovery_enabled": svc.discovery is not None,
        }

    # === Boards ===

    @app.get("/boards")
    async def list_boards():
        svc = get_services()
        boards = await svc.repository.list_boards()
        return {"boards": [_board_dict(b, svc.registry) for b in boards]}

    # === Jobs ===

    @app.post("/jobs", status_code=status.HTTP_201_CREATED)
    async def create_job(request: JobCreateRequest):
        svc = get_services()
        boards = await svc.repository.list_boards()
        by_key = {}
        for board in boards:
            by_key[board.id] = board
            if board.code:
                by_key[board.code.lower()] = board

        selected = []
        for key in request.board_ids:
            board = by_key.get(key) or by_key.get(key.lower())
            if board is None:
                raise HTTPException(status_code=400, detail=f"Unknown board: {key}")
            if board.id not in selected:
                selected.append(board.id)

        job = Job(
            id=str(uuid.uuid4()),
            title=request.title,
            description=request.description,
            location=request.location,
            company=request.company,
            contact_email=request.contact_email,
            salary_min=request.salary_min,
            salary_max=request.salary_max,
            employment_type=request.employment_type,
            department=request.department,
        )
        await svc.repository.save_job(job)
        postings = await svc.repository.create_postings(job.id, selected)
        logger.info(f"Created job {job.id} for {len(postings)} boards")

        response = {"job": _job_dict(job), "postings": [_posting_dict(p) for p in postings]}
        if request.post_now:
            response["task_id"] = svc.scheduler.enqueue_job(job.id).id
        return response

    @app.post("/jobs/{job_id}/post", status_code=status.HTTP_202_ACCEPTED)
    async def post_job(job_id: str):
        svc = get_services()
        job = await svc.repository.load_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        postings = await svc.repository.load_postings(job_id)
        if not postings:
            raise HTTPException(status_code=409, detail="Job has no postings")

        task = svc.scheduler.enqueue_job(job_id)
        return {"job_id": job_id, "task_id": task.id, "status": "queued", "total_boards": len(postings)}

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str):
        svc = get_services()
        job = await svc.repository.load_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        postings = await svc.repository.load_postings(job_id)
        return {
            "job": _job_dict(job),
            "postings": [_posting_dict(p) for p in postings],
            "counts": count_outcomes(postings),
        }

    # === Postings ===

    @app.post("/postings/{posting_id}/retry", status_code=status.HTTP_202_ACCEPTED)
    async def retry_posting(posting_id: str):
        svc = get_services()
        try:
            task = await svc.scheduler.retry_posting(posting_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Posting not found")
        except InvalidTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"posting_id": posting_id, "task_id": task.id, "status": "queued"}

    # === Queue ===

    @app.get("/queue")
    async def queue_status():
        svc = get_services()
        return {
            "stats": svc.scheduler.get_stats(),
            "tasks": [_task_dict(t) for t in svc.scheduler.pending_tasks()],
        }

    # === AI ===

    @app.get("/ai/usage")
    async def ai_usage():
        svc = get_services()
        return {
            "usage": svc.usage.summary(),
            "providers": svc.discovery.get_provider_info() if svc.discovery else None,
        }

    @app.post("/ai/test")
    async def ai_test():
        svc = get_services()
        if svc.discovery is None:
            raise HTTPException(status_code=503, detail="Form discovery is not configured")
        results = await svc.discovery.test_connection()
        for provider, ok in results.items():
            log_ai_request(provider, "validate_api_key", error=None if ok else "key rejected")
        return {"providers": results}

    # === Progress Channel ===

    @app.websocket("/ws/jobs/{job_id}")
    async def job_progress(websocket: WebSocket, job_id: str):
        svc = get_services()
        sub = svc.notifier.subscribe(job_id)
        try:
            await websocket.accept()
            async for event in sub:
                await websocket.send_json(event.to_dict())
                if event.kind == JOB_COMPLETE:
                    await websocket.close()
                    break
        except WebSocketDisconnect:
            logger.debug(f"Progress client for job {job_id} disconnected")
        finally:
            sub.close()

    return app


app = create_app()
