"""Scheduler management API routes."""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from scheduler.scheduler import JOB_FUNCTIONS, PipelineScheduler, get_crawl_cursor, get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter()


class JobResponse(BaseModel):
    """Response model for a scheduled job."""

    id: str
    name: str
    next_run: Optional[str]
    trigger: str
    pending: bool


class JobListResponse(BaseModel):
    """Response model for job list."""

    jobs: list[JobResponse]
    total: int
    scheduler_running: bool
    scheduler_available: bool


class AddJobRequest(BaseModel):
    """Request model for scheduling a pipeline job."""

    job_name: str
    interval_minutes: Optional[int] = 60
    cron_expression: Optional[str] = None
    limit: Optional[int] = None


class JobActionResponse(BaseModel):
    """Response for job actions."""

    success: bool
    message: str
    job_id: str


def _available_scheduler() -> PipelineScheduler:
    scheduler = get_scheduler()
    if not scheduler.is_available:
        raise HTTPException(status_code=503, detail="Scheduler not available")
    return scheduler


def _job_action(job_id: str, action: Callable[[str], bool], done: str) -> JobActionResponse:
    if not action(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    return JobActionResponse(success=True, message=f"Job {job_id} {done}", job_id=job_id)


@router.get("/scheduler/status")
async def get_scheduler_status():
    """Get scheduler status and the position of the scheduled crawl."""
    scheduler = get_scheduler()
    return {
        "available": scheduler.is_available,
        "running": scheduler.is_running,
        "total_jobs": len(scheduler.get_jobs()) if scheduler.is_available else 0,
        "crawl_cursor": get_crawl_cursor(),
    }


@router.get("/scheduler/jobs", response_model=JobListResponse)
async def get_scheduled_jobs():
    """Get all scheduled jobs."""
    scheduler = get_scheduler()
    jobs = scheduler.get_jobs()

    return JobListResponse(
        jobs=[JobResponse(**j) for j in jobs],
        total=len(jobs),
        scheduler_running=scheduler.is_running,
        scheduler_available=scheduler.is_available,
    )


@router.get("/scheduler/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str):
    """Get a specific job by ID."""
    job = _available_scheduler().get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobResponse(**job)


@router.post("/scheduler/jobs", response_model=JobActionResponse)
async def add_job(request: AddJobRequest):
    """Schedule one of the pipeline jobs."""
    scheduler = _available_scheduler()

    if request.job_name not in JOB_FUNCTIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown job: {request.job_name}. Available: {list(JOB_FUNCTIONS)}",
        )

    func, arg_names = JOB_FUNCTIONS[request.job_name]
    kwargs = {"limit": request.limit} if request.limit and "limit" in arg_names else {}
    job_id = scheduler.add_pipeline_job(
        name=request.job_name,
        func=func,
        interval_minutes=request.interval_minutes,
        cron_expression=request.cron_expression,
        **kwargs,
    )

    if not job_id:
        raise HTTPException(status_code=500, detail="Failed to add job")

    return JobActionResponse(
        success=True,
        message=f"Job {job_id} added successfully",
        job_id=job_id,
    )


@router.delete("/scheduler/jobs/{job_id}", response_model=JobActionResponse)
async def remove_job(job_id: str):
    """Remove a scheduled job."""
    return _job_action(job_id, _available_scheduler().remove_job, "removed")


@router.post("/scheduler/jobs/{job_id}/pause", response_model=JobActionResponse)
async def pause_job(job_id: str):
    """Pause a scheduled job."""
    return _job_action(job_id, _available_scheduler().pause_job, "paused")


@router.post("/scheduler/jobs/{job_id}/resume", response_model=JobActionResponse)
async def resume_job(job_id: str):
    """Resume a paused job."""
    return _job_action(job_id, _available_scheduler().resume_job, "resumed")


@router.post("/scheduler/jobs/{job_id}/run", response_model=JobActionResponse)
async def run_job_now(job_id: str):
    """Trigger immediate execution of a job."""
    return _job_action(job_id, _available_scheduler().run_job_now, "triggered for immediate execution")


@router.post("/scheduler/start")
async def start_scheduler():
    """Start the scheduler."""
    if _available_scheduler().start():
        return {"status": "started", "message": "Scheduler started successfully"}

    raise HTTPException(status_code=500, detail="Failed to start scheduler")


@router.post("/scheduler/stop")
async def stop_scheduler():
    """Stop the scheduler."""
    _available_scheduler().shutdown(wait=False)
    return {"status": "stopped", "message": "Scheduler stopped"}
