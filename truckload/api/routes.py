"""
API route handlers for Truckload.
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request

from truckload.api.models import (
    CredentialRequest,
    CredentialResponse,
    HealthResponse,
    JobStartedResponse,
    JobStatusResponse,
    StartJobRequest,
    VideoStatus,
    WebhookAck,
)
from truckload.config import ENVIRONMENTS, get_settings
from truckload.exceptions import (
    InvalidCredential,
    InvalidEnvironment,
    MigrationError,
    NotFound,
    UnknownPlatform,
)
from truckload.migration import JobRunner, JobStatusTracker, WebhookCorrelator, verify_signature
from truckload.providers import get_adapter
from truckload.store import StorePool

logger = logging.getLogger(__name__)

router = APIRouter()


def get_store_pool(request: Request) -> StorePool:
    return request.app.state.stores


def get_runner(request: Request) -> JobRunner:
    return request.app.state.runner


def get_correlator(request: Request) -> WebhookCorrelator:
    return request.app.state.correlator


def verify_admin_key(x_admin_key: Optional[str] = Header(None)) -> Optional[str]:
    """Verify admin API key for job control endpoints when one is configured."""
    settings = get_settings()
    if settings.admin_api_key and x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing admin key")
    return x_admin_key


@router.post("/webhooks/mux", response_model=WebhookAck)
async def mux_webhook(
    request: Request,
    mux_signature: Optional[str] = Header(None),
    correlator: WebhookCorrelator = Depends(get_correlator),
):
    """
    Receive Mux asset lifecycle events.

    Always answers 200 so Mux stops redelivering events that are not ours;
    `ok` tells whether the event was applied.
    """
    body = await request.body()
    settings = get_settings()

    if settings.mux_webhook_secret and not verify_signature(
        mux_signature,
        body,
        settings.mux_webhook_secret,
        settings.mux_webhook_tolerance_seconds,
    ):
        logger.warning("Rejected webhook with a bad or missing Mux-Signature")
        return WebhookAck(ok=False)

    try:
        event = json.loads(body)
    except ValueError:
        logger.warning("Rejected webhook with a non-JSON body")
        return WebhookAck(ok=False)

    try:
        outcome = await asyncio.to_thread(correlator.handle, event)
    except Exception:
        logger.exception(f"Webhook {event.get('type') if isinstance(event, dict) else None} failed")
        return WebhookAck(ok=False)

    return WebhookAck(ok=outcome.ok)


@router.post("/credentials", response_model=CredentialResponse)
async def validate_credentials(
    request: CredentialRequest,
    stores: StorePool = Depends(get_store_pool),
):
    """
    Check a source credential without touching the source catalog.

    Store-backed platforms read the target environment from the credential's
    `environment` metadata.
    """
    credential = request.to_credential()
    try:
        environment = credential.metadata.get("environment")
        store = stores.get(environment) if environment else None
        adapter = get_adapter(request.platform_id, store)
        await asyncio.to_thread(adapter.validate_credential, credential)
        return CredentialResponse(ok=True)
    except UnknownPlatform as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidEnvironment as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidCredential as e:
        logger.info(f"Credential rejected for {request.platform_id}: {e}")
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Credential validation error")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/jobs", response_model=JobStartedResponse, status_code=202)
async def start_job(
    request: StartJobRequest,
    background_tasks: BackgroundTasks,
    runner: JobRunner = Depends(get_runner),
    _: Optional[str] = Depends(verify_admin_key),
):
    """
    Start (or resume) a migration job.

    The credential is validated before anything is written; the job itself
    runs in the background and is followed through GET /jobs/{job_id}.
    """
    credential = request.to_credential()
    config = request.destination.to_config()

    try:
        if not request.discover_only:
            runner.destination  # Fail fast when the destination is not configured

        if request.resume_job_id:
            job = await asyncio.to_thread(
                runner.reopen_job, request.resume_job_id, credential, request.environment
            )
        else:
            job = await asyncio.to_thread(
                runner.create_job, request.platform_id, credential, request.environment
            )
    except UnknownPlatform as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidEnvironment as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidCredential as e:
        raise HTTPException(status_code=401, detail=str(e))
    except MigrationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        logger.error(f"Cannot start job: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.exception("Job start error")
        raise HTTPException(status_code=500, detail=str(e))

    background_tasks.add_task(
        runner.run, job, credential, config, discover_only=request.discover_only
    )
    return JobStartedResponse(job_id=job.job_id, environment=job.environment, state=job.state)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def job_status(
    job_id: str,
    environment: str = Query(..., description="Environment the job runs in"),
    stores: StorePool = Depends(get_store_pool),
):
    """Job record plus the latest {videoId, status, progress} per video."""
    try:
        store = stores.get(environment)
        job = await asyncio.to_thread(store.get_job, job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

        snapshot = await asyncio.to_thread(JobStatusTracker(store).snapshot, job_id)
        return JobStatusResponse(
            job_id=job.job_id,
            platform_id=job.platform_id,
            environment=job.environment,
            state=job.state,
            error=job.error,
            discovered=job.discovered,
            dispatched=job.dispatched,
            videos=[VideoStatus(**report.to_public()) for report in snapshot.values()],
        )
    except HTTPException:
        raise
    except InvalidEnvironment as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Job status error")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/jobs/{job_id}/abandon", response_model=JobStartedResponse)
async def abandon_job(
    job_id: str,
    environment: str = Query(..., description="Environment the job runs in"),
    runner: JobRunner = Depends(get_runner),
    _: Optional[str] = Depends(verify_admin_key),
):
    """Stop a job's enumeration at the next page boundary."""
    try:
        await asyncio.to_thread(runner.abandon, job_id, environment)
        job = await asyncio.to_thread(runner.stores.get(environment).get_job, job_id)
        return JobStartedResponse(job_id=job.job_id, environment=job.environment, state=job.state)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidEnvironment as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Abandon error")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/health", response_model=HealthResponse)
async def health_check(stores: StorePool = Depends(get_store_pool)):
    """Health check with store reachability per environment."""
    settings = get_settings()
    environments = {}
    for environment in ENVIRONMENTS:
        try:
            environments[environment] = await asyncio.to_thread(stores.get(environment).ping)
        except Exception as e:
            logger.warning(f"Store for {environment} unavailable: {e}")
            environments[environment] = False

    status = "healthy" if all(environments.values()) else "degraded"
    return HealthResponse(
        status=status,
        store_backend=settings.store_backend,
        environments=environments,
    )
