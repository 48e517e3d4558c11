from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool

from entitlement_client import __version__
from entitlement_client.config import settings
from entitlement_client.database import init_db
from entitlement_client.diagnostics import detect_host
from entitlement_client.errors import InvalidProvider
from entitlement_client.logging_config import configure_logging
from entitlement_client.models import (
    DeactivateResponse,
    EntitlementStatusResponse,
    HealthCheckResponse,
    NoticeResponse,
    ProviderChoicesResponse,
    ProviderSwitchRequest,
    RequestContext,
    ValidationAttemptsResponse,
)
from entitlement_client.scheduler import SchedulerHandle, initialize
from entitlement_client.store import EntitlementStore
from entitlement_client.timers import APSchedulerTimers

timers = APSchedulerTimers()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    if settings.PRODUCT_ID:
        # The first check blocks on the network
        app.state.handle = await run_in_threadpool(
            initialize,
            settings.PRODUCT_ID,
            settings.PRODUCT_VERSION,
            settings.PRODUCT_DISPLAY_NAME or settings.PRODUCT_ID,
            sellers=settings.SELLERS,
            default_provider=settings.DEFAULT_PROVIDER,
            store=EntitlementStore(),
            timers=timers,
            host_platform_version=settings.HOST_PLATFORM_VERSION,
        )
    timers.start()
    yield
    timers.shutdown()
    handle = getattr(app.state, "handle", None)
    if handle is not None:
        handle.close()


app = FastAPI(
    title="Entitlement Client Service",
    description="Caches and exposes the entitlement verdict of a licensed add-on",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_handle(request: Request) -> SchedulerHandle:
    handle = getattr(request.app.state, "handle", None)
    if handle is None:
        raise HTTPException(status_code=503, detail="No product is registered")
    return handle


def get_request_context(request: Request, action: str = "") -> RequestContext:
    return RequestContext(host=detect_host(request.headers), action=action)


def _status(handle: SchedulerHandle) -> EntitlementStatusResponse:
    record = handle.record()
    return EntitlementStatusResponse(
        productId=record.product_id,
        entitled=record.verified,
        state=record.state,
        provider=record.provider,
        sellerSite=record.seller_site,
        failureMessage=record.error_message,
        lastCheckedAt=record.last_checked_at.isoformat() if record.last_checked_at else None,
        licensedItemMeta=record.licensed_item_meta,
    )


# API Endpoints
@app.get("/api/entitlement/status", response_model=EntitlementStatusResponse)
def get_status(
    handle: SchedulerHandle = Depends(get_handle),
    context: RequestContext = Depends(get_request_context),
):
    """
    Get the cached entitlement verdict.

    Counts as a host event: an unverified product is validated before
    answering, unless the request carries a lightweight action such as
    ``?action=heartbeat``.
    """
    handle.on_request(context)
    return _status(handle)


@app.post("/api/entitlement/validate", response_model=EntitlementStatusResponse)
def validate_now(
    handle: SchedulerHandle = Depends(get_handle),
    context: RequestContext = Depends(get_request_context),
):
    """
    Validate with the selected provider right away, regardless of the cache.
    """
    handle.validate_now(context)
    return _status(handle)


@app.get("/api/entitlement/providers", response_model=ProviderChoicesResponse)
def list_providers(handle: SchedulerHandle = Depends(get_handle)):
    """
    Selectable providers. Empty when only one seller is configured.
    """
    return {"choices": handle.provider_choices()}


@app.post("/api/entitlement/provider", response_model=EntitlementStatusResponse)
def switch_provider(
    request: ProviderSwitchRequest,
    handle: SchedulerHandle = Depends(get_handle),
):
    """
    Switch to another allowed provider and re-validate against it immediately.
    """
    try:
        handle.switch_provider(request.provider)
    except InvalidProvider as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _status(handle)


@app.get("/api/entitlement/notice", response_model=NoticeResponse)
def get_notice(handle: SchedulerHandle = Depends(get_handle)):
    """
    The warning banner text for the host UI, if one should be shown.
    """
    message = handle.notice()
    return {"show": message is not None, "message": message}


@app.get("/api/entitlement/attempts", response_model=ValidationAttemptsResponse)
def list_attempts(limit: int = 20, handle: SchedulerHandle = Depends(get_handle)):
    return {"attempts": handle.recent_attempts(limit)}


@app.post("/api/entitlement/deactivate", response_model=DeactivateResponse)
def deactivate(handle: SchedulerHandle = Depends(get_handle)):
    """
    Cancel the recurring check, e.g. when the host product is deactivated.
    """
    handle.on_deactivate()
    return {"success": True, "scheduled": handle.is_scheduled()}


@app.get("/health", response_model=HealthCheckResponse)
def health_check(request: Request):
    """
    Health check endpoint for container orchestration.
    """
    handle = getattr(request.app.state, "handle", None)
    return {
        "status": "healthy",
        "service": "entitlement-client",
        "version": __version__,
        "productId": handle.product_id if handle else None,
        "recurringCheckArmed": handle.is_scheduled() if handle else None,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
