from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from starlette.concurrency import run_in_threadpool

from kiosk.api import deps
from kiosk.api.routes import router
from kiosk.api.admin_routes import router as admin_router
from kiosk.core.errors import KioskError
from kiosk.core.registry import SurfaceClaimed
from kiosk.observability.logging import log
from kiosk.queue.jobs import enqueue_replay
from kiosk.realtime.status import TransactionStatusListener
from kiosk.settings import settings


async def replay_on_recovery() -> None:
    """Drain the offline queue as soon as the backend answers again."""
    try:
        await run_in_threadpool(enqueue_replay)
    except RedisError as e:
        log(event="replay_on_recovery_failed", errorType=type(e).__name__, error=str(e)[:200])


@asynccontextmanager
async def lifespan(app: FastAPI):
    connectivity = deps.get_connectivity()
    if replay_on_recovery not in connectivity.on_recovered:
        connectivity.on_recovered.append(replay_on_recovery)
    connectivity.start()
    registry = deps.get_registry()
    registry.start_claim_refresh()
    listener = None
    if settings.REALTIME_LISTENER_ENABLED:
        listener = TransactionStatusListener(registry)
        listener.start()
    log(event="kiosk_api_started", executionMode=settings.EXECUTION_MODE, offlineMode=settings.OFFLINE_MODE)
    try:
        yield
    finally:
        if listener is not None:
            await listener.stop()
        await connectivity.stop()
        await deps.shutdown()


app = FastAPI(title="Kiosk Scan Flow API", lifespan=lifespan)

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"status": "ok", "message": "Kiosk API is running. Open a surface with POST /kiosk/{surface}/{kioskId}/open."}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.exception_handler(KioskError)
async def kiosk_error_handler(request: Request, exc: KioskError):
    status_code = 409 if isinstance(exc, SurfaceClaimed) else 400
    log(event="api_kiosk_error", path=request.url.path, category=exc.category, message=exc.message)
    return JSONResponse(status_code=status_code, content={"status": "error", "error": exc.to_dict()})
