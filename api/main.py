import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assets import repository as asset_repository
from assets import router as assets_router
from core import VERSION, db, ledger
from core.settings import Settings, load_settings
from holders import router as holders_router
from holders.repository import HolderStore
from sync.worker import SyncWorker

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_worker(settings: Settings, pool) -> SyncWorker:
    return SyncWorker(
        list_assets=partial(asset_repository.list_asset_addresses, executor=pool),
        store=HolderStore(pool),
        fetch=lambda asset_address: ledger.fetch_token_accounts(
            rpc_url=settings.ledger_rpc_url,
            asset_address=asset_address,
            timeout_s=settings.ledger_timeout_s,
        ),
        interval_s=settings.sync_interval_s,
        inter_asset_delay_s=settings.sync_inter_asset_delay_s,
        single_flight=settings.sync_single_flight,
        fetch_retries=settings.sync_fetch_retries,
        retry_backoff_s=settings.sync_retry_backoff_s,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info(
        "service_starting version=%s ledger=%s interval_s=%s",
        VERSION,
        settings.ledger_rpc_url,
        settings.sync_interval_s,
    )

    # Initialize the DB pool once per process.
    pool = await db.init_pool(
        settings.database_url,
        min_size=settings.db_pool_min,
        max_size=settings.db_pool_max,
    )
    worker = build_worker(settings, pool) if settings.sync_enabled else None
    app.state.worker = worker
    if worker is not None:
        worker.start()
    try:
        yield
    finally:
        if worker is not None:
            await worker.stop(grace_s=settings.shutdown_grace_s)
        await db.close_pool()
        logger.info("service_stopped")


app = FastAPI(title="holder-mirror", version=VERSION, lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def http_error_envelope(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_envelope(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors and errors[0].get("type") == "json_invalid":
        message = "Invalid JSON format."
    else:
        message = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}" for err in errors
        ) or "Invalid request."
    return JSONResponse(status_code=400, content={"success": False, "error": message})


app.include_router(holders_router.router, tags=["holders"])
app.include_router(assets_router.router, tags=["assets"])


@app.get("/health")
def health(request: Request) -> dict:
    worker = getattr(request.app.state, "worker", None)
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "version": VERSION,
            "sync": worker.status() if worker is not None else None,
        },
    }


if __name__ == "__main__":
    import uvicorn

    _settings = load_settings()
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=_settings.listen_port,
        timeout_graceful_shutdown=int(_settings.shutdown_grace_s),
    )
