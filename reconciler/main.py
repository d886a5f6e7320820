from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reconciler import services
from reconciler.database import Base, engine
from reconciler.errors import ReconcilerError
from reconciler.logging_config import setup_logging
from reconciler.polling import PollingScheduler
from reconciler.routes import router
from reconciler.webhooks import router as webhook_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.scheduler = PollingScheduler(services.build_reconciler())
    try:
        yield
    finally:
        app.state.scheduler.shutdown()


setup_logging()

app = FastAPI(title="Payment Reconciler", lifespan=lifespan)

app.include_router(router)
app.include_router(webhook_router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(ReconcilerError)
async def reconciler_error_handler(request: Request, exc: ReconcilerError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
        provider=exc.provider,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
