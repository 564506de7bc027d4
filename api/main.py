"""
Identity Reconciliation Service
FastAPI Application Entry Point

Run with:

    python -m api.main                      # host/port from settings
    uvicorn api.main:app --workers 4        # several worker processes

Several worker processes may share one contact database; the store's
transactions are the only coordination between them.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.routes import identify
from api.services.contact_store import ContactStore
from api.services.identifier_utils import IDENTIFIER_REQUIRED_ERROR
from api.services.resilience import IdentityValidationError, StoreUnavailableError
from config.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - open the contact store, close it on shutdown."""
    from config.settings import settings

    store = ContactStore(db_path=settings.db_path, timeout=settings.store_timeout_seconds)
    store.open()
    app.state.contact_store = store
    logger.info("Identity service started")

    yield  # Application runs here

    store.close()
    app.state.contact_store = None
    logger.info("Identity service stopped")


app = FastAPI(
    title="Identity Reconciliation",
    description="Consolidates contact emails and phone numbers into linked identities",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(identify.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies carry no usable identifier."""
    logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"error": IDENTIFIER_REQUIRED_ERROR}
    )


@app.exception_handler(IdentityValidationError)
async def identity_validation_handler(request: Request, exc: IdentityValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": exc.message}
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error(f"Contact store unavailable: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": identify.INTERNAL_ERROR}
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Anything that escapes a route or dependency becomes a bare 500."""
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": identify.INTERNAL_ERROR}
    )


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint that verifies the contact store answers."""
    store = getattr(request.app.state, "contact_store", None)

    checks = {
        "contact_store": bool(store is not None and store.ping()),
    }

    all_healthy = all(checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "service": "identity-reconciliation",
        "checks": checks,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.host, port=settings.port)
