"""
Deal Contract Engine API.

Creator-brand deals move through brand response, contract generation and OTP-verified e-signing.
All persistence is MongoDB (see database.py); routers live in routes/.
"""
from contextlib import asynccontextmanager
from pathlib import Path
import logging
import os
import uuid

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import database
from middleware import correlation_id_middleware, get_correlation_id
from routes import deals, esign, otp

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Deal Contract Engine starting")
    if not (os.getenv("OTP_PEPPER") or "").strip():
        logger.error("OTP_PEPPER is not set. Signing codes cannot be issued or verified.")
    if not os.getenv("POSTMARK_SERVER_TOKEN"):
        logger.warning("POSTMARK_SERVER_TOKEN is not set. OTP emails will only be logged.")
    await database.connect()
    try:
        yield
    finally:
        logger.info("Deal Contract Engine stopping")
        await database.close()


app = FastAPI(
    title="Deal Contract Engine API",
    description="Creator-brand deal lifecycle, contract generation and OTP e-signing",
    version="1.0.0",
    lifespan=lifespan
)

app.middleware("http")(correlation_id_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=[o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)

for router_module in (deals, otp, esign):
    app.include_router(router_module.router)


@app.get("/api")
async def root():
    return {"service": "Deal Contract Engine", "status": "running"}


@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "database": "connected" if database.get_db() is not None else "disconnected",
        "environment": os.getenv("ENVIRONMENT", "development"),
    }


def jsonable_errors(errors):
    """Pydantic error dicts may carry exception objects in ctx."""
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = get_correlation_id(request) or str(uuid.uuid4())
    errors = jsonable_errors(exc.errors())
    logger.warning(
        "Request validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(status_code=422, content={"detail": errors, "request_id": request_id})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"[{get_correlation_id(request)}] Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8001")),
        reload=os.getenv("ENVIRONMENT") == "development"
    )
