"""
FastAPI main application for the price-negotiation engine.
"""

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import math

from haggle import __version__ as VERSION
from haggle.db import init_store, close_store, get_store
from haggle.error_handling import NegotiationError, RateLimited
from haggle.routers import admin, negotiation

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    logger.info("Starting Haggle negotiation API...")
    await init_store()
    logger.info("Store initialized")

    yield

    # Shutdown
    logger.info("Shutting down Haggle negotiation API...")
    await close_store()


app = FastAPI(
    title="Haggle API",
    description="Rule-governed price negotiation for storefront products",
    version=VERSION,
    lifespan=lifespan
)

# CORS middleware - allow all origins for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NegotiationError)
async def negotiation_error_handler(request: Request, exc: NegotiationError):
    """Translate engine errors into their HTTP status and a stable body"""
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": VERSION,
        "store": type(get_store()).__name__,
    }


app.include_router(negotiation.router, tags=["negotiation"])
app.include_router(admin.router, tags=["admin"])
