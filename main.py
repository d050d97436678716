"""
FastAPI Application for the Clinic Front Desk.

Exposes the schedule, appointment and feedback API used by receptionists
and admins.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings

# Import shared Cosmos DB configuration
from shared.cosmos_config import COSMOS_ENDPOINT, DATABASE_NAME

from auth import create_session
from core.data import ConcurrencyConflict, NotFoundError
from core.domain import PreconditionViolation
from use_cases.clinic import ClinicService, router as clinic_router
from use_cases.clinic.data import ClinicRepository, InMemoryClinicRepository
from use_cases.clinic.data.cosmos_client import get_clinic_client
from use_cases.clinic.data.sample import DOCTORS, PATIENTS, build_schedules

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Reduce Azure SDK logging verbosity
logging.getLogger("azure.cosmos").setLevel(logging.WARNING)
logging.getLogger("azure.core").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)


def build_repository() -> ClinicRepository:
    """Select the persistence backend from DATA_BACKEND."""
    if settings.data_backend == "memory":
        repository = InMemoryClinicRepository()
        if settings.seed_sample_data:
            repository.seed(DOCTORS, PATIENTS, build_schedules())
        logger.info("Using in-memory clinic store")
        return repository

    # Eager-load the Cosmos client at startup to avoid a delay on the first request
    repository = get_clinic_client(max_write_attempts=settings.cosmos_max_write_attempts)
    logger.info(f"Clinic Cosmos DB client ready: {COSMOS_ENDPOINT} / {DATABASE_NAME}")
    return repository


def build_service(repository: ClinicRepository) -> ClinicService:
    return ClinicService(
        repository,
        clinic_timezone=settings.clinic_timezone,
        cancellation_notice_hours=settings.cancellation_notice_hours,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    logger.info("Starting Clinic Front Desk Application...")

    app.state.clinic_service = build_service(build_repository())
    logger.info(
        f"Clinic service initialized (timezone={settings.clinic_timezone}, "
        f"cancellation notice={settings.cancellation_notice_hours}h)"
    )

    if settings.bootstrap_admin_token:
        create_session(
            {"id": "bootstrap-admin", "name": "Bootstrap Admin", "role": "ADMIN"},
            token=settings.bootstrap_admin_token,
        )

    yield

    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Clinic Front Desk",
    description="Schedules, appointment booking and patient feedback for clinic reception staff",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(clinic_router)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"success": False, "message": str(exc)})


@app.exception_handler(PreconditionViolation)
async def precondition_handler(request: Request, exc: PreconditionViolation):
    logger.warning(f"Rejected malformed input on {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})


@app.exception_handler(ConcurrencyConflict)
async def concurrency_handler(request: Request, exc: ConcurrencyConflict):
    logger.warning(f"Write contention on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=409,
        content={"success": False, "message": "The record was changed concurrently, please retry"},
    )


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.error(f"Error processing {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Server error while processing the request"},
    )


# =============================================================================
# SERVICE ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "use_case": "clinic_front_desk",
        "data_backend": settings.data_backend,
    }


@app.get("/api/branding")
async def get_branding():
    """Return branding configuration for the frontend."""
    return {
        "name": settings.brand_name,
        "tagline": settings.brand_tagline,
        "logoUrl": settings.brand_logo_url,
        "primaryColor": settings.brand_primary_color,
        "faviconUrl": settings.brand_favicon_url,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=False,
        log_level=settings.log_level.lower()
    )
