from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
import time
import logging
import os

from .api.v1 import admin, appointments, auth, health_records, profiles
from .core.config import settings
from .core.database import SessionLocal, init_db
from .core.errors import ClinicError, ValidationError
from .services.identity_service import IdentityStore

# Register every table on Base.metadata before init_db runs
from .models import account, appointment, doctor, health_record, patient  # noqa: F401

API_PREFIX = "/api/v1"

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Patient and doctor profiles, appointment scheduling and health records",
    openapi_url=f"{API_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# TestClient sends its own host header
if not os.getenv("TESTING"):
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost"]
    )

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed:.4f}s")
    return response

# Every business-rule failure leaves as {"error": kind, "message": text}
@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError(
        "Request body or parameters are invalid",
        details={"errors": jsonable_encoder(exc.errors())}
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=404,
        content={
            "error": "NotFound",
            "message": f"No route for {request.method} {request.url.path}"
        }
    )

@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "message": "An unexpected error occurred"}
    )

for module in (auth, profiles, appointments, health_records, admin):
    app.include_router(module.router, prefix=API_PREFIX)

@app.on_event("startup")
async def startup_event():
    """Create tables and the bootstrap admin account."""
    db_url = settings.get_database_url
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION} on {db_url.split(':', 1)[0]}")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    db = SessionLocal()
    try:
        IdentityStore(db).ensure_bootstrap_admin()
    finally:
        db.close()

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION
    }

@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "docs": "/docs",
        "health": "/health",
        "api": f"{API_PREFIX}/info"
    }

@app.get(f"{API_PREFIX}/info")
async def api_info():
    """Entry points of each router."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "authentication": f"{API_PREFIX}/auth",
            "profiles": f"{API_PREFIX}/profiles",
            "patients": f"{API_PREFIX}/patients",
            "doctors": f"{API_PREFIX}/doctors",
            "appointments": f"{API_PREFIX}/appointments",
            "health_records": f"{API_PREFIX}/health-records",
            "admin": f"{API_PREFIX}/admin",
            "openapi": f"{API_PREFIX}/openapi.json"
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clinic.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
