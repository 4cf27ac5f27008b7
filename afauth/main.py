"""FastAPI application entry point"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded

from afauth import __version__
from afauth.api import auth, github_token, health, tokens
from afauth.config import settings
from afauth.database import close_db
from afauth.errors import APIError, ErrorCode
from afauth.middleware.rate_limit import limiter
from afauth.middleware.security_headers import SecurityHeadersMiddleware
from afauth.services.ephemeral_store import close_ephemeral_store
from afauth.services.github_oauth import close_github_client
from afauth.services.jwt_service import get_public_key_pem
from afauth.utils.encryption import is_encryption_configured
from afauth.utils.logger import logger, setup_logging

# Setup logging
setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("AF Auth starting up", extra={
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "log_level": settings.LOG_LEVEL,
        "rate_limiting": settings.RATE_LIMIT_ENABLED,
        "monitoring": settings.METRICS_ENABLED,
    })
    # Fails fast in production when no signing key is configured
    get_public_key_pem()
    if not is_encryption_configured():
        if settings.is_production:
            raise RuntimeError("GITHUB_TOKEN_ENCRYPTION_KEY must be at least 32 characters")
        logger.warning("GITHUB_TOKEN_ENCRYPTION_KEY is not configured; GitHub tokens cannot be stored")
    yield
    # Shutdown
    await close_github_client()
    await close_ephemeral_store()
    await close_db()
    logger.info("AF Auth shutting down")


# Create FastAPI app
app = FastAPI(
    title=settings.SERVICE_NAME,
    description="GitHub OAuth identity broker issuing JWTs and brokering GitHub tokens to trusted services",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ===== Middleware Setup =====

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security headers and CSP nonce
app.add_middleware(SecurityHeadersMiddleware)

# Monitoring middleware
if settings.METRICS_ENABLED:
    from afauth.middleware.monitoring import MonitoringMiddleware
    app.add_middleware(MonitoringMiddleware)

    # Prometheus metrics
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=[settings.METRICS_PATH, "/health", "/health/ready", "/health/live"],
        inprogress_name="afauth_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint=settings.METRICS_PATH, include_in_schema=False)

# Rate limiting
app.state.limiter = limiter

# ===== Route Setup =====

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(tokens.router)
app.include_router(github_token.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "service": settings.SERVICE_NAME,
        "version": __version__,
        "status": "operational",
        "login": "/auth/github",
        "health": "/health",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None,
    }


# ===== Error Handlers =====

def _error(status_code: int, code: ErrorCode, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code.value, "message": message, **extra})


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report which fields failed, never the submitted values"""
    fields = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    logger.warning(
        "Request validation failed",
        extra={"path": request.url.path, "method": request.method, "count": len(fields)},
    )
    return _error(400, ErrorCode.VALIDATION_ERROR, "Request validation failed", details=fields)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors"""
    logger.warning(
        "Rate limit exceeded",
        extra={"path": request.url.path, "method": request.method},
    )
    return _error(429, ErrorCode.RATE_LIMIT_EXCEEDED, "Too many requests. Please try again later.")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for uncaught errors"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )
    return _error(500, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred. Please try again later.")
