"""
Login Guard - Main API Server
FastAPI application that puts brute-force protection in front of password
login.

Features:
- Per-address failed attempt counting (memory, Redis or Supabase store)
- CAPTCHA escalation and timed lockout
- Edge interception of locked addresses before any credential check
- Lockout status endpoint for the login page
- Admin reset of attempt records
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file BEFORE other imports
load_dotenv()

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from config.loader import GuardConfig, get_config
from loginguard.api import include_routers
from loginguard.middleware.login_guard_middleware import LoginGuardMiddleware
from loginguard.middleware.request_id_middleware import RequestIdMiddleware
from loginguard.services.credential_verifier import CredentialVerifier, SupabaseCredentialVerifier
from loginguard.services.rate_limit_gate import RateLimitGate, build_gate
from loginguard.utils.clock import Clock
from loginguard.utils.error_handler import DEGRADED_HEADER
from loginguard.utils.structured_logger import get_logger, setup_structured_logging

setup_structured_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=os.getenv("LOG_JSON", "true").lower() == "true",
)
logger = get_logger(__name__)


def get_cors_origins() -> list:
    """Get allowed CORS origins from environment or use defaults."""
    env_origins = os.getenv("CORS_ORIGINS", "")
    if env_origins:
        return [origin.strip() for origin in env_origins.split(",") if origin.strip()]

    return [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


def build_verifier(config: GuardConfig) -> Optional[CredentialVerifier]:
    """Supabase password sign-in, or None when Supabase is not configured."""
    key = config.supabase_anon_key or config.supabase_service_key
    if not (config.supabase_url and key):
        logger.warning("SUPABASE_URL not configured - login endpoint will answer 500")
        return None
    return SupabaseCredentialVerifier(config.supabase_url, key)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(
    config: Optional[GuardConfig] = None,
    gate: Optional[RateLimitGate] = None,
    verifier: Optional[CredentialVerifier] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Guard configuration (defaults to get_config())
        gate: Pre-built gate, e.g. with an in-memory store and manual clock
        verifier: Credential verifier (defaults to Supabase Auth when configured)
        clock: Time source for a gate built here
    """
    config = config or get_config()
    gate = gate or build_gate(config, clock=clock)
    if verifier is None:
        verifier = build_verifier(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        logger.info(
            "Starting Login Guard...",
            extra={"config": config.to_dict(), "store": gate.store.backend},
        )
        yield
        logger.info("Shutting down...")

    app = FastAPI(
        title="Login Guard",
        description="Brute-force protection for password login",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.gate = gate
    app.state.verifier = verifier
    app.state.default_locale = config.default_locale
    app.state.trust_proxy_headers = config.trust_proxy_headers

    # ==================== Middleware Setup ====================
    # NOTE: FastAPI middleware runs in REVERSE order of addition.
    # Last added = first to process requests.

    # 1. Login guard - denies locked addresses before any route runs
    app.add_middleware(
        LoginGuardMiddleware,
        gate=gate,
        login_paths=config.login_paths,
        trust_proxy_headers=config.trust_proxy_headers,
        default_locale=config.default_locale,
    )

    # 2. Request ID - every log line of the request carries the ID
    app.add_middleware(RequestIdMiddleware, trust_proxy_headers=config.trust_proxy_headers)

    # 3. CORS middleware - MUST be added LAST so it runs FIRST
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After", DEGRADED_HEADER],
    )

    # ==================== Health Endpoints ====================

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint for load balancers"""
        return {"status": "healthy", "timestamp": _timestamp()}

    @app.get("/health/live")
    async def liveness_check():
        """
        Liveness check - verifies the application is running.
        Use for Kubernetes liveness probes.
        """
        return {"status": "alive", "timestamp": _timestamp()}

    @app.get("/health/ready")
    async def readiness_check():
        """
        Readiness check - attempt store and circuit breaker state.

        A degraded store still answers 200: logins keep working (fail open),
        the body says so.
        """
        status = await run_in_threadpool(gate.status)
        return {
            "status": "degraded" if status["degraded"] else "ready",
            "checks": status,
            "timestamp": _timestamp(),
        }

    include_routers(app)

    # ==================== Error Handlers ====================

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"}
        )

    return app


app = create_app()


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    host = os.getenv("HOST", "127.0.0.1")
    reload = os.getenv("RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload={reload})")

    uvicorn.run(
        "main:app" if reload else app,
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )
