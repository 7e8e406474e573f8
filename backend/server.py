from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import traceback

import httpx
from sqlalchemy import text

from config import Settings, get_settings, get_cors_config
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context, get_request_id
from sentry_integration import init_sentry, capture_exception, set_tag

from database import init_db, create_engine_for_url, create_session_factory
from identity.exceptions import IdentityError, StoreUnavailable
from identity.router import router as identity_router
from services.auth import CredentialIssuer
from services.providers import FacebookTokenVerifier, GoogleTokenVerifier

logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the gateway application.

    Collaborators (engine, session factory, credential issuer, provider
    verifiers) are created in the lifespan and kept on app.state; request
    dependencies read them from there.
    """
    settings = settings or get_settings()

    # Use JSON format in production, plain text in development
    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.is_production,
        service_name="policy-gateway"
    )

    if settings.SENTRY_DSN and init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    ):
        set_tag("service", "policy-gateway")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        logger.info("Starting Policy Holder Gateway...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")

        for error in settings.validate_production_config():
            logger.warning(f"Configuration Warning: {error}")

        engine = create_engine_for_url(settings.DATABASE_URL)
        try:
            await init_db(engine)
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            await engine.dispose()
            raise

        http_client = httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)

        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
        app.state.credential_issuer = CredentialIssuer(
            secret_key=settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=settings.access_token_ttl,
            confirmation_ttl=settings.confirmation_token_ttl
        )
        app.state.http_client = http_client
        app.state.google_verifier = GoogleTokenVerifier(http_client, settings.GOOGLE_CLIENT_ID)
        app.state.facebook_verifier = FacebookTokenVerifier(http_client, settings.FACEBOOK_APP_ID or None)

        logger.info("Policy Holder Gateway started successfully")

        yield

        logger.info("Shutting down Policy Holder Gateway...")
        await http_client.aclose()
        await engine.dispose()

    app = FastAPI(
        title=settings.API_TITLE,
        description="""
    Policy holder signup, confirmation, local and federated login, and
    access to the caller's own policy.

    ### Identity (/api)
    - POST /signup, GET /confirm/{token}
    - POST /login, POST /auth/google, POST /auth/facebook

    ### Policy (/api/policy, bearer token)
    - POST /policy/read - caller's policy or has_policy=false
    - POST /policy - create the caller's policy
    - PATCH /policy - set the Ethereum address
    """,
        version=settings.API_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug_enabled else None,
        redoc_url="/api/redoc" if settings.debug_enabled else None,
    )

    api_router = APIRouter(prefix="/api")

    # ==================== HEALTH CHECK ENDPOINTS ====================

    @api_router.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check for load balancers and uptime monitors.

        Returns:
        - 200: Store reachable
        - 503: Store unavailable
        """
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
            "checks": {}
        }

        try:
            async with request.app.state.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "connected"}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = {"status": "disconnected"}

        if health_status["status"] == "unhealthy":
            raise HTTPException(status_code=503, detail=health_status)

        return health_status

    api_router.include_router(identity_router)
    app.include_router(api_router)

    # ==================== MIDDLEWARE ====================

    app.add_middleware(
        CORSMiddleware,
        **get_cors_config(settings)
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Assign a request ID and log requests with timing information"""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or f"req-{uuid.uuid4().hex[:12]}"
        clear_request_context()
        set_request_context(request_id=request_id)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Request failed: {type(e).__name__}")
            raise

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

        return response

    # ==================== ERROR HANDLING ====================

    @app.exception_handler(IdentityError)
    async def identity_error_handler(request: Request, exc: IdentityError):
        """Map identity errors to their status with a stable error code"""
        request_id = get_request_id()
        headers = {}

        if isinstance(exc, StoreUnavailable):
            logger.error(f"Store unavailable on {request.method} {request.url.path}")
            capture_exception(exc, request_id=request_id, path=request.url.path)
            headers["Retry-After"] = "5"
        elif exc.status_code == 401:
            headers["WWW-Authenticate"] = "Bearer"

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": exc.message,
                "request_id": request_id
            },
            headers=headers
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions"""
        logger.error(f"Unhandled exception: {exc}")
        if settings.debug_enabled:
            logger.error(traceback.format_exc())

        if settings.is_production:
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"}
            )
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__
            }
        )

    return app


app = create_app()
