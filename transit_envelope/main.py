"""
GDPR admin API for subject-scoped envelope encryption.

Exposes erasure and key introspection over HTTP. The transit client and both
materials providers are created at startup and share one connection pool.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from transit_envelope.config import TransitCryptoConfiguration, settings
from transit_envelope.middleware.logging import RequestLoggingMiddleware
from transit_envelope.routes import health, subjects
from transit_envelope.services.encryption_providers import (
    TransitDecryptingMaterialsProvider,
    TransitEncryptingMaterialsProvider,
)
from transit_envelope.services.transit_client import TransitKeyClient
from transit_envelope.utils.logger import get_logger, setup_logging

setup_logging()
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting transit envelope encryption service")
    logger.info(f"Log level: {settings.LOG_LEVEL}")

    app.state.transit_client = None
    app.state.encrypting_provider = None
    app.state.decrypting_provider = None

    if settings.transit_configured:
        try:
            config = TransitCryptoConfiguration.from_settings(settings)
        except ValueError as e:
            logger.error(f"Invalid transit configuration: {e}")
            raise RuntimeError(f"Cannot start application with invalid transit configuration: {e}") from e

        client = TransitKeyClient(
            config,
            max_connections=settings.TRANSIT_POOL_MAX_CONNECTIONS,
            max_keepalive_connections=settings.TRANSIT_POOL_MAX_KEEPALIVE,
        )
        app.state.transit_client = client
        app.state.encrypting_provider = TransitEncryptingMaterialsProvider(client)
        app.state.decrypting_provider = TransitDecryptingMaterialsProvider(client)
        logger.info("Transit client initialized", base_url=config.base_url)
    else:
        logger.warning("TRANSIT_ENDPOINT or TRANSIT_TOKEN not set, subject key routes disabled")

    yield

    logger.info("Shutting down transit envelope encryption service")
    for name in ("encrypting_provider", "decrypting_provider"):
        provider = getattr(app.state, name, None)
        if provider is not None:
            await provider.aclose()
    if app.state.transit_client is not None:
        await app.state.transit_client.aclose()
        logger.info("Transit client closed")


# Create FastAPI application
app = FastAPI(
    title="Transit Envelope Encryption Service",
    description="GDPR tooling for subject-scoped envelope encryption backed by a transit key service",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(subjects.router)


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint redirect to docs."""
    return {
        "message": "Transit Envelope Encryption Service",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "transit_envelope.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower()
    )
