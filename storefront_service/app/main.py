import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.auth import router as auth_router
from .api.v1.health import router as health_router
from .api.v1.orders import router as orders_router
from .core.settings import StorefrontSettings, get_settings
from .middleware.auth import setup_storefront_auth_middleware
from .middleware.error import setup_storefront_error_handling
from .repository.memory_backend import InMemoryOrderBackend
from .repository.order_backend import HttpOrderBackend, OrderBackend
from .services.rate_limiter import RedisMarkerStore
from .utils.jwt_handler import JWTHandler
from .utils.logging import setup_storefront_logging

settings = get_settings()

# File logging only where logs are collected from disk
enable_file_logging = settings.ENVIRONMENT.lower() in ["production", "staging"]

logger = setup_storefront_logging(
    "storefront_service",
    log_level=settings.LOG_LEVEL,
    enable_file_logging=enable_file_logging,
)


def build_order_backend(app_settings: StorefrontSettings) -> OrderBackend:
    """Create the commerce backend collaborator selected by ``BACKEND_MODE``"""
    if app_settings.BACKEND_MODE == "memory":
        return InMemoryOrderBackend.with_demo_data()
    if app_settings.BACKEND_MODE == "http":
        return HttpOrderBackend(
            app_settings.COMMERCE_BACKEND_URL,
            timeout=app_settings.BACKEND_TIMEOUT_SECONDS,
            max_connections=app_settings.BACKEND_MAX_CONNECTIONS,
        )
    raise ValueError(f"Unsupported BACKEND_MODE: {app_settings.BACKEND_MODE}")


# Lifespan context manager for startup and shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    startup_start = time.time()
    app_settings: StorefrontSettings = app.state.settings

    logger.info(
        "Storefront service started successfully",
        extra={
            "environment": app_settings.ENVIRONMENT,
            "debug_mode": app_settings.DEBUG,
            "backend_mode": app_settings.BACKEND_MODE,
            "rate_limit_store": app_settings.RATE_LIMIT_STORE,
            "file_logging_enabled": enable_file_logging,
            "service_version": app_settings.APP_VERSION,
            "total_startup_duration_ms": int((time.time() - startup_start) * 1000),
        },
    )

    yield

    shutdown_start = time.time()
    try:
        logger.info("Starting storefront service shutdown")

        await app.state.order_backend.close()

        redis_store = app.state.redis_marker_store
        if redis_store is not None:
            await redis_store.close()

        logger.info(
            "Storefront service shutdown completed",
            extra={"shutdown_duration_ms": int((time.time() - shutdown_start) * 1000)},
        )

    except Exception as e:
        logger.error(
            "Error during storefront service shutdown",
            exc_info=True,
            extra={
                "shutdown_duration_ms": int((time.time() - shutdown_start) * 1000),
                "error_type": type(e).__name__,
            },
        )
        raise


def create_app(
    app_settings: Optional[StorefrontSettings] = None,
    order_backend: Optional[OrderBackend] = None,
) -> FastAPI:
    app_settings = app_settings or settings

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        debug=app_settings.DEBUG,
        lifespan=lifespan,
        openapi_url="/openapi.json" if app_settings.DEBUG else None,
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
    )

    # Shared collaborators
    jwt_handler = JWTHandler(
        secret_key=app_settings.SECRET_KEY, algorithm=app_settings.JWT_ALGORITHM
    )
    app.state.settings = app_settings
    app.state.jwt_handler = jwt_handler
    app.state.order_backend = order_backend or build_order_backend(app_settings)
    app.state.redis_marker_store = (
        RedisMarkerStore.from_url(app_settings.REDIS_URL)
        if app_settings.RATE_LIMIT_STORE == "redis"
        else None
    )

    # === MIDDLEWARE STACK (last added runs first) ===

    # 1. Authentication middleware (optional identity, correlation id)
    setup_storefront_auth_middleware(
        app,
        jwt_handler=jwt_handler,
        exclude_paths=[
            "/health",
            f"{app_settings.API_V1_PREFIX}/health",
            "/docs",
            "/redoc",
            "/openapi.json",
        ],
    )
    logger.info("Authentication middleware configured")

    # 2. CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=app_settings.CORS_CREDENTIALS,
        allow_methods=app_settings.CORS_METHODS,
        allow_headers=app_settings.CORS_HEADERS,
    )

    logger.info(
        "CORS middleware configured",
        extra={
            "allowed_origins": len(app_settings.CORS_ORIGINS),
            "credentials_allowed": app_settings.CORS_CREDENTIALS,
        },
    )

    # 3. Error handling
    setup_storefront_error_handling(app, debug=app_settings.DEBUG)

    # Include routers
    routers_info: list[dict[str, Any]] = []
    prefix = app_settings.API_V1_PREFIX

    app.include_router(health_router, tags=["Health"])
    app.include_router(health_router, prefix=prefix, tags=["Health"])
    routers_info.append({"router": "health", "prefix": "", "tags": ["Health"]})

    app.include_router(orders_router, prefix=prefix, tags=["Order Lifecycle"])
    routers_info.append(
        {"router": "orders", "prefix": prefix, "tags": ["Order Lifecycle"]}
    )

    app.include_router(auth_router, prefix=prefix, tags=["Account Recovery"])
    routers_info.append(
        {"router": "auth", "prefix": prefix, "tags": ["Account Recovery"]}
    )

    logger.info(
        "API routes configured",
        extra={"total_routers": len(routers_info), "routers": routers_info},
    )

    return app


app = create_app()
