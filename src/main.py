"""FastAPI application for the checkout orchestrator."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.middleware.error_handler import error_handler_middleware, request_validation_handler
from src.api.middleware.latency_logging import latency_logging_middleware
from src.api.routes import checkout, health
from src.core.config import get_settings
from src.core.stripe import configure_stripe
from src.services.checkout_flow_manager import CheckoutFlowManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Own the checkout flow manager for the lifetime of the process.

    Service clients are shared by every customer's flow and closed on
    shutdown.
    """
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    configure_stripe()
    app.state.checkout_flows = CheckoutFlowManager(settings)
    logger.info(
        "Checkout flows ready (storage: %s, checkout service: %s, stripe: %s)",
        settings.checkout_storage_backend,
        settings.checkout_api_url,
        "on" if settings.is_stripe_configured else "off",
    )

    yield

    await app.state.checkout_flows.aclose()
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Build the application with its middleware stack and routers."""
    settings = get_settings()

    app = FastAPI(
        title="Checkout Orchestrator API",
        description="Multi-step storefront checkout and order placement",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    # Registered last runs first: latency logging wraps the error handler.
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)

    app.include_router(health.router)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(checkout.router)
    app.include_router(api_v1)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("src.main:app", host=settings.host, port=settings.port, reload=settings.debug)
