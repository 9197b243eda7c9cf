from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from api.v1.checkout_route import router as v1_checkout_route_router
from api.v1.payments_route import router as v1_payments_route_router
from api.v1.split_payment_route import router as v1_split_payment_route_router
from core.logging_config import setup_logging
from core.payments.manager import PaymentManager
from core.response_envelope import (
    apply_response_documentation,
    document_response,
    error_response,
    http_exception_response,
    validation_error_response,
)
from core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response


def create_app(settings: Settings | None = None, *, manager: PaymentManager | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_format)
        app.state.payments = manager or PaymentManager.from_settings(settings)
        logger.info("Payment service started", extra={"operation": "startup"})
        try:
            yield
        finally:
            await app.state.payments.aclose()
            app.state.payments = None

    app = FastAPI(lifespan=lifespan, title="Payment Gateway API")
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins) if settings.cors_origins else ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def custom_http_exception_handler(request: Request, exc: HTTPException):
        return http_exception_response(exc=exc, request=request)

    @app.exception_handler(RequestValidationError)
    async def custom_validation_exception_handler(request: Request, exc: RequestValidationError):
        return validation_error_response(exc.errors(), request)

    @app.exception_handler(Exception)
    async def custom_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", extra={"request_id": getattr(request.state, "request_id", None)})
        details = str(exc) if (settings.debug_include_error_details and not settings.is_production) else None
        return error_response(
            status_code=500,
            message="Internal Server Error",
            data={"code": "INTERNAL_ERROR", "details": details},
            request_id=getattr(request.state, "request_id", None),
        )

    @app.get("/health", tags=["Health"])
    @document_response(
        message="Health check completed",
        success_example={"status": "healthy", "services": {"order_store": {"status": "healthy"}}},
    )
    async def health_check(request: Request):
        services = await request.app.state.payments.health()
        overall_status = "healthy"
        if any(service.get("status") == "unhealthy" for service in services.values()):
            overall_status = "degraded"
        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.env,
            "services": services,
        }

    app.include_router(v1_checkout_route_router, prefix="/v1")
    app.include_router(v1_payments_route_router, prefix="/v1")
    app.include_router(v1_split_payment_route_router, prefix="/v1")

    apply_response_documentation(app)
    return app


app = create_app()
