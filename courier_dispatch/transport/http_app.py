# courier_dispatch/transport/http_app.py
"""
HTTP API for the courier dispatch engine.

Layers:
1. Public: health, readiness
2. Courier/delivery API: onboarding, availability, location, matches,
   lifecycle transitions
3. Protected: admin endpoints and metrics (require admin token)

Domain errors (``DispatchError``) map to ``{"error": detail, "code": code}``
with the status code the error carries.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Type, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError as PydanticValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from courier_dispatch.config import settings
from courier_dispatch.core.errors import DispatchError, ValidationError
from courier_dispatch.infra.logging_config import get_logger, setup_logging
from courier_dispatch.infra.metrics import get_metrics_collector
from courier_dispatch.service.models import (
    AdminCancelRequest,
    AvailabilityRequest,
    CancelRequest,
    CoordinateIn,
    CourierActionRequest,
    CreateCourierRequest,
    CreateDeliveryRequest,
    UpdateProfileRequest,
    UpsertPickupPointRequest,
)
from courier_dispatch.service.service import DispatchApplicationService, get_dispatch_service
from courier_dispatch.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from courier_dispatch.transport.security import (
    add_security_headers,
    check_configured_tokens,
    require_admin_token,
)

setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    logger.info(
        f"Starting courier dispatch: env={settings.app_env}, storage={settings.storage_backend}"
    )

    check_configured_tokens()

    if settings.storage_backend == "postgres":
        from courier_dispatch.infra.db_async import init_pool
        from courier_dispatch.infra.schema_validator import validate_schema_version

        await init_pool()
        logger.info("Database pool initialized")

        # Migrations run separately: python -m courier_dispatch.infra.migrate
        try:
            await validate_schema_version()
        except Exception:
            logger.critical(
                "Schema validation failed. Run migrations first: python -m courier_dispatch.infra.migrate",
                exc_info=True
            )
            raise

    fastapi_app.state.dispatch = get_dispatch_service()
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")

    from courier_dispatch.infra.http_client import close_all_sessions
    await close_all_sessions()

    if settings.storage_backend == "postgres":
        from courier_dispatch.infra.db_async import close_pool
        await close_pool()

    logger.info("Application shutdown complete")


def get_service(request: Request) -> DispatchApplicationService:
    return request.app.state.dispatch


def _parse(model: Type[M], payload: dict) -> M:
    """Validate a JSON body; schema errors are 400s like any other bad input."""
    try:
        return model(**payload)
    except PydanticValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in e['loc']) or 'body'}: {e['msg']}" for e in exc.errors()
        )
        raise ValidationError(errors) from None


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Courier Dispatch",
    description="Courier availability, order matching and delivery lifecycle",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return add_security_headers(response)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Domain errors carry their own status and machine code"""
    if exc.status_code >= 500:
        logger.error(
            f"Dispatch error: {exc.code}: {exc.detail}",
            extra={"request_id": getattr(request.state, "request_id", "unknown")},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Body is not a JSON object (or not JSON at all)"""
    return JSONResponse(
        status_code=400,
        content={"error": "Request body must be a JSON object", "code": ValidationError.code},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness probe. Minimal information."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(svc: DispatchApplicationService = Depends(get_service)):
    """Readiness probe: database reachable and schema present."""
    if svc.health_checker is None:
        return {"status": "healthy", "storage": settings.storage_backend}

    result = await svc.health_checker.run_checks()
    if result["status"] == "unhealthy":
        return JSONResponse(status_code=503, content={"status": "unhealthy"})

    return {"status": result["status"], "storage": settings.storage_backend}


# ============================================================================
# COURIERS
# ============================================================================

@app.post("/couriers", status_code=201)
async def create_courier(payload: dict, svc: DispatchApplicationService = Depends(get_service)):
    """Onboard a courier with home location, radius and schedule."""
    result = await svc.create_courier(_parse(CreateCourierRequest, payload))
    return result.model_dump(mode="json")


@app.get("/couriers/{courier_id}/profile")
async def get_courier_profile(courier_id: str, svc: DispatchApplicationService = Depends(get_service)):
    result = await svc.get_profile(courier_id)
    return result.model_dump(mode="json")


@app.put("/couriers/{courier_id}/profile")
async def update_courier_profile(
    courier_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    result = await svc.update_profile(courier_id, _parse(UpdateProfileRequest, payload))
    return result.model_dump(mode="json")


@app.post("/couriers/{courier_id}/availability")
async def set_courier_availability(
    courier_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    """
    Go online/offline.

    Going online outside the declared schedule succeeds with a warning.
    """
    req = _parse(AvailabilityRequest, payload)
    result = await svc.set_availability(courier_id, req.online)
    return result.model_dump(mode="json")


@app.post("/couriers/{courier_id}/location")
async def update_courier_location(
    courier_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    """Live GPS update."""
    result = await svc.update_location(courier_id, _parse(CoordinateIn, payload))
    return result.model_dump(mode="json")


@app.get("/couriers/{courier_id}/matches")
async def get_courier_matches(courier_id: str, svc: DispatchApplicationService = Depends(get_service)):
    """Pending deliveries within the courier's radius, nearest first."""
    result = await svc.get_matches(courier_id)
    return result.model_dump(mode="json")


# ============================================================================
# DELIVERIES
# ============================================================================

@app.post("/deliveries", status_code=201)
async def create_delivery(payload: dict, svc: DispatchApplicationService = Depends(get_service)):
    result = await svc.create_delivery(_parse(CreateDeliveryRequest, payload))
    return result.model_dump(mode="json")


@app.get("/deliveries/{delivery_id}")
async def get_delivery(delivery_id: str, svc: DispatchApplicationService = Depends(get_service)):
    result = await svc.get_delivery(delivery_id)
    return result.model_dump(mode="json")


@app.post("/deliveries/{delivery_id}/accept")
async def accept_delivery(
    delivery_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    result = await svc.accept(delivery_id, _parse(CourierActionRequest, payload))
    return result.model_dump(mode="json")


@app.post("/deliveries/{delivery_id}/pickup")
async def pickup_delivery(
    delivery_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    result = await svc.mark_picked_up(delivery_id, _parse(CourierActionRequest, payload))
    return result.model_dump(mode="json")


@app.post("/deliveries/{delivery_id}/deliver")
async def deliver_delivery(
    delivery_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    result = await svc.mark_delivered(delivery_id, _parse(CourierActionRequest, payload))
    return result.model_dump(mode="json")


@app.post("/deliveries/{delivery_id}/cancel")
async def cancel_delivery(
    delivery_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    """Courier cancels their own assignment."""
    result = await svc.cancel(delivery_id, _parse(CancelRequest, payload))
    return result.model_dump(mode="json")


# ============================================================================
# ADMIN ENDPOINTS (Require admin token)
# ============================================================================

@app.get("/metrics", dependencies=[Depends(require_admin_token)])
def metrics():
    """In-process counters and histograms."""
    return get_metrics_collector().get_metrics()


@app.post("/admin/deliveries/{delivery_id}/cancel", dependencies=[Depends(require_admin_token)])
async def admin_cancel_delivery(
    delivery_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    """Administrative override: cancel regardless of assignment."""
    result = await svc.admin_cancel(delivery_id, _parse(AdminCancelRequest, payload))
    return result.model_dump(mode="json")


@app.put("/admin/pickup-points/{product_id}", dependencies=[Depends(require_admin_token)])
async def admin_upsert_pickup_point(
    product_id: str, payload: dict, svc: DispatchApplicationService = Depends(get_service)
):
    """Catalog feed: pickup coordinate for a product."""
    result = await svc.upsert_pickup_point(product_id, _parse(UpsertPickupPointRequest, payload))
    return result.model_dump(exclude_none=True)


# ============================================================================
# CATCH-ALL (Return 404 for unknown routes)
# ============================================================================

@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"], include_in_schema=False)
async def catch_all(path: str):
    logger.warning(f"404 - Unknown route accessed: {path}")
    raise HTTPException(status_code=404, detail="Not found")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "courier_dispatch.transport.http_app:app",
        host="0.0.0.0",
        port=8080,
        proxy_headers=True,
        access_log=False,
    )
