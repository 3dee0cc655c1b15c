# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory and HTTP schemas for the mail relay.

This module provides the REST interface of the relay:

- Pydantic models defining request/response schemas
- A factory function to create and configure the FastAPI application
- Authentication via API token in the X-API-Token header
- Mapping of relay errors to HTTP statuses (400 for invalid parameters, 429
  for capacity and quota, 500 for dispatch failures, 503 when the endpoint
  list is unavailable)

Example:
    Creating and running the API application::

        from mail_relay.core import RelayCore
        from mail_relay.api import create_app

        core = RelayCore.from_settings(load_settings())
        app = create_app(core, api_token="secret-token")

        uvicorn.run(app, host="0.0.0.0", port=3000)
"""

import logging
import re
from typing import Any, AsyncContextManager, Callable, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .core import RelayCore
from .errors import InvalidRequest, RelayError

logger = logging.getLogger(__name__)

app = FastAPI(title="Mail Relay")
service: RelayCore | None = None
API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)
app.state.api_token = None

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    When no token is configured the dependency is bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


class CommandStatus(BaseModel):
    """Base schema shared by most responses produced by the service."""
    ok: bool
    error: Optional[str] = None


class BasicOkResponse(CommandStatus):
    message: Optional[str] = None
    timestamp: Optional[str] = None


class RefreshResponse(BasicOkResponse):
    urls_loaded: int


class SendData(BaseModel):
    """Details of a delivered single message."""
    model_config = ConfigDict(populate_by_name=True)
    to: str
    subject: str
    from_addr: str = Field(alias="from")
    webapp_used: int
    webapp_usage: int
    webapp_limit: int
    timestamp: str


class SendStats(BaseModel):
    total_sent: int
    total_failed: int
    available_apps: int
    rate_limited_apps: int


class SendResponse(CommandStatus):
    """Response returned by ``GET /email``."""
    message: str
    data: SendData
    stats: SendStats


class BulkPayload(BaseModel):
    """Payload accepted by ``POST /bulk``."""
    model_config = ConfigDict(populate_by_name=True)
    emails: List[str]
    subject: Optional[str] = None
    from_addr: Optional[str] = Field(default=None, alias="from")


class BulkSummary(BaseModel):
    total: int
    sent: int
    failed: int
    undistributed: int
    success_rate: str


class DistributionEntry(BaseModel):
    webapp: int
    emails_assigned: int
    current_usage: int
    limit: int


class UnitResult(BaseModel):
    """Outcome of one address of a bulk request, in input order."""
    email: str
    status: Literal["sent", "failed", "undistributed"]
    webapp: Optional[int] = None
    error: Optional[str] = None
    timestamp: str


class BulkResponse(CommandStatus):
    """Response returned by ``POST /bulk``."""
    message: str
    summary: BulkSummary
    distribution: List[DistributionEntry]
    results: List[UnitResult]


class WebAppUsage(BaseModel):
    webapp: int
    usage: int
    limit: int
    percentage: str
    remaining: int
    is_limited: bool


class CacheStatus(BaseModel):
    urls_cached: int
    last_fetch: Optional[str] = None


class RelayStats(BaseModel):
    total_sent: int
    total_failed: int
    total_webapps: int
    available_apps: int
    rate_limited_apps: int
    daily_limit: int
    uptime: int
    last_reset: str
    reset_pending: bool
    exhausted: List[int]
    cache_status: CacheStatus
    webapp_details: List[WebAppUsage]


class StatsResponse(CommandStatus):
    """Response returned by ``GET /stats``."""
    stats: RelayStats


def _command_result(result: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(result, dict) or result.get("ok") is not True:
        error = result.get("error") if isinstance(result, dict) else None
        raise InvalidRequest(error or "Invalid request")
    return result


def create_app(
    svc: RelayCore,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        Instance of :class:`mail_relay.core.RelayCore` that implements
        each command.
    api_token:
        Optional secret used to protect every endpoint except ``/health``
        and ``/``. When provided, the ``X-API-Token`` header must match.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    global service
    service = svc

    if lifespan is not None:
        api = FastAPI(title="Mail Relay", version=__version__, lifespan=lifespan)
    else:
        api = app

    api.state.api_token = api_token
    router = APIRouter(dependencies=[auth_dependency])

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with full details."""
        body = await request.body()
        logger.error(f"Validation error on {request.method} {request.url.path}")
        logger.error(f"Request body: {body.decode('utf-8', errors='replace')}")
        logger.error(f"Validation errors: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors()}
        )

    @api.exception_handler(RelayError)
    async def relay_exception_handler(request: Request, exc: RelayError):
        """Translate relay errors into their HTTP status and JSON body."""
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    def get_service() -> RelayCore:
        if not service:
            raise HTTPException(500, "Service not initialized")
        return service

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return {"ok": True, "message": "Mail relay is running", "version": __version__}

    @api.get("/")
    async def index():
        """List the available endpoints."""
        return {
            "message": f"Mail Relay v{__version__}",
            "endpoints": {
                "GET /email": "Send single email - Params: to (required), subject (optional), from (optional)",
                "POST /bulk": 'Send bulk emails - Body: { "emails": [], "subject": "", "from": "" }',
                "GET /stats": "Usage statistics",
                "GET /health": "Health check",
                "GET /metrics": "Prometheus metrics",
                "POST /reset": "Reset usage counters (admin)",
                "POST /refresh": "Refresh the WebApp URL cache",
            },
        }

    @router.get("/email", response_model=SendResponse, response_model_exclude_none=True)
    async def send_email(
        to: Optional[str] = None,
        subject: Optional[str] = None,
        from_addr: Optional[str] = Query(default=None, alias="from"),
    ):
        """Send one message through the least-used endpoint."""
        svc = get_service()
        if not to:
            raise InvalidRequest('Parameter "to" (email address) is required')
        if not EMAIL_PATTERN.match(to):
            raise InvalidRequest("Invalid email format")
        result = await svc.handle_command("sendEmail", {"to": to, "subject": subject, "from": from_addr})
        return SendResponse.model_validate(_command_result(result))

    @router.post("/bulk", response_model=BulkResponse, response_model_exclude_none=True)
    async def send_bulk(payload: BulkPayload):
        """Distribute a batch across endpoints and deliver it."""
        svc = get_service()
        result = await svc.handle_command("sendBulk", payload.model_dump(by_alias=True))
        return BulkResponse.model_validate(_command_result(result))

    @router.get("/stats", response_model=StatsResponse, response_model_exclude_none=True)
    async def stats():
        """Read-only usage snapshot."""
        result = await get_service().handle_command("stats", {})
        return StatsResponse.model_validate(result)

    @router.post("/reset", response_model=BasicOkResponse, response_model_exclude_none=True)
    async def reset():
        """Clear usage counters and exhausted markers."""
        result = await get_service().handle_command("reset", {})
        return BasicOkResponse.model_validate(result)

    @router.post("/refresh", response_model=RefreshResponse, response_model_exclude_none=True)
    async def refresh():
        """Reload the WebApp URL list, bypassing the cache."""
        result = await get_service().handle_command("refresh", {})
        return RefreshResponse.model_validate(result)

    @router.get("/metrics")
    async def metrics():
        """Expose Prometheus metrics collected by the relay."""
        return Response(content=get_service().metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    api.include_router(router)
    return api
