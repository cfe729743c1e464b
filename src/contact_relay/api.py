"""FastAPI application factory and HTTP schemas for the contact relay.

This module provides the HTTP interface of the service:

- ``POST /contact``: public, form-encoded contact submissions
- ``GET /health``: liveness probe
- ``GET /metrics``: Prometheus metrics
- ``GET /clients``, ``GET /handlers``, ``POST /handlers/reload``: admin views

Admin endpoints and metrics are protected by the ``X-API-Token`` header when
a token is configured.

Example:
    Creating and running the API application::

        from contact_relay.api import create_app

        app = create_app(pipeline, api_token="secret-token")
        uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from typing import Optional, List, Callable, AsyncContextManager, Iterable
import logging

from fastapi import FastAPI, HTTPException, Depends, status, Request
from fastapi.responses import PlainTextResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from .config_loader import ConfigError
from .dispatch import MessageHandler
from .pipeline import FormRequestContext, SubmissionPipeline

logger = logging.getLogger(__name__)

API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    If a token has been configured through :func:`create_app` and a request
    provides either a missing or different value, a ``401`` error is raised.
    When no token is configured the dependency is effectively bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


class CommandStatus(BaseModel):
    """Base schema shared by the admin responses."""
    ok: bool
    error: Optional[str] = None


class ClientInfo(BaseModel):
    """Registered tenant as returned by ``/clients``."""
    public_key: str
    name: Optional[str] = None
    recipients: List[str] = []
    webhook: bool = False


class ClientsResponse(CommandStatus):
    clients: List[ClientInfo]


class HandlersResponse(CommandStatus):
    handlers: List[str]


def create_app(
    pipeline: SubmissionPipeline,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
    handler_loader: Callable[[], Iterable[MessageHandler]] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    pipeline:
        The :class:`contact_relay.pipeline.SubmissionPipeline` handling
        submissions.
    api_token:
        Optional secret protecting admin endpoints and metrics.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.
    handler_loader:
        Optional callable returning a fresh list of handlers; enables
        ``POST /handlers/reload``.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn or any ASGI
        server.
    """
    api = FastAPI(title="Contact Relay", lifespan=lifespan)
    api.state.api_token = api_token
    api.state.pipeline = pipeline

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return {"status": "ok"}

    @api.post("/contact", response_class=PlainTextResponse)
    async def contact(request: Request):
        """Accept a form-encoded contact submission."""
        form = await request.form()
        fields = {key: value for key, value in form.items() if isinstance(value, str)}
        client_ip = request.client.host if request.client else None
        outcome = await pipeline.handle(FormRequestContext(fields=fields, client_ip=client_ip))
        return PlainTextResponse(outcome.body or "", status_code=outcome.status)

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics collected by the pipeline."""
        generate = getattr(pipeline.observer, "generate_latest", None)
        if generate is None:
            raise HTTPException(404, "Metrics not available")
        return Response(content=generate(), media_type="text/plain; version=0.0.4")

    @api.get("/clients", response_model=ClientsResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def list_clients():
        """List the tenants known by the relay."""
        clients = [
            ClientInfo(
                public_key=c.public_key,
                name=c.name,
                recipients=list(c.recipients),
                webhook=bool(c.webhook_url),
            )
            for c in pipeline.registry
        ]
        return ClientsResponse(ok=True, clients=clients)

    @api.get("/handlers", response_model=HandlersResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def list_handlers():
        """List registered delivery handlers in dispatch order."""
        return HandlersResponse(ok=True, handlers=pipeline.handler_set.names())

    @api.post("/handlers/reload", response_model=HandlersResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def reload_handlers():
        """Rebuild the handler list and swap it in atomically."""
        if handler_loader is None:
            raise HTTPException(404, "Handler reload not configured")
        try:
            handlers = list(handler_loader())
        except (ConfigError, FileNotFoundError) as exc:
            logger.error(f"Handler reload failed: {exc}")
            raise HTTPException(400, str(exc))
        pipeline.set_message_handlers(handlers)
        logger.info(f"Reloaded {len(handlers)} message handlers")
        return HandlersResponse(ok=True, handlers=pipeline.handler_set.names())

    return api
