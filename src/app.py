"""eSIM fulfillment FastAPI application.

Serves the order, provider, webhook, cron and usage endpoints of the
provisioning domain. Commands are processed synchronously per request.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay in domain.toml:
#   - unset/"test"  → in-memory stores
#   - "production"  → PostgreSQL via DATABASE_URL
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers
from provisioning.domain import provisioning  # noqa: E402

provisioning.init()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="eSIM Fulfillment API",
    description="Order fulfillment and supplier reconciliation for eSIM orders",
)

register_exception_handlers(app)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the Protean domain context for each request."""
    with provisioning.domain_context():
        response = await call_next(request)
    return response


from provisioning.api.middleware import request_context_middleware  # noqa: E402

app.middleware("http")(request_context_middleware)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from provisioning.api.routes import (  # noqa: E402
    cron_router,
    esim_router,
    order_router,
    provider_router,
    webhook_router,
)

app.include_router(order_router)
app.include_router(provider_router)
app.include_router(webhook_router)
app.include_router(cron_router)
app.include_router(esim_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domains": {"provisioning": {"name": provisioning.name}},
        }
    )
