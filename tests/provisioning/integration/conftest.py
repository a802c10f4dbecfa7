import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from protean.integrations.fastapi import register_exception_handlers
from provisioning.api.routes import cron_router, esim_router, order_router, provider_router, webhook_router


@pytest.fixture()
def client():
    app = FastAPI()
    register_exception_handlers(app)
    for router in (order_router, provider_router, webhook_router, cron_router, esim_router):
        app.include_router(router)
    return TestClient(app)
