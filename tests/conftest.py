import os

# Keep test logs out of the application log and pin the environment
os.environ["LOG_FILE"] = "logs/test.log"
os.environ["ENV"] = "dev"

from typing import List, Optional
from urllib.parse import parse_qsl

import pytest
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from fastapi.testclient import TestClient

from admin_gateway.api.deps import RouteRateLimit, get_response_cache
from admin_gateway.core.config import Settings
from admin_gateway.pipeline import build_pipeline
from admin_gateway.schemas.audit import AuditEvent
from admin_gateway.schemas.identity import Identity
from main import create_app


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def header_identity(request: Request) -> Optional[Identity]:
    """Test resolver: trusts X-Test-User / X-Test-Role headers."""
    user_id = request.headers.get("x-test-user")
    if not user_id:
        return None
    return Identity(user_id=user_id, role=request.headers.get("x-test-role"))


def build_demo_router(calls: dict) -> APIRouter:
    router = APIRouter(prefix="/api/v1")
    suppliers = [
        {"id": 1, "name": "Sky Hotels", "status": "active"},
        {"id": 2, "name": "Cloud Tours", "status": "inactive"},
    ]

    @router.get("/suppliers")
    async def list_suppliers(status: Optional[str] = None):
        calls["suppliers"] += 1
        data = [s for s in suppliers if status is None or s["status"] == status]
        return {"success": True, "data": data, "computed": calls["suppliers"]}

    @router.post("/suppliers", status_code=201)
    async def create_supplier(payload: dict):
        supplier = {"id": len(suppliers) + 1, **payload}
        suppliers.append(supplier)
        return {"success": True, "data": supplier}

    @router.get("/suppliers/unavailable")
    async def unavailable_suppliers():
        calls["unavailable"] += 1
        return JSONResponse(status_code=503, content={"success": False})

    @router.get("/dashboard")
    async def dashboard():
        calls["dashboard"] += 1
        return {"success": True, "data": {"bookings": 12}}

    @router.post("/auth/login")
    async def login(payload: dict):
        if payload.get("password") == "correct":
            return {"success": True, "data": {"token": "session"}}
        return JSONResponse(status_code=401, content={"success": False})

    @router.post("/echo")
    async def echo(payload: dict):
        return {"success": True, "data": payload}

    @router.post("/echo-form")
    async def echo_form(request: Request):
        body = (await request.body()).decode("utf-8")
        return {"success": True, "data": dict(parse_qsl(body, keep_blank_values=True))}

    @router.get("/echo")
    async def echo_query(request: Request):
        return {"success": True, "data": dict(request.query_params)}

    @router.get("/items")
    async def items():
        return {"success": True, "data": []}

    @router.get("/boom")
    async def boom():
        raise RuntimeError("handler failed")

    @router.get("/branded")
    async def branded():
        return Response(content="ok", headers={"Server": "demo/1.0", "X-Powered-By": "demo"})

    @router.get("/admin/overview")
    async def admin_overview():
        return {"success": True}

    @router.get("/export", dependencies=[Depends(RouteRateLimit("export", 2, 60))])
    async def export():
        return {"success": True}

    @router.delete("/cache/suppliers")
    async def purge_suppliers(cache=Depends(get_response_cache)):
        return {"success": True, "data": {"removed": cache.invalidate("^suppliers:")}}

    return router


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_events() -> List[AuditEvent]:
    return []


@pytest.fixture
def settings_overrides() -> dict:
    """Override in a test module to tweak the pipeline settings."""
    return {}


@pytest.fixture
def pipeline(clock, audit_events, settings_overrides):
    current = Settings(**settings_overrides)
    return build_pipeline(current, clock=clock, audit_sink=audit_events.append)


@pytest.fixture
def calls() -> dict:
    return {"suppliers": 0, "unavailable": 0, "dashboard": 0}


@pytest.fixture
def app(pipeline, calls):
    application = create_app(pipeline=pipeline, identity_resolver=header_identity)
    application.include_router(build_demo_router(calls))
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
