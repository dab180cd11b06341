"""Shared fixtures: in-memory storage and a fake Caddy admin API."""
import json
import os

os.environ.setdefault("SQLITE_PATH", ":memory:")
os.environ.setdefault("RECONCILE_ON_STARTUP", "false")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from caddy_panel.caddy.builder import DocumentBuilder
from caddy_panel.caddy.inspector import ControlPlaneInspector
from caddy_panel.caddy.publisher import ControlPlanePublisher
from caddy_panel.caddy.retry import RetryPolicy
from caddy_panel.persistence.db import init_db
from caddy_panel.services.audit import AuditSink
from caddy_panel.services.passwords import hash_password
from caddy_panel.services.reconciler import Reconciler

CADDY_URL = "http://caddy.test:2019"
ADMIN_LISTEN = "0.0.0.0:2019"

# bcrypt is slow on purpose; hash once per session
PASSWORD = "s3cret-pass"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeCaddy:
    """In-memory stand-in for the Caddy admin API with request tracking."""

    def __init__(self):
        self.config: dict | None = None
        self.load_status = 200
        self.load_body = ""
        self.unreachable = False
        self.certificates: dict[str, dict] = {}
        self.requests: list[tuple[str, str]] = []
        self.loaded: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "GET" and path == "/config/":
            if self.config is None:
                return httpx.Response(404)
            return httpx.Response(200, json=self.config)

        if request.method == "POST" and path == "/load":
            payload = json.loads(request.content)
            self.loaded.append(payload)
            if self.load_status >= 300:
                return httpx.Response(self.load_status, text=self.load_body)
            self.config = payload
            return httpx.Response(200)

        if request.method == "GET" and path.startswith("/certificates/"):
            domain = path[len("/certificates/"):]
            if domain in self.certificates:
                return httpx.Response(200, json=self.certificates[domain])
            return httpx.Response(404)

        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def load_calls(self) -> int:
        return self.requests.count(("POST", "/load"))

    def routes(self) -> list[dict]:
        if not self.config:
            return []
        return self.config["apps"]["http"]["servers"]["srv0"]["routes"]

    def served_domains(self) -> list[str]:
        return [r["match"][0]["host"][0] for r in self.routes()]


def make_host(**overrides) -> dict:
    """Host record as a plain mapping, the shape the builder accepts besides ORM rows."""
    host = {
        "id": 1,
        "domain": "app.example.com",
        "target_host": "10.0.0.5",
        "target_port": 8080,
        "target_protocol": "http",
        "ssl_enabled": False,
        "force_ssl": False,
        "http2_support": False,
        "http3_support": False,
        "enabled": True,
        "cache_enabled": False,
        "ignore_invalid_cert": False,
        "advanced_config": None,
        "basic_auth_enabled": False,
        "basic_auth_username": None,
        "basic_auth_password": None,
    }
    host.update(overrides)
    return host


def host_input(**overrides) -> dict:
    """Create payload for the reconciler and the API."""
    data = {
        "domain": "app.example.com",
        "target_host": "10.0.0.5",
        "target_port": 8080,
        "target_protocol": "http",
        "ssl_enabled": False,
        "force_ssl": False,
        "http2_support": False,
        "http3_support": False,
        "enabled": True,
    }
    data.update(overrides)
    return data


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def caddy():
    return FakeCaddy()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)
    return _sleep


@pytest.fixture
def policy():
    return RetryPolicy(max_retries=2, initial_delay=1.0, max_delay=1.5)


@pytest.fixture
def publisher(caddy, policy, fake_sleep):
    return ControlPlanePublisher(base_url=CADDY_URL, policy=policy, client=caddy.client(), sleep=fake_sleep)


@pytest.fixture
def inspector(caddy):
    return ControlPlaneInspector(base_url=CADDY_URL, timeout=1.0, client=caddy.client())


@pytest.fixture
def reconciler(publisher, inspector, session_factory):
    return Reconciler(
        publisher=publisher,
        inspector=inspector,
        audit=AuditSink(session_factory),
        session_factory=session_factory,
        builder=DocumentBuilder(admin_listen=ADMIN_LISTEN),
    )
