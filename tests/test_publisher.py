"""Tests for pushing documents to the Caddy admin API."""
import httpx
import pytest

from caddy_panel.caddy.builder import build_document
from caddy_panel.caddy.publisher import ControlPlanePublisher
from caddy_panel.caddy.retry import RetryPolicy
from caddy_panel.errors import CONFIG_APPLY_ERROR, CONTROL_PLANE_UNREACHABLE, ControlPlaneError
from conftest import ADMIN_LISTEN, CADDY_URL, make_host


@pytest.fixture
def doc():
    return build_document([make_host(domain="a.example.com", ssl_enabled=True)], admin_listen=ADMIN_LISTEN)


async def test_publish_loads_document(publisher, caddy, doc, sleeps):
    applied = await publisher.publish(doc)

    assert applied is True
    assert caddy.requests == [("GET", "/config/"), ("POST", "/load")]
    assert caddy.config == doc.to_dict()
    assert sleeps == []


async def test_running_admin_block_is_preserved(publisher, caddy, doc):
    running_admin = {"listen": "127.0.0.1:2020", "disabled": False}
    caddy.config = {"admin": running_admin, "apps": {}}

    await publisher.publish(doc)

    assert caddy.loaded[-1]["admin"] == running_admin
    assert caddy.loaded[-1]["apps"] == doc.to_dict()["apps"]
    # the document object itself is left alone
    assert doc.admin["listen"] == ADMIN_LISTEN


async def test_identical_document_is_not_reloaded(publisher, caddy, doc):
    assert await publisher.publish(doc) is True
    assert await publisher.publish(doc) is False
    assert caddy.load_calls == 1


async def test_rejected_document_raises_apply_error_after_retries(publisher, caddy, doc, sleeps, policy):
    caddy.load_status = 400
    caddy.load_body = "json: unknown field \"bogus\""

    with pytest.raises(ControlPlaneError) as exc:
        await publisher.publish(doc)

    err = exc.value
    assert err.code == CONFIG_APPLY_ERROR
    assert err.remote_status == 400
    assert err.detail == caddy.load_body
    assert err.status_code == 503
    assert caddy.load_calls == policy.max_retries + 1
    assert sleeps == [1.0, 1.5]


async def test_unreachable_control_plane(publisher, caddy, doc):
    caddy.unreachable = True

    with pytest.raises(ControlPlaneError) as exc:
        await publisher.publish(doc)

    assert exc.value.code == CONTROL_PLANE_UNREACHABLE
    assert caddy.config is None


async def test_transient_failure_recovers(caddy, doc, sleeps, fake_sleep):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            attempts.append(request.url.path)
            if len(attempts) == 1:
                return httpx.Response(500, text="busy")
        return caddy.handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    publisher = ControlPlanePublisher(CADDY_URL, RetryPolicy(max_retries=3, initial_delay=0.2, max_delay=1.0),
                                      client=client, sleep=fake_sleep)

    assert await publisher.publish(doc) is True
    assert attempts == ["/load", "/load"]
    assert sleeps == [0.2]
    assert caddy.config == doc.to_dict()


async def test_document_errors_are_not_reported_as_control_plane_failures(publisher, caddy, doc, sleeps):
    class BrokenDocument(type(doc)):
        def to_dict(self):
            raise TypeError("not serializable")

    broken = BrokenDocument(admin=doc.admin, routes=doc.routes)

    with pytest.raises(TypeError):
        await publisher.publish(broken)
    assert caddy.requests == []
    assert sleeps == []
