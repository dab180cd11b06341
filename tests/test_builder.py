"""Tests for building the Caddy document from host records."""
import json

import pytest

from caddy_panel.caddy.builder import DocumentBuilder, build_document, clean_target_host
from conftest import ADMIN_LISTEN, PASSWORD_HASH, make_host


def server(doc) -> dict:
    return doc.to_dict()["apps"]["http"]["servers"]["srv0"]


def handlers(route: dict) -> list[str]:
    return [h["handler"] for h in route["handle"]]


def test_two_hosts_scenario():
    hosts = [
        make_host(id=1, domain="a.example.com"),
        make_host(id=2, domain="b.example.com", ssl_enabled=True, http2_support=True),
    ]
    doc = build_document(hosts, admin_listen=ADMIN_LISTEN)
    out = doc.to_dict()
    srv = server(doc)

    assert [r["match"][0]["host"] for r in srv["routes"]] == [["a.example.com"], ["b.example.com"]]
    assert srv["protocols"] == ["h1", "h2", "h3"]
    assert out["apps"]["tls"]["automation"]["policies"][0]["subjects"] == ["b.example.com"]
    assert out["apps"]["tls"]["certificates"]["automate"] == ["b.example.com"]


def test_document_top_level_shape():
    out = build_document([make_host()], admin_listen="127.0.0.1:2999").to_dict()

    assert out["admin"] == {"listen": "127.0.0.1:2999", "disabled": False, "enforce_origin": False, "origins": ["*"]}
    assert out["logging"] == {"logs": {"default": {"level": "INFO"}}}
    srv = out["apps"]["http"]["servers"]["srv0"]
    assert srv["listen"] == [":80", ":443"]
    assert srv["automatic_https"] == {"disable": False}
    assert "protocols" not in srv
    issuer = out["apps"]["tls"]["automation"]["policies"][0]["issuers"][0]
    assert issuer == {"module": "acme", "challenges": {"http": {"alternate_port": 80}}}
    # the document must survive the wire format
    assert json.loads(json.dumps(out)) == out


def test_disabled_hosts_are_excluded_everywhere():
    hosts = [
        make_host(id=1, domain="on.example.com", ssl_enabled=True),
        make_host(id=2, domain="off.example.com", enabled=False, ssl_enabled=True, http2_support=True,
                  advanced_config='{"redir":[{"from":"/a","to":"/b"}]}'),
    ]
    doc = build_document(hosts, admin_listen=ADMIN_LISTEN)
    srv = server(doc)

    matched = {h for r in srv["routes"] for m in r["match"] for h in m["host"]}
    assert matched == {"on.example.com"}
    assert doc.tls_subjects == ["on.example.com"]
    assert "protocols" not in srv


def test_http3_alone_does_not_upgrade_protocols():
    doc = build_document([make_host(http3_support=True)], admin_listen=ADMIN_LISTEN)
    assert doc.protocols is None


def test_valid_basic_auth_adds_handler_before_proxy():
    host = make_host(basic_auth_enabled=True, basic_auth_username="admin", basic_auth_password=PASSWORD_HASH)
    route = server(build_document([host], admin_listen=ADMIN_LISTEN))["routes"][0]

    assert handlers(route) == ["authentication", "reverse_proxy"]
    assert route["handle"][0]["providers"]["http_basic"] == {
        "hash": {"algorithm": "bcrypt"},
        "accounts": [{"username": "admin", "password": PASSWORD_HASH}],
        "realm": "Restricted",
    }


class NullObject:
    pass


@pytest.mark.parametrize("username,password", [
    ("admin", None),
    ("admin", ""),
    ("admin", NullObject()),
    ("admin", "plaintext-password"),
    ("", PASSWORD_HASH),
    (None, PASSWORD_HASH),
])
def test_unusable_credentials_skip_auth_with_warning(username, password):
    host = make_host(domain="guarded.example.com", basic_auth_enabled=True,
                     basic_auth_username=username, basic_auth_password=password)
    builder = DocumentBuilder(admin_listen=ADMIN_LISTEN)
    route = server(builder.build([host]))["routes"][0]

    assert handlers(route) == ["reverse_proxy"]
    assert len(builder.warnings) == 1
    assert "guarded.example.com" in builder.warnings[0]


def test_auth_disabled_ignores_stored_hash():
    host = make_host(basic_auth_enabled=False, basic_auth_username="admin", basic_auth_password=PASSWORD_HASH)
    builder = DocumentBuilder(admin_listen=ADMIN_LISTEN)
    route = server(builder.build([host]))["routes"][0]
    assert handlers(route) == ["reverse_proxy"]
    assert builder.warnings == []


def test_fragments_precede_base_route_and_are_scoped():
    advanced = json.dumps([
        {"match": {"path": ["/one"]}, "handle": [{"handler": "static_response", "body": "1"}]},
        {"match": [{"host": ["evil.example.com"], "path": ["/two"]}], "handle": [{"handler": "static_response"}]},
    ])
    hosts = [
        make_host(id=1, domain="first.example.com"),
        make_host(id=2, domain="c.example.com", advanced_config=advanced),
    ]
    routes = server(build_document(hosts, admin_listen=ADMIN_LISTEN))["routes"]

    assert len(routes) == 4
    assert routes[0]["match"][0]["host"] == ["first.example.com"]
    assert [r["match"][0].get("path") for r in routes[1:3]] == [["/one"], ["/two"]]
    assert all(m["host"] == ["c.example.com"] for r in routes[1:3] for m in r["match"])
    assert routes[3]["match"] == [{"host": ["c.example.com"]}]
    assert handlers(routes[3]) == ["reverse_proxy"]


def test_redirect_shorthand_is_injected_for_host():
    host = make_host(domain="c.example.com", advanced_config='{"redir":[{"from":"/old","to":"/new"}]}')
    routes = server(build_document([host], admin_listen=ADMIN_LISTEN))["routes"]

    assert routes[0] == {
        "match": [{"host": ["c.example.com"], "path": ["/old"]}],
        "handle": [{"handler": "static_response", "status_code": 301, "headers": {"Location": ["/new"]}}],
        "terminal": True,
    }
    assert handlers(routes[1]) == ["reverse_proxy"]


def test_malformed_advanced_config_keeps_base_route():
    host = make_host(domain="c.example.com", advanced_config="{not json")
    routes = server(build_document([host], admin_listen=ADMIN_LISTEN))["routes"]
    assert len(routes) == 1
    assert routes[0]["match"] == [{"host": ["c.example.com"]}]


@pytest.mark.parametrize("raw,expected", [
    ("backend.local", "backend.local"),
    ("http://backend.local", "backend.local"),
    ("https://backend.local/", "backend.local"),
    ("  //backend.local//  ", "backend.local"),
    ("", ""),
])
def test_clean_target_host(raw, expected):
    assert clean_target_host(raw) == expected


def test_upstream_dial_and_transport():
    hosts = [
        make_host(id=1, domain="plain.example.com", target_host="http://svc.internal/", target_port=3000),
        make_host(id=2, domain="tls.example.com", target_host="secure.internal", target_port=8443,
                  target_protocol="https", ignore_invalid_cert=True),
    ]
    routes = server(build_document(hosts, admin_listen=ADMIN_LISTEN))["routes"]
    plain, tls = routes[0]["handle"][0], routes[1]["handle"][0]

    assert plain["upstreams"] == [{"dial": "svc.internal:3000"}]
    assert plain["transport"] == {"protocol": "http"}
    assert tls["upstreams"] == [{"dial": "secure.internal:8443"}]
    assert tls["transport"] == {"protocol": "http", "tls": {"insecure_skip_verify": True}}


def test_duplicate_domains_produce_independent_routes_in_order():
    hosts = [
        make_host(id=1, domain="dup.example.com", target_port=1111),
        make_host(id=2, domain="dup.example.com", target_port=2222),
    ]
    routes = server(build_document(hosts, admin_listen=ADMIN_LISTEN))["routes"]
    assert [r["handle"][0]["upstreams"][0]["dial"] for r in routes] == ["10.0.0.5:1111", "10.0.0.5:2222"]


def test_empty_target_host_still_produces_route():
    routes = server(build_document([make_host(target_host="")], admin_listen=ADMIN_LISTEN))["routes"]
    assert routes[0]["handle"][0]["upstreams"] == [{"dial": ":8080"}]
