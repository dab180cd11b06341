"""
Typed model of the Caddy JSON configuration document.

Handlers the panel generates itself get their own dataclass. Anything else an
operator writes in a host's advanced configuration is carried as an
`OpaqueHandler` and sent to Caddy untouched.
"""
import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

SERVER_NAME = "srv0"
DEFAULT_LISTEN = [":80", ":443"]
UPGRADED_PROTOCOLS = ["h1", "h2", "h3"]


@dataclass
class MatchClause:
    """One matcher set. `extra` holds every matcher besides host (path, method, ...)."""
    host: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"host": list(self.host), **copy.deepcopy(self.extra)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "MatchClause":
        extra = dict(raw)
        host = extra.pop("host", None)
        if isinstance(host, str):
            host = [host]
        elif not isinstance(host, list):
            host = []
        return cls(host=[h for h in host if isinstance(h, str)], extra=extra)


@dataclass
class AuthenticationHandler:
    """HTTP basic auth with a single account and a pre-hashed password."""
    kind: ClassVar[str] = "authentication"
    username: str
    password_hash: str
    algorithm: str = "bcrypt"
    realm: str = "Restricted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "handler": self.kind,
            "providers": {
                "http_basic": {
                    "hash": {"algorithm": self.algorithm},
                    "accounts": [{"username": self.username, "password": self.password_hash}],
                    "realm": self.realm,
                }
            },
        }


@dataclass
class ReverseProxyHandler:
    kind: ClassVar[str] = "reverse_proxy"
    upstreams: list[str]
    tls: bool = False
    insecure_skip_verify: bool = False
    transport_protocol: str = "http"

    def to_dict(self) -> dict[str, Any]:
        transport: dict[str, Any] = {"protocol": self.transport_protocol}
        if self.tls:
            transport["tls"] = {"insecure_skip_verify": self.insecure_skip_verify}
        return {
            "handler": self.kind,
            "upstreams": [{"dial": dial} for dial in self.upstreams],
            "transport": transport,
        }


@dataclass
class StaticResponseHandler:
    kind: ClassVar[str] = "static_response"
    _fields: ClassVar[frozenset] = frozenset({"handler", "status_code", "headers", "body", "close"})
    status_code: int = 200
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: str | None = None
    close: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"handler": self.kind, "status_code": self.status_code}
        if self.headers:
            out["headers"] = {k: list(v) for k, v in self.headers.items()}
        if self.body is not None:
            out["body"] = self.body
        if self.close:
            out["close"] = True
        return out

    @classmethod
    def redirect(cls, location: str, status_code: int = 301) -> "StaticResponseHandler":
        return cls(status_code=status_code, headers={"Location": [location]})


@dataclass
class OpaqueHandler:
    """Any handler module not modelled above, passed through verbatim."""
    raw: dict[str, Any]

    @property
    def kind(self) -> str | None:
        return self.raw.get("handler")

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.raw)


Handler = Union[AuthenticationHandler, ReverseProxyHandler, StaticResponseHandler, OpaqueHandler]


def handler_from_dict(raw: dict[str, Any]) -> Handler:
    """Map a raw handler object onto a typed variant where it is lossless to do so."""
    if raw.get("handler") == StaticResponseHandler.kind and set(raw) <= StaticResponseHandler._fields:
        status = raw.get("status_code", 200)
        headers = raw.get("headers") or {}
        if isinstance(status, int) and isinstance(headers, dict) and all(isinstance(v, list) for v in headers.values()):
            return StaticResponseHandler(
                status_code=status,
                headers=headers,
                body=raw.get("body"),
                close=bool(raw.get("close", False)),
            )
    return OpaqueHandler(copy.deepcopy(raw))


@dataclass
class Route:
    match: list[MatchClause]
    handle: list[Handler]
    terminal: bool | None = None

    def scope_to(self, domain: str) -> "Route":
        """Restrict every match clause to a single host."""
        for clause in self.match:
            clause.host = [domain]
        return self

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "match": [m.to_dict() for m in self.match],
            "handle": [h.to_dict() for h in self.handle],
        }
        if self.terminal is not None:
            out["terminal"] = self.terminal
        return out


@dataclass
class ConfigDocument:
    """The complete document accepted by Caddy's /load endpoint."""
    admin: dict[str, Any]
    routes: list[Route] = field(default_factory=list)
    listen: list[str] = field(default_factory=lambda: list(DEFAULT_LISTEN))
    protocols: list[str] | None = None
    tls_subjects: list[str] = field(default_factory=list)
    automate: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    disable_automatic_https: bool = False
    acme_alternate_port: int = 80

    def to_dict(self) -> dict[str, Any]:
        server: dict[str, Any] = {
            "listen": list(self.listen),
            "routes": [r.to_dict() for r in self.routes],
            "automatic_https": {"disable": self.disable_automatic_https},
        }
        if self.protocols:
            server["protocols"] = list(self.protocols)

        return {
            "admin": copy.deepcopy(self.admin),
            "logging": {"logs": {"default": {"level": self.log_level}}},
            "apps": {
                "http": {"servers": {SERVER_NAME: server}},
                "tls": {
                    "automation": {
                        "policies": [
                            {
                                "subjects": list(self.tls_subjects),
                                "issuers": [
                                    {
                                        "module": "acme",
                                        "challenges": {"http": {"alternate_port": self.acme_alternate_port}},
                                    }
                                ],
                            }
                        ]
                    },
                    "certificates": {"automate": list(self.automate)},
                },
            },
        }
