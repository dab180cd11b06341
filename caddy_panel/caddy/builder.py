"""
Builds the complete Caddy configuration document from the stored host set.

The document is always derived from every host, not only the one that
changed: the listener protocol list and the TLS automation subjects are
computed over the union of all enabled hosts.
"""
import logging
import re
from collections.abc import Iterable
from typing import Any

from caddy_panel.config import settings
from caddy_panel.caddy.document import (
    UPGRADED_PROTOCOLS, AuthenticationHandler, ConfigDocument, MatchClause, ReverseProxyHandler, Route,
)
from caddy_panel.caddy.fragments import parse_advanced_config
from caddy_panel.caddy.secrets import HostSnapshot, PresentSecret, normalize_hosts

logger = logging.getLogger(__name__)

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


def clean_target_host(value: str | None) -> str:
    """Strip a leading http(s) scheme and surrounding slashes from a backend host."""
    host = (value or "").strip()
    host = _SCHEME.sub("", host)
    return host.strip("/").strip()


def admin_block(listen: str) -> dict[str, Any]:
    return {"listen": listen, "disabled": False, "enforce_origin": False, "origins": ["*"]}


class DocumentBuilder:
    """
    Turns host records into a `ConfigDocument`.

    Problems with a single host (unusable credentials, broken advanced
    config) never fail the build; they are logged and kept in `warnings`
    for the last call to `build`.
    """

    def __init__(self, admin_listen: str | None = None, log_level: str = "INFO"):
        self.admin_listen = admin_listen or settings.CADDY_ADMIN_LISTEN
        self.log_level = log_level
        self.warnings: list[str] = []

    def build(self, hosts: Iterable[Any]) -> ConfigDocument:
        self.warnings = []
        enabled = [h for h in normalize_hosts(hosts) if h.enabled]

        routes: list[Route] = []
        for host in enabled:
            # custom rules go first so they can intercept before the proxy route
            for fragment in parse_advanced_config(host.advanced_config, host.domain):
                routes.append(fragment.scope_to(host.domain))
            routes.append(self._base_route(host))

        # only http2 gates the upgrade; http3 is carried along with it
        protocols = list(UPGRADED_PROTOCOLS) if any(h.http2_support for h in enabled) else None
        ssl_domains = [h.domain for h in enabled if h.ssl_enabled]

        logger.debug(f"[builder] Built {len(routes)} routes for {len(enabled)} enabled hosts")
        return ConfigDocument(
            admin=admin_block(self.admin_listen),
            routes=routes,
            protocols=protocols,
            tls_subjects=ssl_domains,
            automate=list(ssl_domains),
            log_level=self.log_level,
        )

    def _base_route(self, host: HostSnapshot) -> Route:
        handle = []
        auth = self._auth_handler(host)
        if auth is not None:
            handle.append(auth)

        dial = f"{clean_target_host(host.target_host)}:{host.target_port}"
        https = str(host.target_protocol).lower() == "https"
        handle.append(ReverseProxyHandler(
            upstreams=[dial],
            tls=https,
            insecure_skip_verify=bool(host.ignore_invalid_cert) if https else False,
        ))
        return Route(match=[MatchClause(host=[host.domain])], handle=handle)

    def _auth_handler(self, host: HostSnapshot) -> AuthenticationHandler | None:
        if not host.basic_auth_enabled:
            return None
        if host.has_valid_auth:
            return AuthenticationHandler(
                username=host.basic_auth_username,
                password_hash=host.basic_auth_password.value,
            )

        if not host.basic_auth_username:
            reason = "no username"
        elif not isinstance(host.basic_auth_password, PresentSecret):
            reason = "no stored password hash"
        else:
            reason = "stored password is not a bcrypt hash"
        message = f"Basic auth skipped for {host.domain}: {reason}"
        logger.warning(f"[builder] {message}")
        self.warnings.append(message)
        return None


def build_document(hosts: Iterable[Any], admin_listen: str | None = None) -> ConfigDocument:
    """Build a document for `hosts` with a fresh builder."""
    return DocumentBuilder(admin_listen=admin_listen).build(hosts)
