"""
Read-only checks against the Caddy admin API: liveness and certificate info.
None of these raise; a failed check reads as "not running" or "no info".
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from typing import Any

import httpx

from caddy_panel.config import settings

logger = logging.getLogger(__name__)

STATUS_ENDPOINTS = ("/config/", "/", "/admin/ping")


@dataclass
class ServerStatus:
    running: bool
    version: str = "unknown"
    document: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"running": self.running, "version": self.version}


@dataclass
class CertificateInfo:
    managed: bool = False
    issuer: str = "Unknown"
    not_before: str = ""
    not_after: str = ""
    error: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "CertificateInfo":
        error = data.get("error")
        return cls(
            managed=bool(data.get("managed") or False),
            issuer=data.get("issuer") or "Unknown",
            not_before=data.get("not_before") or "",
            not_after=data.get("not_after") or "",
            error=str(error) if error else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ControlPlaneInspector:
    def __init__(self, base_url: str | None = None, timeout: float | None = None,
                 client: httpx.AsyncClient | None = None):
        self.base_url = (base_url or settings.CADDY_API_URL).rstrip("/")
        self.timeout = timeout or settings.CADDY_STATUS_TIMEOUT
        self.client = client

    @asynccontextmanager
    async def _client(self):
        if self.client is not None:
            yield self.client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as c:
                yield c

    async def get_status(self) -> ServerStatus:
        """Try each status endpoint in order; the first 2xx or 404 means Caddy is up."""
        async with self._client() as c:
            for endpoint in STATUS_ENDPOINTS:
                url = f"{self.base_url}{endpoint}"
                try:
                    r = await c.get(url, headers={"Accept": "application/json"}, timeout=self.timeout)
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    logger.debug(f"[inspector] {url} failed: {e!r}")
                    continue
                if not (r.is_success or r.status_code == 404):
                    logger.debug(f"[inspector] {url} returned {r.status_code}")
                    continue
                if endpoint == "/config/" and r.is_success:
                    try:
                        data = r.json()
                    except ValueError:
                        logger.debug(f"[inspector] Could not parse config from {url}")
                        return ServerStatus(running=True)
                    if isinstance(data, dict):
                        server = data.get("server")
                        version = server.get("version") if isinstance(server, dict) else None
                        return ServerStatus(running=True, version=version or "unknown", document=data)
                return ServerStatus(running=True)
        logger.debug(f"[inspector] No Caddy endpoint answered at {self.base_url}")
        return ServerStatus(running=False)

    async def get_certificate_status(self, domain: str) -> CertificateInfo | None:
        """Certificate metadata for `domain`, or None if Caddy has none or the call failed."""
        url = f"{self.base_url}/certificates/{domain}"
        try:
            async with self._client() as c:
                r = await c.get(url, headers={"Accept": "application/json"}, timeout=self.timeout)
            if r.status_code == 404:
                return None
            r.raise_for_status()
            data = r.json()
            if not isinstance(data, dict):
                raise ValueError("certificate payload is not an object")
            return CertificateInfo.from_payload(data)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning(f"[inspector] Failed to get certificate status for {domain}: {e}")
            return None
