"""
Pushes configuration documents to the Caddy admin API.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx

from caddy_panel.config import settings
from caddy_panel.errors import ControlPlaneError, CONFIG_APPLY_ERROR, CONTROL_PLANE_UNREACHABLE
from caddy_panel.caddy.document import ConfigDocument
from caddy_panel.caddy.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)


class ControlPlanePublisher:
    """
    Loads a full document into Caddy via POST /load.

    The admin block of the running configuration is kept: Caddy owns its
    own admin surface, and an operator may have set the listen address
    outside the panel.
    """

    def __init__(self, base_url: str | None = None, policy: RetryPolicy | None = None,
                 client: httpx.AsyncClient | None = None, timeout: float | None = None,
                 sleep=asyncio.sleep):
        self.base_url = (base_url or settings.CADDY_API_URL).rstrip("/")
        self.policy = policy or RetryPolicy.from_settings()
        self.client = client
        self.timeout = timeout or settings.CADDY_REQUEST_TIMEOUT
        self.sleep = sleep

    @asynccontextmanager
    async def _client(self):
        if self.client is not None:
            yield self.client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as c:
                yield c

    async def fetch_running(self, client: httpx.AsyncClient) -> dict[str, Any] | None:
        """Current configuration, or None when nothing is loaded or it cannot be read."""
        try:
            r = await client.get(f"{self.base_url}/config/", headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.warning(f"[publisher] Could not read running config: {e}")
            return None
        if not r.is_success:
            return None
        try:
            data = r.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def _attempt(self, doc: ConfigDocument, payload: dict[str, Any]) -> bool:
        payload = dict(payload)
        try:
            async with self._client() as c:
                running = await self.fetch_running(c)
                if running and isinstance(running.get("admin"), dict):
                    payload["admin"] = running["admin"]
                if running == payload:
                    logger.info("[publisher] Running configuration already up to date, skipping load")
                    return False

                routes = len(doc.routes)
                logger.debug(f"[publisher] POST {self.base_url}/load with {routes} routes")
                r = await c.post(f"{self.base_url}/load", json=payload)
        except httpx.HTTPError as e:
            raise ControlPlaneError(
                f"Caddy admin API unreachable at {self.base_url}",
                code=CONTROL_PLANE_UNREACHABLE,
                detail=str(e) or type(e).__name__,
            ) from e

        if not r.is_success:
            body = r.text
            logger.error(f"[publisher] Caddy rejected configuration ({r.status_code}): {body[:500]}")
            raise ControlPlaneError(
                f"Failed to apply Caddy configuration: {body}",
                code=CONFIG_APPLY_ERROR,
                remote_status=r.status_code,
                detail=body,
            )
        logger.info("[publisher] Successfully applied Caddy configuration")
        return True

    async def publish(self, doc: ConfigDocument) -> bool:
        """
        Apply `doc`, retrying per the policy. Returns False when the running
        configuration was already identical and no load was sent.
        Raises ControlPlaneError once retries are exhausted; anything else
        propagates unchanged.
        """
        payload = doc.to_dict()
        return await retry_with_backoff(lambda: self._attempt(doc, payload), self.policy, sleep=self.sleep)
