"""
Reconciliation of stored proxy hosts onto the running Caddy instance.

Every mutation follows the same unit of work:

    begin -> mutate -> read all hosts -> build document -> publish
          -> commit                          (publish succeeded)
          -> undo mutation, roll back, raise (publish failed)

The undo is performed explicitly before the rollback so the caller never
sees a host that Caddy does not serve. Audit entries are written after the
commit in their own session and can never fail the operation.
"""
import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from caddy_panel.config import settings
from caddy_panel.errors import AppError, InternalError, NotFoundError
from caddy_panel.caddy.builder import DocumentBuilder
from caddy_panel.caddy.document import ConfigDocument
from caddy_panel.caddy.inspector import CertificateInfo, ControlPlaneInspector, ServerStatus
from caddy_panel.caddy.publisher import ControlPlanePublisher
from caddy_panel.persistence.db import DBSession, SessionLocal
from caddy_panel.persistence.models import HOST_FIELDS, AuditAction, AuditLog, ProxyHost
from caddy_panel.persistence.repos import AuditLogRepo, ProxyHostRepo
from caddy_panel.services.audit import ENTITY_PROXY_HOST, SYSTEM_USER_ID, AuditSink, diff_changes
from caddy_panel.services.passwords import hash_password
from caddy_panel.services.validation import validate_create, validate_update

logger = logging.getLogger(__name__)

# Columns that may be set to None by an update
NULLABLE_FIELDS = {"advanced_config", "basic_auth_username"}
RECENT_ACTIVITY = 5
AUDIT_LOG_LIMIT = 100


def _as_dict(data: Any, partial: bool = False) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=partial)
    return dict(data)


def _blank_to_none(value: Any) -> Any:
    return None if isinstance(value, str) and not value.strip() else value


def serialized(method):
    """Run one mutate -> publish -> audit operation at a time on this reconciler."""
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        async with self._lock:
            return await method(self, *args, **kwargs)
    return wrapper


class Reconciler:
    def __init__(self, publisher: ControlPlanePublisher | None = None,
                 inspector: ControlPlaneInspector | None = None,
                 audit: AuditSink | None = None,
                 session_factory: sessionmaker | None = None,
                 builder: DocumentBuilder | None = None,
                 cert_batch_size: int | None = None):
        self.publisher = publisher or ControlPlanePublisher()
        self.inspector = inspector or ControlPlaneInspector()
        self.session_factory = session_factory or SessionLocal
        self.audit = audit or AuditSink(self.session_factory)
        self.builder = builder or DocumentBuilder()
        self.cert_batch_size = cert_batch_size or settings.CERT_BATCH_SIZE
        # held by @serialized operations; SQLite keeps its write lock until commit
        self._lock = asyncio.Lock()

    # --- unit of work ---

    @asynccontextmanager
    async def _transaction(self, action: str):
        """DBSession that turns unexpected failures into InternalError after rollback."""
        try:
            with DBSession(self.session_factory) as db:
                yield db
        except AppError:
            raise
        except Exception as e:
            logger.exception(f"[reconciler] {action} failed: {e}")
            raise InternalError(cause=e) from e

    async def _publish_hosts(self, db: Session) -> ConfigDocument:
        hosts = ProxyHostRepo(db).list_all()
        doc = self.builder.build(hosts)
        await self.publisher.publish(doc)
        return doc

    async def _publish_or_undo(self, db: Session, undo: Callable[[], Any], action: str) -> None:
        """Publish the post-mutation host set; on any failure run `undo` and re-raise."""
        try:
            await self._publish_hosts(db)
        except Exception as e:
            logger.error(f"[reconciler] Publishing after {action} failed, undoing: {e}")
            try:
                undo()
                db.flush()
            except Exception as undo_error:
                # the rollback that follows still discards the mutation
                logger.exception(f"[reconciler] Undo of {action} failed: {undo_error}")
            raise

    # --- mutations ---

    def _creation_values(self, data: dict[str, Any]) -> dict[str, Any]:
        values = {name: data[name] for name in HOST_FIELDS if data.get(name) is not None}
        password = values.pop("basic_auth_password", None)
        values["advanced_config"] = _blank_to_none(values.get("advanced_config"))
        if values.get("basic_auth_enabled"):
            values["basic_auth_password"] = hash_password(password)
        else:
            values["basic_auth_username"] = None
            values["basic_auth_password"] = None
        return values

    @serialized
    async def create_host(self, data: Any, user_id: int = SYSTEM_USER_ID) -> ProxyHost:
        data = _as_dict(data)
        validate_create(data)
        values = self._creation_values(data)

        async with self._transaction("create") as db:
            repo = ProxyHostRepo(db)
            host = repo.create(ProxyHost(**values))
            await self._publish_or_undo(db, lambda: repo.delete(host.id), f"create of {host.domain}")

        logger.info(f"[reconciler] Created proxy host {host.id} ({host.domain})")
        self.audit.record(AuditAction.CREATE, ENTITY_PROXY_HOST, host.id, user_id, {
            "domain": host.domain,
            "target_host": host.target_host,
            "target_port": host.target_port,
            "enabled": host.enabled,
            "basic_auth_enabled": host.basic_auth_enabled,
            "ssl_enabled": host.ssl_enabled,
            "force_ssl": host.force_ssl,
            "http2_support": host.http2_support,
            "http3_support": host.http3_support,
            "cache_enabled": host.cache_enabled,
            "ignore_invalid_cert": host.ignore_invalid_cert,
        })
        return host

    def _apply_update(self, host: ProxyHost, data: dict[str, Any]) -> None:
        for name in HOST_FIELDS:
            if name not in data or name == "basic_auth_password":
                continue
            value = data[name]
            if value is None and name not in NULLABLE_FIELDS:
                continue
            setattr(host, name, value)
        host.advanced_config = _blank_to_none(host.advanced_config)

        if not host.basic_auth_enabled:
            host.basic_auth_username = None
            host.basic_auth_password = None
        elif data.get("basic_auth_password"):
            host.basic_auth_password = hash_password(data["basic_auth_password"])

    @serialized
    async def update_host(self, host_id: int, data: Any, user_id: int = SYSTEM_USER_ID) -> ProxyHost:
        data = _as_dict(data, partial=True)

        async with self._transaction("update") as db:
            repo = ProxyHostRepo(db)
            host = repo.get(host_id)
            if host is None:
                raise NotFoundError(f"Proxy host {host_id} not found")
            validate_update(data, host)

            before = host.column_values()
            self._apply_update(host, data)
            repo.update(host)
            await self._publish_or_undo(db, lambda: repo.restore(host_id, before), f"update of {host_id}")
            after = host.column_values()

        changes = diff_changes(before, after)
        logger.info(f"[reconciler] Updated proxy host {host_id} ({len(changes)} changes)")
        if changes:
            self.audit.record(AuditAction.UPDATE, ENTITY_PROXY_HOST, host_id, user_id, changes)
        return host

    @serialized
    async def delete_host(self, host_id: int, user_id: int = SYSTEM_USER_ID) -> bool:
        async with self._transaction("delete") as db:
            repo = ProxyHostRepo(db)
            host = repo.get(host_id)
            if host is None:
                raise NotFoundError(f"Proxy host {host_id} not found")
            domain = host.domain
            values = {**host.column_values(), "created_at": host.created_at}
            repo.delete(host_id)
            await self._publish_or_undo(db, lambda: repo.restore(host_id, values), f"delete of {host_id}")

        logger.info(f"[reconciler] Deleted proxy host {host_id} ({domain})")
        self.audit.record(AuditAction.DELETE, ENTITY_PROXY_HOST, host_id, user_id, {"domain": domain})
        return True

    @serialized
    async def toggle_host(self, host_id: int, user_id: int = SYSTEM_USER_ID,
                          enabled: bool | None = None) -> ProxyHost:
        """Flip `enabled`, or set it when `enabled` is given."""
        async with self._transaction("toggle") as db:
            repo = ProxyHostRepo(db)
            host = repo.get(host_id)
            if host is None:
                raise NotFoundError(f"Proxy host {host_id} not found")
            previous = bool(host.enabled)
            host.enabled = (not previous) if enabled is None else bool(enabled)
            repo.update(host)

            def undo():
                host.enabled = previous

            await self._publish_or_undo(db, undo, f"toggle of {host_id}")

        status = "active" if host.enabled else "disabled"
        logger.info(f"[reconciler] Proxy host {host_id} ({host.domain}) is now {status}")
        self.audit.record(AuditAction.TOGGLE, ENTITY_PROXY_HOST, host_id, user_id, {
            "domain": host.domain,
            "status": {"from": "active" if previous else "disabled", "to": status},
        })
        return host

    # --- full sync ---

    @serialized
    async def reconcile(self) -> dict[str, Any]:
        """Rebuild and publish the document for the current host set."""
        async with self._transaction("reconcile") as db:
            hosts = ProxyHostRepo(db).list_all()
            doc = self.builder.build(hosts)
            warnings = list(self.builder.warnings)
            applied = await self.publisher.publish(doc)
        logger.info(f"[reconciler] Reconciled {len(hosts)} hosts ({len(doc.routes)} routes)")
        return {"hosts": len(hosts), "routes": len(doc.routes), "applied": applied, "warnings": warnings}

    async def initialize(self, attempts: int | None = None, delay: float | None = None,
                         sleep=asyncio.sleep) -> dict[str, Any]:
        """
        Startup sync. Caddy may still be booting, so the full reconcile is
        retried a fixed number of times with a constant delay.
        """
        attempts = attempts or settings.STARTUP_RECONCILE_ATTEMPTS
        delay = settings.STARTUP_RECONCILE_DELAY if delay is None else delay
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            logger.info(f"[reconciler] Initial Caddy sync, attempt {attempt}/{attempts}")
            try:
                return await self.reconcile()
            except Exception as e:
                last_error = e
                if attempt < attempts:
                    logger.warning(f"[reconciler] Initial sync failed ({e}), retrying in {delay}s")
                    await sleep(delay)
        logger.error(f"[reconciler] Initial Caddy sync failed after {attempts} attempts: {last_error}")
        raise last_error

    # --- reads ---

    async def _certificates(self, hosts: list[ProxyHost]) -> dict[int, CertificateInfo | None]:
        found: dict[int, CertificateInfo | None] = {}
        ssl_hosts = [h for h in hosts if h.ssl_enabled]
        for i in range(0, len(ssl_hosts), self.cert_batch_size):
            batch = ssl_hosts[i:i + self.cert_batch_size]
            results = await asyncio.gather(*(self.inspector.get_certificate_status(h.domain) for h in batch))
            found.update({h.id: cert for h, cert in zip(batch, results)})
        return found

    async def list_hosts(self, load_certificates: bool = True) -> list[tuple[ProxyHost, CertificateInfo | None]]:
        with DBSession(self.session_factory) as db:
            hosts = ProxyHostRepo(db).list_all()
        certs = await self._certificates(hosts) if load_certificates else {}
        return [(h, certs.get(h.id)) for h in hosts]

    async def get_host(self, host_id: int, load_certificate: bool = True) -> tuple[ProxyHost, CertificateInfo | None]:
        with DBSession(self.session_factory) as db:
            host = ProxyHostRepo(db).get(host_id)
        if host is None:
            raise NotFoundError(f"Proxy host {host_id} not found")
        cert = None
        if load_certificate and host.ssl_enabled:
            cert = await self.inspector.get_certificate_status(host.domain)
        return host, cert

    async def status(self) -> ServerStatus:
        return await self.inspector.get_status()

    async def certificate(self, domain: str) -> CertificateInfo | None:
        return await self.inspector.get_certificate_status(domain)

    async def list_audit_logs(self, limit: int = AUDIT_LOG_LIMIT, host_id: int | None = None) -> list[AuditLog]:
        """Newest audit entries first, optionally only those of one proxy host."""
        with DBSession(self.session_factory) as db:
            repo = AuditLogRepo(db)
            if host_id is None:
                return repo.list_recent(limit)
            return repo.list_for_entity(ENTITY_PROXY_HOST, host_id, limit)

    async def dashboard(self) -> dict[str, Any]:
        with DBSession(self.session_factory) as db:
            hosts = ProxyHostRepo(db).list_all()
            recent = AuditLogRepo(db).list_recent(RECENT_ACTIVITY)
        status = await self.inspector.get_status()
        return {
            "total_hosts": len(hosts),
            "active_hosts": sum(1 for h in hosts if h.enabled),
            "caddy_running": status.running,
            "caddy_version": status.version,
            "recent_activity": recent,
        }
