"""
Audit trail for host changes. Recording is best-effort: a failure here is
logged and never affects the operation being audited.
"""
import logging
from typing import Any

from sqlalchemy.orm import sessionmaker

from caddy_panel.persistence.db import DBSession
from caddy_panel.persistence.models import AuditLog
from caddy_panel.persistence.repos import AuditLogRepo

logger = logging.getLogger(__name__)

ENTITY_PROXY_HOST = "proxy_host"
SYSTEM_USER_ID = 0

# field -> label used in update diffs
_TRACKED_FLAGS = {
    "basic_auth_enabled": "basicAuth",
    "ssl_enabled": "ssl",
    "force_ssl": "forceSSL",
    "http2_support": "http2Support",
    "http3_support": "http3Support",
    "cache_enabled": "cache",
    "ignore_invalid_cert": "ignoreInvalidCert",
}


def _onoff(value: Any) -> str:
    return "enabled" if value else "disabled"


def _status(value: Any) -> str:
    return "active" if value else "disabled"


def diff_changes(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """
    Describe an update as {field: {"from": old, "to": new}}.
    Secrets are never included. Returns {} when nothing tracked changed.
    """
    changes: dict[str, Any] = {}
    for name in ("domain", "target_host", "target_port", "target_protocol", "advanced_config"):
        if before.get(name) != after.get(name):
            changes[name] = {"from": before.get(name), "to": after.get(name)}
    if bool(before.get("enabled")) != bool(after.get("enabled")):
        changes["status"] = {"from": _status(before.get("enabled")), "to": _status(after.get("enabled"))}
    for name, label in _TRACKED_FLAGS.items():
        if bool(before.get(name)) != bool(after.get(name)):
            changes[label] = {"from": _onoff(before.get(name)), "to": _onoff(after.get(name))}
    if before.get("basic_auth_password") != after.get("basic_auth_password"):
        changes["basicAuthPassword"] = "changed"
    if changes and "domain" not in changes:
        changes["domain"] = after.get("domain")
    return changes


class AuditSink:
    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory

    def record(self, action_type: str, entity_type: str, entity_id: int | None,
               user_id: int | None, changes: dict[str, Any] | None = None) -> None:
        try:
            with DBSession(self.session_factory) as db:
                AuditLogRepo(db).create(AuditLog(
                    action_type=getattr(action_type, "value", action_type),
                    entity_type=entity_type,
                    entity_id=entity_id,
                    user_id=user_id,
                    changes=changes or {},
                ))
        except Exception as e:
            logger.error(f"[audit] Failed to record {action_type} for {entity_type} {entity_id}: {e}")

