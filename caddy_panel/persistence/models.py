"""
SQLAlchemy database models for Caddy Panel.
Defines the proxy host declarations and the audit trail.
"""
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import DateTime, String, Integer, Boolean, JSON, Text
from caddy_panel.persistence.db import Base
import enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TargetProtocol(str, enum.Enum):
    """Protocol used to reach the backend."""
    HTTP = "http"
    HTTPS = "https"

class AuditAction(str, enum.Enum):
    """Actions recorded in the audit trail."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TOGGLE = "toggle"

# Columns that describe a host, used for snapshots and undo
HOST_FIELDS = (
    "domain", "target_host", "target_port", "target_protocol",
    "ssl_enabled", "force_ssl", "http2_support", "http3_support",
    "enabled", "cache_enabled", "ignore_invalid_cert", "advanced_config",
    "basic_auth_enabled", "basic_auth_username", "basic_auth_password",
)

class ProxyHost(Base):
    """One domain -> backend mapping served by Caddy."""
    __tablename__ = "proxy_hosts"
    id: Mapped[int] = mapped_column(primary_key=True)
    domain: Mapped[str] = mapped_column(String(255))  # not unique: first matching route wins
    target_host: Mapped[str] = mapped_column(String(255))
    target_port: Mapped[int] = mapped_column(Integer)
    target_protocol: Mapped[str] = mapped_column(String(16), default=TargetProtocol.HTTP.value)
    ssl_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    force_ssl: Mapped[bool] = mapped_column(Boolean, default=True)
    http2_support: Mapped[bool] = mapped_column(Boolean, default=True)
    http3_support: Mapped[bool] = mapped_column(Boolean, default=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    cache_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    ignore_invalid_cert: Mapped[bool] = mapped_column(Boolean, default=False)
    advanced_config: Mapped[str | None] = mapped_column(Text)  # free-form JSON route fragments
    basic_auth_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    basic_auth_username: Mapped[str | None] = mapped_column(String(255))
    basic_auth_password: Mapped[str | None] = mapped_column(String(255))  # bcrypt hash, never plaintext
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def column_values(self) -> dict:
        """Current values of the descriptive columns."""
        return {name: getattr(self, name) for name in HOST_FIELDS}

class AuditLog(Base):
    """Record of a change made through the reconciler."""
    __tablename__ = "audit_logs"
    id: Mapped[int] = mapped_column(primary_key=True)
    action_type: Mapped[str] = mapped_column(String(32))
    entity_type: Mapped[str] = mapped_column(String(64))
    entity_id: Mapped[int | None] = mapped_column(Integer)
    user_id: Mapped[int | None] = mapped_column(Integer)  # None for system actions
    changes: Mapped[dict | None] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=_utcnow)
