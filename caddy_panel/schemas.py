from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, ConfigDict

from caddy_panel.caddy.secrets import normalize_secret, is_valid_hash


class ProxyHostIn(BaseModel):
    domain: str
    target_host: str
    target_port: int
    target_protocol: Literal["http", "https"] = "http"
    ssl_enabled: bool = True
    force_ssl: bool = True
    http2_support: bool = True
    http3_support: bool = True
    enabled: bool = True
    cache_enabled: bool = False
    ignore_invalid_cert: bool = False
    advanced_config: Optional[str] = None
    basic_auth_enabled: bool = False
    basic_auth_username: Optional[str] = None
    basic_auth_password: Optional[str] = None  # plaintext, hashed before storage


class ProxyHostUpdate(BaseModel):
    """Partial update. Only fields present in the request body are applied."""
    domain: Optional[str] = None
    target_host: Optional[str] = None
    target_port: Optional[int] = None
    target_protocol: Optional[Literal["http", "https"]] = None
    ssl_enabled: Optional[bool] = None
    force_ssl: Optional[bool] = None
    http2_support: Optional[bool] = None
    http3_support: Optional[bool] = None
    enabled: Optional[bool] = None
    cache_enabled: Optional[bool] = None
    ignore_invalid_cert: Optional[bool] = None
    advanced_config: Optional[str] = None
    basic_auth_enabled: Optional[bool] = None
    basic_auth_username: Optional[str] = None
    # None keeps the stored hash, "" clears it
    basic_auth_password: Optional[str] = None


class ToggleIn(BaseModel):
    enabled: Optional[bool] = None


class ProxyHostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    domain: str
    target_host: str
    target_port: int
    target_protocol: str
    ssl_enabled: bool
    force_ssl: bool
    http2_support: bool
    http3_support: bool
    enabled: bool
    cache_enabled: bool
    ignore_invalid_cert: bool
    advanced_config: Optional[str] = None
    basic_auth_enabled: bool
    basic_auth_username: Optional[str] = None
    has_basic_auth_password: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cert_status: Optional[dict[str, Any]] = None

    @classmethod
    def from_host(cls, host, cert_status: dict[str, Any] | None = None) -> "ProxyHostOut":
        out = cls.model_validate(host)
        out.has_basic_auth_password = is_valid_hash(normalize_secret(host.basic_auth_password))
        out.cert_status = cert_status
        return out


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action_type: str
    entity_type: str
    entity_id: Optional[int] = None
    user_id: Optional[int] = None
    changes: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
