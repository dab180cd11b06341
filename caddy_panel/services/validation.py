"""
Input validation for proxy host mutations.
Runs before anything is written; every problem is collected and raised as
one ValidationError keyed by field name.
"""
import re
from typing import Any

from caddy_panel.errors import ValidationError
from caddy_panel.caddy.builder import clean_target_host
from caddy_panel.caddy.secrets import is_valid_hash, normalize_secret
from caddy_panel.services.passwords import MAX_PASSWORD_BYTES

DOMAIN_RE = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")
HOSTNAME_RE = re.compile(
    r"^(([a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])\.)*([A-Za-z0-9]|[A-Za-z0-9][A-Za-z0-9-]*[A-Za-z0-9])$"
    r"|^(?:[0-9]{1,3}\.){3}[0-9]{1,3}$"
)
TARGET_PROTOCOLS = ("http", "https")


def is_valid_domain(domain: Any) -> bool:
    return isinstance(domain, str) and bool(DOMAIN_RE.match(domain))


def is_valid_hostname(hostname: Any) -> bool:
    return isinstance(hostname, str) and bool(HOSTNAME_RE.match(hostname))


def is_valid_port(port: Any) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _check_fields(data: dict[str, Any], errors: dict[str, str]) -> None:
    if "domain" in data and not is_valid_domain(data["domain"]):
        errors["domain"] = "Please enter a valid domain name"
    if "target_host" in data:
        host = data["target_host"]
        if _blank(host) or not is_valid_hostname(clean_target_host(host)):
            errors["target_host"] = "Please enter a valid target hostname"
    if "target_port" in data and not is_valid_port(data["target_port"]):
        errors["target_port"] = "Port must be between 1 and 65535"
    if "target_protocol" in data and data["target_protocol"] not in TARGET_PROTOCOLS:
        errors["target_protocol"] = "Protocol must be http or https"
    password = data.get("basic_auth_password")
    if isinstance(password, str) and len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors["basic_auth_password"] = f"Password must be at most {MAX_PASSWORD_BYTES} bytes"


def validate_create(data: dict[str, Any]) -> None:
    """Check a full host definition. Raises ValidationError."""
    errors: dict[str, str] = {}
    for name in ("domain", "target_host", "target_port"):
        if data.get(name) in (None, ""):
            errors[name] = "This field is required"
    _check_fields({k: v for k, v in data.items() if k not in errors}, errors)

    if data.get("basic_auth_enabled"):
        if _blank(data.get("basic_auth_username")):
            errors["basic_auth_username"] = "Username is required when basic auth is enabled"
        if _blank(data.get("basic_auth_password")):
            errors["basic_auth_password"] = "Password is required when basic auth is enabled"

    if errors:
        raise ValidationError("Invalid proxy host", errors)


def validate_update(data: dict[str, Any], existing: Any) -> None:
    """
    Check a partial update against the stored record.

    `basic_auth_password` absent (or None) keeps the stored hash; an empty
    string clears it, which is rejected while basic auth stays enabled.
    """
    errors: dict[str, str] = {}
    for name in ("domain", "target_host", "target_port", "target_protocol"):
        if name in data and data[name] in (None, ""):
            errors[name] = "This field cannot be empty"
    _check_fields({k: v for k, v in data.items() if k not in errors}, errors)

    auth_enabled = data.get("basic_auth_enabled")
    if auth_enabled is None:
        auth_enabled = bool(existing.basic_auth_enabled)

    if auth_enabled:
        username = data["basic_auth_username"] if "basic_auth_username" in data else existing.basic_auth_username
        if _blank(username):
            errors["basic_auth_username"] = "Username is required when basic auth is enabled"

        password = data.get("basic_auth_password")
        if password is not None and not password.strip():
            errors["basic_auth_password"] = "Password cannot be cleared while basic auth is enabled"
        elif password is None and not is_valid_hash(normalize_secret(existing.basic_auth_password)):
            errors["basic_auth_password"] = "Password is required when basic auth is enabled"

    if errors:
        raise ValidationError("Invalid proxy host", errors)
