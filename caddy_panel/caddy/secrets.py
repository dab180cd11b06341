"""
Normalization of stored host records before they reach the document builder.

The storage layer does not always hand back a clean `str | None` for the
basic-auth password column: some drivers surface an absent value as an empty
string or as a non-null placeholder object. Every record is converted into a
`HostSnapshot` whose password is either `PresentSecret(hash)` or `ABSENT`,
so consumers only ever check the variant.
"""
import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime
from collections.abc import Iterable, Mapping
from typing import Any, Union

logger = logging.getLogger(__name__)

# Format tags of bcrypt hashes accepted by Caddy's http_basic provider
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


@dataclass(frozen=True)
class PresentSecret:
    value: str

    def __repr__(self) -> str:
        return f"PresentSecret({self.value[:4]}...)"

@dataclass(frozen=True)
class AbsentSecret:
    def __bool__(self) -> bool:
        return False

ABSENT = AbsentSecret()

Secret = Union[PresentSecret, AbsentSecret]


def normalize_secret(value: Any) -> Secret:
    """Collapse every "no secret" representation into ABSENT. Never raises."""
    if isinstance(value, (PresentSecret, AbsentSecret)):
        return value
    if isinstance(value, str):
        return PresentSecret(value) if value.strip() else ABSENT
    if value is not None:
        logger.debug(f"[secrets] Coercing stored secret of type {type(value).__name__} to absent")
    return ABSENT


def is_valid_hash(secret: Secret) -> bool:
    """True when the secret is a bcrypt hash Caddy can use as-is."""
    return isinstance(secret, PresentSecret) and secret.value.startswith(BCRYPT_PREFIXES)


@dataclass(frozen=True)
class HostSnapshot:
    """Immutable view of a proxy host as consumed by the document builder."""
    id: int | None = None
    domain: str = ""
    target_host: str = ""
    target_port: int = 0
    target_protocol: str = "http"
    ssl_enabled: bool = False
    force_ssl: bool = False
    http2_support: bool = False
    http3_support: bool = False
    enabled: bool = True
    cache_enabled: bool = False
    ignore_invalid_cert: bool = False
    advanced_config: str | None = None
    basic_auth_enabled: bool = False
    basic_auth_username: str | None = None
    basic_auth_password: Secret = ABSENT
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_valid_auth(self) -> bool:
        return bool(self.basic_auth_username) and is_valid_hash(self.basic_auth_password)


_SNAPSHOT_FIELDS = tuple(f.name for f in fields(HostSnapshot))


def _read(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def normalize_host(row: Any) -> HostSnapshot:
    """Build a snapshot from an ORM row, a mapping or an existing snapshot."""
    if isinstance(row, HostSnapshot):
        secret = normalize_secret(row.basic_auth_password)
        return row if secret is row.basic_auth_password else replace(row, basic_auth_password=secret)

    values = {name: _read(row, name) for name in _SNAPSHOT_FIELDS}
    values["basic_auth_password"] = normalize_secret(values["basic_auth_password"])
    username = values["basic_auth_username"]
    values["basic_auth_username"] = username if isinstance(username, str) and username else None
    advanced = values["advanced_config"]
    values["advanced_config"] = advanced if isinstance(advanced, str) and advanced.strip() else None
    # drop unset values so dataclass defaults apply
    return HostSnapshot(**{k: v for k, v in values.items() if v is not None})


def normalize_hosts(rows: Iterable[Any]) -> list[HostSnapshot]:
    """Normalize a whole host set. Idempotent: normalizing twice changes nothing."""
    return [normalize_host(row) for row in rows]
