# core/tenancy.py
from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from pydantic import ValidationError

from .memory import InvalidPathError, StoreError
from .models import TenantConfig, utc_now_iso

logger = logging.getLogger(__name__)

# ============================================================
# CONFIG
# ============================================================

# Top-level routes that must never be read as a domain.
RESERVED_PATHS = frozenset(["admin", "portfolio", "u", "api", "assets"])

LOCAL_HOSTS = ("127.0.0.1",)

# Order matters: no replacement token contains any of the escaped characters.
DOMAIN_ESCAPES: List[Tuple[str, str]] = [
    (".", "_DOT_"),
    ("#", "_HASH_"),
    ("$", "_DOLLAR_"),
    ("[", "_LBRACKET_"),
    ("]", "_RBRACKET_"),
]

USER_ID_RE = re.compile(r"^[a-zA-Z0-9]+$")
USERNAME_RE = re.compile(r"^[a-z0-9-]+$")
# Normalized hostname: dot-separated labels of letters, digits and '-'.
DOMAIN_RE = re.compile(r"^[a-z0-9-]+(?:\.[a-z0-9-]+)+$")
MIN_USER_ID_LENGTH = 20


class RegistrationError(Exception):
    """A tenant/username/domain write did not reach the store."""


class ConflictError(RegistrationError):
    def __init__(self, kind: str, key: str, owner: str):
        super().__init__(f"{kind} '{key}' is already registered to another user")
        self.kind = kind
        self.key = key
        self.owner = owner


# ============================================================
# DOMAINS
# ============================================================

def is_domain_path(path: Optional[str]) -> bool:
    """A route segment that should be treated as a domain (e.g. /johndoe.com)."""
    if not path:
        return False
    return "." in path and path.lower() not in RESERVED_PATHS and len(path) > 3


def normalize_domain(domain: str) -> str:
    d = re.sub(r"^https?://", "", domain)
    d = re.sub(r"^www\.", "", d)
    d = re.sub(r"/$", "", d)
    return d.lower()


def encode_domain(domain: str) -> str:
    for raw, token in DOMAIN_ESCAPES:
        domain = domain.replace(raw, token)
    return domain


def decode_domain(encoded: str) -> str:
    for raw, token in DOMAIN_ESCAPES:
        encoded = encoded.replace(token, raw)
    return encoded


def domain_key(domain: str) -> str:
    return encode_domain(normalize_domain(domain))


def validate_domain(domain: str) -> str:
    """Normalize `domain` and make sure it is a plain hostname. Returns the normalized form."""
    normalized = normalize_domain(domain or "")
    if not DOMAIN_RE.match(normalized):
        raise ValueError(f"Invalid domain: {domain!r}")
    return normalized


def looks_like_user_id(identifier: str) -> bool:
    return len(identifier) > MIN_USER_ID_LENGTH and bool(USER_ID_RE.match(identifier))


def validate_username(username: str) -> None:
    if len(username) < 3 or not USERNAME_RE.match(username):
        raise ValueError(
            "Username must be at least 3 characters of lowercase letters, digits or '-'"
        )


# ============================================================
# SERVICE
# ============================================================

class TenantService:
    """
    Tenant configuration plus the username/domain indexes.

    Reads degrade to None when the store fails so that public pages keep
    answering; writes raise RegistrationError.
    """

    def __init__(self, store, primary_hostname: str = "localhost"):
        self.store = store
        self.primary_hostname = primary_hostname

    # --------------------------------------------------------
    # read path
    # --------------------------------------------------------
    def _lookup(self, path: str, what: str):
        try:
            return self.store.get(path)
        except (StoreError, InvalidPathError) as e:
            logger.warning("Error fetching %s: %s", what, e)
            return None

    def _lookup_user_id(self, path: str, what: str) -> Optional[str]:
        value = self._lookup(path, what)
        if value is not None and not isinstance(value, str):
            logger.warning("Ignoring malformed %s entry at %s", what, path)
            return None
        return value or None

    def get_user_id_by_username(self, username: str) -> Optional[str]:
        return self._lookup_user_id(f"usernames/{username}", "user by username")

    def get_user_id_by_domain(self, domain: str) -> Optional[str]:
        return self._lookup_user_id(f"domains/{domain_key(domain)}", "user by domain")

    def get_tenant_config(self, user_id: str) -> Optional[TenantConfig]:
        data = self._lookup(f"tenants/{user_id}", "tenant config")
        if not data:
            return None
        try:
            return TenantConfig.model_validate(data)
        except ValidationError as e:
            logger.warning("Malformed tenant config for %s: %s", user_id, e)
            return None

    # --------------------------------------------------------
    # write path
    # --------------------------------------------------------
    def _write(self, path: str, value, what: str) -> None:
        try:
            self.store.set(path, value)
        except StoreError as e:
            logger.error("Error %s: %s", what, e)
            raise RegistrationError(f"Error {what}: {e}") from e

    def save_tenant_config(self, user_id: str, **changes) -> TenantConfig:
        now = utc_now_iso()
        existing = self.get_tenant_config(user_id)
        fields = {"is_active": True, "created_at": existing.created_at if existing else now}
        fields.update(changes)
        fields.update(user_id=user_id, last_updated=now)
        config = TenantConfig(**fields)
        self._write(f"tenants/{user_id}", config.to_store(), "saving tenant config")
        return config

    # Index keys must stay a single path segment, otherwise a write lands
    # inside (or on top of) another tenant's entry.
    @staticmethod
    def _username_path(username: str) -> str:
        if not username or "/" in username:
            raise ValueError(f"Invalid username: {username!r}")
        return f"usernames/{username}"

    @staticmethod
    def _domain_path(domain: str) -> str:
        return f"domains/{encode_domain(validate_domain(domain))}"

    def register_username(self, username: str, user_id: str) -> None:
        self._write(self._username_path(username), user_id, "registering username")

    def register_domain(self, domain: str, user_id: str) -> None:
        self._write(self._domain_path(domain), user_id, "registering domain")

    def _current_owner(self, path: str) -> Optional[str]:
        try:
            owner = self.store.get(path)
        except StoreError as e:
            raise RegistrationError(f"Error checking {path}: {e}") from e
        return owner if isinstance(owner, str) and owner else None

    def claim_username(self, username: str, user_id: str) -> None:
        owner = self._current_owner(self._username_path(username))
        if owner and owner != user_id:
            raise ConflictError("username", username, owner)
        self.register_username(username, user_id)

    def claim_domain(self, domain: str, user_id: str) -> None:
        owner = self._current_owner(self._domain_path(domain))
        if owner and owner != user_id:
            raise ConflictError("domain", normalize_domain(domain), owner)
        self.register_domain(domain, user_id)

    # --------------------------------------------------------
    # resolution
    # --------------------------------------------------------
    def is_custom_domain(self, hostname: Optional[str]) -> bool:
        if not hostname:
            return False
        return (
            hostname != self.primary_hostname
            and hostname not in LOCAL_HOSTS
            and "localhost" not in hostname
        )

    def resolve_user_id_from_route(self, identifier: str) -> Optional[str]:
        # Long alphanumeric identifiers are provider-issued user IDs.
        if looks_like_user_id(identifier):
            return identifier
        return self.get_user_id_by_username(identifier)

    def resolve_user_id(
        self,
        route_user_id: Optional[str] = None,
        route_username: Optional[str] = None,
        domain_path: Optional[str] = None,
        hostname: Optional[str] = None,
    ) -> Optional[str]:
        """
        Priority: path-based domain, then the request's own custom domain,
        then route parameters (user ID before username). A domain miss
        falls through to the route parameters.
        """
        domain = None
        if domain_path and is_domain_path(domain_path):
            domain = domain_path
        elif self.is_custom_domain(hostname):
            domain = hostname

        if domain:
            user_id = self.get_user_id_by_domain(domain)
            if user_id:
                return user_id
            logger.info("No owner for domain %s, falling back to route", domain)

        identifier = route_user_id or route_username
        if not identifier:
            return None
        return self.resolve_user_id_from_route(identifier)

    def portfolio_url(self, config: TenantConfig, base_url: str) -> str:
        base = base_url.rstrip("/")
        if config.custom_domain:
            return f"https://{config.custom_domain}"
        if config.username:
            return f"{base}/u/{config.username}"
        return f"{base}/portfolio/{config.user_id}"
