"""
Unit tests for tenant resolution and username/domain registration.
"""
from unittest.mock import MagicMock

import pytest

from core.memory import KeyValueStore
from core.tenancy import (
    ConflictError,
    RegistrationError,
    TenantService,
    decode_domain,
    encode_domain,
    is_domain_path,
    normalize_domain,
    validate_domain,
    validate_username,
)

FIREBASE_UID = "aB3dE5gH7jK9mN1pQ3sT5vX7z"  # 25 alphanumeric chars


@pytest.fixture
def tenants(store):
    return TenantService(store, primary_hostname="portfolios.app")


# ------------------------------------------------------------
# domain helpers
# ------------------------------------------------------------

@pytest.mark.parametrize("path, expected", [
    ("muhammadhamza.com", True),
    ("johndoe.com", True),
    ("u", False),
    ("a.b", False),
    ("admin", False),
    ("ADMIN", False),
    ("portfolio", False),
    ("nodots", False),
    ("", False),
    (None, False),
])
def test_is_domain_path(path, expected):
    assert is_domain_path(path) is expected


def test_encode_domain():
    assert encode_domain("john#doe.com") == "john_HASH_doe_DOT_com"
    assert encode_domain("a$b[c]") == "a_DOLLAR_b_LBRACKET_c_RBRACKET_"


@pytest.mark.parametrize("raw", ["john#doe.com", "a.b#c$d[e]f", "..##$$[[]]", "plain"])
def test_decode_restores_encoded(raw):
    assert decode_domain(encode_domain(raw)) == raw


@pytest.mark.parametrize("raw, expected", [
    ("https://www.Example.com/", "example.com"),
    ("EXAMPLE.COM", "example.com"),
    ("http://jane.dev", "jane.dev"),
    ("www.jane.dev/", "jane.dev"),
])
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


def test_validate_username():
    validate_username("jane-doe")
    for bad in ("ab", "Jane", "jane doe", "jane.doe"):
        with pytest.raises(ValueError):
            validate_username(bad)


# ------------------------------------------------------------
# resolution
# ------------------------------------------------------------

def test_domain_path_wins_over_route_params(tenants):
    tenants.register_domain("johndoe.com", "uid1")
    assert tenants.resolve_user_id(route_user_id="uid2", domain_path="johndoe.com") == "uid1"


def test_domain_miss_falls_back_to_username(tenants):
    tenants.register_username("alice", "uid3")
    assert tenants.resolve_user_id(route_username="alice", domain_path="unknown.com") == "uid3"


def test_custom_hostname_resolves(tenants):
    tenants.register_domain("https://www.Jane.dev/", "uid4")
    assert tenants.resolve_user_id(hostname="jane.dev") == "uid4"
    assert tenants.resolve_user_id(hostname="www.jane.dev") == "uid4"


def test_custom_hostname_miss_falls_back(tenants):
    tenants.register_username("alice", "uid3")
    assert tenants.resolve_user_id(route_username="alice", hostname="nobody.dev") == "uid3"


def test_reserved_domain_path_is_ignored(tenants):
    tenants.register_username("alice", "uid3")
    assert tenants.resolve_user_id(route_username="alice", domain_path="admin") == "uid3"


def test_user_id_preferred_over_username(tenants):
    tenants.register_username("alice", "uid3")
    assert tenants.resolve_user_id(route_user_id=FIREBASE_UID, route_username="alice") == FIREBASE_UID


def test_nothing_to_resolve(tenants):
    assert tenants.resolve_user_id() is None
    assert tenants.resolve_user_id(hostname="localhost") is None


def test_long_alphanumeric_is_used_directly():
    store = MagicMock()
    svc = TenantService(store)
    assert svc.resolve_user_id(route_user_id=FIREBASE_UID) == FIREBASE_UID
    store.get.assert_not_called()


def test_short_identifier_is_looked_up_as_username():
    store = MagicMock()
    store.get.return_value = "uid9"
    svc = TenantService(store)
    assert svc.resolve_user_id(route_user_id="abcdefghij") == "uid9"
    store.get.assert_called_once_with("usernames/abcdefghij")


def test_long_identifier_with_dash_is_a_username(tenants):
    slug = "jane-doe-the-developer-2024"
    tenants.register_username(slug, "uid5")
    assert tenants.resolve_user_id(route_username=slug) == "uid5"


def test_username_with_forbidden_chars_is_not_found(tenants):
    assert tenants.resolve_user_id(route_username="john.doe") is None


@pytest.mark.parametrize("hostname, expected", [
    ("portfolios.app", False),
    ("127.0.0.1", False),
    ("localhost", False),
    ("app.localhost", False),
    ("jane.dev", True),
    (None, False),
])
def test_is_custom_domain(tenants, hostname, expected):
    assert tenants.is_custom_domain(hostname) is expected


def test_store_failure_reads_as_not_found(failing_store):
    svc = TenantService(failing_store, "portfolios.app")
    assert svc.resolve_user_id(route_username="alice", domain_path="johndoe.com") is None
    assert svc.resolve_user_id(hostname="jane.dev") is None
    assert svc.get_tenant_config("uid1") is None


# ------------------------------------------------------------
# registration
# ------------------------------------------------------------

def test_register_domain_stores_encoded_key(tenants, store):
    tenants.register_domain("https://www.Example.com/", "u1")
    assert store.get("domains/example_DOT_com") == "u1"


def test_register_overwrites_existing_owner(tenants):
    tenants.register_username("alice", "u1")
    tenants.register_username("alice", "u2")
    assert tenants.get_user_id_by_username("alice") == "u2"


def test_claim_rejects_other_owner(tenants):
    tenants.register_username("alice", "u1")
    with pytest.raises(ConflictError):
        tenants.claim_username("alice", "u2")
    tenants.claim_username("alice", "u1")
    assert tenants.get_user_id_by_username("alice") == "u1"


def test_claim_domain_conflict(tenants):
    tenants.claim_domain("jane.dev", "u1")
    with pytest.raises(ConflictError) as exc:
        tenants.claim_domain("https://www.JANE.dev", "u2")
    assert exc.value.key == "jane.dev"


def test_claim_domain_cannot_reach_into_another_entry(tenants, store):
    tenants.claim_domain("alice.com", "uidAlice")
    with pytest.raises(ValueError):
        tenants.claim_domain("alice.com/x", "uidBob")
    assert store.get("domains/alice_DOT_com") == "uidAlice"
    assert tenants.resolve_user_id(domain_path="alice.com") == "uidAlice"


@pytest.mark.parametrize("domain", ["https://www./", "", "alice.com/x", "localhost", "a b.com"])
def test_register_domain_rejects_non_hostnames(tenants, store, domain):
    tenants.register_domain("alice.com", "uidAlice")
    with pytest.raises(ValueError):
        tenants.register_domain(domain, "uidBob")
    assert store.get("domains") == {"alice_DOT_com": "uidAlice"}


@pytest.mark.parametrize("username", ["", "alice/x"])
def test_username_key_is_one_segment(tenants, store, username):
    tenants.register_username("alice", "uidAlice")
    with pytest.raises(ValueError):
        tenants.register_username(username, "uidBob")
    with pytest.raises(ValueError):
        tenants.claim_username(username, "uidBob")
    assert store.get("usernames") == {"alice": "uidAlice"}


def test_non_string_index_entry_is_not_a_user_id(tenants, store):
    store.set("domains/alice_DOT_com", {"x": "uidBob"})
    store.set("usernames/alice", {"x": "uidBob"})
    assert tenants.resolve_user_id(domain_path="alice.com") is None
    assert tenants.resolve_user_id(route_username="alice") is None


def test_malformed_tenant_config_reads_as_missing(tenants, store):
    store.set("tenants/u1", {"username": "alice"})
    assert tenants.get_tenant_config("u1") is None


def test_validate_domain():
    assert validate_domain("https://www.Jane.dev/") == "jane.dev"
    with pytest.raises(ValueError):
        validate_domain("jane.dev/admin")


def test_write_failures_surface(failing_store):
    svc = TenantService(failing_store)
    with pytest.raises(RegistrationError):
        svc.register_username("alice", "u1")
    with pytest.raises(RegistrationError):
        svc.register_domain("jane.dev", "u1")
    with pytest.raises(RegistrationError):
        svc.save_tenant_config("u1", username="alice")
    with pytest.raises(RegistrationError):
        svc.claim_username("alice", "u1")


def test_save_tenant_config(tenants, store):
    first = tenants.save_tenant_config("u1", username="alice")
    second = tenants.save_tenant_config("u1", username="alice2", plan="pro", is_active=False)

    stored = store.get("tenants/u1")
    assert stored["userId"] == "u1"
    assert stored["username"] == "alice2"
    assert stored["plan"] == "pro"
    assert stored["isActive"] is False
    assert second.created_at == first.created_at
    assert tenants.get_tenant_config("u1").model_dump() == second.model_dump()


def test_portfolio_url(tenants):
    config = tenants.save_tenant_config("u1")
    assert tenants.portfolio_url(config, "http://localhost:4200/") == "http://localhost:4200/portfolio/u1"
    config = tenants.save_tenant_config("u1", username="alice")
    assert tenants.portfolio_url(config, "http://localhost:4200") == "http://localhost:4200/u/alice"
    config = tenants.save_tenant_config("u1", username="alice", custom_domain="alice.dev")
    assert tenants.portfolio_url(config, "http://localhost:4200") == "https://alice.dev"
