import jwt
import pytest

from auth import RolePolicy, principal_from_header
from config import load_settings
from schemas import Principal

SECRET = "s3cret"


def token(claims, secret=SECRET):
    return "Bearer " + jwt.encode(claims, secret, algorithm="HS256")


def test_valid_token_gives_principal():
    principal = principal_from_header(
        token({"id": "42", "username": "alice", "roles": ["1", "2"], "avatar": "a1"}), SECRET
    )
    assert principal == Principal(id="42", username="alice", roles=["1", "2"], avatar="a1")


@pytest.mark.parametrize("header", [
    None,
    "",
    "Bearer",
    "Basic dXNlcjpwYXNz",
    "Bearer not-a-jwt",
])
def test_missing_or_malformed_header_is_anonymous(header):
    assert principal_from_header(header, SECRET) is None


def test_wrong_secret_is_anonymous():
    assert principal_from_header(token({"id": "42", "username": "alice"}, "other"), SECRET) is None


def test_token_without_identity_is_anonymous():
    assert principal_from_header(token({"roles": ["1"]}), SECRET) is None


def test_without_secret_nothing_verifies(caplog):
    assert principal_from_header(token({"id": "42", "username": "alice"}), None) is None
    assert "JWT_SECRET is not set" in caplog.text


def test_role_policy():
    policy = RolePolicy(["111", "222"])
    assert policy(Principal(id="1", username="a", roles=["999", "222"]))
    assert not policy(Principal(id="2", username="b", roles=["999"]))
    assert not policy(Principal(id="3", username="c"))


def test_empty_role_policy_denies_everyone():
    assert not RolePolicy([])(Principal(id="1", username="a", roles=[""]))


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "mongodb://db:27017")
    monkeypatch.setenv("ADMIN_ROLE_IDS", "111, 222,,")
    monkeypatch.setenv("SWEEP_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("FRONTEND_URL", "https://example.github.io/")
    monkeypatch.setenv("RUN_SCHEDULER", "false")
    monkeypatch.delenv("CORS_ORIGINS", raising=False)

    settings = load_settings()

    assert settings.database_url == "mongodb://db:27017"
    assert settings.admin_role_ids == ["111", "222"]
    assert settings.sweep_interval_seconds == 30
    assert settings.cors_origins == ["https://example.github.io/"]
    assert settings.auctions_page_url == "https://example.github.io/subastas.html"
    assert settings.run_scheduler is False
