import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwk, jwt

from app.auth import clerk
from app.auth.dependencies import get_current_user, require_admin
from app.config import settings


@pytest.fixture(scope="module")
def signing_key():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_jwk = jwk.construct(pem, "RS256").public_key().to_dict()
    public_jwk["kid"] = "test-key"
    return pem, public_jwk


@pytest.fixture()
def issue_token(signing_key, monkeypatch):
    pem, public_jwk = signing_key
    monkeypatch.setattr(clerk._signing_keys, "get", lambda kid: public_jwk if kid == "test-key" else None)

    def _issue(**claims):
        payload = {"sub": "user_123", "iss": settings.CLERK_JWT_ISSUER, **claims}
        return jwt.encode(payload, pem, algorithm="RS256", headers={"kid": "test-key"})

    return _issue


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_verified_token_builds_admin_context(issue_token):
    auth = get_current_user(_credentials(issue_token(role="admin")))
    assert auth.user_id == "user_123"
    assert auth.is_admin
    assert require_admin(auth) is auth


def test_role_read_from_public_metadata(issue_token):
    auth = get_current_user(_credentials(issue_token(public_metadata={"role": "admin"})))
    assert auth.is_admin


def test_customer_token_is_not_admin(issue_token):
    auth = get_current_user(_credentials(issue_token()))
    assert not auth.is_admin
    with pytest.raises(HTTPException) as excinfo:
        require_admin(auth)
    assert excinfo.value.status_code == 403


def test_audience_must_match_when_present(issue_token):
    assert clerk.verify_clerk_token(issue_token(aud="backend"))["sub"] == "user_123"
    with pytest.raises(HTTPException) as excinfo:
        clerk.verify_clerk_token(issue_token(aud="someone-else"))
    assert excinfo.value.status_code == 401


def test_wrong_issuer_and_unknown_key_are_rejected(issue_token, signing_key):
    with pytest.raises(HTTPException):
        clerk.verify_clerk_token(issue_token(iss="https://evil.test"))

    pem, _ = signing_key
    stranger = jwt.encode({"sub": "user_123"}, pem, algorithm="RS256", headers={"kid": "rotated-away"})
    with pytest.raises(HTTPException) as excinfo:
        clerk.verify_clerk_token(stranger)
    assert excinfo.value.detail == "Signing key not found"


def test_missing_bearer_token():
    with pytest.raises(HTTPException) as excinfo:
        get_current_user(None)
    assert excinfo.value.status_code == 401
