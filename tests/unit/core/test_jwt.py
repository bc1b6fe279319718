import time

import jwt
import pytest

from app.core.jwt import ISSUER, JWTVerifier

SECRET = "unit-test-secret"


@pytest.fixture
def verifier() -> JWTVerifier:
    return JWTVerifier(secret=SECRET, expiry_hours=1)


@pytest.mark.asyncio
async def test_issue_then_verify(verifier):
    token = verifier.issue_token("user-1", "course_admin", email="a@example.com", extra={"app_metadata": {"org": 7}})

    claims = await verifier.verify_token(token)

    assert claims.sub == "user-1"
    assert claims.role == "course_admin"
    assert claims.email == "a@example.com"
    assert claims.iss == ISSUER
    assert claims.exp - claims.iat == 3600
    assert claims.app_metadata == {"org": 7}


@pytest.mark.asyncio
async def test_rejects_foreign_issuer_and_secret(verifier):
    now = int(time.time())
    foreign = jwt.encode({"sub": "u", "iat": now, "exp": now + 60, "iss": "other"}, SECRET, algorithm="HS256")
    with pytest.raises(jwt.InvalidTokenError):
        await verifier.verify_token(foreign)

    wrong_key = JWTVerifier(secret="another-secret").issue_token("u", "proofreader")
    with pytest.raises(jwt.InvalidTokenError):
        await verifier.verify_token(wrong_key)


@pytest.mark.asyncio
async def test_rejects_expired_token(verifier):
    now = int(time.time())
    expired = jwt.encode({"sub": "u", "iat": now - 120, "exp": now - 60, "iss": ISSUER}, SECRET, algorithm="HS256")

    with pytest.raises(jwt.InvalidTokenError, match="expired"):
        await verifier.verify_token(expired)


@pytest.mark.asyncio
async def test_requires_secret():
    with pytest.raises(jwt.InvalidTokenError, match="not configured"):
        await JWTVerifier(secret="").verify_token("anything")
