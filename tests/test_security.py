import pytest
from jose import JWTError, jwt

from storefront.core.config import settings
from storefront.core.security import (
    ALGORITHM,
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password_async,
)


def test_access_token_round_trip_carries_claims():
    token = create_access_token({"sub": "BR1", "role": "branch", "branch_id": 3})
    claims = decode_access_token(token)

    assert claims["sub"] == "BR1"
    assert claims["branch_id"] == 3
    assert claims["type"] == "access"
    assert claims["iss"] == settings.JWT_ISSUER


def test_token_for_another_audience_is_rejected():
    foreign = jwt.encode(
        {"sub": "X", "aud": "someone-else", "iss": settings.JWT_ISSUER},
        settings.SECRET_KEY,
        algorithm=ALGORITHM,
    )
    with pytest.raises(JWTError):
        decode_access_token(foreign)


@pytest.mark.anyio
async def test_password_hash_verifies_off_thread():
    hashed = get_password_hash("s3cret-pass")

    assert await verify_password_async("s3cret-pass", hashed)
    assert not await verify_password_async("wrong", hashed)
