import httpx
import pytest
from fastapi import HTTPException
from jose import jwt

from musikmatch.auth import verify_token
from musikmatch.deps import viewer_from_token

SECRET = "super-secret-jwt-token-with-at-least-32-characters"
URL = "https://abc.supabase.co"


@pytest.fixture(autouse=True)
def env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", URL)
    monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)


def token(**claims):
    base = {"sub": "user-1", "email": "a@x.com", "iss": f"{URL}/auth/v1", "aud": "authenticated"}
    base.update(claims)
    return jwt.encode(base, SECRET, algorithm="HS256")


@pytest.mark.asyncio
async def test_hs256_token_is_verified_locally():
    assert await verify_token(token()) == {"id": "user-1", "email": "a@x.com"}


@pytest.mark.asyncio
async def test_viewer_keeps_token():
    t = token()
    viewer = await viewer_from_token(t)
    assert (viewer.id, viewer.token) == ("user-1", t)


@pytest.mark.asyncio
async def test_wrong_issuer_is_rejected():
    with pytest.raises(HTTPException) as e:
        await verify_token(token(iss="https://evil.example/auth/v1"))
    assert e.value.status_code == 401


@pytest.mark.asyncio
async def test_missing_subject_is_rejected():
    with pytest.raises(HTTPException) as e:
        await verify_token(token(sub=None))
    assert e.value.status_code == 401


@pytest.mark.asyncio
async def test_bad_signature_is_rejected():
    forged = jwt.encode({"sub": "user-1", "iss": f"{URL}/auth/v1"}, "x" * 40, algorithm="HS256")
    with pytest.raises(HTTPException):
        await verify_token(forged)


@pytest.mark.asyncio
async def test_user_lookup_sends_anon_key_not_the_access_token(monkeypatch):
    monkeypatch.delenv("SUPABASE_JWT_SECRET")
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    seen = {}

    def handler(request):
        seen["apikey"] = request.headers.get("apikey")
        seen["authorization"] = request.headers.get("authorization")
        return httpx.Response(200, json={"id": "user-1", "email": "a@x.com"})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        "musikmatch.auth.httpx.AsyncClient",
        lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
    )
    t = token()

    assert await verify_token(t) == {"id": "user-1", "email": "a@x.com"}
    assert seen == {"apikey": "", "authorization": f"Bearer {t}"}
