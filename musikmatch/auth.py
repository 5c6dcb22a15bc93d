# musikmatch/auth.py
import os
import time

import httpx
from fastapi import HTTPException
from jose import jwt, JWTError

_cache = {"jwks": None, "fetched_at": 0}


def _supabase_url() -> str:
    url = os.environ.get("SUPABASE_URL", "").rstrip("/")
    if not url:
        raise RuntimeError("SUPABASE_URL not set")
    return url


def _issuer() -> str:
    return f"{_supabase_url()}/auth/v1"


def _anon_headers() -> dict:
    anon = os.environ.get("SUPABASE_ANON_KEY", "")
    return {"apikey": anon, "Authorization": f"Bearer {anon}"} if anon else {}


async def _get_jwks() -> dict:
    now = time.time()
    if not _cache["jwks"] or now - _cache["fetched_at"] > 600:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(f"{_issuer()}/.well-known/jwks.json", headers=_anon_headers())
            resp.raise_for_status()
        _cache["jwks"] = resp.json()
        _cache["fetched_at"] = now
    return _cache["jwks"]


async def _fetch_user_from_supabase(token: str) -> dict:
    """Fallback: ask Supabase who this token belongs to."""
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": os.environ.get("SUPABASE_ANON_KEY") or "",
    }
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            r = await client.get(f"{_issuer()}/user", headers=headers)
    except httpx.HTTPError as e:
        raise HTTPException(status_code=503, detail=f"Supabase auth unreachable: {e}")
    if r.status_code != 200:
        raise HTTPException(status_code=401, detail="Could not verify token with Supabase")
    data = r.json() or {}
    user = data.get("user") or data
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="User id not found from Supabase")
    return {"id": user["id"], "email": user.get("email")}


def _claims_to_user(claims: dict) -> dict:
    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing subject (sub)")
    return {"id": sub, "email": claims.get("email")}


async def verify_token(token: str) -> dict:
    """
    Accepts Supabase access tokens signed with:
      - HS256 (JWT secret)  -> verify with SUPABASE_JWT_SECRET
      - RS256 (JWKS)        -> verify with the project JWKS
    Falls back to /auth/v1/user if needed. Returns {"id", "email"}.
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
        alg = (unverified_header.get("alg") or "").upper()
    except JWTError:
        return await _fetch_user_from_supabase(token)

    if alg == "HS256":
        secret = os.environ.get("SUPABASE_JWT_SECRET", "")
        if not secret:
            return await _fetch_user_from_supabase(token)
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                options={"verify_aud": False},
                issuer=_issuer(),
            )
        except JWTError as e:
            raise HTTPException(status_code=401, detail=f"Invalid token (HS256): {e}")
        return _claims_to_user(claims)

    if alg == "RS256":
        try:
            jwks = await _get_jwks()
        except httpx.HTTPError:
            return await _fetch_user_from_supabase(token)
        kid = unverified_header.get("kid")
        key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
        if not key:
            raise HTTPException(status_code=401, detail="Signing key not found")
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                options={"verify_aud": False},
                issuer=_issuer(),
            )
        except JWTError as e:
            raise HTTPException(status_code=401, detail=f"Invalid token (RS256): {e}")
        return _claims_to_user(claims)

    return await _fetch_user_from_supabase(token)
