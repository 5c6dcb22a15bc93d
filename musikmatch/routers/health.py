from fastapi import APIRouter, HTTPException

from musikmatch.deps import open_store
from musikmatch.errors import StoreError

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health():
    return {"ok": True}


@router.get("/db")
async def health_db():
    """Ping Supabase with the anon key (set SUPABASE_URL & SUPABASE_ANON_KEY)."""
    try:
        async with open_store(None) as store:
            await store.list_profiles("venue")
        return {"ok": True, "db": "up"}
    except (RuntimeError, StoreError) as e:
        raise HTTPException(status_code=503, detail=f"DB check failed: {e}")
