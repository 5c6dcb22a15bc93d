# musikmatch/main.py
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .applications import router as applications_router
from .contact_sync import ContactBroadcast
from .errors import install_handlers
from .gigs import router as gigs_router
from .live import router as live_router
from .profiles import router as profiles_router
from .routers.health import router as health_router


def create_app() -> FastAPI:
    app = FastAPI(title="MusikMatch API", version="0.1.0", docs_url="/docs", redoc_url=None)
    # one hub per process; gig screens subscribe, the dashboard publishes
    app.state.contact_updates = ContactBroadcast()

    origins = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_handlers(app)

    @app.get("/", tags=["default"])
    def read_root():
        return {"ok": True, "service": "musikmatch-api"}

    # routers
    app.include_router(health_router)
    app.include_router(profiles_router)
    app.include_router(gigs_router)
    app.include_router(applications_router)
    app.include_router(live_router)
    return app


app = create_app()


# ──────────────────────────────────────────────────────────────────────────────
# Local dev entrypoint
# ──────────────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    uvicorn.run(
        "musikmatch.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=True,
    )
