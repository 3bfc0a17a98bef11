# styletransform/api/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from styletransform.api.db import engine, init_db
from styletransform.api.errors import register_error_handlers
from styletransform.api.routes_catalog import router as catalog_router
from styletransform.api.routes_generate import router as generate_router
from styletransform.api.utils.http import assign_request_id
from styletransform.config import settings

log = logging.getLogger(__name__)

DEV_ORIGINS = [
    "http://localhost",
    "http://localhost:3000",
    "http://127.0.0.1",
    "http://127.0.0.1:3000",
]


# ---- Lifespan: startup/shutdown --------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    App lifecycle manager.
    - Ensures the storage directory (events log) exists
    - Creates database tables
    """
    settings.ensure_storage_dirs()
    init_db()
    log.info("event=startup storage=%s tiers=%s", settings.storage_dir, ":".join(settings.tier_order))
    yield


# ---- App --------------------------------------------------------------------

app = FastAPI(
    title="StyleTransform API",
    version=settings.STYLETRANSFORM_API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or DEV_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.middleware("http")(assign_request_id)

register_error_handlers(app)


# ---- Health endpoints -------------------------------------------------------

@app.get("/healthz")
async def healthz():
    """Liveness check: returns 200 if the app process is alive."""
    return {"status": "ok"}

@app.get("/readyz")
def readyz():
    """Readiness check: the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        log.warning("event=readyz.db_fail error=%s", e)
        return {"ready": False}
    return {"ready": True}


# ---- Routers ----------------------------------------------------------------

app.include_router(generate_router, prefix="")
app.include_router(catalog_router, prefix="")


def run() -> None:
    import uvicorn

    uvicorn.run(
        "styletransform.api.main:app",
        host=settings.STYLETRANSFORM_HOST,
        port=settings.STYLETRANSFORM_PORT,
    )


if __name__ == "__main__":
    run()
