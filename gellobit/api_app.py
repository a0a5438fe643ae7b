import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gellobit.api.routes import cleanup as cleanup_routes
from gellobit.api.routes import cron as cron_routes
from gellobit.api.routes import feeds as feeds_routes

from gellobit.db import init_db, get_engine
from gellobit.logging_config import setup_logging
from sqlalchemy import inspect

app = FastAPI(title="Gellobit RSS Processor API", version="1.0.0")

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
fo = os.getenv("FRONTEND_ORIGIN", "").strip()
if fo:
    origins.append(fo)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(set(origins)),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def _startup():
    setup_logging(persist=True)
    init_if_missing = os.getenv("API_INIT_DB_IF_MISSING", "false").lower() in {"1", "true", "yes"}
    if init_if_missing:
        insp = inspect(get_engine())
        if not insp.has_table("rss_feeds"):
            init_db()

app.include_router(feeds_routes.router)
app.include_router(cleanup_routes.router)
app.include_router(cron_routes.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
