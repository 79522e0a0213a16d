"""FastAPI application serving the qmetrics dashboard API."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard.api import db_path
from dashboard.api import router as api_v1_router

logger = logging.getLogger(__name__)

app = FastAPI(title="qmetrics Dashboard", version="0.1.0")

app.include_router(api_v1_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health():
    path = db_path()
    return {"status": "ok", "database": str(path), "database_exists": path.exists()}
