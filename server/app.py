"""ThoughtGraph API — FastAPI entry point."""

import logging
from pathlib import Path

# Load .env BEFORE importing routes (agents read API keys from the environment)
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from server.routes import runs

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(title="ThoughtGraph API", version="0.1.0")

# CORS — allow all for local dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(runs.stages_router)
app.include_router(runs.router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok"}
