# backend/main.py
"""
Marshal Scope Engine - FastAPI main file.

Loads event fact bundles from backend/events (or $MARSHAL_EVENTS_DIR), exposes:
- GET  /               -> "Scope Engine Ready!" + events count
- GET  /events         -> list event summaries
- POST /events/reload  -> reload events from disk
plus the checklist / notes / contacts / incidents routes in routes.py

Run with:
    uvicorn backend.main:app --reload
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Tuple
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import BaseModel

from .load_events import EventStore

# Scope engine routes
from .routes import router as scope_router

log = logging.getLogger("uvicorn.error")

# ---------------- CONFIG ----------------
BASE_DIR = Path(__file__).resolve().parent
EVENTS_DIR = Path(os.environ.get("MARSHAL_EVENTS_DIR", BASE_DIR / "events"))
# ----------------------------------------


# ---------- RESPONSE MODELS ----------
class EventSummary(BaseModel):
    id: str
    name: str = ""
    marshals: int = 0
    checkpoints: int = 0
    areas: int = 0
    checklist_items: int = 0
    incidents: int = 0


def _load_store() -> Tuple[EventStore, List[Dict[str, Any]]]:
    try:
        return EventStore.from_folder(EVENTS_DIR)
    except Exception as e:
        log.exception("load_events_from_folder failed: %s", e)
        return EventStore(), [{"file": "loader_exception", "error": str(e)}]


# ---------- LIFESPAN STARTUP ----------
@asynccontextmanager
async def _lifespan(app: FastAPI):
    store, invalid = _load_store()
    app.state.store = store
    app.state.invalid_events = invalid

    log.info("Event loader startup: %d valid, %d invalid", len(store), len(invalid))

    yield


app = FastAPI(title="Marshal Scope Engine", lifespan=_lifespan)

app.include_router(scope_router)


# ---------- ROOT ----------
@app.get("/")
def root():
    store = getattr(app.state, "store", None)
    return {
        "message": "Scope Engine Ready!",
        "events_loaded": len(store) if store is not None else 0,
    }


# ---------- LIST EVENTS ----------
@app.get("/events", response_model=List[EventSummary])
def get_events():
    store = getattr(app.state, "store", None)
    if store is None:
        return []
    return [
        EventSummary(
            id=e.id,
            name=e.name,
            marshals=len(e.marshals),
            checkpoints=len(e.locations),
            areas=len(e.areas),
            checklist_items=len(e.checklist_items),
            incidents=len(e.incidents),
        )
        for e in store.events()
    ]


# ---------- RELOAD EVENTS ----------
@app.post("/events/reload")
def reload_events():
    store, invalid = _load_store()
    app.state.store = store
    app.state.invalid_events = invalid

    return {
        "loaded": len(store),
        "invalid": invalid,
    }
