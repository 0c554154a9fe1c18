# dermaai/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, HTTPException

from dermaai.agents.conversation import ConversationNotReady, DiagnosisConversation
from dermaai.cache.disease_cache import DiseaseLookupCache
from dermaai.config import settings
from dermaai.memory.kv_store import JsonFileStore, KeyValueStore
from dermaai.memory.session_store import SessionStore, is_valid_session_id, session_store_for
from dermaai.models import (
    CacheInfo,
    CachedDiseaseEntry,
    ChatRequest,
    ConversationView,
    DiagnosisSeedRequest,
)
from dermaai.tools.backend_client import BackendClient, BackendError
from dermaai.tools.disease_sync import refresh_disease_cache

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    store: KeyValueStore
    cache: DiseaseLookupCache
    backend: BackendClient
    sessions: SessionStore


def build_context(store: KeyValueStore, backend: BackendClient) -> AppContext:
    cache = DiseaseLookupCache(store)

    def new_conversation(session_id: str) -> DiagnosisConversation:
        return DiagnosisConversation(session_store_for(store, session_id), backend, cache)

    return AppContext(store=store, cache=cache, backend=backend, sessions=SessionStore(new_conversation))


_context: AppContext | None = None


def get_context() -> AppContext:
    global _context
    if _context is None:
        _context = build_context(
            JsonFileStore(settings.storage_dir, max_value_bytes=settings.max_value_bytes),
            BackendClient(),
        )
    return _context


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting DermaAI diagnosis companion")
    logger.info("API base URL = %s%s", settings.api_base_url, settings.api_prefix)
    logger.info("Storage dir = %s", settings.storage_dir)
    yield
    if _context is not None:
        _context.backend.close()
    logger.info("Shutting down.")


app = FastAPI(title="DermaAI Diagnosis Companion", version="1.0", lifespan=lifespan)


def _check_session_id(session_id: str) -> None:
    if not is_valid_session_id(session_id):
        raise HTTPException(status_code=400, detail="Invalid session id")


def _view(session_id: str, conversation: DiagnosisConversation) -> ConversationView:
    return ConversationView(
        session_id=session_id,
        state=conversation.state.value,
        messages=conversation.messages,
        diseases=conversation.diseases(),
        show=conversation.result.show if conversation.result else None,
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ----------------------------
# Diagnosis sessions
# ----------------------------

@app.put("/sessions/{session_id}/diagnosis", response_model=ConversationView)
def start_diagnosis(
    session_id: str,
    req: DiagnosisSeedRequest,
    ctx: AppContext = Depends(get_context),
) -> ConversationView:
    _check_session_id(session_id)
    conversation = ctx.sessions.get_fresh(session_id)
    conversation.start(req.result, image_data_url=req.image_data_url)
    return _view(session_id, conversation)


@app.get("/sessions/{session_id}/conversation", response_model=ConversationView)
def get_conversation(session_id: str, ctx: AppContext = Depends(get_context)) -> ConversationView:
    _check_session_id(session_id)
    return _view(session_id, ctx.sessions.get(session_id))


@app.post("/sessions/{session_id}/chat", response_model=ConversationView)
def chat(
    session_id: str,
    req: ChatRequest,
    ctx: AppContext = Depends(get_context),
) -> ConversationView:
    _check_session_id(session_id)
    conversation = ctx.sessions.get(session_id)

    try:
        conversation.send_follow_up(req.message)
    except ConversationNotReady as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.exception("/chat failed")
        raise HTTPException(status_code=500, detail=str(e))

    return _view(session_id, conversation)


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    _check_session_id(session_id)
    ctx.sessions.get_fresh(session_id).clear()
    ctx.sessions.clear(session_id)
    return {"status": "cleared", "session_id": session_id}


# ----------------------------
# Disease cache
# ----------------------------

@app.get("/diseases/lookup/{key:path}", response_model=CachedDiseaseEntry)
def lookup_disease(key: str, ctx: AppContext = Depends(get_context)) -> CachedDiseaseEntry:
    entry = ctx.cache.get_disease_info(key)
    if entry is None:
        raise HTTPException(status_code=404, detail="Disease not found")
    return entry


@app.get("/diseases/cache", response_model=CacheInfo)
def cache_info(ctx: AppContext = Depends(get_context)) -> CacheInfo:
    return ctx.cache.get_cache_info()


@app.post("/diseases/cache/refresh", response_model=CacheInfo)
def refresh_cache(ctx: AppContext = Depends(get_context)) -> CacheInfo:
    try:
        refresh_disease_cache(ctx.cache, ctx.backend)
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return ctx.cache.get_cache_info()


@app.delete("/diseases/cache")
def clear_cache(ctx: AppContext = Depends(get_context)) -> dict[str, str]:
    ctx.cache.clear_cache()
    return {"status": "cleared"}


def run() -> None:
    uvicorn.run("dermaai.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
