"""
swrcache - Cache inspection API
Exposes snapshots, manual revalidation, mutation and host events over HTTP
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from swrcache import __version__
from swrcache.cache import (
    CacheManager,
    DefaultEnvironment,
    InvalidKeyError,
    RevalidateOptions,
    reset_cache_manager,
)
from swrcache.fetchers import HTTPFetcher
from swrcache.schemas import (
    CacheRecordResponse,
    EventResponse,
    KeyList,
    MutateRequest,
    RevalidateResponse,
)
from config.settings import settings

logger = logging.getLogger("swrcache.main")

APP_NAME = "swrcache"
APP_STAGE = "Alpha"


def build_default_manager() -> CacheManager:
    """Manager with settings-driven defaults and the HTTP JSON fetcher."""
    return CacheManager(RevalidateOptions.from_settings(fetcher=HTTPFetcher()))


def create_app(manager: Optional[CacheManager] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        manager: Engine to expose; built from settings when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)
        engine = manager or build_default_manager()
        reset_cache_manager(engine)
        app.state.cache_manager = engine
        logger.info(f"{APP_NAME} {__version__} started")
        yield
        await engine.close()
        logger.info(f"{APP_NAME} stopped")

    app = FastAPI(
        title=f"{APP_NAME} ({APP_STAGE})",
        description="Stale-while-revalidate cache coordinator",
        version=__version__,
        lifespan=lifespan,
    )

    def _engine() -> CacheManager:
        return app.state.cache_manager

    def _record_response(key: str) -> CacheRecordResponse:
        engine = _engine()
        record = engine.get_snapshot(key)
        return CacheRecordResponse(
            key=key,
            subscribers=engine.broadcaster.subscriber_count(key),
            **record.to_dict(),
        )

    def _environment() -> DefaultEnvironment:
        environment = _engine().environment
        if not isinstance(environment, DefaultEnvironment):
            raise HTTPException(
                status_code=501,
                detail="Environment events are driven by the host adapter",
            )
        return environment

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/version")
    def version_info():
        """Version information endpoint."""
        return {
            "name": APP_NAME,
            "version": __version__,
            "stage": APP_STAGE,
            "full": f"{APP_NAME} {__version__} ({APP_STAGE})",
        }

    @app.get("/cache/stats")
    def cache_stats():
        """Get cache statistics."""
        return _engine().get_stats()

    @app.get("/cache/entries", response_model=KeyList)
    def list_entries():
        """List keys with a cache record."""
        keys = sorted(_engine().store.keys())
        return KeyList(keys=keys, count=len(keys))

    @app.get("/cache/entries/{key:path}", response_model=CacheRecordResponse)
    def get_entry(key: str):
        """Snapshot of one key."""
        if key not in _engine().store:
            raise HTTPException(status_code=404, detail=f"No cache record for {key}")
        return _record_response(key)

    @app.post("/cache/entries/{key:path}/revalidate", response_model=RevalidateResponse)
    async def revalidate_entry(key: str):
        """Refetch a key now and broadcast the result."""
        try:
            revalidated = await _engine().revalidate(key)
        except InvalidKeyError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return RevalidateResponse(revalidated=revalidated, record=_record_response(key))

    @app.put("/cache/entries/{key:path}", response_model=CacheRecordResponse)
    async def mutate_entry(key: str, body: MutateRequest):
        """Write data for a key, optionally revalidating afterwards."""
        try:
            await _engine().mutate(key, body.data, should_revalidate=body.revalidate)
        except InvalidKeyError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _record_response(key)

    @app.delete("/cache/entries/{key:path}")
    async def delete_entry(key: str):
        """Drop a key's record."""
        if not _engine().delete(key):
            raise HTTPException(status_code=404, detail=f"No cache record for {key}")
        return {"deleted": key}

    @app.post("/events/focus", response_model=EventResponse)
    async def focus_event():
        """Forward a window focus event to the scheduler."""
        environment = _environment()
        environment.emit_focus()
        return EventResponse(
            event="focus",
            online=environment.is_online(),
            visible=environment.is_document_visible(),
        )

    @app.post("/events/reconnect", response_model=EventResponse)
    async def reconnect_event():
        """Forward a network reconnect event to the scheduler."""
        environment = _environment()
        if environment.is_online():
            environment.emit_reconnect()
        else:
            # Going online emits reconnect itself
            environment.set_online(True)
        return EventResponse(
            event="reconnect",
            online=environment.is_online(),
            visible=environment.is_document_visible(),
        )

    return app


app = create_app()
