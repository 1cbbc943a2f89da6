"""
FastAPI server exposing the search engine to a host application.

Provides a WebSocket endpoint speaking the engine command protocol (JSON
commands in, JSON events out, including unsolicited reindex progress) and
REST endpoints for hybrid retrieval and filter-key discovery.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from .engine import IndexFactory, SearchEngine
from .errors import ProtocolError
from .search import HybridRetriever, MetadataCatalog
from .search.filters import Filter, coerce_filters, parse_filters


class FilterPayload(BaseModel):
    key: str = ""
    value: str = ""


class SearchRequest(BaseModel):
    """Request model for hybrid retrieval."""

    query: str | None = None
    filters: list[FilterPayload] | str | None = None
    documents: dict[int, Any] | None = None


class CatalogRequest(BaseModel):
    """Metadata trees keyed by document id."""

    documents: dict[int, Any]


class KeysRequest(BaseModel):
    metadata: list[Any]


def _resolve_filters(raw: list[FilterPayload] | str | None) -> list[Filter]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return parse_filters(raw)
    return coerce_filters(item.model_dump() for item in raw)


def create_app(
    *,
    index_factory: IndexFactory | None = None,
    catalog: MetadataCatalog | None = None,
) -> FastAPI:
    """Build the app; the engine lives for the duration of the app lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = SearchEngine(index_factory=index_factory)
        await engine.start()
        app.state.engine = engine
        app.state.catalog = catalog or MetadataCatalog({})
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(
        title="dip-search",
        description="Semantic and metadata retrieval for archived documents",
        lifespan=lifespan,
    )

    @app.get("/api/state")
    async def get_state(request: Request):
        """Report engine readiness, index size, and storage backing mode."""
        event = await request.app.state.engine.request({"type": "state"})
        return event.model_dump()

    @app.put("/api/catalog")
    async def put_catalog(request: Request, body: CatalogRequest):
        """Replace the metadata catalog used for filter matching."""
        request.app.state.catalog = MetadataCatalog(body.documents)
        return {"documents": len(request.app.state.catalog)}

    @app.post("/api/search")
    async def search(request: Request, body: SearchRequest):
        """Hybrid retrieval: semantic ranking intersected with metadata filters."""
        try:
            filters = _resolve_filters(body.filters)
        except ProtocolError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)

        catalog = (
            MetadataCatalog(body.documents)
            if body.documents is not None
            else request.app.state.catalog
        )
        retriever = HybridRetriever(request.app.state.engine, catalog)
        try:
            ids = await retriever.retrieve(filters, body.query)
        except Exception as exc:
            logger.exception("Hybrid retrieval failed")
            return JSONResponse({"error": str(exc)}, status_code=500)

        return {
            "query": body.query,
            "filters": [flt.to_dict() for flt in filters],
            "ids": ids,
        }

    @app.post("/api/filters/keys")
    async def filter_keys(body: KeysRequest):
        """Return available filter keys, flat and grouped for a picker."""
        catalog = MetadataCatalog(dict(enumerate(body.metadata)))
        keys = catalog.available_keys()
        return {
            "keys": keys,
            "groups": [group.to_dict() for group in catalog.grouped_keys()],
        }

    @app.websocket("/ws/engine")
    async def engine_socket(websocket: WebSocket):
        """
        WebSocket endpoint speaking the engine protocol.

        Protocol:
        1. Client sends commands: {"type": "search", "query": "...", "request_id": "..."}
        2. Server streams every reply and progress event: {"type": "...", ...}
        """
        await websocket.accept()
        engine: SearchEngine = websocket.app.state.engine
        events = engine.subscribe()

        async def forward_events() -> None:
            while True:
                event = await events.get()
                await websocket.send_json(event.model_dump())

        sender = asyncio.create_task(forward_events())
        try:
            while True:
                message = await websocket.receive_text()
                await engine.submit(message)
        except WebSocketDisconnect:
            pass
        finally:
            engine.unsubscribe(events)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug(f"Event forwarding stopped: {exc}")

    return app


app = create_app()


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
