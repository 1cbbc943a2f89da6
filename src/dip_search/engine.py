"""
Engine actor: the single consumer that executes index commands in order.

Commands are queued on an ``asyncio.Queue`` and processed one at a time, so
ingestion, search, and reindexing never overlap and no locking is needed
around the vector cache. Blocking work (embedding calls, DuckDB I/O) runs in
a worker thread so callers can keep submitting while a command is running.
Every reply and every unsolicited progress event is published to all
subscribers; the reply also resolves the future returned by ``submit``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel

from .errors import DipSearchError, NotReady, ProtocolError, error_for_kind
from .indexing import VectorIndex
from .models import (
    ClearCommand,
    ClearedEvent,
    EmbedCommand,
    EmbeddingEvent,
    EngineEvent,
    ErrorEvent,
    IngestCommand,
    IngestedEvent,
    InitializeCommand,
    ReadyEvent,
    ReindexAllCommand,
    ReindexCompleteEvent,
    ReindexDocument,
    ReindexProgressEvent,
    ScoredDocument,
    SearchCommand,
    SearchResultsEvent,
    StateCommand,
    StateEvent,
    parse_command,
    request_id_of,
)
from .search.ranker import SearchResult

EventT = TypeVar("EventT", bound=EngineEvent)
IndexFactory = Callable[[InitializeCommand], VectorIndex]


def default_index_factory(command: InitializeCommand) -> VectorIndex:
    return VectorIndex.from_config(
        db_path=command.db_path,
        embedding_model=command.embedding_model,
        embedding_dim=command.embedding_dim,
    )


class SearchEngine:
    """Serialize index commands through one consumer loop."""

    def __init__(self, index_factory: IndexFactory | None = None) -> None:
        self._index_factory = index_factory or default_index_factory
        self._index: VectorIndex | None = None
        self._inbox: asyncio.Queue[tuple[Any, asyncio.Future[EngineEvent]] | None] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._subscribers: list[asyncio.Queue[EngineEvent]] = []

    @property
    def is_ready(self) -> bool:
        return self._index is not None and self._index.is_ready

    @property
    def index(self) -> VectorIndex | None:
        return self._index

    async def start(self) -> None:
        if self._worker is not None:
            return
        self._inbox = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(self._inbox), name="dip-search-engine")

    async def stop(self) -> None:
        """Finish the queued commands, then stop the loop and close the index."""
        if self._worker is None or self._inbox is None:
            return
        await self._inbox.put(None)
        await self._worker
        self._worker = None
        self._inbox = None
        if self._index is not None:
            await asyncio.to_thread(self._index.close)
            self._index = None

    async def __aenter__(self) -> "SearchEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def subscribe(self) -> asyncio.Queue[EngineEvent]:
        queue: asyncio.Queue[EngineEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[EngineEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def submit(self, command: Any) -> asyncio.Future[EngineEvent]:
        """Queue a command (model, mapping, or JSON text) and return its reply future."""
        await self.start()
        if self._inbox is None:
            raise DipSearchError("Engine is not running.")
        future: asyncio.Future[EngineEvent] = asyncio.get_running_loop().create_future()
        try:
            parsed = command if isinstance(command, BaseModel) else parse_command(command)
        except ProtocolError as exc:
            event = ErrorEvent(
                kind=exc.kind,
                message=str(exc),
                request_id=request_id_of(command),
            )
            self._publish(event)
            future.set_result(event)
            return future
        await self._inbox.put((parsed, future))
        return future

    async def request(self, command: Any) -> EngineEvent:
        future = await self.submit(command)
        return await future

    # ------------------------------------------------------------------
    # Typed helpers: raise the matching error class instead of returning
    # an ``error`` event.
    # ------------------------------------------------------------------

    async def initialize(
        self,
        *,
        db_path: str | None = None,
        embedding_model: str | None = None,
        embedding_dim: int | None = None,
    ) -> ReadyEvent:
        return await self._checked(
            InitializeCommand(
                db_path=db_path,
                embedding_model=embedding_model,
                embedding_dim=embedding_dim,
            ),
            ReadyEvent,
        )

    async def ingest(self, doc_id: int, text: str) -> None:
        await self._checked(IngestCommand(id=doc_id, text=text), IngestedEvent)

    async def search(self, query: str) -> list[SearchResult]:
        event = await self._checked(SearchCommand(query=query), SearchResultsEvent)
        return [SearchResult(doc_id=hit.id, score=hit.score) for hit in event.results]

    async def reindex_all(
        self, documents: Sequence[ReindexDocument | tuple[int, str | None]]
    ) -> ReindexCompleteEvent:
        payload = [
            doc if isinstance(doc, ReindexDocument) else ReindexDocument(id=doc[0], text=doc[1])
            for doc in documents
        ]
        return await self._checked(ReindexAllCommand(documents=payload), ReindexCompleteEvent)

    async def state(self) -> StateEvent:
        return await self._checked(StateCommand(), StateEvent)

    async def clear(self) -> None:
        await self._checked(ClearCommand(), ClearedEvent)

    async def embed(self, text: str) -> list[float]:
        event = await self._checked(EmbedCommand(text=text), EmbeddingEvent)
        return event.vector

    async def _checked(self, command: BaseModel, expected: type[EventT]) -> EventT:
        event = await self.request(command)
        if isinstance(event, ErrorEvent):
            raise error_for_kind(event.kind, event.message)
        if not isinstance(event, expected):
            raise DipSearchError(
                f"Unexpected reply {event.type!r} to {command.type!r} command."
            )
        return event

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def _run(self, inbox: asyncio.Queue) -> None:
        while True:
            item = await inbox.get()
            if item is None:
                break
            command, future = item
            event = await self._dispatch(command)
            self._publish(event)
            if not future.done():
                future.set_result(event)

    async def _dispatch(self, command: Any) -> EngineEvent:
        try:
            return await self._handle(command)
        except DipSearchError as exc:
            logger.error(f"Command {command.type} failed: {exc}")
            return ErrorEvent(
                kind=exc.kind,
                message=str(exc),
                id=getattr(command, "id", None),
                request_id=command.request_id,
            )
        except Exception as exc:
            logger.exception(f"Unexpected failure while handling {command.type}")
            return ErrorEvent(
                kind="internal",
                message=str(exc),
                id=getattr(command, "id", None),
                request_id=command.request_id,
            )

    async def _handle(self, command: Any) -> EngineEvent:
        if isinstance(command, InitializeCommand):
            return await self._initialize(command)
        if isinstance(command, StateCommand):
            return self._state_event(command)

        index = self._require_index()
        if isinstance(command, IngestCommand):
            await asyncio.to_thread(index.ingest, command.id, command.text)
            return IngestedEvent(id=command.id, request_id=command.request_id)
        if isinstance(command, SearchCommand):
            results = await asyncio.to_thread(index.search, command.query)
            return SearchResultsEvent(
                results=[ScoredDocument(id=r.doc_id, score=r.score) for r in results],
                request_id=command.request_id,
            )
        if isinstance(command, ReindexAllCommand):
            return await self._reindex(index, command)
        if isinstance(command, ClearCommand):
            await asyncio.to_thread(index.clear)
            return ClearedEvent(request_id=command.request_id)
        if isinstance(command, EmbedCommand):
            vector = await asyncio.to_thread(index.embed, command.text)
            return EmbeddingEvent(vector=vector.tolist(), request_id=command.request_id)
        raise ProtocolError(f"Unsupported command: {command!r}")

    async def _initialize(self, command: InitializeCommand) -> ReadyEvent:
        if self._index is None or not self._index.is_ready:
            index = await asyncio.to_thread(self._index_factory, command)
            try:
                await asyncio.to_thread(index.initialize)
            except DipSearchError:
                await asyncio.to_thread(index.close)
                raise
            self._index = index
        state = self._index.state()
        return ReadyEvent(
            backing_mode=state.backing_mode,
            indexed_documents=state.indexed_documents,
            request_id=command.request_id,
        )

    async def _reindex(
        self, index: VectorIndex, command: ReindexAllCommand
    ) -> ReindexCompleteEvent:
        loop = asyncio.get_running_loop()

        def on_progress(indexed: int, total: int) -> None:
            event = ReindexProgressEvent(
                indexed_count=indexed,
                total_count=total,
                request_id=command.request_id,
            )
            loop.call_soon_threadsafe(self._publish, event)

        documents = [(doc.id, doc.text) for doc in command.documents]
        result = await asyncio.to_thread(index.reindex_all, documents, on_progress=on_progress)
        return ReindexCompleteEvent(
            indexed=result.indexed,
            total=result.total,
            request_id=command.request_id,
        )

    def _state_event(self, command: StateCommand) -> StateEvent:
        if self._index is None:
            return StateEvent(initialized=False, indexed_documents=0, request_id=command.request_id)
        state = self._index.state()
        return StateEvent(
            initialized=state.initialized,
            indexed_documents=state.indexed_documents,
            backing_mode=state.backing_mode,
            request_id=command.request_id,
        )

    def _require_index(self) -> VectorIndex:
        if self._index is None or not self._index.is_ready:
            raise NotReady("Engine is not initialized; send an initialize command first.")
        return self._index

    def _publish(self, event: EngineEvent) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)
