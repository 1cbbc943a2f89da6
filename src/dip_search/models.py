"""
Boundary protocol: commands accepted by the engine and events it emits.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, TypeAlias, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import ProtocolError


class BaseCommand(BaseModel):
    """Fields shared by every inbound command."""

    request_id: str | None = Field(
        default=None, description="Opaque id echoed back on the reply"
    )


class InitializeCommand(BaseCommand):
    """Open the vector store, load the embedding provider, hydrate the cache."""

    type: Literal["initialize"] = "initialize"
    db_path: str | None = Field(default=None, description="Vector store location")
    embedding_model: str | None = Field(default=None, description="Embedding model name")
    embedding_dim: int | None = Field(default=None, gt=0, description="Embedding size")


class IngestCommand(BaseCommand):
    type: Literal["ingest"] = "ingest"
    id: int = Field(description="Document id")
    text: str = Field(description="Text to embed and store")


class SearchCommand(BaseCommand):
    type: Literal["search"] = "search"
    query: str = Field(description="Free-text query")


class ReindexDocument(BaseModel):
    id: int
    text: str | None = None


class ReindexAllCommand(BaseCommand):
    """Clear the index and ingest every document in order."""

    type: Literal["reindex_all"] = "reindex_all"
    documents: list[ReindexDocument] = Field(default_factory=list)


class StateCommand(BaseCommand):
    type: Literal["state"] = "state"


class ClearCommand(BaseCommand):
    type: Literal["clear"] = "clear"


class EmbedCommand(BaseCommand):
    type: Literal["embed"] = "embed"
    text: str


Command: TypeAlias = Annotated[
    Union[
        InitializeCommand,
        IngestCommand,
        SearchCommand,
        ReindexAllCommand,
        StateCommand,
        ClearCommand,
        EmbedCommand,
    ],
    Field(discriminator="type"),
]

_COMMAND_ADAPTER: TypeAdapter[Any] = TypeAdapter(Command)


def parse_command(payload: Any) -> Any:
    """Validate a JSON string or mapping into a command model."""
    try:
        if isinstance(payload, (str, bytes)):
            return _COMMAND_ADAPTER.validate_json(payload)
        return _COMMAND_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed command: {exc.errors(include_url=False)}") from exc


def request_id_of(payload: Any) -> str | None:
    """Best-effort extraction of a request id from a raw payload."""
    if isinstance(payload, BaseCommand):
        return payload.request_id
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return None
    if isinstance(payload, dict):
        value = payload.get("request_id")
        return str(value) if value is not None else None
    return None


class EngineEvent(BaseModel):
    """Fields shared by every outbound event."""

    request_id: str | None = None


class ReadyEvent(EngineEvent):
    type: Literal["ready"] = "ready"
    backing_mode: str
    indexed_documents: int


class IngestedEvent(EngineEvent):
    type: Literal["ingested"] = "ingested"
    id: int


class ScoredDocument(BaseModel):
    id: int
    score: float


class SearchResultsEvent(EngineEvent):
    type: Literal["search_results"] = "search_results"
    results: list[ScoredDocument] = Field(default_factory=list)


class ReindexProgressEvent(EngineEvent):
    type: Literal["reindex_progress"] = "reindex_progress"
    indexed_count: int
    total_count: int


class ReindexCompleteEvent(EngineEvent):
    type: Literal["reindex_complete"] = "reindex_complete"
    indexed: int
    total: int


class StateEvent(EngineEvent):
    type: Literal["state"] = "state"
    initialized: bool
    indexed_documents: int
    backing_mode: str | None = None


class ClearedEvent(EngineEvent):
    type: Literal["cleared"] = "cleared"


class EmbeddingEvent(EngineEvent):
    type: Literal["embedding"] = "embedding"
    vector: list[float]


class ErrorEvent(EngineEvent):
    type: Literal["error"] = "error"
    kind: str
    message: str
    id: int | None = None
