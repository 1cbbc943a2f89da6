import asyncio
import json
import uuid
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table
from rich.tree import Tree
from typer import Argument, Exit, Option, Typer

from .engine import SearchEngine
from .errors import DipSearchError, error_for_kind
from .indexing.metadata import metadata_text_for_embedding
from .logging_setup import setup_logger
from .models import ErrorEvent, ReindexAllCommand, ReindexDocument, ReindexProgressEvent
from .search import HybridRetriever, MetadataCatalog, SearchResult, parse_filters, supported_filter_syntax

app = Typer(help="Semantic and metadata search over archived documents.")
console = Console()


def build_engine() -> SearchEngine:
    return SearchEngine()


def load_documents(path: str) -> list[dict[str, Any]]:
    """Load ``[{"id": ..., "text": ..., "metadata": ...}, ...]`` from a JSON file."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("documents", [])
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a list of documents.")
    documents: list[dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict) or "id" not in item:
            raise ValueError(f"Every document in {path} needs an `id`.")
        documents.append(item)
    return documents


def document_text(document: dict[str, Any]) -> str | None:
    """Text to embed: explicit text, else text composed from metadata."""
    text = document.get("text")
    if text:
        return str(text)
    metadata = document.get("metadata")
    if metadata:
        return metadata_text_for_embedding(metadata, document.get("name"))
    return None


def _fail(message: str) -> NoReturn:
    console.print(Panel(message, title="Error", title_align="left", border_style="bold red"))
    raise Exit(code=1)


async def run_index(documents: list[dict[str, Any]], db_path: str | None) -> tuple[int, int]:
    engine = build_engine()
    async with engine:
        ready = await engine.initialize(db_path=db_path)
        if ready.backing_mode != "durable":
            console.print("[bold yellow]Vector store unavailable, index kept in memory only.[/]")

        request_id = uuid.uuid4().hex
        events = engine.subscribe()
        command = ReindexAllCommand(
            request_id=request_id,
            documents=[
                ReindexDocument(id=int(doc["id"]), text=document_text(doc)) for doc in documents
            ],
        )
        with Progress(
            TextColumn("[bold cyan]Indexing"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("index", total=len(documents))
            future = await engine.submit(command)
            while True:
                event = await events.get()
                if event.request_id != request_id:
                    continue
                if isinstance(event, ReindexProgressEvent):
                    progress.update(task, completed=event.indexed_count)
                    continue
                break
            reply = await future
            engine.unsubscribe(events)
            if isinstance(reply, ErrorEvent):
                raise error_for_kind(reply.kind, reply.message)
            progress.update(task, completed=reply.indexed)
        return reply.indexed, reply.total


class _ScoreRecorder:
    """Semantic searcher that remembers the scores of its last search."""

    def __init__(self, engine: SearchEngine) -> None:
        self.engine = engine
        self.scores: dict[int, float] = {}

    async def search(self, query: str) -> list[SearchResult]:
        results = await self.engine.search(query)
        self.scores = {hit.doc_id: hit.score for hit in results}
        return results


async def run_search(
    query: str,
    filters: str | None,
    documents: list[dict[str, Any]],
    db_path: str | None,
) -> tuple[list[int], dict[int, float]]:
    parsed_filters = parse_filters(filters)
    catalog = MetadataCatalog({int(doc["id"]): doc.get("metadata", {}) for doc in documents})
    engine = build_engine()
    async with engine:
        try:
            await engine.initialize(db_path=db_path)
        except DipSearchError as exc:
            console.print(f"[bold yellow]Semantic search unavailable:[/] {exc}")
        recorder = _ScoreRecorder(engine)
        ids = await HybridRetriever(recorder, catalog).retrieve(parsed_filters, query)
    return ids, recorder.scores


@app.command()
def index(
    documents_path: Annotated[str, Argument(help="JSON file with the documents to index.")],
    db_path: Annotated[
        Optional[str], Option("--db-path", help="Vector store path (DuckDB file).")
    ] = None,
    log_level: Annotated[Optional[str], Option("--log-level")] = None,
) -> None:
    """Rebuild the vector index from a documents file."""
    setup_logger(log_level)
    try:
        documents = load_documents(documents_path)
        indexed, total = asyncio.run(run_index(documents, db_path))
    except (OSError, ValueError, DipSearchError) as exc:
        _fail(str(exc))
    console.print(
        Panel(
            f"Indexed {indexed} of {total} documents.",
            title="Index complete",
            title_align="left",
            border_style="bold green",
        )
    )


@app.command()
def search(
    query: Annotated[str, Argument(help="Free-text query (may be empty).")] = "",
    documents_path: Annotated[
        Optional[str], Option("--docs", help="JSON file with document metadata for filtering.")
    ] = None,
    filters: Annotated[
        Optional[str], Option("--filter", "-f", help=supported_filter_syntax())
    ] = None,
    db_path: Annotated[Optional[str], Option("--db-path")] = None,
    log_level: Annotated[Optional[str], Option("--log-level")] = None,
) -> None:
    """Hybrid search: semantic ranking intersected with metadata filters."""
    setup_logger(log_level or "WARNING")
    try:
        documents = load_documents(documents_path) if documents_path else []
        ids, scores = asyncio.run(run_search(query, filters, documents, db_path))
    except (OSError, ValueError, DipSearchError) as exc:
        _fail(str(exc))

    if not ids:
        console.print("[bold]No matching documents.[/]")
        return
    table = Table(title="Results")
    table.add_column("Rank", justify="right")
    table.add_column("Document id", justify="right")
    table.add_column("Similarity", justify="right")
    for rank, doc_id in enumerate(ids, start=1):
        score = scores.get(doc_id)
        table.add_row(str(rank), str(doc_id), f"{score:.4f}" if score is not None else "-")
    console.print(table)


@app.command()
def keys(
    documents_path: Annotated[str, Argument(help="JSON file with document metadata.")],
) -> None:
    """List the filter keys available across the documents' metadata."""
    try:
        documents = load_documents(documents_path)
    except (OSError, ValueError) as exc:
        _fail(str(exc))
    catalog = MetadataCatalog({int(doc["id"]): doc.get("metadata", {}) for doc in documents})
    tree = Tree("[bold]Filter keys[/]")
    for group in catalog.grouped_keys():
        branch = tree.add(f"[cyan]{group.group_label}[/] [dim]{group.group_path}[/]")
        for option in group.options:
            branch.add(option.label)
    console.print(tree)


@app.command()
def serve(
    host: Annotated[str, Option("--host")] = "127.0.0.1",
    port: Annotated[int, Option("--port")] = 8000,
) -> None:
    """Run the HTTP/WebSocket server."""
    from .server import run_server

    setup_logger()
    run_server(host=host, port=port)
