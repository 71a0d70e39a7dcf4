"""
Hybrid Recall - CLI Entry Point
-------------------------------
Exposes Typer commands for indexing and searching a local note collection.

Usage:
    python -m hybrid_recall.main setup                 # Fetch NLTK punkt + stopwords
    python -m hybrid_recall.main import-notes notes/   # Load *.md / *.txt / *.json files
    python -m hybrid_recall.main rebuild               # Full chunk + embed + index rebuild
    python -m hybrid_recall.main update                # Incremental update
    python -m hybrid_recall.main search "pricing decision" --top-k 5
    python -m hybrid_recall.main status                # Store / index counts
"""
from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Optional

import orjson
import typer
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from hybrid_recall.config import RagConfig, load_config
from hybrid_recall.embedding.events import CallbackEventSink, EmbeddingEvent, EventType
from hybrid_recall.embedding.lifecycle import RunSummary
from hybrid_recall.exceptions import RebuildError
from hybrid_recall.schemas import Note
from hybrid_recall.service import RecallService
from hybrid_recall.storage.keys import EMBEDDING_STATS_KEY
from hybrid_recall.storage.sources import StoreDocumentSource
from hybrid_recall.storage.store import FileStore
from hybrid_recall.utils.helpers import format_timestamp, strip_control_chars, truncate_text
from hybrid_recall.utils.logger import setup_logger

app = typer.Typer(
    name="hybrid-recall",
    help="Hybrid lexical + semantic recall over personal notes and chats",
    add_completion=False,
)
console = Console()

NOTE_SUFFIXES = {".md", ".markdown", ".txt", ".json"}
NLTK_PACKAGES = ("punkt_tab", "punkt", "stopwords")


# --- Helpers ------------------------------------------------------------------

def _bootstrap(config_path: str) -> RagConfig:
    load_dotenv()
    config = load_config(config_path)
    setup_logger(config.logging.level, config.logging.file)
    return config


def _note_id_for(path: Path) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", path.stem).strip("-").lower() or "untitled"
    return f"note_{slug}"


def _print_summary(title: str, summary: RunSummary) -> None:
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_row("Processed", f"[green]{summary.processed}[/green] / {summary.total}")
    table.add_row("Failed", f"[red]{summary.failed}[/red]")
    table.add_row("Unchanged", str(summary.unchanged))
    table.add_row("Pruned", str(summary.pruned))
    table.add_row("Chunks written", str(summary.chunks_written))
    if summary.summaries_generated:
        table.add_row("Contextual summaries", str(summary.summaries_generated))
    console.print(Panel(table, title=f"[bold cyan]{title}[/bold cyan]", expand=False))
    if summary.error:
        console.print(f"[red]Error:[/red] {summary.error}")


async def _run_with_progress(config: RagConfig, full: bool) -> RunSummary:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("[cyan]Embedding documents...[/cyan]", total=None)

        def on_event(event: EmbeddingEvent) -> None:
            if event.type == EventType.EMBEDDING_START:
                progress.update(task, total=event.data.get("total") or None, completed=0)
            elif event.type == EventType.EMBEDDING_PROGRESS:
                progress.update(task, completed=event.data.get("processed", 0))
            elif event.type == EventType.SHOW_ERROR_TOAST:
                progress.console.print(f"[yellow]{event.data.get('message')}[/yellow]")

        store = FileStore(config.storage.path, autoflush=False)
        service = RecallService.from_config(config, events=CallbackEventSink(on_event), store=store)
        try:
            if full:
                return await service.rebuild()
            await service.start()
            return await service.update()
        finally:
            await service.aclose()


# --- Commands -----------------------------------------------------------------

@app.command()
def setup() -> None:
    """Download the NLTK data used for sentence splitting and stopwords."""
    import nltk

    for package in NLTK_PACKAGES:
        ok = nltk.download(package, quiet=True)
        mark = "[green][OK][/green]" if ok else "[red][FAILED][/red]"
        console.print(f"{mark} {package}")


@app.command("import-notes")
def import_notes(
    directory: Path = typer.Argument(..., exists=True, file_okay=False, help="Folder of notes"),
    config: str = typer.Option("config/config.yaml", "--config", "-c", help="Config YAML"),
    index: bool = typer.Option(False, "--index", help="Chunk and embed each note on import"),
) -> None:
    """Load markdown / text / JSON files from a folder as notes."""
    cfg = _bootstrap(config)
    files = sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in NOTE_SUFFIXES)
    if not files:
        console.print(f"[yellow]No note files found in {directory}[/yellow]")
        raise typer.Exit(1)

    async def _import() -> int:
        store = FileStore(cfg.storage.path, autoflush=False)
        service = RecallService.from_config(cfg, store=store)
        source = StoreDocumentSource(store)
        try:
            if index:
                await service.start()
            for path in files:
                mtime_ms = int(path.stat().st_mtime * 1000)
                note = Note(
                    id=_note_id_for(path),
                    title=path.name if path.suffix.lower() == ".json" else path.stem,
                    content=strip_control_chars(path.read_text(encoding="utf-8", errors="replace")),
                    created_at=mtime_ms,
                    last_updated_at=mtime_ms,
                )
                if index:
                    await service.save_note(note)
                else:
                    await source.save_note(note)
        finally:
            await service.aclose()
        return len(files)

    count = asyncio.run(_import())
    console.print(f"[green][OK] Imported {count} note(s) into {cfg.storage.path}[/green]")
    if not index:
        console.print("[dim]Run [bold]update[/bold] to embed them.[/dim]")


@app.command()
def rebuild(
    config: str = typer.Option("config/config.yaml", "--config", "-c", help="Config YAML"),
) -> None:
    """Delete all chunks and rebuild every embedding and the lexical index."""
    cfg = _bootstrap(config)
    try:
        summary = asyncio.run(_run_with_progress(cfg, full=True))
    except RebuildError as exc:
        console.print(f"[red]Rebuild failed:[/red] {exc}")
        raise typer.Exit(1)
    _print_summary("Full rebuild", summary)


@app.command()
def update(
    config: str = typer.Option("config/config.yaml", "--config", "-c", help="Config YAML"),
) -> None:
    """Embed new or changed notes and chats, prune deleted ones."""
    cfg = _bootstrap(config)
    summary = asyncio.run(_run_with_progress(cfg, full=False))
    _print_summary("Incremental update", summary)
    if summary.error:
        raise typer.Exit(1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Results to return"),
    bm25_weight: Optional[float] = typer.Option(
        None, "--bm25-weight", min=0.0, max=1.0, help="0 = semantic only, 1 = lexical only"
    ),
    json_out: bool = typer.Option(False, "--json", help="Print results as JSON"),
    config: str = typer.Option("config/config.yaml", "--config", "-c", help="Config YAML"),
) -> None:
    """Hybrid search over indexed notes and chats."""
    cfg = _bootstrap(config)

    async def _search():
        service = RecallService.from_config(cfg, store=FileStore(cfg.storage.path, autoflush=False))
        try:
            await service.start()
            return await service.search(query, top_k=top_k, bm25_weight=bm25_weight)
        finally:
            await service.aclose()

    results = asyncio.run(_search())

    if json_out:
        print(orjson.dumps([r.model_dump() for r in results], option=orjson.OPT_INDENT_2).decode())
        return

    if not results:
        console.print("[yellow]No results.[/yellow]")
        return

    table = Table(
        "No.", "Type", "Title", "Section", "Excerpt", "Score",
        box=box.SIMPLE,
        show_header=True,
        header_style="bold dim",
    )
    for i, r in enumerate(results, start=1):
        table.add_row(
            str(i),
            r.parent_type,
            truncate_text(r.parent_title or r.parent_id, 40),
            truncate_text(" > ".join(r.heading_path), 30),
            truncate_text(" ".join(r.chunk_text.split()), 80),
            f"{r.hybrid_score:.3f}",
        )
    console.print(table)


@app.command()
def status(
    config: str = typer.Option("config/config.yaml", "--config", "-c", help="Config YAML"),
) -> None:
    """Show counts for notes, chunks, embeddings and the lexical index."""
    cfg = _bootstrap(config)

    async def _status() -> dict:
        service = RecallService.from_config(cfg, store=FileStore(cfg.storage.path, autoflush=False))
        source = StoreDocumentSource(service.store)
        try:
            notes = await source.list_notes()
            conversations = await source.list_conversations()
            chunks, embeddings = await service.repository.count()
            index = await service.chunk_index.get()
            await service.start()
            return {
                "notes": len(notes),
                "conversations": len(conversations),
                "indexed_parents": len(index),
                "chunks": chunks,
                "embeddings": embeddings,
                "lexical_docs": len(service.lexical_index),
                "lexical_consolidated": service.lexical_index.is_consolidated,
                "last_embedded": format_timestamp(await service.store.get(EMBEDDING_STATS_KEY)),
            }
        finally:
            await service.aclose()

    state = asyncio.run(_status())
    console.print()
    console.print(f"[bold]Store[/bold] [dim]{cfg.storage.path}[/dim]")
    console.print(f"  Notes          : [green]{state['notes']}[/green]")
    console.print(f"  Conversations  : [green]{state['conversations']}[/green]")
    console.print(f"  Indexed parents: {state['indexed_parents']}")
    console.print(f"  Chunks         : {state['chunks']}")
    console.print(f"  Embeddings     : {state['embeddings']}")
    console.print(f"  Lexical docs   : {state['lexical_docs']} "
                  f"({'consolidated' if state['lexical_consolidated'] else 'pending consolidation'})")
    console.print(f"  Last embedded  : {state['last_embedded']}")
    console.print()


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
