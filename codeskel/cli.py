"""Typer-based CLI for codeskel incremental code indexing."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__, config, config_manager
from .cli_watch import watch
from .documents import path_to_uri, relative_path
from .embeddings import get_embedder
from .errors import IndexerError
from .generator import get_generator
from .graph import CodeGraph
from .indexer import Indexer
from .parser import PythonCodeParser
from .vector_store import LanceVectorStore

console = Console()

app = typer.Typer(
    help="🦴 codeskel: incremental code indexing with bottom-up skeletons.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Show or change codeskel configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")

app.command("watch")(watch)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"codeskel v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable debug logging."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """codeskel: keep a skeleton index of your workspace in sync with its files."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=False)],
        force=True,
    )


def open_indexer(
    workspace: Path,
    inclusion: Optional[str] = None,
    exclusion: Optional[List[str]] = None,
    verbose_progress: bool = False,
) -> Indexer:
    """Wire an :class:`Indexer` for ``workspace`` and restore its last graph snapshot."""
    workspace = workspace.resolve()
    config.ensure_base_dirs()
    store = LanceVectorStore(config.index_dir_for(workspace), get_embedder())

    def on_processing(rel: str) -> None:
        if verbose_progress:
            console.print(f"  [dim]•[/dim] {rel}")

    def on_removed(path: str) -> None:
        console.print(f"  [yellow]−[/yellow] {relative_path(workspace, path)}")

    indexer = Indexer(
        workspace,
        PythonCodeParser(workspace),
        CodeGraph(workspace),
        get_generator(),
        store,
        inclusion or config.inclusion_filter(),
        on_file_processing=on_processing,
        on_file_removed=on_removed,
        exclusion_filter=exclusion if exclusion is not None else config.exclusion_filter(),
    )
    asyncio.run(indexer.load())
    return indexer


def _workspace_option() -> Path:
    return typer.Option(Path("."), "--workspace", "-w", file_okay=False, help="Workspace root.")


@app.command("index")
def index(
    paths: Optional[List[Path]] = typer.Argument(None, help="Files to (re)index. Omit for a full build."),
    workspace: Path = _workspace_option(),
    full: bool = typer.Option(False, "--full", help="Rebuild from every file matching the filter."),
    inclusion: Optional[str] = typer.Option(None, "--filter", "-f", help="Inclusion glob, e.g. '**/*.py'."),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-x", help="Gitignore-style exclusion."),
):
    """Index changed files, or the whole workspace with --full."""
    indexer = open_indexer(workspace, inclusion, exclude or None, verbose_progress=True)
    try:
        if full or not paths:
            console.print(f"[bold]Full build[/bold] of [cyan]{indexer.workspace}[/cyan]")
            uris = asyncio.run(indexer.build_index())
        else:
            uris = [path_to_uri(p) for p in paths]
            asyncio.run(indexer.process_documents(uris))
    except IndexerError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    console.print(
        f"[green]✓[/green] Processed {len(uris)} document(s); "
        f"{len(indexer.code_graph.get_files())} file(s) indexed, "
        f"{indexer.vector_store.count()} skeleton(s) stored."
    )


@app.command("remove")
def remove(
    file: Path = typer.Argument(..., help="File to drop from the index."),
    workspace: Path = _workspace_option(),
):
    """Remove one file from the index."""
    indexer = open_indexer(workspace)
    rel = relative_path(indexer.workspace, file.resolve())
    if indexer.code_graph.get_file_entry(rel) is None:
        console.print(f"[yellow]![/yellow] {rel} is not indexed.")
        raise typer.Exit(1)
    try:
        asyncio.run(indexer.delete_file(rel))
    except IndexerError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Removed {rel} from the index.")


@app.command("status")
def status(workspace: Path = _workspace_option()):
    """Show what is indexed for the workspace."""
    indexer = open_indexer(workspace)
    files = indexer.code_graph.get_files()

    table = Table(title=f"codeskel index: {indexer.workspace}", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Index dir", str(config.index_dir_for(indexer.workspace)))
    table.add_row("Inclusion filter", indexer.inclusion_filter)
    table.add_row("Files", str(len(files)))
    table.add_row("Skeletons", str(indexer.vector_store.count()))
    console.print(table)


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Text to search skeletons for."),
    workspace: Path = _workspace_option(),
    top_k: int = typer.Option(5, min=1, max=30, help="Maximum number of matches."),
):
    """Cosine search over stored skeletons."""
    indexer = open_indexer(workspace)
    results = indexer.vector_store.search(query, top_k=top_k)
    if not results:
        typer.echo("No matches found.")
        raise typer.Exit(code=0)

    for item in results:
        typer.echo(f"{item['file_path']}:{item['start_range']}  score={item['score']:.3f}")
        snippet = item["document"].strip().splitlines()
        if snippet:
            typer.echo(f"  {snippet[0][:120]}")


@app.command("clear")
def clear(
    workspace: Path = _workspace_option(),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Delete the index of the workspace."""
    indexer = open_indexer(workspace)
    if not yes and not typer.confirm(f"Delete the index for {indexer.workspace}?"):
        raise typer.Exit(code=0)
    asyncio.run(indexer.vector_store.clear())
    indexer.code_graph.clear()
    console.print("[green]✓[/green] Index cleared.")


# ------------------------------------------------------------------
# config
# ------------------------------------------------------------------

@config_app.command("set-filter")
def set_filter(
    pattern: str = typer.Argument(..., help="Inclusion glob, e.g. '**/*.{py,pyi}'."),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-x", help="Gitignore-style exclusion."),
):
    """Persist the inclusion (and optionally exclusion) filter."""
    if not config_manager.save_indexer_config(inclusion_filter=pattern, exclusion_filter=exclude or None):
        console.print("[red]✗[/red] Could not write configuration.")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Inclusion filter set to [cyan]{pattern}[/cyan]")


@config_app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help="none, ollama, openai, anthropic or groq."),
    model: str = typer.Option("", "--model", "-m", help="Model name."),
    api_key: str = typer.Option("", "--api-key", "-k", help="API key for cloud providers."),
    endpoint: str = typer.Option("", "--endpoint", "-e", help="Custom endpoint URL."),
):
    """Choose the provider used to generate skeletons."""
    provider = provider.lower()
    if provider not in config_manager.DEFAULT_LLM_CONFIGS:
        raise typer.BadParameter(
            f"Unknown provider '{provider}'. Choose from: {', '.join(config_manager.DEFAULT_LLM_CONFIGS)}"
        )
    if not config_manager.save_llm_config(provider, model, api_key, endpoint):
        console.print("[red]✗[/red] Could not write configuration.")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] LLM provider set to [cyan]{provider}[/cyan]")


@config_app.command("show")
def show():
    """Print the effective configuration."""
    llm = config.llm_settings()
    table = Table(title=f"codeskel config: {config_manager.config_file()}", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("llm.provider", llm.get("provider", "none"))
    table.add_row("llm.model", llm.get("model", "") or "-")
    table.add_row("llm.api_key", "set" if llm.get("api_key") else "-")
    table.add_row("embeddings.model", config.embedding_model())
    table.add_row("indexer.inclusion_filter", config.inclusion_filter())
    table.add_row("indexer.exclusion_filter", ", ".join(config.exclusion_filter()))
    console.print(table)


if __name__ == "__main__":
    app()
