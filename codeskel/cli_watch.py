"""Watch mode for auto-reindexing on file changes."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Set

import typer
from rich.console import Console

from .config import SUPPORTED_EXTENSIONS
from .documents import path_to_uri, relative_path

console = Console()


class CodeChangeHandler:
    """Collect file system events and flush them in debounced batches."""

    def __init__(
        self,
        reindex_callback: Callable[[List[Path]], None],
        debounce_seconds: float = 2.0,
        is_busy: Optional[Callable[[], bool]] = None,
    ):
        self.reindex_callback = reindex_callback
        self.debounce_seconds = debounce_seconds
        self.is_busy = is_busy or (lambda: False)
        self.last_event = 0.0
        self._pending_files: Set[str] = set()
        self._lock = threading.Lock()

    def dispatch(self, event) -> None:
        """Route a watchdog event; moves count as a delete plus a create."""
        if event.is_directory:
            return
        self._handle_change(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._handle_change(dest)

    def _handle_change(self, src_path: str) -> None:
        file_path = Path(src_path)
        if file_path.suffix not in SUPPORTED_EXTENSIONS:
            return

        # Skip hidden/temp files
        if any(part.startswith(".") for part in file_path.parts):
            return

        with self._lock:
            self._pending_files.add(str(file_path))
            self.last_event = time.monotonic()

    def flush(self, now: Optional[float] = None) -> List[Path]:
        """Hand pending files to the callback once events have settled.

        Nothing is flushed while a pass is still syncing; pending files stay
        queued for the next call.
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            if not self._pending_files or now - self.last_event < self.debounce_seconds:
                return []
            if self.is_busy():
                return []
            files = sorted(Path(f) for f in self._pending_files)
            self._pending_files.clear()
        self.reindex_callback(files)
        return files


def select_reindex_targets(indexer, files: List[Path]) -> List[Path]:
    """Files of a batch the indexer should process.

    Existing files must match the indexer's inclusion and exclusion filters;
    the match cache is refreshed first since the batch may contain new files.
    Deleted files pass when they are indexed, so their removal propagates.
    """
    indexer.clear_cache()
    targets: List[Path] = []
    for file_path in files:
        resolved = file_path.resolve()
        rel = relative_path(indexer.workspace, resolved)
        if resolved.exists():
            keep = indexer.should_include_file(rel)
        else:
            keep = indexer.code_graph.get_file_entry(rel) is not None
        if keep:
            targets.append(resolved)
    return targets


def watch(
    path: Path = typer.Argument(Path("."), help="Workspace to watch for changes."),
    interval: float = typer.Option(2.0, "--interval", "-i", help="Debounce interval in seconds."),
):
    """👀 Watch mode: re-index changed and deleted files.

    Example:
      cskel watch
      cskel watch ./src --interval 5
    """
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer

    from .cli import open_indexer

    watch_path = path.resolve()
    if not watch_path.is_dir():
        console.print(f"[red]✗[/red] Path not found: {path}")
        raise typer.Exit(1)

    indexer = open_indexer(watch_path)
    reindex_count = 0

    def reindex_files(files: List[Path]) -> None:
        nonlocal reindex_count
        targets = select_reindex_targets(indexer, files)
        if not targets:
            return
        try:
            asyncio.run(indexer.process_documents([path_to_uri(f) for f in targets]))
            reindex_count += 1
            names = ", ".join(f.name for f in targets[:3])
            more = f" (+{len(targets) - 3} more)" if len(targets) > 3 else ""
            console.print(f"  [green]✓[/green] Re-indexed {names}{more}")
        except Exception as e:
            console.print(f"  [red]✗[/red] Re-index failed: {e}")

    console.print(f"\n[bold green]👀 Watching[/bold green] [cyan]{watch_path}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {interval}s")
    console.print(f"  Filter:    {indexer.inclusion_filter}")
    console.print("  Press Ctrl+C to stop[/dim]\n")

    handler = CodeChangeHandler(reindex_files, debounce_seconds=interval, is_busy=indexer.is_syncing)

    class WatchdogAdapter(FileSystemEventHandler):
        def on_modified(self, event):
            handler.dispatch(event)

        def on_created(self, event):
            handler.dispatch(event)

        def on_deleted(self, event):
            handler.dispatch(event)

        def on_moved(self, event):
            handler.dispatch(event)

    observer = Observer()
    observer.schedule(WatchdogAdapter(), str(watch_path), recursive=True)
    observer.start()

    try:
        while True:
            time.sleep(0.5)
            handler.flush()
    except KeyboardInterrupt:
        observer.stop()
        console.print(f"\n[yellow]Stopped watching.[/yellow] Re-indexed {reindex_count} time(s).")

    observer.join()
