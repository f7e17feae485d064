"""Typer-based CLI for the codecontext engine.

Every command builds a fresh in-memory engine over ROOT; nothing is
persisted between runs except ``config.toml``.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config_manager import (
    SECTIONS,
    coerce_value,
    load_settings,
    save_section,
    settings_as_dict,
)
from .errors import CodeContextError
from .logging_setup import setup_logging
from .models import SearchMode, SearchQuery
from .orchestrator import ContextNeed, ContextOrchestrator, ContextRequest
from .watcher import IndexWatcher

console = Console()

app = typer.Typer(
    help="🧠 codecontext: ranked, token-budgeted repository context.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
config_app = typer.Typer(help="⚙️  Show or change config.toml settings.", no_args_is_help=True)
app.add_typer(config_app, name="config")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"codecontext v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    """codecontext: index a repository, search it, and assemble context bundles."""
    setup_logging("DEBUG" if verbose else "WARNING")


def _build(root: Path) -> ContextOrchestrator:
    return asyncio.run(ContextOrchestrator.create(root, load_settings()))


@app.command("index")
def index_cmd(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Repository root."),
):
    """Index ROOT and print what was found."""
    orchestrator = _build(root)
    stats = orchestrator.search_engine.index.stats()
    typer.echo(f"Indexed '{root.resolve()}'.")
    typer.echo(
        f"Files: {stats['files']} | Symbols: {stats['symbols']} | "
        f"Modules: {stats['modules']} | Bytes: {stats['total_size']}"
    )


@app.command("search")
def search_cmd(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Repository root."),
    query: str = typer.Argument(..., help="Query text, symbol name or regex."),
    mode: SearchMode = typer.Option(SearchMode.HYBRID, "--mode", "-m", help="Search strategy."),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", min=1, max=100, help="Max results."),
    min_score: float = typer.Option(0.0, "--min-score", min=0.0, max=1.0, help="Semantic score floor."),
):
    """Search ROOT with one of the five strategies."""
    orchestrator = _build(root)

    async def _run():
        return await orchestrator.search_engine.search(
            SearchQuery(query=query, mode=mode, top_k=top_k, min_score=min_score)
        )

    try:
        results = asyncio.run(_run())
    except CodeContextError as exc:
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(1)

    if not results:
        typer.echo("No results.")
        return

    table = Table(title=f"{mode.value} search: {query}")
    table.add_column("Score", justify="right")
    table.add_column("Type")
    table.add_column("Location")
    table.add_column("Detail")
    for r in results:
        if r.symbol is not None:
            location = str(r.symbol.location)
            detail = f"{r.symbol.kind.value} {r.symbol.name}"
        elif r.highlights:
            h = r.highlights[0]
            location = f"{r.path}:{h.start_line}:{h.start_column}"
            detail = f"{len(r.highlights)} matches"
        else:
            location, detail = r.path, ""
        table.add_row(f"{r.score:.3f}", r.type, location, detail)
    console.print(table)


@app.command("context")
def context_cmd(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Repository root."),
    query: str = typer.Argument(..., help="What you need context for."),
    needs: List[ContextNeed] = typer.Option([ContextNeed.CODE_CONTEXT], "--need", "-n", help="Kinds of context."),
    max_results: Optional[int] = typer.Option(None, "--max-results", min=1, max=100),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds before giving up."),
):
    """Assemble a ranked context bundle for QUERY."""
    orchestrator = _build(root)
    request = ContextRequest(
        query=query,
        needs=needs,
        constraints={"max_results": max_results},
        timeout=timeout,
    )
    response = asyncio.run(orchestrator.handle_request(request))
    if not response.success:
        console.print(f"[red]✗[/red] {escape(str(response.error))}")
        raise typer.Exit(1)

    for item in response.info:
        console.print(
            f"[bold]{item.importance.value.upper():8}[/bold] "
            f"[cyan]{escape(item.title)}[/cyan] [dim]({item.type.value}, rel {item.relevance:.2f})[/dim]"
        )
        console.print(f"  {escape(item.summary)}")
    s = response.stats
    console.print(
        f"\n[dim]{s.total_results} results ({s.search_results} search, {s.research_results} research), "
        f"~{s.tokens_used} tokens, {response.duration:.2f}s[/dim]"
    )


@app.command("research")
def research_cmd(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Repository root."),
    topic: str = typer.Argument(..., help="Research topic."),
    questions: List[str] = typer.Option([], "--question", "-q", help="Questions to answer."),
    depth: str = typer.Option("medium", "--depth", help="shallow, medium or deep."),
):
    """Run one research task over ROOT and print its synthesis."""
    orchestrator = _build(root)
    engine = orchestrator.research_engine

    async def _run():
        task = engine.create_task(topic, questions, {"depth": depth})
        return await engine.execute_research(task.id)

    try:
        task = asyncio.run(_run())
    except CodeContextError as exc:
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(1)

    console.print(f"[bold]{task.status.value}[/bold]: {len(task.findings)} findings")
    if task.synthesis is None:
        return
    console.print(escape(task.synthesis.summary))
    for point in task.synthesis.key_points:
        console.print(f"  • {escape(point)}")
    for rec in task.synthesis.recommendations:
        console.print(f"  [green]→[/green] {escape(rec)}")


@app.command("watch")
def watch_cmd(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Repository root."),
    debounce: float = typer.Option(0.5, "--debounce", "-d", help="Quiet period before re-indexing."),
):
    """👀 Index ROOT, then keep re-indexing files as they change."""

    async def _run():
        orchestrator = await ContextOrchestrator.create(root, load_settings())
        watcher = IndexWatcher(orchestrator.indexer, root, debounce=debounce)
        watcher.start()
        console.print(f"[bold green]👀 Watching[/bold green] [cyan]{root.resolve()}[/cyan]  [dim]Ctrl+C to stop[/dim]")
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            watcher.stop()
            console.print(
                f"\n[yellow]Stopped watching.[/yellow] "
                f"Re-indexed {watcher.reindexed}, removed {watcher.removed} file(s)."
            )

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        raise typer.Exit(0)


@config_app.command("show")
def config_show():
    """Print the effective settings."""
    for section, values in settings_as_dict(load_settings()).items():
        console.print(f"[bold]{escape('[' + section + ']')}[/bold]")
        if isinstance(values, dict):
            for key, value in values.items():
                console.print(f"  {key} = {escape(repr(value))}")
        else:
            console.print(f"  {escape(repr(values))}")


@config_app.command("set")
def config_set(
    section: str = typer.Argument(..., help=f"One of: {', '.join(SECTIONS)}"),
    key: str = typer.Argument(...),
    value: str = typer.Argument(...),
):
    """Change one setting in config.toml."""
    try:
        coerced = coerce_value(section, key, value)
        save_section(section, {key: coerced})
    except (KeyError, ValueError) as exc:
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(1)
    typer.echo(f"[{section}] {key} = {coerced!r}")
