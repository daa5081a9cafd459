"""artcade CLI — inspect and evolve the pattern library.

`artcade init` creates the database, `artcade add` stores a snippet,
`artcade extract` mines a full page for candidate patterns,
`artcade list`/`show`/`stats` inspect it, `artcade similar` and
`artcade evolve` run retrieval and evolution against a stored pattern.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from artcade.config import settings
from artcade.evolution.engine import EvolutionConfig
from artcade.exceptions import ArtcadeError
from artcade.manager import PatternEngine
from artcade.types import PatternType

console = Console()

app = typer.Typer(
    name="artcade",
    help="artcade -- pattern library with vector retrieval and evolution.",
    no_args_is_help=True,
)


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code, exiting cleanly on errors."""
    try:
        return asyncio.run(coro)
    except ArtcadeError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def init():
    """Create the pattern database and apply migrations."""

    async def _init():
        async with PatternEngine.from_settings() as engine:
            return await engine.store.count_patterns()

    count = run_async(_init())
    console.print(Panel(
        f"[green]Pattern database ready at {settings.db_path}[/green]\n\n"
        f"Patterns stored: {count}\n"
        f"Embedding model: {settings.embedding_model} ({settings.embedding_dimension} dims)\n\n"
        "Set your API key:\n"
        "  [bold]export ARTCADE_EMBEDDING_API_KEY=your-key[/bold]",
        title="artcade",
        border_style="cyan",
    ))


@app.command()
def add(
    html_file: Path = typer.Argument(help="HTML file containing the snippet", exists=True),
    name: str = typer.Option(..., "--name", help="Pattern name"),
    type: PatternType = typer.Option(PatternType.GAME_MECHANIC, "--type", "-t"),
    context: str = typer.Option("", "--context", help="Short description"),
):
    """Validate and store a pattern from an HTML file."""

    async def _add():
        async with PatternEngine.from_settings() as engine:
            return await engine.store_pattern({
                "type": type,
                "pattern_name": name,
                "content": {"html": html_file.read_text(), "context": context},
            })

    pattern = run_async(_add())
    console.print(f"[green]Stored[/green] {pattern.name} [dim]({pattern.id})[/dim]")


@app.command()
def extract(
    html_file: Path = typer.Argument(help="Full HTML page to mine for patterns", exists=True),
    types: list[PatternType] = typer.Option(None, "--type", "-t", help="Only these types"),
    approve: bool = typer.Option(False, "--approve", help="Store every candidate found"),
):
    """Extract candidate patterns from an HTML page into staging."""

    async def _extract():
        async with PatternEngine.from_settings() as engine:
            ids = engine.extract_patterns(html_file.read_text(), types or None)
            staged = [engine.staging.get_staged(i) for i in ids]
            if approve:
                for staging_id in ids:
                    await engine.staging.approve_pattern(staging_id, reason="cli extract")
            return staged

    staged = run_async(_extract())
    if not staged:
        console.print("[dim]No patterns found.[/dim]")
        return

    table = Table(title="Extracted" if not approve else "Extracted and stored")
    table.add_column("Type", style="cyan")
    table.add_column("Name", style="white")
    for item in staged:
        table.add_row(item.pattern.type.value, item.pattern.name)
    console.print(table)


@app.command("list")
def list_patterns(
    type: PatternType | None = typer.Option(None, "--type", "-t"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max patterns"),
):
    """List stored patterns, newest first."""

    async def _list():
        async with PatternEngine.from_settings() as engine:
            return await engine.store.list_patterns(type=type, limit=limit)

    patterns = run_async(_list())
    if not patterns:
        console.print("[dim]No patterns stored yet.[/dim]")
        return

    table = Table(title="Patterns")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Type", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Score", justify="right")
    table.add_column("Uses", justify="right")
    for p in patterns:
        table.add_row(
            p.id[:12], p.type.value, p.name,
            f"{p.effectiveness_score:.2f}", str(p.usage_count),
        )
    console.print(table)


@app.command()
def show(pattern_id: str = typer.Argument(help="Pattern ID")):
    """Show one pattern with its structural features."""

    async def _show():
        async with PatternEngine.from_settings() as engine:
            return await engine.store.get_pattern(pattern_id)

    pattern = run_async(_show())
    if pattern is None:
        console.print(f"[red]Pattern {pattern_id} not found[/red]")
        raise typer.Exit(code=1)

    from artcade.store.features import extract_pattern_features
    features = extract_pattern_features(pattern.content.html)
    console.print(Panel(
        f"[bold]{pattern.name}[/bold] ({pattern.type.value})\n"
        f"Score: {pattern.effectiveness_score:.2f}   Uses: {pattern.usage_count}\n"
        f"Parent: {pattern.parent_id or '-'}\n"
        f"Elements: {features.element_count}   Scripts: {features.script_count}   "
        f"Layout: {features.layout_type}   Complexity: {features.complexity:.2f}\n\n"
        f"{pattern.content.html[:500]}",
        title=pattern.id,
        border_style="cyan",
    ))


@app.command()
def stats(pattern_id: str = typer.Argument(help="Pattern ID")):
    """Show usage statistics for a pattern."""

    async def _stats():
        async with PatternEngine.from_settings() as engine:
            return await engine.get_pattern_usage_stats(pattern_id)

    s = run_async(_stats())
    console.print(
        f"Total uses: {s.total_uses}\n"
        f"Successful: {s.successful_uses}\n"
        f"Avg similarity: {s.average_similarity:.3f}\n"
        f"Last used: {s.last_used or '-'}"
    )


@app.command()
def similar(
    pattern_id: str = typer.Argument(help="Pattern ID"),
    threshold: float = typer.Option(0.85, "--threshold"),
    limit: int = typer.Option(5, "--limit", "-n"),
):
    """Find patterns similar to a stored one."""

    async def _similar():
        async with PatternEngine.from_settings() as engine:
            pattern = await engine.store.get_pattern(pattern_id)
            if pattern is None:
                return None
            return await engine.store.find_similar_patterns(
                pattern.embedding, type=pattern.type, threshold=threshold,
                limit=limit, exclude_ids={pattern.id},
            )

    hits = run_async(_similar())
    if hits is None:
        console.print(f"[red]Pattern {pattern_id} not found[/red]")
        raise typer.Exit(code=1)
    if not hits:
        console.print("[dim]No similar patterns.[/dim]")
        return

    table = Table(title=f"Similar to {pattern_id[:12]}")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Name", style="white")
    table.add_column("Similarity", justify="right", style="green")
    for h in hits:
        table.add_row(h.pattern.id[:12], h.pattern.name, f"{h.similarity:.3f}")
    console.print(table)


@app.command()
def evolve(
    pattern_id: str = typer.Argument(help="Seed pattern ID"),
    population: int | None = typer.Option(None, "--population"),
    generations: int | None = typer.Option(None, "--generations"),
    mutation_rate: float | None = typer.Option(None, "--mutation-rate"),
    crossover_rate: float | None = typer.Option(None, "--crossover-rate"),
    fitness_threshold: float | None = typer.Option(None, "--fitness-threshold"),
):
    """Evolve a stored pattern and print the fittest result."""
    config = EvolutionConfig.from_settings(
        population_size=population,
        generation_limit=generations,
        mutation_rate=mutation_rate,
        crossover_rate=crossover_rate,
        fitness_threshold=fitness_threshold,
    )

    async def _evolve():
        async with PatternEngine.from_settings() as engine:
            return await engine.evolve_pattern(pattern_id, config)

    with console.status("Evolving..."):
        result = run_async(_evolve())

    table = Table(title="Generations")
    table.add_column("Gen", justify="right")
    table.add_column("Best", justify="right", style="green")
    table.add_column("Mean", justify="right")
    table.add_column("Admitted", justify="right")
    for g in result.history:
        table.add_row(
            str(g.generation), f"{g.best_fitness:.3f}",
            f"{g.mean_fitness:.3f}", str(g.offspring_admitted),
        )
    console.print(table)
    console.print(
        f"[bold]Best:[/bold] {result.pattern.name} [dim]({result.pattern.id})[/dim] "
        f"fitness {result.fitness:.3f} at generation {result.generation}"
    )


if __name__ == "__main__":
    app()
