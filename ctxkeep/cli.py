"""CLI entry point for ctxkeep"""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ctxkeep.config import Config
from ctxkeep.errors import CtxkeepError

app = typer.Typer(
    name="ctxkeep",
    help="Context budget manager for coding agent conversations",
    add_completion=False,
)
console = Console()


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler("ctxkeep.log"),
            logging.StreamHandler(),
        ],
    )


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log compression decisions"),
):
    _setup_logging(verbose)


def _load_config(config_path: Path | None) -> Config:
    return Config.load(config_path)


def _assembler(config: Config):
    from ctxkeep.context import BackgroundSummarizer, ContextAssembler, CompressionPredictor, SummaryEngine
    from ctxkeep.session import ThreadLocks, ThreadStore

    store = ThreadStore()
    locks = ThreadLocks()
    engine = SummaryEngine.from_config(config.context, config.summary_model)
    background = BackgroundSummarizer(store, engine, locks)
    return ContextAssembler(
        store,
        engine=engine,
        config=config.context,
        predictor=CompressionPredictor(),
        background=background,
        locks=locks,
    )


@app.command()
def level(ratio: float = typer.Argument(..., help="Used share of the context window")):
    """Show the compression level for a usage ratio"""
    from ctxkeep.context import level_for_ratio, name_of

    lvl = level_for_ratio(ratio)
    console.print(f"L{int(lvl)} [cyan]{name_of(lvl)}[/cyan]")


@app.command()
def stats(
    thread_id: str = typer.Argument(..., help="Thread ID"),
    config_path: Path = typer.Option(None, "--config", "-c"),
):
    """Show token usage for a stored thread"""
    from ctxkeep.context import estimate_log, level_for_ratio, name_of
    from ctxkeep.session import ThreadStore
    from ctxkeep.session.message import sendable_messages

    config = _load_config(config_path)
    try:
        thread = ThreadStore().load(thread_id)
    except CtxkeepError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    budget = config.context.budget()
    tokens = estimate_log(sendable_messages(thread.messages))
    ratio = budget.ratio_for(tokens)
    current = level_for_ratio(ratio)

    table = Table(title=f"Thread {thread.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Messages", str(len(thread.messages)))
    table.add_row("Turns", str(thread.turn_count()))
    table.add_row("Estimated tokens", str(tokens))
    table.add_row("Usable budget", str(budget.usable_budget))
    table.add_row("Ratio", f"{ratio:.1%}")
    table.add_row("Level by ratio", f"L{int(current)} {name_of(current)}")
    table.add_row("Last applied level", f"L{thread.last_level} {name_of(thread.last_level)}")
    table.add_row("Handoff required", "yes" if thread.handoff_required else "no")
    table.add_row("Summary generation", str(thread.summary_generation))
    console.print(table)


@app.command()
def assemble(
    thread_id: str = typer.Argument(..., help="Thread ID"),
    message: str = typer.Option(None, "--message", "-m", help="Pending user message"),
    system: str = typer.Option("", "--system", help="Base system prompt"),
    config_path: Path = typer.Option(None, "--config", "-c"),
    output: Path = typer.Option(None, "--output", "-o", help="Write assembled messages as JSON"),
):
    """Assemble the next turn's context for a thread"""
    config = _load_config(config_path)
    assembler = _assembler(config)

    async def run():
        result = await assembler.assemble_turn(thread_id, message, system)
        if assembler.background is not None:
            await assembler.background.wait(thread_id)
        return result

    try:
        result = asyncio.run(run())
    except CtxkeepError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    s = result.stats
    console.print(
        f"L{int(result.level)} [cyan]{s.level_name}[/cyan]: "
        f"{s.original_tokens} → {s.final_tokens} tokens ({s.saved_percent}% saved), "
        f"{len(result.messages)} messages"
    )
    if s.summarized:
        console.print("[yellow]Context was summarized[/yellow]")
    if result.handoff_required:
        console.print(f"[red]Handoff required.[/red] Run 'ctxkeep handoff {thread_id}'")
    if result.error:
        console.print(f"[red]{result.error}[/red]")
    if result.persist_error:
        console.print(f"[yellow]Not saved: {result.persist_error}[/yellow]")

    if output:
        output.write_text(json.dumps(result.messages, indent=2), encoding="utf-8")
        console.print(f"[green]Wrote {output}[/green]")


@app.command()
def prune(
    thread_id: str = typer.Argument(..., help="Thread ID"),
    apply: bool = typer.Option(False, "--apply", help="Mark planned tool results as compacted"),
    config_path: Path = typer.Option(None, "--config", "-c"),
):
    """Plan (and optionally apply) clearing of old tool outputs"""
    from ctxkeep.context import RetentionPruner
    from ctxkeep.session import ThreadStore

    config = _load_config(config_path)
    store = ThreadStore()
    try:
        thread = store.load(thread_id)
    except CtxkeepError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    plan = RetentionPruner.from_config(config.context).plan(thread.messages)
    if not plan:
        console.print(
            f"[yellow]Nothing to prune[/yellow] ({plan.total_tokens} tokens outside the protected window)"
        )
        return

    console.print(f"{len(plan)} tool results, {plan.pruned_tokens} tokens prunable")
    if apply:
        changed = store.mark_compacted(thread_id, plan.message_ids)
        console.print(f"[green]Compacted {changed} tool results[/green]")


@app.command()
def summarize(
    thread_id: str = typer.Argument(..., help="Thread ID"),
    mode: str = typer.Option("detailed", "--mode", help="quick, detailed or handoff"),
    save: bool = typer.Option(False, "--save", help="Store as the thread's summary"),
    config_path: Path = typer.Option(None, "--config", "-c"),
):
    """Summarize a thread's conversation"""
    from ctxkeep.context import SummaryEngine, render_summary
    from ctxkeep.session import ThreadStore

    if mode not in ("quick", "detailed", "handoff"):
        console.print(f"[red]Unknown mode: {mode}[/red]")
        raise typer.Exit(1)

    config = _load_config(config_path)
    store = ThreadStore()
    try:
        thread = store.load(thread_id)
    except CtxkeepError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    engine = SummaryEngine.from_config(config.context, config.summary_model)
    summary = asyncio.run(engine.summarize(thread.messages, mode))
    console.print(render_summary(summary, detailed=mode != "quick"))

    if save:
        generation = store.store_summary(thread_id, summary)
        console.print(f"[green]Stored summary (generation {generation})[/green]")


@app.command()
def handoff(
    thread_id: str = typer.Argument(..., help="Thread ID that reached the handoff level"),
    new_thread: str = typer.Option(None, "--new-thread", help="Seed this thread from the handoff"),
    include_content: bool = typer.Option(False, "--include-content", help="Snapshot key file contents"),
    config_path: Path = typer.Option(None, "--config", "-c"),
):
    """Build a handoff document and optionally start a continuation thread"""
    from ctxkeep.context import render_handoff

    config = _load_config(config_path)
    assembler = _assembler(config)
    try:
        doc = assembler.request_handoff(thread_id, include_content=include_content)
    except CtxkeepError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not new_thread:
        console.print(render_handoff(doc))
        return

    thread = asyncio.run(assembler.consume_handoff(doc, new_thread))
    console.print(f"[green]Created continuation thread:[/green] {thread.id}")


@app.command()
def threads():
    """List stored threads"""
    from ctxkeep.session import ThreadStore

    rows = ThreadStore().list_threads()
    if not rows:
        console.print("[yellow]No threads found[/yellow]")
        return

    table = Table(title="Saved Threads")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="green")
    table.add_column("Updated", style="magenta")
    table.add_column("Handoff", style="red")
    for t in rows:
        table.add_row(
            t["id"],
            t["title"],
            str(t.get("updated_at", "")),
            "required" if t.get("handoff_required") else "",
        )
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
