"""Memory commands — stats, query, remember, ingest, consolidate, prune."""

from __future__ import annotations

import json as json_mod
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import click
import structlog

from aura_memory.cli.formatters import (
    build_table,
    format_age,
    get_console,
    relevance_indicator,
    truncate,
)
from aura_memory.errors import ConfigurationUnavailable, MemorySystemError
from aura_memory.memory.consolidation import ConsolidationResult
from aura_memory.memory.models import FactKind
from aura_memory.system import MemorySystem

logger = structlog.get_logger(__name__)


@contextmanager
def _memory_system(ctx: click.Context) -> Iterator[MemorySystem]:
    """The system injected into ctx.obj, or one built from the environment."""
    injected = ctx.obj.get("system")
    if injected is not None:
        yield injected
        return
    try:
        system = MemorySystem.from_config()
    except MemorySystemError as e:
        raise click.ClickException(str(e)) from e
    try:
        yield system
    finally:
        system.close()


def _emit_json(payload: Any) -> None:
    click.echo(json_mod.dumps(payload, indent=2, default=str))


@click.command("stats")
@click.argument("user_id")
@click.pass_context
def stats_cmd(ctx: click.Context, user_id: str) -> None:
    """Show memory counts and averages for USER_ID."""
    with _memory_system(ctx) as system:
        stats = system.get_memory_stats(user_id)

    if ctx.obj["json"]:
        _emit_json(stats.to_dict())
        return

    console = get_console(no_color=ctx.obj["no_color"])
    console.print(f"[bold]Memory for {user_id}[/bold] (backend: {stats.backend})")
    console.print()
    factual = stats.factual
    console.print(f"[bold]Factual:[/bold] {factual.total_count} records, "
                  f"avg confidence {factual.avg_confidence:.2f}")
    for kind, count in sorted(factual.by_kind.items()):
        console.print(f"  {kind}: {count}")
    if factual.top_tags:
        console.print("  top tags: " + ", ".join(f"{t} ({n})" for t, n in factual.top_tags))
    experiential = stats.experiential
    console.print(f"[bold]Experiential:[/bold] {experiential.total_count} records, "
                  f"avg importance {experiential.avg_importance:.2f}, "
                  f"success rate {experiential.success_rate:.0%}, "
                  f"{experiential.unique_skills} skills")
    for kind, count in sorted(experiential.by_kind.items()):
        console.print(f"  {kind}: {count}")


@click.command("query")
@click.argument("user_id")
@click.argument("text")
@click.pass_context
def query_cmd(ctx: click.Context, user_id: str, text: str) -> None:
    """Rank USER_ID's memories against TEXT."""
    with _memory_system(ctx) as system:
        results = system.query_memory(user_id, text)

    if ctx.obj["json"]:
        _emit_json([r.to_dict() for r in results])
        return

    if not results:
        click.echo("No relevant memories.")
        return
    now = time.time()
    rows = []
    for result in results:
        memory = result.memory
        summary = getattr(memory, "content", None) or getattr(memory, "context", "")
        rows.append([
            relevance_indicator(result.reason),
            f"{result.score:.2f}",
            f"{result.memory_type}/{memory.kind.value}",
            format_age(now - memory.created_at),
            truncate(summary),
        ])
    console = get_console(no_color=ctx.obj["no_color"])
    console.print(build_table(
        f"Memories for {text!r}", ["", "Score", "Kind", "Age", "Memory"], rows
    ))


@click.command("remember")
@click.argument("user_id")
@click.argument("content")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in FactKind]),
    default=FactKind.FACT.value,
    show_default=True,
)
@click.option("--confidence", type=float, default=0.8, show_default=True)
@click.option("--tag", "tags", multiple=True, help="Tag to attach (repeatable)")
@click.pass_context
def remember_cmd(
    ctx: click.Context,
    user_id: str,
    content: str,
    kind: str,
    confidence: float,
    tags: tuple[str, ...],
) -> None:
    """Store CONTENT as a fact for USER_ID."""
    with _memory_system(ctx) as system:
        try:
            record = system.record_manual_fact(
                user_id, content, kind=kind, confidence=confidence, tags=list(tags)
            )
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--confidence") from e

    if ctx.obj["json"]:
        _emit_json(record.to_dict())
        return
    click.echo(f"Stored {record.kind.value} {record.id}")


@click.command("ingest")
@click.argument("run_id")
@click.argument("user_id")
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def ingest_cmd(ctx: click.Context, run_id: str, user_id: str, events_file: Path) -> None:
    """Form memories for USER_ID from a run's JSON-lines EVENTS_FILE."""
    with _memory_system(ctx) as system:
        try:
            loaded = system.event_log.load_jsonl(events_file, run_id)
        except ValueError as e:
            raise click.ClickException(str(e)) from e
        extracted = system.record_run_completion(run_id, user_id)

    if ctx.obj["json"]:
        _emit_json({
            "run_id": run_id,
            "events": loaded,
            "factual": len(extracted.factual),
            "experiential": len(extracted.experiential),
        })
        return
    click.echo(
        f"Read {loaded} events from run {run_id}: "
        f"{len(extracted.factual)} factual, {len(extracted.experiential)} experiential memories"
    )


@click.command("consolidate")
@click.argument("user_id")
@click.pass_context
def consolidate_cmd(ctx: click.Context, user_id: str) -> None:
    """Merge, extract rules from and prune USER_ID's experiences."""
    with _memory_system(ctx) as system:
        try:
            system.require_backend("consolidate")
        except ConfigurationUnavailable as e:
            logger.warning("cli.consolidate_skipped", user_id=user_id, reason=str(e))
            result = ConsolidationResult()
        else:
            result = system.run_consolidation(user_id)

    if ctx.obj["json"]:
        _emit_json(result.to_dict())
        return
    if result.skipped:
        click.echo(f"Consolidation already running for {user_id}; skipped.")
        return
    click.echo(
        f"Merged {result.merged} groups, extracted {result.patterns_extracted} rules, "
        f"pruned {result.pruned} memories"
    )


@click.command("prune")
@click.argument("user_id")
@click.option("--threshold", type=click.FloatRange(0.0, 1.0), default=0.3, show_default=True)
@click.option("--max-age-days", type=click.FloatRange(min=0.0), default=30.0, show_default=True)
@click.pass_context
def prune_cmd(ctx: click.Context, user_id: str, threshold: float, max_age_days: float) -> None:
    """Delete USER_ID's old experiences below an importance threshold."""
    with _memory_system(ctx) as system:
        try:
            system.require_backend("prune")
        except ConfigurationUnavailable as e:
            logger.warning("cli.prune_skipped", user_id=user_id, reason=str(e))
            pruned = 0
        else:
            pruned = system.experiential_store.prune_old_memories(
                user_id, importance_threshold=threshold, max_age_days=max_age_days
            )

    if ctx.obj["json"]:
        _emit_json({"pruned": pruned})
        return
    click.echo(f"Pruned {pruned} memories")
