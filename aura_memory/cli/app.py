"""CLI application — Click-based command group for aura-memory.

The main group and global flags. Subcommand modules register themselves by
importing and adding to the group.
"""

from __future__ import annotations

import logging

import click


@click.group()
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.option("--verbose", "-v", is_flag=True, help="Log memory operations")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, verbose: bool, no_color: bool) -> None:
    """Aura Memory - inspect and maintain an agent's long-term memory."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_output
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color
    if verbose:
        from aura_memory.main import configure_logging

        configure_logging(logging.INFO)


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    from aura_memory.cli.memory_cmds import (
        consolidate_cmd,
        ingest_cmd,
        prune_cmd,
        query_cmd,
        remember_cmd,
        stats_cmd,
    )

    cli.add_command(stats_cmd)
    cli.add_command(query_cmd)
    cli.add_command(remember_cmd)
    cli.add_command(ingest_cmd)
    cli.add_command(consolidate_cmd)
    cli.add_command(prune_cmd)


_register_subcommands()
