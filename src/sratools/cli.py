"""
sratools CLI - main entry point.

Every tool script (fastq-dump, sam-dump, ...) lands here. The basename the
launcher was invoked as picks the tool; anything else gets the sratools
command line itself. This is the only place an outcome becomes an exit
status.
"""

import os
import re
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sratools import __version__
from sratools.accession import ContainerAccessionError, classify, expand_all
from sratools.args import ArgumentError, parse_args
from sratools.config import InvocationContext
from sratools.driver import EX_UNAVAILABLE, BatchResult, Locator, RunDriver
from sratools.proc import ProcessLauncher
from sratools.sources import data_sources
from sratools.tools import TOOLS, ToolId, ToolNotFoundError, find_tool_path, lookup_tool

console = Console(stderr=True)

app = typer.Typer(
    name="sratools",
    help="sratools - launcher for the SRA command line tools",
    add_completion=False,
    rich_markup_mode="rich",
)


def _context(ctx: typer.Context) -> InvocationContext:
    if ctx.obj is None:
        ctx.obj = InvocationContext.from_argv(["sratools"])
    return ctx.obj


@app.callback(invoke_without_command=True)
def self_main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-V", help="Show version and exit"
    ),
) -> None:
    """
    sratools - one launcher, installed under each tool's name.

    Run it as fastq-dump, fasterq-dump, sam-dump, sra-pileup, prefetch or
    srapath to use that tool.
    """
    if version:
        console.print(f"sratools version {__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command("tools")
def list_tools(ctx: typer.Context) -> None:
    """List the tools this launcher can run as."""
    invocation = _context(ctx)

    table = Table(title="Tools")
    table.add_column("Name")
    table.add_column("Binary")
    table.add_column("Data locator")
    table.add_column("Shared output")

    for tool_id, info in TOOLS.items():
        if tool_id is ToolId.SELF:
            continue
        try:
            path = find_tool_path(invocation, info)
        except ToolNotFoundError:
            path = "[red]not found[/red]"
        if tool_id is ToolId.SAM_DUMP:
            sharing = "fastq/fasta only"
        else:
            sharing = "no" if info.unsafe_output else "yes"
        table.add_row(info.name, path, "yes" if info.uses_sdl else "no", sharing)

    console.print(table)


@app.command("classify")
def classify_accessions(
    accessions: List[str] = typer.Argument(..., help="Accessions to classify"),
) -> None:
    """Show what kind of accession each argument looks like."""
    for accession in accessions:
        console.print(f"{escape(accession)}: {classify(accession).name.lower()}", highlight=False)


@app.command("resolve")
def resolve_accessions(
    ctx: typer.Context,
    accessions: List[str] = typer.Argument(..., help="Run accessions to look up"),
) -> None:
    """Show every data source each run would be tried from, in order."""
    invocation = _context(ctx)
    try:
        runs = expand_all(accessions)
    except ContainerAccessionError:
        raise typer.Exit(EX_UNAVAILABLE)

    for run in runs:
        sources = data_sources(invocation, run)
        if not sources:
            console.print(f"{escape(run)}: no accessible source", style="red")
            continue
        console.print(f"[bold]{escape(run)}[/bold]")
        for source in sources:
            console.print(f"  {escape(source.service)}", highlight=False)
            for name, value in source.environment.items():
                console.print(f"    {name}={escape(value)}", style="dim", highlight=False)


def run_tool(
    ctx: InvocationContext,
    tool_id: ToolId,
    launcher: Optional[ProcessLauncher] = None,
    locator: Optional[Locator] = None,
) -> BatchResult:
    """
    Run as one of the tools.

    Tools without a locator step, bad arguments and empty invocations
    replace this process and do not return.
    """
    info = TOOLS[tool_id]
    toolpath = find_tool_path(ctx, info)
    driver = RunDriver(ctx, launcher=launcher, locator=locator)

    try:
        params, accessions = parse_args(ctx.args, info.schema)
    except ArgumentError as e:
        if not e.help_requested:
            console.print(f"{info.name}: {escape(str(e))}", style="red")
        driver.tool_help(toolpath)

    if not info.uses_sdl:
        driver.process_accessions_no_sdl(toolpath, params, accessions)

    unsafe_param, extension = info.output_settings(params)
    return driver.process_accessions(info.name, toolpath, unsafe_param, extension, params, accessions)


def _sanitize_error_message(error_msg: str) -> str:
    """Sanitize error message to prevent Rich markup errors with binary data."""
    sanitized = re.sub(r'[^\x20-\x7E\n\r\t]', '?', str(error_msg))
    return escape(sanitized)


def main() -> None:
    """Main entry point for every tool name."""
    try:
        ctx = InvocationContext.from_argv()
        tool_id = lookup_tool(ctx.basename)

        if tool_id is ToolId.SELF:
            app(args=ctx.args, prog_name=ctx.basename, obj=ctx)
            return

        batch = run_tool(ctx, tool_id)
        if batch.signal is not None:
            # the tool was killed; end abnormally as well
            os.abort()
        sys.exit(batch.exit_code)

    except ContainerAccessionError:
        sys.exit(EX_UNAVAILABLE)
    except ToolNotFoundError as e:
        console.print(f"❌ {_sanitize_error_message(str(e))}", style="red")
        sys.exit(EX_UNAVAILABLE)
    except KeyboardInterrupt:
        console.print("\n⚠️  Operation cancelled by user", style="yellow")
        sys.exit(130)
    except Exception as e:
        error_msg = _sanitize_error_message(str(e))
        console.print(f"\n❌ Unexpected error: {error_msg}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    main()
