"""
Running a tool over a list of accessions.

For every run the data locator supplies candidate sources; each is tried in
order by spawning the real tool with that source's environment until one
works. Nothing here exits the process: outcomes are returned to cli.main,
which turns them into an exit status.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, NoReturn, Optional, Sequence

from rich.console import Console
from rich.markup import escape

from sratools.accession import expand_all
from sratools.args import ParamList, flatten
from sratools.config import ENV_VAR_NAMES, InvocationContext
from sratools.proc import ProcessLauncher
from sratools.sources import DataSources, data_sources

console = Console(stderr=True)
out_console = Console()

# sysexits.h
EX_OK = 0
EX_UNAVAILABLE = 69
EX_TEMPFAIL = 75

NULL_DEVICE = "/dev/null"

Locator = Callable[[InvocationContext, str], DataSources]


class RunOutcome(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    EXHAUSTED_SOURCES = "exhausted_sources"
    FATAL_ABORT = "fatal_abort"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class RunResult:
    """Terminal state of one run.

    exit_code or signal being set means the whole batch stops here.
    """
    run: str
    outcome: RunOutcome
    exit_code: Optional[int] = None
    signal: Optional[int] = None

    @property
    def stops_batch(self) -> bool:
        return self.exit_code is not None or self.signal is not None


@dataclass
class BatchResult:
    """What the driver reports back for the whole invocation."""
    exit_code: int = EX_OK
    signal: Optional[int] = None
    runs: List[RunResult] = field(default_factory=list)


def guard(
    runs: Sequence[str],
    unsafe_param: Optional[str],
    parameters: ParamList,
    toolname: str,
    extension: str,
) -> Optional[int]:
    """
    Find the output parameter that several runs would overwrite.

    Returns its index in parameters, after telling the user which per-run
    files will be written instead, or None when the output can be shared.
    """
    if not unsafe_param or len(runs) <= 1:
        return None

    for index, (name, value) in enumerate(parameters):
        if name == unsafe_param and value != NULL_DEVICE:
            # the user asked for output in a file, so stdout is free to talk on
            out_console.print(
                f"You are trying to process {len(runs)} runs to a single output file, but {toolname}\n"
                "is not capable of producing valid output from more than one run into a single\n"
                "file. The following output files will be created instead:",
                markup=False,
                highlight=False,
            )
            for run in runs:
                out_console.print(f"\t{run}{extension}", markup=False, highlight=False)
            return index
    return None


class RunDriver:
    """Runs one tool over accessions, retrying each run across its data sources."""

    def __init__(
        self,
        ctx: InvocationContext,
        launcher: Optional[ProcessLauncher] = None,
        locator: Optional[Locator] = None,
    ) -> None:
        self.ctx = ctx
        self.launcher = launcher or ProcessLauncher()
        self.locator = locator or data_sources

    def child_argv(self, parameters: ParamList, runs: Sequence[str]) -> List[str]:
        """argv for the real tool: invoked name, parameters, then runs."""
        return [self.ctx.argv0, *flatten(parameters), *runs]

    def _print_dry_run(self, toolpath: str, argv: List[str]) -> None:
        lines = [f"would exec '{toolpath}' as:", " ".join(argv), "with environment:"]
        for name in ENV_VAR_NAMES:
            value = self.ctx.environ.get(name)
            if value is not None:
                lines.append(f" {name}='{value}'")
        console.print("\n".join(lines) + "\n", markup=False, highlight=False)

    def tool_help(self, toolpath: str) -> NoReturn:
        """Have the tool print its own help."""
        self.launcher.exec(toolpath, [self.ctx.argv0, "--help"], self.ctx.environ)

    def empty_invocation(self, toolpath: str) -> NoReturn:
        """Run the tool with no arguments at all."""
        self.launcher.exec(toolpath, [self.ctx.argv0], self.ctx.environ)

    def resolve_and_run(
        self,
        run: str,
        extension: str,
        toolname: str,
        toolpath: str,
        parameters: ParamList,
        output_slot: Optional[int],
    ) -> RunResult:
        """Try run against each of its data sources until one works."""
        sources = self.locator(self.ctx, run)
        if not sources:
            console.print(
                f"Could not get any data for {escape(run)}, there is no accessible source.",
                style="red",
            )
            return RunResult(run, RunOutcome.EXHAUSTED_SOURCES)

        sources.set_ce_token_env_var(self.ctx.environ)

        for source in sources:
            if output_slot is not None:
                name, _ = parameters[output_slot]
                parameters[output_slot] = (name, run + extension)
            source.set_environment(self.ctx.environ)

            argv = self.child_argv(parameters, [run])
            if self.ctx.config.dry_run:
                self._print_dry_run(toolpath, argv)
                return RunResult(run, RunOutcome.DRY_RUN, exit_code=EX_OK)

            child = self.launcher.spawn(toolpath, argv, self.ctx.environ)
            result = child.wait()

            if result.exited:
                if result.exit_code == 0:
                    self.ctx.log(2, f"Successfully processed {run}")
                    return RunResult(run, RunOutcome.SUCCEEDED)
                if result.exit_code == EX_TEMPFAIL:
                    self.ctx.log(1, f"failed to get data for {run} from {source.service}")
                    continue
                console.print(
                    f"{toolname} (PID {child.pid}) quit with error code {result.exit_code}",
                    style="red",
                    markup=False,
                )
                return RunResult(run, RunOutcome.FATAL_ABORT, exit_code=result.exit_code)

            console.print(
                f"{toolname} (PID {child.pid}) was killed (signal {result.signal})",
                style="red",
                markup=False,
            )
            return RunResult(run, RunOutcome.FATAL_ABORT, signal=result.signal)

        lines = [f"Could not get any data for {run}, tried to get data from:"]
        lines.extend(f"\t{source.service}" for source in sources)
        lines.append("This may be temporary, you should retry later.")
        console.print("\n".join(lines), style="red", markup=False)
        return RunResult(run, RunOutcome.EXHAUSTED_SOURCES, exit_code=EX_TEMPFAIL)

    def process_accessions(
        self,
        toolname: str,
        toolpath: str,
        unsafe_param: Optional[str],
        extension: str,
        parameters: ParamList,
        accessions: Sequence[str],
    ) -> BatchResult:
        """
        Run the tool for every run in accessions.

        Stops at the first run that ends the batch. With no accessions the
        tool is executed bare and this does not return.

        Raises:
            ContainerAccessionError: if any accession is a project, sample
                or experiment.
        """
        if not accessions:
            self.empty_invocation(toolpath)

        runs = expand_all(accessions)
        output_slot = guard(runs, unsafe_param, parameters, toolname, extension)

        batch = BatchResult()
        for run in runs:
            self.ctx.log(3, f"Processing {run} ...")
            result = self.resolve_and_run(run, extension, toolname, toolpath, parameters, output_slot)
            batch.runs.append(result)
            if result.stops_batch:
                batch.exit_code = result.exit_code if result.exit_code is not None else EX_OK
                batch.signal = result.signal
                return batch

        self.ctx.log(1, "All runs were processed successfully")
        return batch

    def process_accessions_no_sdl(
        self,
        toolpath: str,
        parameters: ParamList,
        accessions: Sequence[str],
    ) -> NoReturn:
        """Run a tool that does its own resolution once over all runs."""
        runs = expand_all(accessions)
        self.launcher.exec(toolpath, self.child_argv(parameters, runs), self.ctx.environ)
