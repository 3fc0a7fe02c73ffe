"""
Splitting a tool's command line into forwarded parameters and accessions.

Each tool has an ArgSchema naming the options that take a value. Short
aliases are rewritten to their long name so the rest of the launcher only
ever sees one spelling of an option.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

Param = Tuple[str, Optional[str]]
ParamList = List[Param]

OPTION_FILE = "--option-file"


class ArgumentError(Exception):
    """Bad command line, or the user asked for help."""

    def __init__(self, message: str, help_requested: bool = False) -> None:
        self.help_requested = help_requested
        super().__init__(message)


@dataclass(frozen=True)
class ArgSchema:
    """Options a tool understands.

    value_options: long names of options that take a value.
    aliases: short name -> long name, for flags and value options alike.
    """
    value_options: frozenset = frozenset()
    aliases: Dict[str, str] = field(default_factory=dict)

    def long_name(self, name: str) -> str:
        return self.aliases.get(name, name)

    def takes_value(self, name: str) -> bool:
        return name in self.value_options


def _read_option_file(path: str) -> List[str]:
    try:
        return Path(path).read_text().split()
    except OSError as e:
        raise ArgumentError(f"could not read option file {path}: {e.strerror}")


def parse_args(args: List[str], schema: ArgSchema) -> Tuple[ParamList, List[str]]:
    """
    Split args into (parameters, accessions).

    Raises:
        ArgumentError: on -h/--help, a value option without a value, or an
            unreadable --option-file.
    """
    params: ParamList = []
    accessions: List[str] = []
    pending = list(args)
    options_done = False

    while pending:
        arg = pending.pop(0)

        if options_done or arg == "-" or not arg.startswith("-"):
            accessions.append(arg)
            continue
        if arg == "--":
            options_done = True
            continue

        value: Optional[str] = None
        if arg.startswith("--") and "=" in arg:
            arg, value = arg.split("=", 1)
        name = schema.long_name(arg)

        if name in ("-h", "--help"):
            raise ArgumentError("help requested", help_requested=True)

        if name == OPTION_FILE:
            if value is None:
                if not pending:
                    raise ArgumentError(f"{OPTION_FILE} requires a file name")
                value = pending.pop(0)
            # spliced in place, so its contents parse as if typed here
            pending[0:0] = _read_option_file(value)
            continue

        if schema.takes_value(name) and value is None:
            if not pending:
                raise ArgumentError(f"{name} requires a value")
            value = pending.pop(0)
        params.append((name, value))

    return params, accessions


def flatten(params: ParamList) -> List[str]:
    """Turn parameters back into argv words, in order."""
    argv: List[str] = []
    for name, value in params:
        argv.append(name)
        if value is not None:
            argv.append(value)
    return argv
