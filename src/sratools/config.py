"""
Configuration and invocation context for sratools.

Everything the launcher learns at startup (who it was invoked as, the
resolved location, the environment overrides) is collected once into an
InvocationContext and handed to every component that needs it.
"""

import os
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from decouple import config
from rich.console import Console
from rich.markup import escape

console = Console(stderr=True)

DEFAULT_SDL_URL = "https://locate.ncbi.nlm.nih.gov/sdl/2"

# Variables the launcher manages for its children; the dry run prints these.
ENV_VAR_NAMES = (
    "SRATOOLS_IMPERSONATE",
    "SRATOOLS_DRY_RUN",
    "SRATOOLS_VERBOSE",
    "VDB_CE_TOKEN",
    "VDB_LOCAL_URL",
    "VDB_REMOTE_URL",
    "VDB_REMOTE_VDBCACHE",
    "VDB_REMOTE_NEED_CE",
    "VDB_REMOTE_NEED_PMT",
    "VDB_REMOTE_SIZE",
    "VDB_LOCATION",
)

_VERSION_SUFFIX = re.compile(r"^(?P<name>.+?)\.(?P<version>\d+(?:\.\d+)*)$")


@dataclass
class DriverConfig:
    """Configuration for the launcher, read from environment variables."""
    impersonate: Optional[str] = None
    dry_run: bool = False
    verbosity: int = 0
    sdl_url: str = DEFAULT_SDL_URL
    sdl_timeout: int = 30
    ce_token: Optional[str] = None
    accept_proto: str = "https,fasp"

    @classmethod
    def from_env(cls) -> 'DriverConfig':
        """Load configuration from environment variables."""
        return cls(
            impersonate=config('SRATOOLS_IMPERSONATE', default=None) or None,
            dry_run=is_dry_run_value(config('SRATOOLS_DRY_RUN', default='')),
            verbosity=config('SRATOOLS_VERBOSE', default=0, cast=int),
            sdl_url=config('SRATOOLS_SDL_URL', default=DEFAULT_SDL_URL),
            sdl_timeout=config('SRATOOLS_SDL_TIMEOUT', default=30, cast=int),
            ce_token=config('SRATOOLS_CE_TOKEN', default=None) or None,
            accept_proto=config('SRATOOLS_ACCEPT_PROTO', default='https,fasp'),
        )


def is_dry_run_value(value: Optional[str]) -> bool:
    """A dry run is requested by any non-empty value other than "0"."""
    return bool(value) and value != "0"


def split_invocation_name(argv0: str) -> Tuple[str, str, str]:
    """
    Split the invoked path into (selfpath, basename, version).

    "/opt/sra/bin/fastq-dump.3.0.1" -> ("/opt/sra/bin", "fastq-dump", "3.0.1")
    """
    selfpath, name = os.path.split(argv0)
    match = _VERSION_SUFFIX.match(name)
    if match:
        return selfpath, match.group("name"), match.group("version")
    return selfpath, name, ""


def strip_location(args: List[str]) -> Tuple[List[str], Optional[str]]:
    """
    Remove every --location from the argument list.

    Accepts both "--location VALUE" and "--location=VALUE"; the last one wins.
    """
    remaining: List[str] = []
    location = None
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--location":
            if i + 1 < len(args):
                location = args[i + 1]
                i += 2
                continue
            # dangling flag, nothing to consume
            i += 1
            continue
        if arg.startswith("--location="):
            location = arg.split("=", 1)[1]
            i += 1
            continue
        remaining.append(arg)
        i += 1
    return remaining, location


@dataclass
class InvocationContext:
    """What the launcher knows about this invocation."""
    argv0: str
    selfpath: str
    basename: str
    version: str
    args: List[str]
    location: Optional[str] = None
    config: DriverConfig = field(default_factory=DriverConfig)
    environ: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_argv(
        cls,
        argv: Optional[List[str]] = None,
        driver_config: Optional[DriverConfig] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> 'InvocationContext':
        """Build the context from the process argv and environment."""
        argv = list(sys.argv if argv is None else argv)
        driver_config = driver_config or DriverConfig.from_env()

        argv0 = driver_config.impersonate or (argv[0] if argv else "sratools")
        selfpath, basename, version = split_invocation_name(argv0)
        args, location = strip_location(argv[1:])

        env = dict(os.environ if environ is None else environ)
        if location:
            env["VDB_LOCATION"] = location

        return cls(
            argv0=argv0,
            selfpath=selfpath,
            basename=basename,
            version=version,
            args=args,
            location=location,
            config=driver_config,
            environ=env,
        )

    def log(self, level: int, message: str) -> None:
        """Print a diagnostic if verbosity is at least level."""
        if self.config.verbosity >= level:
            console.print(f"[dim]{escape(message)}[/dim]")
