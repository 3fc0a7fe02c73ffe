"""
Tool identities and where their real binaries live.

The launcher is installed as fastq-dump, sam-dump, ...; each name maps to
one entry of TOOLS. The real binary is the same name with an "-orig"
suffix, looked for next to the launcher and then on PATH.
"""

import os
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from sratools.args import ArgSchema, ParamList
from sratools.config import InvocationContext


class ToolNotFoundError(Exception):
    """The real binary for a tool could not be located."""


class ToolId(Enum):
    SRAPATH = "srapath"
    PREFETCH = "prefetch"
    FASTQ_DUMP = "fastq-dump"
    FASTERQ_DUMP = "fasterq-dump"
    SAM_DUMP = "sam-dump"
    SRA_PILEUP = "sra-pileup"
    SELF = "sratools"


@dataclass(frozen=True)
class ToolInfo:
    """What the launcher needs to know to run one tool."""
    name: str
    schema: ArgSchema
    uses_sdl: bool = True
    unsafe_output: Optional[str] = None
    extension: Optional[str] = None

    def output_settings(self, params: ParamList) -> Tuple[Optional[str], str]:
        """Return (unsafe output parameter name, per-run file extension)."""
        if self.name == ToolId.SAM_DUMP.value:
            # sam-dump can append fastq/fasta but not sam
            for name, _ in params:
                if name == "--fastq":
                    return None, ".fastq"
                if name == "--fasta":
                    return None, ".fasta"
            return "--output-file", ".sam"
        return self.unsafe_output, self.extension or ""


_COMMON_VALUES = {"--log-level", "--ngc", "--perm", "--cart", "--debug"}
_COMMON_ALIASES = {"-L": "--log-level", "-V": "--version", "-v": "--verbose", "-h": "--help"}


def _schema(values, aliases=None) -> ArgSchema:
    merged = dict(_COMMON_ALIASES)
    merged.update(aliases or {})
    return ArgSchema(value_options=frozenset(_COMMON_VALUES | set(values)), aliases=merged)


TOOLS = {
    ToolId.SRAPATH: ToolInfo(
        name="srapath",
        uses_sdl=False,
        schema=_schema(
            {"--function", "--timeout", "--protocol", "--vers", "--url", "--param", "--project"},
            {"-f": "--function", "-t": "--timeout", "-a": "--protocol",
             "-e": "--vers", "-u": "--url", "-p": "--param", "-d": "--project"},
        ),
    ),
    ToolId.PREFETCH: ToolInfo(
        name="prefetch",
        uses_sdl=False,
        schema=_schema(
            {"--type", "--transport", "--min-size", "--max-size", "--force",
             "--resume", "--verify", "--heartbeat", "--ascp-path", "--ascp-options",
             "--output-file", "--output-directory", "--order", "--rows"},
            {"-T": "--type", "-t": "--transport", "-N": "--min-size",
             "-X": "--max-size", "-f": "--force", "-r": "--resume", "-C": "--verify",
             "-p": "--progress", "-H": "--heartbeat", "-a": "--ascp-path",
             "-o": "--output-file", "-O": "--output-directory", "-R": "--rows"},
        ),
    ),
    ToolId.FASTQ_DUMP: ToolInfo(
        name="fastq-dump",
        extension=".fastq",
        schema=_schema(
            {"--accession", "--outdir", "--minSpotId", "--maxSpotId", "--minReadLen",
             "--spot-groups", "--offset", "--table", "--read-filter", "--defline-seq",
             "--defline-qual", "--matepair-distance", "--aligned-region"},
            {"-A": "--accession", "-O": "--outdir", "-N": "--minSpotId", "-X": "--maxSpotId",
             "-M": "--minReadLen", "-Z": "--stdout", "-F": "--origfmt",
             "-C": "--dumpcs", "-B": "--dumpbase", "-Q": "--offset",
             "-W": "--clip", "-G": "--spot-group", "-R": "--read-filter",
             "-T": "--group-in-dirs", "-K": "--keep-empty-files"},
        ),
    ),
    ToolId.FASTERQ_DUMP: ToolInfo(
        name="fasterq-dump",
        unsafe_output="--outfile",
        extension=".fastq",
        schema=_schema(
            {"--outfile", "--outdir", "--bufsize", "--curcache", "--mem", "--temp",
             "--threads", "--size-check", "--seq-defline", "--qual-defline",
             "--min-read-len", "--table", "--bases", "--disk-limit", "--disk-limit-tmp"},
            {"-o": "--outfile", "-O": "--outdir", "-b": "--bufsize", "-c": "--curcache",
             "-m": "--mem", "-t": "--temp", "-e": "--threads", "-p": "--progress",
             "-x": "--details", "-s": "--split-spot", "-S": "--split-files",
             "-3": "--split-3", "-f": "--force", "-M": "--min-read-len",
             "-B": "--bases", "-Z": "--stdout"},
        ),
    ),
    ToolId.SAM_DUMP: ToolInfo(
        name="sam-dump",
        schema=_schema(
            {"--output-file", "--aligned-region", "--matepair-distance", "--prefix",
             "--min-mapq", "--header-file", "--header-comment", "--qual-quant",
             "--cursor-cache", "--output-buffer-size",
             "--rna-splice-level", "--rna-splice-log"},
            {"-r": "--header", "-n": "--no-header", "-u": "--unaligned",
             "-1": "--primary", "-c": "--cigar-long", "-p": "--prefix", "-Q": "--qual-quant",
             "-g": "--spot-group", "-=": "--hide-identical"},
        ),
    ),
    ToolId.SRA_PILEUP: ToolInfo(
        name="sra-pileup",
        unsafe_output="--outfile",
        extension=".pileup",
        schema=_schema(
            {"--outfile", "--aligned-region", "--minmapq", "--duplicates", "--function",
             "--table", "--merge-dist", "--depth-per-spotgroup"},
            {"-o": "--outfile", "-r": "--aligned-region", "-q": "--minmapq",
             "-d": "--duplicates", "-p": "--spotgroups", "-e": "--seqname"},
        ),
    ),
    ToolId.SELF: ToolInfo(name="sratools", uses_sdl=False, schema=_schema(set())),
}


def lookup_tool(basename: str) -> ToolId:
    """Map the invoked basename to a tool; anything unknown runs as sratools itself."""
    for tool_id in ToolId:
        if tool_id.value == basename:
            return tool_id
    return ToolId.SELF


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def find_tool_path(ctx: InvocationContext, info: ToolInfo) -> str:
    """
    Locate the real binary for a tool.

    Tries <selfpath>/<name>-orig.<version>, <selfpath>/<name>-orig, then PATH.
    """
    real_name = f"{info.name}-orig"
    candidates = []
    if ctx.selfpath:
        if ctx.version:
            candidates.append(os.path.join(ctx.selfpath, f"{real_name}.{ctx.version}"))
        candidates.append(os.path.join(ctx.selfpath, real_name))

    for candidate in candidates:
        if _is_executable(candidate):
            return candidate

    found = shutil.which(real_name, path=ctx.environ.get("PATH"))
    if found:
        return found
    raise ToolNotFoundError(f"could not find {real_name} for {info.name}")
