"""
Accession classification and expansion.

Classification looks at the shape of a token only; whether the accession
exists is left to the data-source locator.
"""

import os
from enum import Enum
from typing import Iterable, List

from rich.console import Console
from rich.markup import escape

console = Console(stderr=True)

LOOKUP_URL = "https://www.ncbi.nlm.nih.gov/sra/?term="

MIN_DIGITS = 6
MAX_DIGITS = 9


class AccessionType(Enum):
    """Kind of SRA accession, named after its third character."""
    RUN = "R"
    PROJECT = "P"
    SAMPLE = "S"
    EXPERIMENT = "X"
    SUBMITTER = "A"
    UNKNOWN = ""

    @property
    def is_container(self) -> bool:
        return self in (AccessionType.PROJECT, AccessionType.SAMPLE, AccessionType.EXPERIMENT)


class _ScanState(Enum):
    ARCHIVE = 0
    R = 1
    KIND = 2
    DIGITS = 3


class ContainerAccessionError(Exception):
    """Raised when container accessions were given; they cannot be expanded."""

    def __init__(self, accessions: List[str]) -> None:
        self.accessions = accessions
        super().__init__(
            f"container accessions are not supported: {', '.join(accessions)}"
        )


def classify(token: str) -> AccessionType:
    """Get the accession type from the shape of the token.

    Matches [DES]R[APRSX] followed by 6 to 9 digits; a "." ends the digits
    (file extension). Anything else is UNKNOWN.
    """
    state = _ScanState.ARCHIVE
    kind = AccessionType.UNKNOWN
    digits = 0

    for ch in token:
        if state is _ScanState.ARCHIVE:
            if ch not in "DES":
                return AccessionType.UNKNOWN
            state = _ScanState.R
        elif state is _ScanState.R:
            if ch != "R":
                return AccessionType.UNKNOWN
            state = _ScanState.KIND
        elif state is _ScanState.KIND:
            if ch not in "APRSX":
                return AccessionType.UNKNOWN
            kind = AccessionType(ch)
            state = _ScanState.DIGITS
        else:
            if ch == ".":
                break
            if not ("0" <= ch <= "9"):
                return AccessionType.UNKNOWN
            digits += 1

    if MIN_DIGITS <= digits <= MAX_DIGITS:
        return kind
    return AccessionType.UNKNOWN


def is_readable_path(token: str) -> bool:
    """True if the token names something on disk we can read."""
    return os.access(token, os.R_OK)


def expand_all(accessions: Iterable[str]) -> List[str]:
    """
    Deduplicate accessions and reject containers.

    Keeps first-seen order. Readable paths, runs and unrecognised tokens
    pass through unchanged. Every container accession is reported before
    ContainerAccessionError is raised.
    """
    result: List[str] = []
    seen = set()
    containers: List[str] = []

    for acc in accessions:
        if acc in seen:
            continue
        seen.add(acc)

        if not is_readable_path(acc) and classify(acc).is_container:
            console.print(
                f"{escape(acc)} is a container accession. "
                f"For more information, see {LOOKUP_URL}{escape(acc)}",
                highlight=False,
            )
            containers.append(acc)
        result.append(acc)

    if containers:
        console.print(
            "Automatic expansion of container accessions is not currently available. "
            "See the above link(s) for information about the constituent run data accessions. "
            "For example, you can download the accession list and then re-run with "
            "--option-file=SraAccList.txt",
            highlight=False,
        )
        raise ContainerAccessionError(containers)

    return result
