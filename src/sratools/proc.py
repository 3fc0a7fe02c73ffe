"""
Child process handling for sratools.

Spawning keeps the invoked name as the child's argv[0], so the real tool
reports itself under the name the user typed.
"""

import os
import subprocess
from dataclasses import dataclass
from typing import Dict, List, NoReturn, Optional


@dataclass(frozen=True)
class ChildResult:
    """How a child process ended: exit code or terminating signal."""
    exit_code: Optional[int] = None
    signal: Optional[int] = None

    @property
    def exited(self) -> bool:
        return self.exit_code is not None

    @property
    def signaled(self) -> bool:
        return self.signal is not None

    @classmethod
    def from_returncode(cls, returncode: int) -> 'ChildResult':
        """Popen reports death by signal N as returncode -N."""
        if returncode < 0:
            return cls(signal=-returncode)
        return cls(exit_code=returncode)


class Child:
    """A running child process."""

    def __init__(self, process: subprocess.Popen) -> None:
        self.process = process

    @property
    def pid(self) -> int:
        return self.process.pid

    def wait(self) -> ChildResult:
        """Block until the child is gone."""
        return ChildResult.from_returncode(self.process.wait())


class ProcessLauncher:
    """Starts tool binaries, either as a child or in place of this process."""

    def spawn(self, toolpath: str, argv: List[str], env: Dict[str, str]) -> Child:
        """Start toolpath as a child with the given argv and environment."""
        process = subprocess.Popen(argv, executable=toolpath, env=env)
        return Child(process)

    def exec(self, toolpath: str, argv: List[str], env: Dict[str, str]) -> NoReturn:
        """Replace this process with toolpath."""
        try:
            os.execve(toolpath, argv, env)
        except OSError as e:
            raise OSError(e.errno, f"failed to exec {toolpath}: {e.strerror}") from e
