"""Shared fixtures: a context that never touches the real environment and a launcher that never forks."""

from typing import Dict, List

import pytest

from sratools.config import DriverConfig, InvocationContext
from sratools.proc import ChildResult


class Execed(Exception):
    """Raised by FakeLauncher.exec in place of replacing the process."""

    def __init__(self, toolpath: str, argv: List[str]) -> None:
        self.toolpath = toolpath
        self.argv = argv
        super().__init__(f"exec {toolpath}")


class FakeChild:
    def __init__(self, pid: int, result: ChildResult) -> None:
        self.pid = pid
        self._result = result

    def wait(self) -> ChildResult:
        return self._result


class FakeLauncher:
    """Hands out queued results and records what would have run."""

    def __init__(self, results=None) -> None:
        self.results = list(results or [])
        self.spawned: List[Dict] = []

    def spawn(self, toolpath, argv, env):
        self.spawned.append({"toolpath": toolpath, "argv": list(argv), "env": dict(env)})
        result = self.results.pop(0) if self.results else ChildResult(exit_code=0)
        return FakeChild(1000 + len(self.spawned), result)

    def exec(self, toolpath, argv, env):
        raise Execed(toolpath, list(argv))


@pytest.fixture
def make_ctx():
    def _make(args=None, **config_overrides) -> InvocationContext:
        return InvocationContext(
            argv0="/opt/sra/bin/fasterq-dump",
            selfpath="/opt/sra/bin",
            basename="fasterq-dump",
            version="",
            args=list(args or []),
            config=DriverConfig(**config_overrides),
            environ={"PATH": "/usr/bin"},
        )
    return _make


@pytest.fixture
def launcher():
    return FakeLauncher()
