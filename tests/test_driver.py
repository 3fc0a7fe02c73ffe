"""
Tests for the run driver: output guard, per-source retry and batch outcomes.
"""

import pytest

from sratools.accession import ContainerAccessionError
from sratools.driver import (
    EX_TEMPFAIL,
    RunDriver,
    RunOutcome,
    guard,
)
from sratools.proc import ChildResult
from sratools.sources import DataSource, DataSources

from conftest import Execed, FakeLauncher

TOOLPATH = "/opt/sra/bin/fasterq-dump-orig"


def sources_for(*services, **kwargs):
    return DataSources(
        [DataSource(service=s, environment={"VDB_REMOTE_URL": f"https://{s}/run"}) for s in services],
        **kwargs,
    )


class Locator:
    """Returns canned sources per run and records lookups."""

    def __init__(self, table):
        self.table = table
        self.calls = []

    def __call__(self, ctx, run):
        self.calls.append(run)
        return self.table.get(run, DataSources())


class TestGuard:
    """Detecting runs that would overwrite one output file."""

    def test_multiple_runs_get_per_run_files(self, capsys):
        params = [("--split-3", None), ("--outfile", "all.fastq")]

        slot = guard(["SRR000001", "SRR000002"], "--outfile", params, "fasterq-dump", ".fastq")

        assert slot == 1
        out = capsys.readouterr().out
        assert "You are trying to process 2 runs" in out
        assert "SRR000001.fastq" in out
        assert "SRR000002.fastq" in out
        assert params[1] == ("--outfile", "all.fastq")

    def test_single_run_keeps_shared_file(self, capsys):
        params = [("--outfile", "all.fastq")]
        assert guard(["SRR000001"], "--outfile", params, "fasterq-dump", ".fastq") is None
        assert capsys.readouterr().out == ""

    def test_null_device_is_safe(self):
        params = [("--outfile", "/dev/null")]
        assert guard(["SRR000001", "SRR000002"], "--outfile", params, "fasterq-dump", ".fastq") is None

    def test_safe_tool_is_untouched(self):
        params = [("--outfile", "all.fastq")]
        assert guard(["SRR000001", "SRR000002"], None, params, "fastq-dump", ".fastq") is None

    def test_parameter_absent(self):
        params = [("--split-3", None)]
        assert guard(["SRR000001", "SRR000002"], "--outfile", params, "fasterq-dump", ".fastq") is None


class TestResolveAndRun:
    """Trying one run against its sources."""

    def test_retries_temporary_failures_until_success(self, make_ctx, capsys):
        launcher = FakeLauncher([
            ChildResult(exit_code=EX_TEMPFAIL),
            ChildResult(exit_code=EX_TEMPFAIL),
            ChildResult(exit_code=0),
        ])
        locator = Locator({"SRR000001": sources_for("ncbi", "s3", "gs")})
        driver = RunDriver(make_ctx(verbosity=1), launcher=launcher, locator=locator)

        result = driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, [], None)

        assert result.outcome is RunOutcome.SUCCEEDED
        assert not result.stops_batch
        assert [s["env"]["VDB_REMOTE_URL"] for s in launcher.spawned] == [
            "https://ncbi/run", "https://s3/run", "https://gs/run",
        ]
        err = capsys.readouterr().err
        assert "failed to get data for SRR000001 from ncbi" in err
        assert "from s3" in err

    def test_child_argv_and_output_slot(self, make_ctx):
        launcher = FakeLauncher()
        locator = Locator({"SRR000001": sources_for("ncbi")})
        ctx = make_ctx()
        driver = RunDriver(ctx, launcher=launcher, locator=locator)
        params = [("--outfile", "all.fastq"), ("--split-3", None)]

        driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, params, 0)

        spawned = launcher.spawned[0]
        assert spawned["toolpath"] == TOOLPATH
        assert spawned["argv"] == [ctx.argv0, "--outfile", "SRR000001.fastq", "--split-3", "SRR000001"]

    def test_tool_failure_is_fatal_with_its_code(self, make_ctx, capsys):
        launcher = FakeLauncher([ChildResult(exit_code=17)])
        locator = Locator({"SRR000001": sources_for("ncbi", "s3")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)

        result = driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, [], None)

        assert result.outcome is RunOutcome.FATAL_ABORT
        assert result.exit_code == 17
        assert len(launcher.spawned) == 1
        assert "quit with error code 17" in capsys.readouterr().err

    def test_killed_child_is_fatal(self, make_ctx, capsys):
        launcher = FakeLauncher([ChildResult(signal=9)])
        locator = Locator({"SRR000001": sources_for("ncbi", "s3")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)

        result = driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, [], None)

        assert result.outcome is RunOutcome.FATAL_ABORT
        assert result.signal == 9
        assert result.stops_batch
        assert "was killed (signal 9)" in capsys.readouterr().err

    def test_no_sources_is_not_fatal(self, make_ctx, capsys):
        launcher = FakeLauncher()
        driver = RunDriver(make_ctx(), launcher=launcher, locator=Locator({}))

        result = driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, [], None)

        assert result.outcome is RunOutcome.EXHAUSTED_SOURCES
        assert not result.stops_batch
        assert launcher.spawned == []
        assert "no accessible source" in capsys.readouterr().err

    def test_exhausted_sources_is_fatal(self, make_ctx, capsys):
        launcher = FakeLauncher([ChildResult(exit_code=EX_TEMPFAIL), ChildResult(exit_code=EX_TEMPFAIL)])
        locator = Locator({"SRR000001": sources_for("ncbi", "s3")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)

        result = driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, [], None)

        assert result.outcome is RunOutcome.EXHAUSTED_SOURCES
        assert result.exit_code == EX_TEMPFAIL
        err = capsys.readouterr().err
        assert "ncbi" in err
        assert "s3" in err
        assert "retry later" in err

    def test_ce_token_installed_before_spawn(self, make_ctx):
        launcher = FakeLauncher()
        sources = DataSources([DataSource(service="s3", need_ce=True)], ce_token="tok")
        driver = RunDriver(make_ctx(), launcher=launcher, locator=Locator({"SRR000001": sources}))

        driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, [], None)

        assert launcher.spawned[0]["env"]["VDB_CE_TOKEN"] == "tok"

    def test_dry_run_never_spawns(self, make_ctx, capsys):
        launcher = FakeLauncher()
        locator = Locator({"SRR000001": sources_for("ncbi")})
        driver = RunDriver(make_ctx(dry_run=True), launcher=launcher, locator=locator)

        result = driver.resolve_and_run("SRR000001", ".fastq", "fasterq-dump", TOOLPATH, [], None)

        assert result.outcome is RunOutcome.DRY_RUN
        assert result.exit_code == 0
        assert launcher.spawned == []
        err = capsys.readouterr().err
        assert f"would exec '{TOOLPATH}' as:" in err
        assert "VDB_REMOTE_URL='https://ncbi/run'" in err


class TestProcessAccessions:
    """Whole-batch behaviour."""

    def test_all_runs_succeed(self, make_ctx, capsys):
        launcher = FakeLauncher()
        locator = Locator({"SRR000001": sources_for("ncbi"), "SRR000002": sources_for("ncbi")})
        driver = RunDriver(make_ctx(verbosity=1), launcher=launcher, locator=locator)

        batch = driver.process_accessions(
            "fasterq-dump", TOOLPATH, "--outfile", ".fastq", [], ["SRR000001", "SRR000002", "SRR000001"]
        )

        assert batch.exit_code == 0
        assert batch.signal is None
        assert [r.outcome for r in batch.runs] == [RunOutcome.SUCCEEDED, RunOutcome.SUCCEEDED]
        assert locator.calls == ["SRR000001", "SRR000002"]
        assert "All runs were processed successfully" in capsys.readouterr().err

    def test_tool_failure_stops_remaining_runs(self, make_ctx):
        launcher = FakeLauncher([ChildResult(exit_code=17)])
        locator = Locator({"SRR000001": sources_for("ncbi"), "SRR000002": sources_for("ncbi")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)

        batch = driver.process_accessions("fasterq-dump", TOOLPATH, None, ".fastq", [], ["SRR000001", "SRR000002"])

        assert batch.exit_code == 17
        assert locator.calls == ["SRR000001"]
        assert len(launcher.spawned) == 1

    def test_run_without_source_does_not_stop_batch(self, make_ctx):
        launcher = FakeLauncher()
        locator = Locator({"SRR000002": sources_for("ncbi")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)

        batch = driver.process_accessions("fasterq-dump", TOOLPATH, None, ".fastq", [], ["SRR000001", "SRR000002"])

        assert batch.exit_code == 0
        assert [r.outcome for r in batch.runs] == [RunOutcome.EXHAUSTED_SOURCES, RunOutcome.SUCCEEDED]
        assert launcher.spawned[0]["argv"][-1] == "SRR000002"

    def test_exhausted_sources_stops_batch(self, make_ctx):
        launcher = FakeLauncher([ChildResult(exit_code=EX_TEMPFAIL)])
        locator = Locator({"SRR000001": sources_for("ncbi"), "SRR000002": sources_for("ncbi")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)

        batch = driver.process_accessions("fasterq-dump", TOOLPATH, None, ".fastq", [], ["SRR000001", "SRR000002"])

        assert batch.exit_code == EX_TEMPFAIL
        assert locator.calls == ["SRR000001"]

    def test_killed_child_reports_signal(self, make_ctx):
        launcher = FakeLauncher([ChildResult(signal=11)])
        driver = RunDriver(make_ctx(), launcher=launcher, locator=Locator({"SRR000001": sources_for("ncbi")}))

        batch = driver.process_accessions("fasterq-dump", TOOLPATH, None, ".fastq", [], ["SRR000001", "SRR000002"])

        assert batch.signal == 11
        assert len(batch.runs) == 1

    def test_guard_rewrites_output_per_run(self, make_ctx, capsys):
        launcher = FakeLauncher()
        locator = Locator({"SRR000001": sources_for("ncbi"), "SRR000002": sources_for("ncbi")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)
        params = [("--outfile", "all.fastq")]

        driver.process_accessions("fasterq-dump", TOOLPATH, "--outfile", ".fastq", params, ["SRR000001", "SRR000002"])

        assert [s["argv"][2] for s in launcher.spawned] == ["SRR000001.fastq", "SRR000002.fastq"]
        assert "2 runs to a single output file" in capsys.readouterr().out

    def test_single_run_keeps_output_name(self, make_ctx):
        launcher = FakeLauncher()
        driver = RunDriver(make_ctx(), launcher=launcher, locator=Locator({"SRR000001": sources_for("ncbi")}))

        driver.process_accessions("fasterq-dump", TOOLPATH, "--outfile", ".fastq",
                                  [("--outfile", "all.fastq")], ["SRR000001"])

        assert launcher.spawned[0]["argv"][1:3] == ["--outfile", "all.fastq"]

    def test_container_accession_processes_nothing(self, make_ctx):
        launcher = FakeLauncher()
        locator = Locator({"SRR000001": sources_for("ncbi")})
        driver = RunDriver(make_ctx(), launcher=launcher, locator=locator)

        with pytest.raises(ContainerAccessionError):
            driver.process_accessions("fasterq-dump", TOOLPATH, None, ".fastq", [], ["SRR000001", "SRP000001"])

        assert locator.calls == []
        assert launcher.spawned == []

    def test_empty_accessions_execs_tool_bare(self, make_ctx):
        ctx = make_ctx()
        driver = RunDriver(ctx, launcher=FakeLauncher(), locator=Locator({}))

        with pytest.raises(Execed) as excinfo:
            driver.process_accessions("fasterq-dump", TOOLPATH, None, ".fastq", [("--split-3", None)], [])

        assert excinfo.value.argv == [ctx.argv0]

    def test_no_sdl_execs_once_with_all_runs(self, make_ctx):
        ctx = make_ctx()
        locator = Locator({})
        driver = RunDriver(ctx, launcher=FakeLauncher(), locator=locator)

        with pytest.raises(Execed) as excinfo:
            driver.process_accessions_no_sdl("/bin/prefetch-orig", [("--type", "sra")],
                                             ["SRR000001", "SRR000002", "SRR000001"])

        assert excinfo.value.toolpath == "/bin/prefetch-orig"
        assert excinfo.value.argv == [ctx.argv0, "--type", "sra", "SRR000001", "SRR000002"]
        assert locator.calls == []
