"""Tests for sequencer.py module."""

import threading

from conftest import sh

from matrixci.command import CommandRunner
from matrixci.model import FailureKind, Step
from matrixci.sequencer import run_sequence


class TestRunSequence:
    """Test ordered fail-stop execution."""

    def test_empty_sequence_passes(self, tmp_path):
        """Test vacuous success."""
        outcome = run_sequence([], CommandRunner(), tmp_path)

        assert outcome.passed
        assert outcome.executed == 0
        assert outcome.failure is None

    def test_all_steps_pass(self, tmp_path):
        """Test every step runs, in order."""
        outcome = run_sequence(sh("echo a >> log", "echo b >> log", "echo c >> log"), CommandRunner(), tmp_path)

        assert outcome.passed
        assert outcome.executed == 3
        assert (tmp_path / "log").read_text().split() == ["a", "b", "c"]

    def test_stops_at_first_failure(self, tmp_path):
        """Test steps after the failing one never start."""
        steps = sh("touch first", "exit 2", "touch third")

        outcome = run_sequence(steps, CommandRunner(), tmp_path, phase="script")

        assert not outcome.passed
        assert outcome.executed == 2
        assert (tmp_path / "first").exists()
        assert not (tmp_path / "third").exists()
        assert outcome.failure.step_index == 1
        assert outcome.failure.kind is FailureKind.NON_ZERO_EXIT
        assert outcome.failure.exit_code == 2
        assert outcome.failure.phase == "script"
        assert outcome.failure.command == "exit 2"

    def test_launch_failure_stops_sequence(self, tmp_path):
        """Test a step that cannot launch is recorded distinctly."""
        steps = [Step(name="tool", run=("definitely-not-a-real-tool-xyz",))] + sh("touch after")

        outcome = run_sequence(steps, CommandRunner(), tmp_path, phase="before_script")

        assert not outcome.passed
        assert outcome.failure.kind is FailureKind.LAUNCH_FAILURE
        assert outcome.failure.phase == "before_script"
        assert outcome.failure.step_index == 0
        assert not (tmp_path / "after").exists()

    def test_timeout_stops_sequence(self, tmp_path):
        """Test the default timeout applies to every step."""
        outcome = run_sequence(sh("true", "sleep 10", "touch after"), CommandRunner(), tmp_path, default_timeout=0.3)

        assert outcome.failure.kind is FailureKind.TIMEOUT
        assert outcome.failure.step_index == 1
        assert not (tmp_path / "after").exists()

    def test_step_timeout_overrides_default(self, tmp_path):
        """Test Step.timeout wins over the sequence default."""
        steps = [Step(name="slow", run="sleep 10", timeout=0.3)]

        outcome = run_sequence(steps, CommandRunner(), tmp_path, default_timeout=60)

        assert outcome.failure.kind is FailureKind.TIMEOUT

    def test_step_cwd_is_relative_to_workdir(self, tmp_path):
        """Test Step.cwd resolves under the sequence working directory."""
        (tmp_path / "sub").mkdir()
        steps = [Step(name="in sub", run="touch here", cwd="sub")]

        outcome = run_sequence(steps, CommandRunner(), tmp_path)

        assert outcome.passed
        assert (tmp_path / "sub" / "here").exists()

    def test_cancelled_before_start(self, tmp_path):
        """Test an already-set cancel event runs nothing."""
        cancel = threading.Event()
        cancel.set()

        outcome = run_sequence(sh("touch x"), CommandRunner(), tmp_path, cancel=cancel)

        assert not outcome.passed
        assert outcome.cancelled
        assert outcome.executed == 0
        assert not (tmp_path / "x").exists()

    def test_on_step_callback(self, tmp_path):
        """Test on_step sees each started step with its index."""
        seen = []

        run_sequence(sh("true", "false", "true"), CommandRunner(), tmp_path, on_step=lambda i, s: seen.append((i, s.run)))

        assert seen == [(0, "true"), (1, "false")]
