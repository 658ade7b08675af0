# sequencer.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from .command import CommandRunner
from .errors import LaunchFailure
from .model import ExitDetail, FailureKind, Step


@dataclass(frozen=True)
class SequenceOutcome:
    passed: bool
    executed: int  # number of steps that were started
    failure: Optional[ExitDetail] = None
    cancelled: bool = False


def run_sequence(
    steps: Sequence[Step],
    runner: CommandRunner,
    cwd: str | Path,
    *,
    phase: str = "script",
    env: Optional[Mapping[str, str]] = None,
    default_timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    on_step: Optional[Callable[[int, Step], None]] = None,
    on_output: Optional[Callable[[str], None]] = None,
) -> SequenceOutcome:
    """
    Run steps strictly in order, fail-stop.

    The first step that exits non-zero, cannot launch, times out or is
    cancelled ends the sequence; later steps never start.
    """
    root = Path(cwd)
    executed = 0

    for index, step in enumerate(steps):
        if cancel is not None and cancel.is_set():
            return SequenceOutcome(
                passed=False,
                executed=executed,
                failure=ExitDetail(phase, index, step.display, FailureKind.ERROR, None, "cancelled before start"),
                cancelled=True,
            )

        if on_step is not None:
            on_step(index, step)
        executed += 1

        step_cwd = (root / step.cwd).resolve() if step.cwd else root
        timeout = step.timeout if step.timeout is not None else default_timeout

        try:
            result = runner.run(
                step.run,
                step_cwd,
                env=env,
                timeout=timeout,
                cancel=cancel,
                on_output=on_output,
            )
        except LaunchFailure as e:
            return SequenceOutcome(
                passed=False,
                executed=executed,
                failure=ExitDetail(
                    phase=phase,
                    step_index=index,
                    command=step.display,
                    kind=FailureKind.LAUNCH_FAILURE,
                    exit_code=e.details.get("exit_code"),
                    message=e.reason,
                ),
            )

        if result.ok:
            continue

        if result.cancelled:
            failure = ExitDetail(phase, index, step.display, FailureKind.ERROR, None, "cancelled")
        elif result.timed_out:
            failure = ExitDetail(
                phase, index, step.display, FailureKind.TIMEOUT, None, f"timed out after {timeout}s"
            )
        else:
            failure = ExitDetail(
                phase,
                index,
                step.display,
                FailureKind.NON_ZERO_EXIT,
                result.exit_code,
                f"exited with code {result.exit_code}",
            )
        return SequenceOutcome(passed=False, executed=executed, failure=failure, cancelled=result.cancelled)

    return SequenceOutcome(passed=True, executed=executed)
