# command.py
from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence, Union

from .errors import LaunchFailure, TOOL_HINTS

# POSIX shells report "command not found" / "not executable" with these codes.
SHELL_LAUNCH_CODES = {126: "command not executable", 127: "command not found"}

OUTPUT_TAIL_LINES = 200
POLL_INTERVAL = 0.05
KILL_GRACE_SECONDS = 5.0

Command = Union[str, Sequence[str]]


@dataclass(frozen=True)
class CommandResult:
    command: str
    exit_code: Optional[int]
    output: str  # tail of merged stdout/stderr
    duration: float
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


def _display(command: Command) -> str:
    if isinstance(command, str):
        return command
    return shlex.join(list(command))


def _tool_of(command: Command) -> str:
    if isinstance(command, str):
        parts = command.strip().split()
        return parts[0] if parts else ""
    return command[0] if command else ""


class CommandRunner:
    """
    Runs one external command at a time and blocks until it finishes, times
    out or is cancelled. Safe to share between worker threads.
    """

    def __init__(self, *, output_tail: int = OUTPUT_TAIL_LINES, kill_grace: float = KILL_GRACE_SECONDS):
        self.output_tail = output_tail
        self.kill_grace = kill_grace

    def run(
        self,
        command: Command,
        cwd: str | Path,
        *,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        on_output: Optional[Callable[[str], None]] = None,
    ) -> CommandResult:
        display = _display(command)
        cwd_p = Path(cwd)
        if not cwd_p.is_dir():
            raise LaunchFailure(command=display, reason=f"working directory not found: {cwd_p}")

        full_env: Dict[str, str] = os.environ.copy()
        if env:
            full_env.update(env)

        shell = isinstance(command, str)
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                command if shell else list(command),
                shell=shell,
                cwd=str(cwd_p),
                env=full_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=(os.name == "posix"),
            )
        except FileNotFoundError as e:
            # the directory can vanish between the check above and the spawn
            if not cwd_p.is_dir():
                raise LaunchFailure(command=display, reason=f"working directory not found: {cwd_p}") from e
            tool = _tool_of(command)
            raise LaunchFailure(
                command=display,
                reason=f"executable not found: {tool}",
                details={"hint": TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")},
            ) from e
        except PermissionError as e:
            raise LaunchFailure(command=display, reason=f"permission denied: {e}") from e
        except OSError as e:
            raise LaunchFailure(command=display, reason=str(e)) from e

        tail: deque[str] = deque(maxlen=self.output_tail)
        reader = threading.Thread(
            target=self._pump,
            args=(proc, tail, on_output),
            name=f"matrixci-output-{proc.pid}",
            daemon=True,
        )
        reader.start()

        timed_out = False
        cancelled = False
        deadline = started + timeout if timeout is not None else None
        while proc.poll() is None:
            if cancel is not None and cancel.is_set():
                cancelled = True
                self._terminate(proc)
                break
            if deadline is not None and time.monotonic() >= deadline:
                timed_out = True
                self._terminate(proc)
                break
            time.sleep(POLL_INTERVAL)

        proc.wait()
        reader.join(timeout=self.kill_grace)
        duration = time.monotonic() - started

        if shell and not (timed_out or cancelled) and proc.returncode in SHELL_LAUNCH_CODES:
            tool = _tool_of(command)
            raise LaunchFailure(
                command=display,
                reason=SHELL_LAUNCH_CODES[proc.returncode],
                details={
                    "exit_code": proc.returncode,
                    "hint": TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."),
                    "output": "".join(tail)[-4000:],
                },
            )

        return CommandResult(
            command=display,
            exit_code=None if (timed_out or cancelled) else proc.returncode,
            output="".join(tail),
            duration=duration,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    @staticmethod
    def _pump(proc: subprocess.Popen, tail: deque, on_output: Optional[Callable[[str], None]]) -> None:
        assert proc.stdout is not None
        with proc.stdout:
            for line in proc.stdout:
                tail.append(line)
                if on_output is not None:
                    on_output(line.rstrip("\n"))

    def _terminate(self, proc: subprocess.Popen) -> None:
        """Best-effort: SIGTERM the process group, SIGKILL after the grace period."""
        self._signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))

    @staticmethod
    def _signal(proc: subprocess.Popen, sig: int) -> None:
        try:
            if os.name == "posix":
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except ProcessLookupError:
            pass
