# job.py
from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Optional

from .cache import JobCache
from .command import CommandRunner
from .errors import TOOL_HINTS
from .model import ExitDetail, FailureKind, Job, JobReport, JobStatus
from .sequencer import run_sequence
from .ui.console import get_console
from .workspace import DEFAULT_WORK_DIR, prepare_workspace


class JobExecutor:
    """
    Runs one Job end to end: workspace, cache restore, before_script, script,
    cache save. Never raises for a failing command; the outcome is in the
    returned JobReport.
    """

    def __init__(
        self,
        *,
        project_root: str | Path = ".",
        runner: Optional[CommandRunner] = None,
        cache: Optional[JobCache] = None,
        isolate: bool = True,
        work_root: str | Path = DEFAULT_WORK_DIR,
        timeout: Optional[float] = None,
    ):
        self.project_root = Path(project_root).resolve()
        self.runner = runner or CommandRunner()
        self.cache = cache
        self.isolate = isolate
        work = Path(work_root)
        self.work_root = work if work.is_absolute() else self.project_root / work
        self.timeout = timeout

    def workdir_for(self, job: Job) -> Path:
        if self.isolate:
            return prepare_workspace(self.project_root, self.work_root, job.variant)
        return self.project_root

    def run(self, job: Job, cancel: Optional[threading.Event] = None) -> JobReport:
        console = get_console()
        started = time.monotonic()
        job.status = JobStatus.RUNNING
        console.print_job_start(job.name)

        workdir = self.workdir_for(job)

        cache_key = ""
        if self.cache is not None and self.cache.enabled:
            hit = self.cache.restore(job, workdir)
            cache_key = hit.key
            console.print_cache_event(job.name, hit.reason)

        for phase, steps in (("before_script", job.before_steps), ("script", job.steps)):
            outcome = run_sequence(
                steps,
                self.runner,
                workdir,
                phase=phase,
                env=job.env,
                default_timeout=self.timeout,
                cancel=cancel,
                on_step=lambda i, s, phase=phase: console.print_step(job.name, phase, i, s.display),
                on_output=lambda line: console.print_step_output(job.name, line),
            )
            if not outcome.passed:
                return self._fail(job, outcome.failure, started, cancelled=outcome.cancelled)

        job.status = JobStatus.PASSED
        if self.cache is not None and self.cache.enabled:
            key = self.cache.save(job, workdir, key=cache_key)
            if key:
                console.print_cache_event(job.name, f"saved ({key[:24]}...)")

        duration = time.monotonic() - started
        console.print_job_passed(job.name, duration)
        return job.snapshot(duration=duration)

    def _fail(self, job: Job, failure: Optional[ExitDetail], started: float, cancelled: bool = False) -> JobReport:
        job.status = JobStatus.FAILED
        job.exit_detail = failure
        duration = time.monotonic() - started

        if cancelled:
            where = f"{failure.phase}[{failure.step_index}]" if failure else "job"
            get_console().print_job_cancelled(job.name, f"{where} stopped (fast finish)")
            return job.snapshot(duration=duration)

        hint = None
        if failure is not None and failure.kind is FailureKind.LAUNCH_FAILURE:
            tool = failure.command.split()[0] if failure.command.split() else ""
            hint = TOOL_HINTS.get(tool)
        get_console().print_failure(
            job.name,
            f"{failure.phase}[{failure.step_index}] {failure.message}" if failure else "failed",
            exit_code=failure.exit_code if failure else None,
            hint=hint,
            allowed=not job.required,
        )
        return job.snapshot(duration=duration)

    def run_guarded(self, job: Job, cancel: Optional[threading.Event] = None) -> JobReport:
        """
        Worker entry point. An unexpected exception (workspace copy failed,
        bug) fails this job only.
        """
        started = time.monotonic()
        try:
            return self.run(job, cancel)
        except Exception as e:
            get_console().print_exception(e)
            detail = ExitDetail(
                phase="setup",
                step_index=-1,
                command="",
                kind=FailureKind.ERROR,
                exit_code=None,
                message=f"{type(e).__name__}: {e}",
            )
            return self._fail(job, detail, started)
