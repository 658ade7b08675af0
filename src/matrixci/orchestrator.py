# orchestrator.py
from __future__ import annotations

import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from .job import JobExecutor
from .matrix import expand_matrix
from .model import (
    FailurePolicy,
    FinishReason,
    Job,
    JobReport,
    JobStatus,
    PipelineRun,
    Step,
    Verdict,
)
from .ui.console import get_console


class PipelineState(str, Enum):
    IDLE = "idle"
    EXPANDING = "expanding"
    RUNNING = "running"
    FAST_FINISHED = "fast_finished"
    ALL_COMPLETE = "all_complete"
    VERDICTED = "verdicted"


_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.EXPANDING},
    PipelineState.EXPANDING: {PipelineState.RUNNING},
    PipelineState.RUNNING: {PipelineState.FAST_FINISHED, PipelineState.ALL_COMPLETE},
    PipelineState.FAST_FINISHED: {PipelineState.VERDICTED},
    PipelineState.ALL_COMPLETE: {PipelineState.VERDICTED},
    PipelineState.VERDICTED: set(),
}


def compute_verdict(reports: Iterable[JobReport]) -> Verdict:
    """Failure iff some required job failed. Allowed-to-fail jobs never count."""
    for r in reports:
        if r.required and r.status is JobStatus.FAILED:
            return Verdict.FAILURE
    return Verdict.SUCCESS


def default_workers(job_count: int) -> int:
    c = os.cpu_count() or 2
    return max(1, min(job_count, max(1, c - 1)))


class PipelineOrchestrator:
    """
    Expands the matrix, runs one worker per job and joins them.

    With fast_finish the verdict is computed as soon as every required job has
    reported. Outstanding allowed-to-fail jobs are then cancelled (or, with
    cancel_on_fast_finish=False, left running in the background) and show up
    in the run as discarded.
    """

    def __init__(
        self,
        variants: Sequence[object],
        policy: FailurePolicy,
        steps: Sequence[Step],
        before_steps: Sequence[Step] = (),
        *,
        executor: Optional[JobExecutor] = None,
        env: Optional[Dict[str, str]] = None,
        language: str | None = None,
        max_workers: int | None = None,
        cancel_on_fast_finish: bool = True,
    ):
        self.variants = list(variants)
        self.policy = policy
        self.steps = list(steps)
        self.before_steps = list(before_steps)
        self.executor = executor or JobExecutor()
        self.env = dict(env or {})
        self.language = language
        self.max_workers = max_workers
        self.cancel_on_fast_finish = cancel_on_fast_finish
        self._state = PipelineState.IDLE
        self._run: Optional[PipelineRun] = None

    @classmethod
    def from_config(cls, config, **kwargs) -> PipelineOrchestrator:
        return cls(
            config.toolchains,
            config.policy,
            config.script,
            config.before_script,
            env=config.env,
            language=config.language,
            **kwargs,
        )

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def result(self) -> Optional[PipelineRun]:
        return self._run

    def _transition(self, new: PipelineState) -> None:
        if new not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"illegal pipeline transition {self._state.value} -> {new.value}")
        get_console().print_debug(f"pipeline: {self._state.value} -> {new.value}")
        self._state = new

    def expand(self) -> List[Job]:
        return expand_matrix(
            self.variants,
            self.policy,
            self.steps,
            self.before_steps,
            env=self.env,
            language=self.language,
        )

    def run(self) -> PipelineRun:
        """
        Run the pipeline once. Raises ConfigurationError (from expansion)
        before any job starts.
        """
        self._transition(PipelineState.EXPANDING)
        jobs = self.expand()
        self._transition(PipelineState.RUNNING)

        workers = self.max_workers or default_workers(len(jobs))
        cancel = threading.Event()
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matrixci-job")

        # required jobs are submitted first so they never queue behind optional ones
        order = sorted(range(len(jobs)), key=lambda i: not jobs[i].required)
        futures: Dict[Future, int] = {}
        for i in order:
            futures[pool.submit(self.executor.run_guarded, jobs[i], cancel)] = i

        required_left = {f for f, i in futures.items() if jobs[i].required}
        pending = set(futures)
        reports: Dict[int, JobReport] = {}
        fast_finished = False

        try:
            while pending:
                if self.policy.fast_finish and not required_left:
                    fast_finished = True
                    break
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    reports[futures[fut]] = fut.result()
                    required_left.discard(fut)

            for fut in pending:
                i = futures[fut]
                if fut.done() and not fut.cancelled():
                    reports[i] = fut.result()
                    continue
                status = JobStatus.RUNNING if fut.running() else JobStatus.PENDING
                reports[i] = JobReport(
                    variant=jobs[i].variant,
                    required=jobs[i].required,
                    status=status,
                    discarded=True,
                )
        finally:
            if pending:
                if self.cancel_on_fast_finish or not fast_finished:
                    cancel.set()
                pool.shutdown(wait=False, cancel_futures=True)
            else:
                pool.shutdown(wait=True)

        if fast_finished:
            self._transition(PipelineState.FAST_FINISHED)
            discarded = [r.variant for r in reports.values() if r.discarded]
            if discarded:
                action = "cancelled" if self.cancel_on_fast_finish else "left running, results discarded"
                get_console().print_info(
                    f"Fast finish: all required jobs done; allowed-to-fail job(s) {discarded} {action}."
                )
        else:
            self._transition(PipelineState.ALL_COMPLETE)

        ordered = tuple(reports[i] for i in range(len(jobs)))
        verdict = compute_verdict(ordered)
        self._run = PipelineRun(
            jobs=ordered,
            policy=self.policy,
            verdict=verdict,
            finish=FinishReason.FAST_FINISHED if fast_finished else FinishReason.ALL_COMPLETE,
        )
        self._transition(PipelineState.VERDICTED)
        return self._run


def run_pipeline(config, **kwargs) -> PipelineRun:
    """Convenience: PipelineOrchestrator.from_config(config, **kwargs).run()"""
    return PipelineOrchestrator.from_config(config, **kwargs).run()
