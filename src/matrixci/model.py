# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union


def normalize_variant(label: object) -> str:
    """
    Canonical form used whenever two toolchain labels are compared.

    YAML scalars can arrive as numbers ("3.10" -> 3.1 is the caller's problem,
    quote it), so everything goes through str() first.
    """
    return str(label).strip().casefold()


def variant_slug(label: object) -> str:
    """Filesystem/cache-key safe form of a variant label."""
    return re.sub(r"[^a-z0-9._-]+", "_", normalize_variant(label)) or "_"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.PASSED, JobStatus.FAILED)


class FailureKind(str, Enum):
    NON_ZERO_EXIT = "non_zero_exit"
    LAUNCH_FAILURE = "launch_failure"
    TIMEOUT = "timeout"
    ERROR = "error"  # engine-side exception inside one job's worker


class Verdict(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class FinishReason(str, Enum):
    ALL_COMPLETE = "all_complete"
    FAST_FINISHED = "fast_finished"


@dataclass(frozen=True)
class Step:
    """A single command inside a CI job. A str runs through the shell, a tuple is an argv."""
    name: str
    run: Union[str, Tuple[str, ...]]
    cwd: str | None = None
    timeout: float | None = None

    @property
    def display(self) -> str:
        if isinstance(self.run, str):
            return self.run
        return " ".join(self.run)


@dataclass(frozen=True)
class FailurePolicy:
    allow_failures: FrozenSet[str] = frozenset()
    fast_finish: bool = False

    @classmethod
    def build(cls, allow_failures: Iterable[object] = (), fast_finish: bool = False) -> FailurePolicy:
        return cls(
            allow_failures=frozenset(normalize_variant(v) for v in allow_failures),
            fast_finish=bool(fast_finish),
        )

    def allows(self, variant: str) -> bool:
        return normalize_variant(variant) in self.allow_failures


@dataclass(frozen=True)
class ExitDetail:
    """Where and how a job stopped."""
    phase: str  # "before_script" | "script"
    step_index: int
    command: str
    kind: FailureKind
    exit_code: Optional[int] = None
    message: str = ""


@dataclass
class Job:
    """
    One (toolchain variant, step sequence) execution unit.

    `required` is fixed by the matrix expander. status/exit_detail are only
    written by the worker running the job.
    """
    variant: str
    steps: List[Step]
    required: bool
    before_steps: List[Step] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    exit_detail: Optional[ExitDetail] = None

    @property
    def name(self) -> str:
        return self.variant

    def snapshot(self, *, duration: float = 0.0, discarded: bool = False) -> JobReport:
        return JobReport(
            variant=self.variant,
            required=self.required,
            status=self.status,
            exit_detail=self.exit_detail,
            duration=duration,
            discarded=discarded,
        )


@dataclass(frozen=True)
class JobReport:
    variant: str
    required: bool
    status: JobStatus
    exit_detail: Optional[ExitDetail] = None
    duration: float = 0.0
    discarded: bool = False  # fast-finish stopped waiting for this job


@dataclass(frozen=True)
class PipelineRun:
    jobs: Tuple[JobReport, ...]
    policy: FailurePolicy
    verdict: Verdict
    finish: FinishReason

    @property
    def required_failures(self) -> List[JobReport]:
        return [j for j in self.jobs if j.required and j.status is JobStatus.FAILED]

    @property
    def allowed_failures(self) -> List[JobReport]:
        return [j for j in self.jobs if not j.required and j.status is JobStatus.FAILED]
