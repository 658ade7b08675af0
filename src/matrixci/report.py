# report.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError
from .model import ExitDetail, JobReport, PipelineRun, Verdict

REPORT_SCHEMA = 1

OUTCOME_SUCCESS = "success"
OUTCOME_SUCCESS_WITH_ALLOWED_FAILURES = "success_with_allowed_failures"
OUTCOME_FAILURE = "failure"
OUTCOME_CONFIGURATION_ERROR = "configuration_error"

EXIT_CODES = {
    OUTCOME_SUCCESS: 0,
    OUTCOME_SUCCESS_WITH_ALLOWED_FAILURES: 0,
    OUTCOME_FAILURE: 1,
    OUTCOME_CONFIGURATION_ERROR: 2,
}


def outcome_of(run: PipelineRun) -> str:
    if run.verdict is Verdict.FAILURE:
        return OUTCOME_FAILURE
    if run.allowed_failures:
        return OUTCOME_SUCCESS_WITH_ALLOWED_FAILURES
    return OUTCOME_SUCCESS


def _failure_dict(detail: Optional[ExitDetail]) -> Optional[Dict[str, Any]]:
    if detail is None:
        return None
    return {
        "phase": detail.phase,
        "step_index": detail.step_index,
        "command": detail.command,
        "kind": detail.kind.value,
        "exit_code": detail.exit_code,
        "message": detail.message,
    }


def job_row(report: JobReport) -> Dict[str, Any]:
    return {
        "variant": report.variant,
        "required": report.required,
        "status": report.status.value,
        "discarded": report.discarded,
        "duration_seconds": round(report.duration, 3),
        "failure": _failure_dict(report.exit_detail),
    }


def build_report(run: PipelineRun) -> Dict[str, Any]:
    """Machine-readable report. Keys and value sets are stable across releases of schema 1."""
    rows: List[Dict[str, Any]] = [job_row(j) for j in run.jobs]
    return {
        "schema": REPORT_SCHEMA,
        "outcome": outcome_of(run),
        "verdict": run.verdict.value,
        "fast_finish": run.policy.fast_finish,
        "finish": run.finish.value,
        "jobs": rows,
    }


def configuration_error_report(exc: ConfigurationError) -> Dict[str, Any]:
    return {
        "schema": REPORT_SCHEMA,
        "outcome": OUTCOME_CONFIGURATION_ERROR,
        "verdict": None,
        "fast_finish": None,
        "finish": None,
        "jobs": [],
        "error": str(exc),
    }


def report_json(report: Dict[str, Any]) -> str:
    return json.dumps(report, indent=2, sort_keys=True)


def exit_code_for(report: Dict[str, Any]) -> int:
    return EXIT_CODES[report["outcome"]]
