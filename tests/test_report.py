"""Tests for report.py module."""

import json

from matrixci.errors import ConfigurationError
from matrixci.model import (
    ExitDetail,
    FailureKind,
    FailurePolicy,
    FinishReason,
    JobReport,
    JobStatus,
    PipelineRun,
    Verdict,
)
from matrixci.report import (
    build_report,
    configuration_error_report,
    exit_code_for,
    report_json,
)


def make_run(jobs, verdict, fast_finish=True):
    return PipelineRun(
        jobs=tuple(jobs),
        policy=FailurePolicy(fast_finish=fast_finish),
        verdict=verdict,
        finish=FinishReason.ALL_COMPLETE,
    )


FAILED_DETAIL = ExitDetail("script", 2, "cargo test --verbose", FailureKind.NON_ZERO_EXIT, 101, "exited with code 101")


class TestBuildReport:
    """Test the machine-readable report."""

    def test_success(self):
        run = make_run([JobReport("stable", True, JobStatus.PASSED, duration=1.23456)], Verdict.SUCCESS)

        report = build_report(run)

        assert report["outcome"] == "success"
        assert report["verdict"] == "success"
        assert report["schema"] == 1
        assert report["jobs"] == [
            {
                "variant": "stable",
                "required": True,
                "status": "passed",
                "discarded": False,
                "duration_seconds": 1.235,
                "failure": None,
            }
        ]
        assert exit_code_for(report) == 0

    def test_success_with_allowed_failures(self):
        run = make_run(
            [
                JobReport("stable", True, JobStatus.PASSED),
                JobReport("nightly", False, JobStatus.FAILED, FAILED_DETAIL),
            ],
            Verdict.SUCCESS,
        )

        report = build_report(run)

        assert report["outcome"] == "success_with_allowed_failures"
        assert report["jobs"][1]["failure"] == {
            "phase": "script",
            "step_index": 2,
            "command": "cargo test --verbose",
            "kind": "non_zero_exit",
            "exit_code": 101,
            "message": "exited with code 101",
        }
        assert exit_code_for(report) == 0

    def test_failure(self):
        run = make_run([JobReport("beta", True, JobStatus.FAILED, FAILED_DETAIL)], Verdict.FAILURE)

        report = build_report(run)

        assert report["outcome"] == "failure"
        assert exit_code_for(report) == 1

    def test_discarded_job(self):
        run = make_run([JobReport("nightly", False, JobStatus.RUNNING, discarded=True)], Verdict.SUCCESS)

        row = build_report(run)["jobs"][0]

        assert row["status"] == "running"
        assert row["discarded"] is True

    def test_configuration_error(self):
        report = configuration_error_report(ConfigurationError("toolchain matrix is empty", source=".travis.yml"))

        assert report["outcome"] == "configuration_error"
        assert report["jobs"] == []
        assert report["verdict"] is None
        assert report["error"] == ".travis.yml: toolchain matrix is empty"
        assert exit_code_for(report) == 2

    def test_json_is_stable(self):
        run = make_run([JobReport("stable", True, JobStatus.PASSED)], Verdict.SUCCESS)

        text = report_json(build_report(run))

        assert text == report_json(json.loads(text))
