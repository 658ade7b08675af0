"""Tests for matrix.py module."""

import pytest

from conftest import sh

from matrixci.errors import ConfigurationError
from matrixci.matrix import expand_matrix
from matrixci.model import FailurePolicy, JobStatus


class TestExpandMatrix:
    """Test turning a toolchain list and policy into jobs."""

    @pytest.mark.parametrize(
        "variants,allowed",
        [
            (["stable"], []),
            (["stable", "beta", "nightly"], ["nightly"]),
            (["stable", "beta", "nightly"], ["beta", "nightly"]),
            (["1.70", "stable"], ["1.70", "stable"]),
        ],
    )
    def test_one_job_per_variant(self, variants, allowed):
        """Test count, order and required flags."""
        jobs = expand_matrix(variants, FailurePolicy.build(allowed), sh("true"))

        assert [j.variant for j in jobs] == variants
        for j in jobs:
            assert j.required is (j.variant not in allowed)
            assert j.status is JobStatus.PENDING
            assert j.exit_detail is None

    def test_steps_are_copied_per_job(self):
        """Test jobs do not share mutable step lists."""
        jobs = expand_matrix(["a", "b"], FailurePolicy(), sh("true"), sh("echo setup"))

        assert jobs[0].steps == jobs[1].steps
        assert jobs[0].steps is not jobs[1].steps
        assert [s.run for s in jobs[0].before_steps] == ["echo setup"]

    def test_allow_list_normalizes_labels(self):
        """Test case and whitespace do not matter when matching."""
        jobs = expand_matrix(["Stable", "Nightly"], FailurePolicy.build([" nightly "]), [])

        assert [j.required for j in jobs] == [True, False]
        assert jobs[1].variant == "Nightly"

    def test_empty_matrix(self):
        """Test an empty variant list."""
        with pytest.raises(ConfigurationError, match="empty"):
            expand_matrix([], FailurePolicy(), sh("true"))

    def test_duplicate_variants(self):
        """Test variants equal after normalization."""
        with pytest.raises(ConfigurationError, match="duplicate"):
            expand_matrix(["stable", "STABLE "], FailurePolicy(), sh("true"))

    def test_variants_sharing_a_workspace_name(self):
        """Test distinct labels that would share one job workspace."""
        with pytest.raises(ConfigurationError, match="same workspace name"):
            expand_matrix(["3.11 dev", "3.11/dev"], FailurePolicy(), sh("true"))

    def test_allow_list_names_unknown_variant(self):
        """Test an allow-list entry that matches nothing."""
        with pytest.raises(ConfigurationError, match="not in the matrix"):
            expand_matrix(["stable", "beta"], FailurePolicy.build(["nightly"]), sh("true"))


class TestToolchainEnv:
    """Test the per-variant environment."""

    def test_every_job_gets_ci_toolchain(self):
        jobs = expand_matrix(["stable", "beta"], FailurePolicy(), [])

        assert [j.env["CI_TOOLCHAIN"] for j in jobs] == ["stable", "beta"]

    def test_rust_selects_rustup_toolchain(self):
        jobs = expand_matrix(["nightly"], FailurePolicy(), [], language="rust")

        assert jobs[0].env["RUSTUP_TOOLCHAIN"] == "nightly"

    def test_unknown_language_has_no_selector(self):
        jobs = expand_matrix(["3.12"], FailurePolicy(), [], language="python")

        assert "RUSTUP_TOOLCHAIN" not in jobs[0].env

    def test_config_env_is_merged_on_top(self):
        jobs = expand_matrix(["stable"], FailurePolicy(), [], env={"RUST_BACKTRACE": "1", "CI_TOOLCHAIN": "x"})

        assert jobs[0].env == {"CI_TOOLCHAIN": "x", "RUST_BACKTRACE": "1"}
