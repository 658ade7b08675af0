"""Shared fixtures for matrixci tests."""

from pathlib import Path
from typing import List

import pytest

from matrixci.job import JobExecutor
from matrixci.model import Step
from matrixci.ui.console import Console, set_console


def sh(*commands: str) -> List[Step]:
    """Shell steps named after their command."""
    return [Step(name=c, run=c) for c in commands]


@pytest.fixture(autouse=True)
def console():
    """Fresh global console per test so state never leaks between tests."""
    c = Console(debug=True)
    set_console(c)
    yield c
    set_console(Console())


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "README.md").write_text("hello\n")
    return root


@pytest.fixture
def executor(project: Path) -> JobExecutor:
    """Runs jobs directly in the project directory."""
    return JobExecutor(project_root=project, isolate=False)
