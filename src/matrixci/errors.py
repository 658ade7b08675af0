# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class MatrixCIError(Exception):
    """Base class for errors raised by the engine."""


class ConfigurationError(MatrixCIError):
    """Malformed matrix/policy input. Raised before any job runs."""

    def __init__(self, message: str, *, source: str | None = None):
        self.message = message
        self.source = source
        super().__init__(message)

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


@dataclass
class LaunchFailure(MatrixCIError):
    """
    The command could not be started at all (missing binary, permission
    denied, missing cwd). Distinct from a command that ran and exited non-zero.
    """
    command: str
    reason: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return f"could not launch {self.command!r}: {self.reason}"


TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "yamllint": "Install yamllint (e.g., pip install yamllint).",
    "pip": "Install Python 3 with pip or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "docker": "Install Docker and ensure the daemon is running.",
}
