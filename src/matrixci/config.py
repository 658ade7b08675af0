"""
Pipeline configuration loading.

Reads a `.travis.yml`-style file:

    language: rust
    rust: [stable, beta, nightly]
    cache: cargo
    matrix:
      allow_failures:
        - rust: nightly
      fast_finish: true
    before_script:
      - rustup component add clippy
    script:
      - cargo fmt --all -- --check
      - cargo test --verbose

and turns it into a PipelineConfig. Only structure is checked here; whether
the allow-list actually names matrix entries is decided by the matrix
expander, before any job runs.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .cache import LANGUAGE_CACHES
from .errors import ConfigurationError
from .model import FailurePolicy, Step
from .ui.console import get_console

CONFIG_CANDIDATES = (".matrixci.yml", ".matrixci.yaml", ".travis.yml")

# language -> key holding its toolchain list
LANGUAGE_MATRIX_KEYS = {
    "rust": "rust",
    "python": "python",
    "node_js": "node_js",
    "go": "go",
    "ruby": "rvm",
    "php": "php",
    "java": "jdk",
}

# script used when a config names a language but no script
DEFAULT_SCRIPTS = {
    "rust": ["cargo build --verbose", "cargo test --verbose"],
}

KNOWN_KEYS = {
    "language", "toolchains", "matrix", "jobs", "before_script", "script",
    "env", "cache", "timeout",
} | set(LANGUAGE_MATRIX_KEYS.values())


@dataclass
class PipelineConfig:
    toolchains: List[str]
    policy: FailurePolicy
    script: List[Step]
    before_script: List[Step] = field(default_factory=list)
    language: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    cache: Optional[Dict[str, List[str]]] = None
    timeout: Optional[float] = None
    source: str = "<config>"


def discover_config(directory: str | Path = ".") -> Path:
    """First existing candidate in directory, else ConfigurationError."""
    base = Path(directory)
    for name in CONFIG_CANDIDATES:
        p = base / name
        if p.is_file():
            return p
    raise ConfigurationError(
        f"no pipeline configuration found (looked for {', '.join(CONFIG_CANDIDATES)})",
        source=str(base.resolve()),
    )


def load_config(path: str | Path) -> PipelineConfig:
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError("configuration file not found", source=str(p))
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML: {e}", source=str(p)) from e
    return parse_config(data, source=str(p))


def parse_config(data: Any, *, source: str = "<config>") -> PipelineConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("top level must be a mapping", source=source)

    for key in sorted(set(data) - KNOWN_KEYS):
        get_console().print_debug(f"{source}: ignoring unsupported key {key!r}")

    language = data.get("language")
    if language is not None and not isinstance(language, str):
        raise ConfigurationError("'language' must be a string", source=source)

    matrix_key = _matrix_key(data, language, source)
    toolchains = _parse_toolchains(data.get(matrix_key), matrix_key, source)

    policy_block = data.get("jobs") if "jobs" in data else data.get("matrix")
    policy = _parse_policy(policy_block, matrix_key, source)

    if "script" in data:
        script = _parse_steps(data.get("script"), "script", source)
    else:
        script = [Step(name=cmd, run=cmd) for cmd in DEFAULT_SCRIPTS.get(language or "", [])]

    return PipelineConfig(
        toolchains=toolchains,
        policy=policy,
        script=script,
        before_script=_parse_steps(data.get("before_script"), "before_script", source),
        language=language,
        env=_parse_env(data.get("env"), source),
        cache=_parse_cache(data.get("cache"), source),
        timeout=_parse_timeout(data.get("timeout"), "timeout", source),
        source=source,
    )


def _matrix_key(data: Dict[str, Any], language: Optional[str], source: str) -> str:
    if "toolchains" in data:
        return "toolchains"
    key = LANGUAGE_MATRIX_KEYS.get(language or "")
    if key and key in data:
        return key
    raise ConfigurationError(
        "no toolchain list: set 'toolchains:' or the list for the configured language"
        + (f" ('{key}:')" if key else ""),
        source=source,
    )


def _scalar_label(value: Any, where: str, source: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigurationError(f"{where}: expected a toolchain label, got {value!r}", source=source)
    if isinstance(value, float):
        get_console().print_warning(
            f"{source}: {where} value {value!r} was read as a number; quote versions like '3.10'"
        )
    return str(value).strip()


def _parse_toolchains(value: Any, key: str, source: str) -> List[str]:
    if value is None:
        raise ConfigurationError(f"'{key}' is empty", source=source)
    items = value if isinstance(value, list) else [value]
    return [_scalar_label(v, key, source) for v in items]


def _parse_policy(block: Any, matrix_key: str, source: str) -> FailurePolicy:
    if block is None:
        return FailurePolicy()
    if not isinstance(block, dict):
        raise ConfigurationError("'matrix' must be a mapping", source=source)

    fast_finish = block.get("fast_finish", False)
    if not isinstance(fast_finish, bool):
        raise ConfigurationError("'fast_finish' must be true or false", source=source)

    entries = block.get("allow_failures") or []
    if not isinstance(entries, list):
        raise ConfigurationError("'allow_failures' must be a list", source=source)

    allowed: List[str] = []
    for entry in entries:
        if isinstance(entry, dict):
            keys = set(entry)
            toolchain_keys = keys & {matrix_key, "toolchain"}
            if len(toolchain_keys) != 1 or keys - toolchain_keys:
                raise ConfigurationError(
                    f"allow_failures entry {entry!r} cannot be resolved to a toolchain "
                    f"(use '{matrix_key}: <label>')",
                    source=source,
                )
            allowed.append(_scalar_label(entry[toolchain_keys.pop()], "allow_failures", source))
        else:
            allowed.append(_scalar_label(entry, "allow_failures", source))

    return FailurePolicy.build(allowed, fast_finish=fast_finish)


def _parse_steps(value: Any, phase: str, source: str) -> List[Step]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    steps: List[Step] = []
    for i, item in enumerate(items):
        where = f"{phase}[{i}]"
        if isinstance(item, str):
            steps.append(Step(name=item, run=item))
            continue
        if not isinstance(item, dict) or "run" not in item:
            raise ConfigurationError(f"{where}: expected a command string or a mapping with 'run'", source=source)
        run = item["run"]
        if isinstance(run, list):
            if not run or not all(isinstance(a, (str, int, float)) for a in run):
                raise ConfigurationError(f"{where}: 'run' list must be non-empty strings", source=source)
            run = tuple(str(a) for a in run)
        elif not isinstance(run, str):
            raise ConfigurationError(f"{where}: 'run' must be a string or a list", source=source)
        steps.append(
            Step(
                name=str(item.get("name") or (run if isinstance(run, str) else " ".join(run))),
                run=run,
                cwd=item.get("cwd"),
                timeout=_parse_timeout(item.get("timeout"), f"{where}.timeout", source),
            )
        )
    return steps


def _parse_env(value: Any, source: str) -> Dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, dict):
        env: Dict[str, str] = {}
        if "global" in value:
            env.update(_parse_env(value["global"], source))
        for k, v in value.items():
            if k in ("global", "jobs", "matrix"):
                continue
            env[str(k)] = "" if v is None else str(v)
        return env
    if isinstance(value, str):
        value = [value]
    if isinstance(value, list):
        env = {}
        for item in value:
            if isinstance(item, dict):
                env.update(_parse_env(item, source))
                continue
            try:
                pairs = shlex.split(str(item))
            except ValueError as e:
                raise ConfigurationError(f"env entry {item!r}: {e}", source=source) from e
            for pair in pairs:
                name, sep, val = pair.partition("=")
                if not sep or not name:
                    raise ConfigurationError(f"env entry {pair!r} is not NAME=value", source=source)
                env[name] = val
        return env
    raise ConfigurationError("'env' must be a mapping or a list of NAME=value", source=source)


def _parse_cache(value: Any, source: str) -> Optional[Dict[str, List[str]]]:
    if value in (None, False):
        return None

    directories: List[str] = []
    inputs: List[str] = []

    def add_named(name: Any) -> None:
        spec = LANGUAGE_CACHES.get(str(name))
        if spec is None:
            raise ConfigurationError(
                f"unknown cache {name!r}; known: {sorted(LANGUAGE_CACHES)} or use 'directories:'",
                source=source,
            )
        directories.extend(spec["directories"])
        inputs.extend(spec["inputs"])

    if isinstance(value, str):
        add_named(value)
    elif isinstance(value, list):
        for v in value:
            add_named(v)
    elif isinstance(value, dict):
        for k, v in value.items():
            if k == "directories":
                directories.extend(str(d) for d in (v or []))
            elif k == "inputs":
                inputs.extend(str(i) for i in (v or []))
            elif v is True:
                add_named(k)
            elif v is False:
                continue
            else:
                raise ConfigurationError(f"cache: unsupported entry {k!r}", source=source)
    else:
        raise ConfigurationError("'cache' must be a name, a list or a mapping", source=source)

    if not directories:
        return None
    return {
        "directories": list(dict.fromkeys(directories)),
        "inputs": list(dict.fromkeys(inputs)),
    }


def _parse_timeout(value: Any, where: str, source: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"'{where}' must be a positive number of seconds", source=source)
    return float(value)
