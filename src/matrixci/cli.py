# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from matrixci.cache import DEFAULT_CACHE_DIR, FileCacheBackend, JobCache
from matrixci.config import CONFIG_CANDIDATES, PipelineConfig, discover_config, load_config
from matrixci.errors import ConfigurationError
from matrixci.job import JobExecutor
from matrixci.orchestrator import PipelineOrchestrator
from matrixci.report import (
    build_report,
    configuration_error_report,
    exit_code_for,
    report_json,
)
from matrixci.ui.console import Console, get_console, set_console
from matrixci.workspace import DEFAULT_WORK_DIR


def resolve_config(config_arg: str | None) -> Path:
    """
    Config file from argument, or the first of CONFIG_CANDIDATES in the
    current directory.

    Raises:
        ConfigurationError: If no configuration can be found
    """
    if config_arg:
        return Path(config_arg)
    return discover_config(Path("."))


def _load(config_arg: str | None) -> tuple[Path, PipelineConfig]:
    path = resolve_config(config_arg)
    return path, load_config(path)


def _config_error(exc: ConfigurationError) -> None:
    get_console().print_error(
        "Configuration error",
        str(exc),
        suggestion="Nothing was run. Fix the configuration and try again.",
    )


def _emit(report: dict, as_json: bool, report_path: str | None) -> None:
    text = report_json(report)
    if report_path:
        Path(report_path).write_text(text + "\n", encoding="utf-8")
    if as_json:
        click.echo(text)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="MATRIXCI_DEBUG",
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run a CI toolchain matrix locally."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--config",
    "config_arg",
    default=None,
    envvar="MATRIXCI_CONFIG",
    help=f"Pipeline config (defaults to the first of {', '.join(CONFIG_CANDIDATES)})",
)
@click.option("--workers", default=None, type=click.IntRange(min=1), envvar="MATRIXCI_WORKERS", help="Number of jobs run in parallel")
@click.option("--timeout", default=None, type=click.FloatRange(min=0, min_open=True), envvar="MATRIXCI_TIMEOUT", help="Per-step timeout in seconds (overrides the config)")
@click.option("--cache-dir", default=DEFAULT_CACHE_DIR, show_default=True, envvar="MATRIXCI_CACHE_DIR", help="Dependency cache directory")
@click.option("--no-cache", is_flag=True, default=False, help="Neither restore nor save the dependency cache")
@click.option("--isolate/--no-isolate", default=True, show_default=True, envvar="MATRIXCI_ISOLATE", help="Run each job in its own copy of the project")
@click.option("--work-dir", default=DEFAULT_WORK_DIR, show_default=True, envvar="MATRIXCI_WORK_DIR", help="Where isolated job workspaces are created")
@click.option(
    "--cancel-on-fast-finish/--no-cancel-on-fast-finish",
    default=True,
    show_default=True,
    help=(
        "Terminate allowed-to-fail jobs still running once a fast-finish verdict is known. "
        "With --no-cancel-on-fast-finish the verdict is printed early but the process "
        "exits only after those jobs finish"
    ),
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the JSON report on stdout (human output goes to stderr)")
@click.option("--report", "report_path", default=None, help="Also write the JSON report to this file")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Echo step output")
@click.pass_context
def run(ctx, config_arg, workers, timeout, cache_dir, no_cache, isolate, work_dir, cancel_on_fast_finish, as_json, report_path, verbose):
    """Run every job of the toolchain matrix and report the verdict."""
    debug = ctx.obj.get("debug", False)
    console = Console(debug=debug, verbose=verbose, stream=sys.stderr if as_json else None)
    set_console(console)

    try:
        config_path, config = _load(config_arg)
        project_root = config_path.resolve().parent

        cache = None
        if config.cache and not no_cache:
            cache = JobCache.from_spec(FileCacheBackend(cache_dir), config.cache)

        executor = JobExecutor(
            project_root=project_root,
            cache=cache,
            isolate=isolate,
            work_root=work_dir,
            timeout=timeout if timeout is not None else config.timeout,
        )
        orchestrator = PipelineOrchestrator.from_config(
            config,
            executor=executor,
            max_workers=workers,
            cancel_on_fast_finish=cancel_on_fast_finish,
        )

        console.print_run_started(
            config=str(config_path),
            toolchains=config.toolchains,
            fast_finish=config.policy.fast_finish,
        )
        pipeline_run = orchestrator.run()
        report = build_report(pipeline_run)
        console.print_results(report["jobs"], verdict=report["verdict"], outcome=report["outcome"])

    except ConfigurationError as e:
        _config_error(e)
        report = configuration_error_report(e)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    _emit(report, as_json, report_path)
    sys.exit(exit_code_for(report))


@cli.command()
@click.option(
    "--config",
    "config_arg",
    default=None,
    envvar="MATRIXCI_CONFIG",
    help=f"Pipeline config (defaults to the first of {', '.join(CONFIG_CANDIDATES)})",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the expanded matrix as JSON")
def plan(config_arg, as_json):
    """Expand the toolchain matrix without running anything."""
    console = get_console()
    try:
        config_path, config = _load(config_arg)
        jobs = PipelineOrchestrator.from_config(config).expand()
    except ConfigurationError as e:
        _config_error(e)
        if as_json:
            click.echo(report_json(configuration_error_report(e)))
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(
            [
                {
                    "variant": j.variant,
                    "required": j.required,
                    "before_script": [s.display for s in j.before_steps],
                    "script": [s.display for s in j.steps],
                }
                for j in jobs
            ],
            indent=2,
        ))
        return

    console.print_info(f"Config: {config_path}")
    console.print_info(f"Fast finish: {'yes' if config.policy.fast_finish else 'no'}")
    console.print_info("Jobs:")
    for j in jobs:
        console.print_plan_job(j.variant, j.required, len(j.before_steps) + len(j.steps))


if __name__ == "__main__":
    cli()
