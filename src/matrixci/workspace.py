# workspace.py
from __future__ import annotations

import shutil
from pathlib import Path

from .model import variant_slug

DEFAULT_WORK_DIR = ".matrixci/work"

# Never copied into a job workspace.
WORKSPACE_EXCLUDES = (".git", ".matrixci", "target", "__pycache__", ".pytest_cache")


def ensure_clean_dir(path: str | Path) -> None:
    p = Path(path)
    if p.exists():
        shutil.rmtree(p)
    p.mkdir(parents=True, exist_ok=True)


def prepare_workspace(project_root: str | Path, work_root: str | Path, variant: str) -> Path:
    """
    Fresh copy of the project for one job, so concurrently running jobs never
    see each other's build output. Recreated on every run.
    """
    src = Path(project_root).resolve()
    dest = (Path(work_root) / variant_slug(variant)).resolve()

    ensure_clean_dir(dest)
    shutil.copytree(
        src,
        dest,
        ignore=_ignore_for(src, dest),
        symlinks=True,
        dirs_exist_ok=True,
    )
    return dest


def _ignore_for(src: Path, dest: Path):
    def ignore(directory: str, names: list[str]) -> set[str]:
        skipped = {n for n in names if n in WORKSPACE_EXCLUDES}
        # the work root may live inside the project
        for n in names:
            p = (Path(directory) / n).resolve()
            if p == dest or p in dest.parents:
                skipped.add(n)
        return skipped

    return ignore
