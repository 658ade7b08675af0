# cache.py
from __future__ import annotations

import hashlib
import io
import json
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from .model import Job, normalize_variant, variant_slug
from .ui.console import get_console

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# The engine only talks to a key -> blob store (CacheBackend). JobCache
# decides the key and turns directories into blobs and back:
#
#   key  = <variant>-sha256(variant, cached directories, input file contents)
#   blob = tar.gz of the cached directories, member names "<entry index>/<relpath>"
#
# Everything here is best-effort: a broken or unreachable cache is a
# warning and a miss, never a job failure.
# ---------------------------------------------------------------------

DEFAULT_CACHE_DIR = ".matrixci/cache"
DEFAULT_KEEP = 3

# `cache: <language>` shorthands.
LANGUAGE_CACHES: Dict[str, Dict[str, List[str]]] = {
    "cargo": {
        "directories": ["~/.cargo/registry", "~/.cargo/git", "target"],
        "inputs": ["Cargo.lock"],
    },
    "pip": {
        "directories": ["~/.cache/pip"],
        "inputs": ["requirements.txt", "pyproject.toml"],
    },
    "npm": {
        "directories": ["node_modules"],
        "inputs": ["package-lock.json"],
    },
}

CACHE_EXCLUDES = ["__pycache__", ".DS_Store"]


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def put(self, key: str, blob: bytes) -> None:
        ...


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file() and not any(part in CACHE_EXCLUDES for part in p.parts):
            yield p


class FileCacheBackend:
    """
    Directory of blobs:
      root/
        <key>.tar.gz
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.tar.gz"

    def get(self, key: str) -> Optional[bytes]:
        p = self._path(key)
        if not p.exists():
            return None
        return p.read_bytes()

    def put(self, key: str, blob: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        art = self._path(key)
        tmp = art.with_suffix(".tmp")
        try:
            tmp.write_bytes(blob)
            tmp.replace(art)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def prune(self, prefix: str, keep: int = DEFAULT_KEEP) -> None:
        """
        Keep only the newest N blobs whose key starts with prefix.
        Uses file mtime as "newest".
        """
        if not self.root.exists():
            return
        blobs = sorted(
            self.root.glob(f"{prefix}*.tar.gz"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        for p in blobs[keep:]:
            p.unlink(missing_ok=True)


@dataclass
class JobCache:
    backend: CacheBackend
    directories: List[str] = field(default_factory=list)
    inputs: List[str] = field(default_factory=list)
    keep: int = DEFAULT_KEEP

    @classmethod
    def from_spec(cls, backend: CacheBackend, spec: Dict[str, List[str]], keep: int = DEFAULT_KEEP) -> JobCache:
        return cls(
            backend=backend,
            directories=list(spec.get("directories", [])),
            inputs=list(spec.get("inputs", [])),
            keep=keep,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.directories)

    def _roots(self, workdir: Path) -> List[Path]:
        roots = []
        for entry in self.directories:
            p = Path(entry).expanduser()
            roots.append(p if p.is_absolute() else (workdir / p))
        return roots

    def key_for(self, job: Job, workdir: str | Path) -> str:
        root = Path(workdir)
        fingerprints: List[Tuple[str, Optional[str]]] = []
        for pattern in self.inputs:
            matches = sorted(root.glob(pattern))
            if not matches:
                fingerprints.append((pattern, None))
            for m in matches:
                if m.is_file():
                    fingerprints.append((m.relative_to(root).as_posix(), _hash_file_contents(m)))
        payload = {
            "v": 1,  # bump this if you change the key format
            "variant": normalize_variant(job.variant),
            "directories": self.directories,
            "inputs": fingerprints,
        }
        return f"{variant_slug(job.variant)}-{_sha256_bytes(_json_dumps_stable(payload).encode('utf-8'))}"

    def restore(self, job: Job, workdir: str | Path) -> CacheHit:
        """Unpack the cached directories into place. Any error is a miss."""
        if not self.enabled:
            return CacheHit(hit=False, key="", reason="no cache directories configured")
        root = Path(workdir)
        key = ""
        try:
            key = self.key_for(job, root)
            blob = self.backend.get(key)
            if blob is None:
                return CacheHit(hit=False, key=key, reason="cache miss")
            restored = self._unpack(blob, self._roots(root))
        except Exception as e:
            get_console().print_warning(f"[{job.name}] cache restore failed, continuing without it: {e}")
            return CacheHit(hit=False, key=key, reason=f"restore failed: {e}")
        return CacheHit(hit=True, key=key, reason=f"restored {restored} file(s)")

    def save(self, job: Job, workdir: str | Path, key: str = "") -> Optional[str]:
        """
        Pack the cached directories and store them. Returns the key, or None if
        nothing was saved.

        Pass the key from restore(): steps may rewrite the input files (a build
        generating Cargo.lock), and the next run looks the blob up by the inputs
        it starts with.
        """
        if not self.enabled:
            return None
        root = Path(workdir)
        try:
            key = key or self.key_for(job, root)
            self.backend.put(key, self._pack(self._roots(root)))
            prune = getattr(self.backend, "prune", None)
            if callable(prune):
                prune(f"{variant_slug(job.variant)}-", keep=self.keep)
        except Exception as e:
            get_console().print_warning(f"[{job.name}] cache save failed, continuing without it: {e}")
            return None
        return key

    @staticmethod
    def _pack(roots: Sequence[Path]) -> bytes:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for i, src in enumerate(roots):
                if not src.exists():
                    continue
                if src.is_file():
                    tar.add(str(src), arcname=str(i), recursive=False)
                    continue
                for f in _iter_files_under(src):
                    rel = f.relative_to(src).as_posix()
                    tar.add(str(f), arcname=f"{i}/{rel}", recursive=False)

            manifest = _json_dumps_stable({"roots": [str(r) for r in roots], "created_unix": int(time.time())})
            data = manifest.encode("utf-8")
            info = tarfile.TarInfo(name="manifest.json")
            info.size = len(data)
            info.mtime = int(time.time())
            tar.addfile(info, fileobj=io.BytesIO(data))
        return buf.getvalue()

    @staticmethod
    def _unpack(blob: bytes, roots: Sequence[Path]) -> int:
        count = 0
        with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
            for member in tar.getmembers():
                if not member.isfile() or member.name == "manifest.json":
                    continue
                index, _, rel = member.name.partition("/")
                rel_path = PurePosixPath(rel)
                if not index.isdigit() or int(index) >= len(roots):
                    continue
                if rel_path.is_absolute() or ".." in rel_path.parts:
                    raise ValueError(f"unsafe path in cache archive: {member.name}")
                root = roots[int(index)]
                # a single cached file is stored as a bare "<i>"
                target = root / Path(*rel_path.parts) if rel else root
                target.parent.mkdir(parents=True, exist_ok=True)
                src = tar.extractfile(member)
                if src is None:
                    continue
                with src, target.open("wb") as out:
                    out.write(src.read())
                count += 1
        return count
