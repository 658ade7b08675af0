# matrix.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from .errors import ConfigurationError
from .model import FailurePolicy, Job, Step, normalize_variant, variant_slug

# Environment variable each language's toolchain manager reads to pick a version.
TOOLCHAIN_SELECTORS = {
    "rust": "RUSTUP_TOOLCHAIN",
}


def toolchain_env(variant: str, language: str | None = None) -> Dict[str, str]:
    env = {"CI_TOOLCHAIN": variant}
    selector = TOOLCHAIN_SELECTORS.get((language or "").strip().lower())
    if selector:
        env[selector] = variant
    return env


def expand_matrix(
    variants: Iterable[object],
    policy: FailurePolicy,
    steps: Sequence[Step],
    before_steps: Sequence[Step] = (),
    *,
    env: Optional[Dict[str, str]] = None,
    language: str | None = None,
) -> List[Job]:
    """
    One Pending job per variant, in list order.

    A variant is allowed to fail iff the policy's allow-list names it; the
    allow-list wins over a plain matrix entry.
    """
    labels = [str(v).strip() for v in variants]
    if not labels:
        raise ConfigurationError("toolchain matrix is empty")

    seen: Dict[str, str] = {}
    slugs: Dict[str, str] = {}
    for label in labels:
        if not label:
            raise ConfigurationError("toolchain matrix contains an empty entry")
        key = normalize_variant(label)
        if key in seen:
            raise ConfigurationError(
                f"duplicate toolchain {label!r} (same as {seen[key]!r} after normalization)"
            )
        seen[key] = label
        # slugs name the job workspace and cache keys
        slug = variant_slug(label)
        if slug in slugs:
            raise ConfigurationError(
                f"toolchains {slugs[slug]!r} and {label!r} map to the same workspace name {slug!r}"
            )
        slugs[slug] = label

    unknown = sorted(policy.allow_failures - set(seen))
    if unknown:
        raise ConfigurationError(
            f"allow_failures names toolchain(s) not in the matrix: {unknown}. "
            f"Known toolchains: {list(seen.values())}"
        )

    jobs: List[Job] = []
    for label in labels:
        job_env = toolchain_env(label, language)
        job_env.update(env or {})
        jobs.append(
            Job(
                variant=label,
                steps=list(steps),
                before_steps=list(before_steps),
                required=not policy.allows(label),
                env=job_env,
            )
        )
    return jobs
