# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

DEFAULT_MAIN_BRANCH = "main"
DEFAULT_SECRET_ENV = "PUBLISH_SECRET"
DEFAULT_REGISTRY_TOKEN_ENV = "CARGO_REGISTRY_TOKEN"
DEFAULT_OUTPUT_TAIL = 4000


def _default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass(frozen=True)
class Settings:
    main_branch: str = DEFAULT_MAIN_BRANCH
    secret_env: str = DEFAULT_SECRET_ENV
    registry_token_env: str = DEFAULT_REGISTRY_TOKEN_ENV
    max_workers: int = 1
    output_tail: int = DEFAULT_OUTPUT_TAIL

    def secret(self, environ: Optional[Mapping[str, str]] = None) -> str | None:
        """Return the publish credential, or None when it is unset or empty."""
        env = os.environ if environ is None else environ
        value = env.get(self.secret_env)
        return value or None

    def with_overrides(self, **overrides) -> "Settings":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ

    workers_raw = env.get("RELEASECI_MAX_WORKERS")
    tail_raw = env.get("RELEASECI_OUTPUT_TAIL")
    try:
        workers = int(workers_raw) if workers_raw else _default_workers()
        tail = int(tail_raw) if tail_raw else DEFAULT_OUTPUT_TAIL
    except ValueError as e:
        raise ValueError(f"Invalid integer in RELEASECI_* settings: {e}") from e

    return Settings(
        main_branch=env.get("RELEASECI_MAIN_BRANCH", DEFAULT_MAIN_BRANCH),
        secret_env=env.get("RELEASECI_SECRET_ENV", DEFAULT_SECRET_ENV),
        registry_token_env=env.get("RELEASECI_REGISTRY_TOKEN_ENV", DEFAULT_REGISTRY_TOKEN_ENV),
        max_workers=max(1, workers),
        output_tail=max(0, tail),
    )
