# workflows/crate.py
# Built-in workflow for a Rust crate: check, test, fmt and clippy on the
# stable and minimum supported toolchains, coverage on stable, then the
# release gate.
from __future__ import annotations

from typing import Iterable, List

from ..dsl import job, matrix, release_job, setup, sh, upload, wf
from ..model import JobTemplate

MSRV = "1.56.0"
TOOLCHAINS = ("stable", MSRV)


def workflow(toolchains: Iterable[str] = TOOLCHAINS) -> List[JobTemplate]:
    toolchains = list(toolchains)
    rust = matrix(rust=toolchains)

    verification = [
        job(
            "check",
            setup(),
            sh("cargo check", "cargo check"),
            matrix=rust,
            title="Check",
        ),
        job(
            "test",
            setup(),
            sh("cargo test", "cargo test"),
            matrix=rust,
            title="Test Suite",
        ),
        job(
            "fmt",
            setup(components=["rustfmt"]),
            sh("cargo fmt", "cargo fmt --all -- --check"),
            matrix=rust,
            title="Rustfmt",
        ),
        job(
            "clippy",
            setup(components=["clippy"]),
            sh("cargo clippy", "cargo clippy -- -D warnings"),
            matrix=rust,
            title="Clippy",
        ),
        job(
            "tarpaulin",
            setup(),
            sh("Install tarpaulin", "cargo install cargo-tarpaulin"),
            sh("cargo tarpaulin", "cargo tarpaulin --out xml"),
            # upload failures are reported, the job still succeeds
            upload("Upload coverage", "cobertura.xml", "codecov --verbose -f", continue_on_failure=True),
            matrix=matrix(rust=["stable"]),
            title="Tarpaulin",
        ),
    ]

    gate = release_job(
        [j.name for j in verification],
        setup_tasks=[setup(toolchain="stable")],
    )
    return wf(*verification, release=gate)
