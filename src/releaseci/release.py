# release.py
# Release gate: the terminal job that either publishes for real (version tag
# pushes) or validates the package with a dry run (everything else).
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Iterable, List, Optional, Union

from .errors import ConfigurationError
from .model import JobTemplate, TaskKind, TaskSpec
from .trigger import Trigger

RELEASE_JOB = "publish"
DEFAULT_PUBLISH_COMMAND = "cargo publish"
DRY_RUN_FLAG = "--dry-run"


@dataclass(frozen=True)
class RealPublish:
    """Publish to the registry; needs the credential."""
    credential: str = field(repr=False)
    side_effect: ClassVar[bool] = True

    def describe(self) -> str:
        return "publish"


@dataclass(frozen=True)
class DryRunPublish:
    """Validate the package only, never touching the registry."""
    side_effect: ClassVar[bool] = False

    def describe(self) -> str:
        return "publish (dry-run)"


PublishMode = Union[RealPublish, DryRunPublish]


def select_publish_mode(
    trigger: Optional[Trigger],
    credential: Optional[str],
    *,
    job: str = RELEASE_JOB,
    task: Optional[str] = None,
    secret_env: str = "PUBLISH_SECRET",
) -> PublishMode:
    """
    Choose once between a real publish and a dry run.

    Tag pushes (full releases and prereleases alike) publish for real and
    require the credential, both as reported by the event and as found in
    the environment. A missing credential there is a configuration error,
    never a silent downgrade to dry-run.
    """
    if trigger is not None and trigger.is_tag:
        if not trigger.is_secret_available or not credential:
            where = "in the environment" if trigger.is_secret_available else "to the triggering event"
            raise ConfigurationError(
                f"publish credential missing: {secret_env} is not available {where} for tag {trigger.ref_name}",
                job=job,
                task=task,
                secret_env=secret_env,
            )
        return RealPublish(credential=credential)
    return DryRunPublish()


def publish_command(mode: PublishMode, command: str = DEFAULT_PUBLISH_COMMAND) -> str:
    if isinstance(mode, DryRunPublish):
        return f"{command} {DRY_RUN_FLAG}"
    return command


def publish_task(
    name: str = "Publish",
    command: str = DEFAULT_PUBLISH_COMMAND,
    *,
    cwd: str | None = None,
) -> TaskSpec:
    """Publish task; real vs dry-run is decided when the gate runs."""
    return TaskSpec(name=name, kind=TaskKind.PUBLISH, run=command, cwd=cwd)


def release_job(
    needs: Iterable[str],
    *,
    name: str = RELEASE_JOB,
    command: str = DEFAULT_PUBLISH_COMMAND,
    setup_tasks: Iterable[TaskSpec] = (),
    env: Optional[dict] = None,
) -> JobTemplate:
    needs_list: List[str] = list(dict.fromkeys(needs))
    if name in needs_list:
        raise ValueError(f"release job '{name}' cannot need itself")

    return JobTemplate(
        name=name,
        tasks=[*setup_tasks, publish_task(command=command)],
        needs=needs_list,
        env=dict(env or {}),
        title="Publish",
        release_gate=True,
    )
