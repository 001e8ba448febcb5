# trigger.py
# Turns the inciting event (tag push, branch push, pull request) into the
# small set of facts the rest of the pipeline gates on.
from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

# Full version, e.g. 1.2.3
RELEASE_TAG = re.compile(r"^\d+\.\d+\.\d+$")
# Prerelease version, e.g. 1.2.3-rc1
PRERELEASE_TAG = re.compile(r"^\d+\.\d+\.\d+-.*$")

PR_ACTIONS = frozenset({"opened", "synchronize", "synchronized"})

TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"


class EventDescriptor(BaseModel):
    """Raw event as handed to the pipeline (the sole external input)."""
    model_config = ConfigDict(frozen=True)

    event_type: str
    ref: str = ""
    pr_action: Optional[str] = None
    base_ref: Optional[str] = None
    secret_present: bool = False

    @field_validator("event_type")
    @classmethod
    def _normalize_event_type(cls, v: str) -> str:
        return v.strip().lower().replace("-", "_")

    @field_validator("pr_action")
    @classmethod
    def _normalize_action(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v


class TriggerKind(str, Enum):
    PUSH_TAG = "push-tag"
    PUSH_BRANCH = "push-branch"
    PULL_REQUEST = "pull-request"


@dataclass(frozen=True)
class Trigger:
    kind: TriggerKind
    ref: str
    ref_name: str
    is_secret_available: bool
    is_prerelease: bool = False

    @property
    def is_tag(self) -> bool:
        return self.kind is TriggerKind.PUSH_TAG

    @property
    def is_main_branch(self) -> bool:
        return self.kind is TriggerKind.PUSH_BRANCH

    @property
    def is_pull_request(self) -> bool:
        return self.kind is TriggerKind.PULL_REQUEST

    def describe(self) -> str:
        extra = " (prerelease)" if self.is_prerelease else ""
        return f"{self.kind.value} {self.ref_name}{extra}"


def _tag_name(ref: str) -> str | None:
    """Return the version tag named by `ref`, or None if it is not a version tag."""
    if ref.startswith(BRANCH_PREFIX):
        return None
    name = ref[len(TAG_PREFIX):] if ref.startswith(TAG_PREFIX) else ref
    if RELEASE_TAG.match(name) or PRERELEASE_TAG.match(name):
        return name
    return None


def _branch_name(ref: str) -> str:
    return ref[len(BRANCH_PREFIX):] if ref.startswith(BRANCH_PREFIX) else ref


def classify(event: EventDescriptor, *, main_branch: str = "main") -> Trigger | None:
    """
    Classify an event descriptor.

    Returns:
      Trigger for events the pipeline runs on, None for every other event
      ("not applicable" is not an error).
    """
    ref = event.ref.strip()

    if event.event_type == "push":
        tag = _tag_name(ref)
        if tag is not None:
            return Trigger(
                kind=TriggerKind.PUSH_TAG,
                ref=ref,
                ref_name=tag,
                is_secret_available=event.secret_present,
                is_prerelease=RELEASE_TAG.match(tag) is None,
            )
        if ref.startswith(TAG_PREFIX):
            return None
        if _branch_name(ref) == main_branch:
            return Trigger(
                kind=TriggerKind.PUSH_BRANCH,
                ref=ref,
                ref_name=main_branch,
                is_secret_available=event.secret_present,
            )
        return None

    if event.event_type == "pull_request":
        target = _branch_name((event.base_ref or ref).strip())
        if target != main_branch or event.pr_action not in PR_ACTIONS:
            return None
        return Trigger(
            kind=TriggerKind.PULL_REQUEST,
            ref=ref,
            ref_name=_branch_name(ref) or target,
            is_secret_available=event.secret_present,
        )

    return None


def event_from_github_env(
    environ: Optional[Mapping[str, str]] = None,
    *,
    secret_present: bool = False,
) -> EventDescriptor:
    """
    Build an event descriptor from the variables a GitHub Actions runner exports.

    The pull request action is read from the event payload at GITHUB_EVENT_PATH.
    """
    env = os.environ if environ is None else environ
    event_type = env.get("GITHUB_EVENT_NAME", "")
    if not event_type:
        raise ValueError("GITHUB_EVENT_NAME is not set; not running under GitHub Actions?")

    action = None
    payload_path = env.get("GITHUB_EVENT_PATH")
    if payload_path and Path(payload_path).is_file():
        try:
            payload = json.loads(Path(payload_path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid event payload at {payload_path}: {e}") from e
        action = payload.get("action")

    return EventDescriptor(
        event_type=event_type,
        ref=env.get("GITHUB_REF", ""),
        pr_action=action,
        base_ref=env.get("GITHUB_BASE_REF") or None,
        secret_present=secret_present,
    )
