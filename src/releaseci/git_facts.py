# git_facts.py
# Small, focused wrapper around the Git CLI.
# Used to derive an event descriptor for local runs, when no CI system
# hands us one.

from __future__ import annotations

import subprocess
from typing import List, Optional

from .trigger import PRERELEASE_TAG, RELEASE_TAG, EventDescriptor


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a nonzero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """Name of the checked out branch, None on a detached HEAD."""
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def tags_at_head(cwd: Optional[str] = None) -> List[str]:
    out = _git(["tag", "--points-at", "HEAD"], cwd=cwd)
    return sorted(out.splitlines()) if out else []


def version_tag_at_head(cwd: Optional[str] = None) -> Optional[str]:
    """A full release tag wins over a prerelease tag when both point at HEAD."""
    tags = tags_at_head(cwd)
    for pattern in (RELEASE_TAG, PRERELEASE_TAG):
        for t in tags:
            if pattern.match(t):
                return t
    return None


def local_event(*, secret_present: bool = False, cwd: Optional[str] = None) -> EventDescriptor:
    """
    Describe the local checkout as a push event.

    A version tag at HEAD makes it a tag push; otherwise it is a push of the
    current branch (a detached HEAD yields a ref no trigger matches).
    """
    tag = version_tag_at_head(cwd)
    if tag is not None:
        ref = f"refs/tags/{tag}"
    else:
        branch = current_branch(cwd)
        ref = f"refs/heads/{branch}" if branch else head_sha(cwd)
    return EventDescriptor(event_type="push", ref=ref, secret_present=secret_present)
