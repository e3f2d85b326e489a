"""
Shape-aware comparison of node version identifiers.

AR.IO node versions show up in several forms depending on where they were
read from: release tags (``r48``), bare build numbers (``48``), dotted
versions (``1.2.3``) or short commit hashes when a checkout sits between
tags. There is no canonical form, so ``is_newer`` applies an ordered set of
rules and the first one that matches decides.
"""

import re
from typing import List, Optional

from .schemas import VersionComparison, VersionFacts

FINGERPRINT_RE = re.compile(r"^[a-f0-9]{7,8}$")
RELEASE_TAG_RE = re.compile(r"^r(\d+)$")
INTEGER_RE = re.compile(r"^\d+$")


def _strip_prefix(version: str) -> str:
    version = version.strip()
    if version.startswith("v"):
        return version[1:]
    return version


def _release_number(version: str) -> Optional[int]:
    match = RELEASE_TAG_RE.match(version)
    return int(match.group(1)) if match else None


def _dotted_parts(version: str) -> List[int]:
    parts = []
    for segment in version.split("."):
        try:
            parts.append(int(segment))
        except ValueError:
            parts.append(0)
    return parts


def is_newer(current: str, latest: str) -> bool:
    """Returns True if ``latest`` should be treated as newer than ``current``."""
    current = _strip_prefix(current)
    latest = _strip_prefix(latest)

    # A commit hash carries no ordering, so it is always considered stale.
    if FINGERPRINT_RE.match(current):
        return True

    current_release = _release_number(current)
    latest_release = _release_number(latest)
    if current_release is not None and latest_release is not None:
        return latest_release > current_release

    if current_release is not None and INTEGER_RE.match(latest):
        return int(latest) > current_release
    if latest_release is not None and INTEGER_RE.match(current):
        return latest_release > int(current)

    if INTEGER_RE.match(current) and INTEGER_RE.match(latest):
        return int(latest) > int(current)

    if "." in current or "." in latest:
        current_parts = _dotted_parts(current)
        latest_parts = _dotted_parts(latest)
        width = max(len(current_parts), len(latest_parts))
        current_parts += [0] * (width - len(current_parts))
        latest_parts += [0] * (width - len(latest_parts))
        for current_part, latest_part in zip(current_parts, latest_parts):
            if latest_part != current_part:
                return latest_part > current_part
        return False

    return latest > current


def compare_versions(facts: VersionFacts) -> VersionComparison:
    """
    Decides whether an update is warranted from whatever facts are known.

    The deployed version is preferred because it reflects what is actually
    serving traffic. The local checkout is the next best signal. With
    neither, an update is assumed and the git pull reveals whether anything
    actually changed.
    """
    if not facts.latest:
        return VersionComparison(
            update_needed=True,
            reason="Latest release could not be determined; checking the repository for changes",
        )

    if facts.deployed:
        if is_newer(facts.deployed, facts.latest):
            return VersionComparison(
                update_needed=True,
                reason=f"Deployed version {facts.deployed} is behind latest release {facts.latest}",
            )
        return VersionComparison(
            update_needed=False,
            reason=f"Deployed version {facts.deployed} is up to date with latest release {facts.latest}",
        )

    if facts.local:
        if is_newer(facts.local, facts.latest):
            return VersionComparison(
                update_needed=True,
                reason=f"Local checkout {facts.local} is behind latest release {facts.latest}",
            )
        return VersionComparison(
            update_needed=False,
            reason=f"Local checkout {facts.local} is up to date with latest release {facts.latest}",
        )

    return VersionComparison(
        update_needed=True,
        reason=f"Current version unknown; assuming update to {facts.latest} is needed",
    )
