"""Freshness policies for stored snapshots."""

from __future__ import annotations

from dataclasses import dataclass

from snapstore.types import SnapMeta, now


@dataclass(frozen=True)
class Policy:
    """Policy which is used to filter snapshots.

    Attributes:
        max_age: Maximum age of the snapshot in seconds. None means unlimited;
            zero or a negative value means no snapshot is ever fresh enough.
        max_timestamp: Only consider snapshots taken at or before this time
            (seconds since the UNIX epoch). None means now.
    """

    max_age: int | None = None
    max_timestamp: int | None = None


def follows_policy(snap: SnapMeta, policy: Policy | None, at: int | None = None) -> bool:
    """Validate whether the given snapshot follows the given policy.

    Args:
        snap: Snapshot metadata to check.
        policy: Policy to check against. None accepts every snapshot.
        at: Reference time for the age check, defaults to now.
    """
    if policy is None or policy.max_age is None:
        return True
    if at is None:
        at = now()
    return at - snap.timestamp < policy.max_age
