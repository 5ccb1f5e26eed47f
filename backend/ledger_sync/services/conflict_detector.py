from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Classification(str, Enum):
    """Outcome of comparing current fingerprints against the last-synced pair."""
    NO_CHANGE = "NO_CHANGE"
    LOCAL_ONLY = "LOCAL_ONLY"
    REMOTE_ONLY = "REMOTE_ONLY"
    BOTH_CHANGED = "BOTH_CHANGED"
    FIRST_SYNC = "FIRST_SYNC"


@dataclass(frozen=True)
class Baseline:
    local_fingerprint: Optional[str]
    remote_fingerprint: Optional[str]


def classify(local_fp: Optional[str], remote_fp: Optional[str], baseline: Optional[Baseline]) -> Classification:
    """
    Classify a record given its current fingerprints and its baseline.

    A baseline with neither fingerprint recorded counts as no baseline. A
    cleared side (None) compares unequal to any current fingerprint, which is
    how conflict resolution forces one direction on the next run.
    """
    if baseline is None or (baseline.local_fingerprint is None and baseline.remote_fingerprint is None):
        return Classification.FIRST_SYNC

    local_changed = local_fp != baseline.local_fingerprint
    remote_changed = remote_fp != baseline.remote_fingerprint

    if local_changed and remote_changed:
        return Classification.BOTH_CHANGED
    if local_changed:
        return Classification.LOCAL_ONLY
    if remote_changed:
        return Classification.REMOTE_ONLY
    return Classification.NO_CHANGE
