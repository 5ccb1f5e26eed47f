"""
Field-level ownership between the local store and the ledger.

Each entity's fields are partitioned into remote-owned (written only by data
arriving from the ledger) and local-owned (never written by a pull, never sent
to the ledger). Remote-computed fields are remote-owned values the ledger
derives itself; they are never included in request bodies.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from ledger_sync.utils.timeutils import utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldOwnership:
    remote_owned: FrozenSet[str]
    local_owned: FrozenSet[str]
    remote_computed: FrozenSet[str] = frozenset()
    # computed keys inside nested collections, e.g. {"line_items": {"line_amount"}}
    nested_computed: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    def __post_init__(self):
        overlap = self.remote_owned & self.local_owned
        if overlap:
            raise ValueError(f"Fields cannot be owned by both sides: {sorted(overlap)}")
        stray = self.remote_computed - self.remote_owned
        if stray:
            raise ValueError(f"Computed fields must be remote-owned: {sorted(stray)}")


@dataclass
class LocalPatch:
    """Changes to apply to a local record from a remote representation."""
    remote_id: str
    fields: Dict[str, Any]
    changed_fields: List[str]
    remote_modified_at: Optional[datetime] = None
    synced_at: datetime = field(default_factory=utcnow)

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields


def merge_remote_into_local(
    local: Optional[Mapping[str, Any]],
    remote: Mapping[str, Any],
    ownership: FieldOwnership,
    remote_id: str,
    remote_modified_at: Optional[datetime] = None,
) -> LocalPatch:
    """
    Build the patch a pull may apply to a local record.

    Only remote-owned keys of ``remote`` survive; anything else the ledger sent
    (including values for local-owned fields) is dropped. ``local`` is the
    record's current values, or None when the record will be created.
    """
    fields = {key: value for key, value in remote.items() if key in ownership.remote_owned}
    dropped = sorted(key for key in remote if key not in ownership.remote_owned)
    if dropped:
        log.debug(f"Ignoring non remote-owned fields from ledger payload: {dropped}")

    changed = sorted(key for key, value in fields.items() if local is None or local.get(key) != value)
    return LocalPatch(
        remote_id=remote_id,
        fields=fields,
        changed_fields=changed,
        remote_modified_at=remote_modified_at,
    )


def writable_local_fields(local: Mapping[str, Any], ownership: FieldOwnership) -> Dict[str, Any]:
    """Local values that may be sent to the ledger."""
    writable = {}
    for key, value in local.items():
        if key in ownership.local_owned or key in ownership.remote_computed:
            continue
        nested = ownership.nested_computed.get(key)
        if nested and isinstance(value, list):
            value = [
                {k: v for k, v in item.items() if k not in nested}
                for item in value
            ]
        writable[key] = value
    return writable


def merge_local_into_remote(
    local: Mapping[str, Any],
    ownership: FieldOwnership,
    to_wire: Callable[[Dict[str, Any]], Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Build a ledger request body from local data.

    ``to_wire`` only ever sees writable fields, so the body can carry neither
    local-owned nor ledger-computed values.
    """
    return to_wire(writable_local_fields(local, ownership))
