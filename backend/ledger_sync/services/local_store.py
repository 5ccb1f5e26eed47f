from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ledger_sync.services.entity_adapters import EntityAdapter
from ledger_sync.services.field_ownership import LocalPatch


class LocalStore:
    """Create, read and update operations on syncable entities. Never commits."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, adapter: EntityAdapter, entity_id: str):
        return self.db.get(adapter.model, entity_id)

    def find_for_remote(self, adapter: EntityAdapter, remote):
        """Locate the local twin of a remote record by remote id, then natural key."""
        model = adapter.model
        entity = self.db.query(model).filter(model.remote_id == remote.remote_id).first()
        if entity is None:
            entity = adapter.find_by_natural_key(self.db, remote)
        return entity

    def apply_patch(self, adapter: EntityAdapter, entity, patch: LocalPatch):
        """Apply a remote-into-local patch, creating the entity when ``entity`` is None."""
        if entity is None:
            entity = adapter.model()
            self.db.add(entity)
        for key, value in patch.fields.items():
            adapter.apply_field(entity, key, value)
        entity.remote_id = patch.remote_id
        self.db.flush()
        # reload relationships (e.g. contact) that may follow a changed foreign key
        self.db.expire(entity)
        return entity

    def push_candidates(
        self,
        adapter: EntityAdapter,
        specific_ids: Optional[Sequence[str]] = None,
        modified_since: Optional[datetime] = None,
    ) -> List:
        model = adapter.model
        query = self.db.query(model)
        if specific_ids:
            query = query.filter(model.id.in_(list(specific_ids)))
        if modified_since is not None:
            query = query.filter(model.updated_at >= modified_since)
        return query.order_by(model.created_at, model.id).all()
