from enum import Enum


class EntityType(str, Enum):
    CONTACT = "contact"
    INVOICE = "invoice"
    PAYMENT = "payment"


# Parties before documents, documents before allocations
SYNC_ORDER = [EntityType.CONTACT, EntityType.INVOICE, EntityType.PAYMENT]


def ordered_entity_types(entity_types):
    """Deduplicate and sort requested entity types into dependency order."""
    requested = {EntityType(t) for t in entity_types}
    return [t for t in SYNC_ORDER if t in requested]
