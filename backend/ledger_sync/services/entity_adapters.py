"""
Per entity type knowledge: sync projections, field ownership, ledger wire
mapping and dependency rules.

Local and remote projections of one entity are produced by the same
``_project`` function from values expressed in local field names, so two
records holding the same data always fingerprint identically.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Set

from sqlalchemy.orm import Session

from ledger_sync.constants.entity_types import EntityType
from ledger_sync.exceptions import DependencyMissingError
from ledger_sync.models.contact import Contact
from ledger_sync.models.invoice import Invoice, InvoiceLineItem
from ledger_sync.models.payment import Payment
from ledger_sync.schemas.ledger import RemoteContact, RemoteInvoice, RemotePayment
from ledger_sync.services.field_ownership import FieldOwnership, merge_local_into_remote
from ledger_sync.services.fingerprint import fingerprint
from ledger_sync.utils.serialization import to_jsonable

log = logging.getLogger(__name__)

DEFAULT_CURRENCY = "SGD"
DEFAULT_TAX_TYPE = "OUTPUT2"
DEFAULT_ACCOUNT_CODE = "200"

# Ledger invoice status -> local status
STATUS_FROM_LEDGER = {
    "DRAFT": "DRAFT",
    "SUBMITTED": "SENT",
    "AUTHORISED": "SENT",
    "PAID": "PAID",
    "VOIDED": "CANCELLED",
    "DELETED": "CANCELLED",
}

# Local status -> ledger invoice status
STATUS_TO_LEDGER = {
    "DRAFT": "DRAFT",
    "SENT": "AUTHORISED",
    "PAID": "AUTHORISED",
    "PARTIALLY_PAID": "AUTHORISED",
    "OVERDUE": "AUTHORISED",
    "CANCELLED": "VOIDED",
}


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _wire_number(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _wire_date(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _compact(body: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in body.items() if value is not None}


def _planned(planned: Optional[Dict[str, Set[str]]], entity_type: EntityType) -> Set[str]:
    return (planned or {}).get(entity_type.value, set())


class EntityAdapter:
    """Base adapter; subclasses describe one syncable entity type."""

    entity_type: EntityType
    model = None
    ownership: FieldOwnership
    required_fields: tuple = ()

    def local_values(self, entity) -> Dict[str, Any]:
        raise NotImplementedError

    def remote_values(self, remote) -> Dict[str, Any]:
        raise NotImplementedError

    def local_projection(self, entity) -> Dict[str, Any]:
        raise NotImplementedError

    def remote_projection(self, remote) -> Dict[str, Any]:
        raise NotImplementedError

    def to_wire(self, entity, writable: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def local_fingerprint(self, entity) -> str:
        return fingerprint(self.local_projection(entity), self.required_fields)

    def remote_fingerprint(self, remote) -> str:
        return fingerprint(self.remote_projection(remote), self.required_fields)

    def resolve_references(self, db: Session, remote, planned: Optional[Dict[str, Set[str]]] = None) -> Dict[str, Any]:
        """
        Local foreign keys for a remote record. Raises DependencyMissingError.

        ``planned`` holds, per entity type, the remote ids a dry run would have
        created; such a reference counts as resolved and maps to ``None``.
        """
        return {}

    def check_push_dependencies(self, entity, planned: Optional[Dict[str, Set[str]]] = None):
        """
        Raise DependencyMissingError if a referenced record has no remote id.
        ``planned`` holds the local ids a dry run would have pushed, per entity type.
        """
        return None

    def build_remote_body(self, entity) -> Dict[str, Any]:
        return merge_local_into_remote(
            self.local_values(entity),
            self.ownership,
            lambda writable: self.to_wire(entity, writable),
        )

    def find_by_natural_key(self, db: Session, remote):
        return None

    def apply_field(self, entity, key: str, value: Any):
        setattr(entity, key, value)

    def snapshot(self, entity) -> Dict[str, Any]:
        if entity is None:
            return None
        return to_jsonable({"id": entity.id, "remote_id": entity.remote_id, **self.local_values(entity)})

    def label(self, entity) -> str:
        return str(entity.id)


class ContactAdapter(EntityAdapter):
    entity_type = EntityType.CONTACT
    model = Contact
    sync_fields = (
        "name", "email", "phone", "address_line1", "city", "region", "postal_code",
        "country", "tax_number", "default_currency", "contact_status", "is_customer", "is_supplier",
    )
    local_fields = ("notes", "customer_type", "account_manager")
    ownership = FieldOwnership(
        remote_owned=frozenset(sync_fields),
        local_owned=frozenset(local_fields),
        remote_computed=frozenset({"is_customer", "is_supplier"}),
    )
    required_fields = ("name",)

    def local_values(self, entity: Contact):
        return {f: getattr(entity, f) for f in self.sync_fields + self.local_fields}

    def remote_values(self, remote: RemoteContact):
        address = remote.primary_address()
        return {
            "name": _clean(remote.name),
            "email": _clean(remote.email),
            "phone": _clean(remote.primary_phone()),
            "address_line1": _clean(address.address_line1) if address else None,
            "city": _clean(address.city) if address else None,
            "region": _clean(address.region) if address else None,
            "postal_code": _clean(address.postal_code) if address else None,
            "country": _clean(address.country) if address else None,
            "tax_number": _clean(remote.tax_number),
            "default_currency": _clean(remote.default_currency),
            "contact_status": remote.contact_status or "ACTIVE",
            "is_customer": remote.is_customer,
            "is_supplier": remote.is_supplier,
        }

    def _project(self, values):
        projection = {f: _clean(values.get(f)) for f in self.sync_fields}
        projection["contact_status"] = projection["contact_status"] or "ACTIVE"
        projection["is_customer"] = bool(projection["is_customer"])
        projection["is_supplier"] = bool(projection["is_supplier"])
        return projection

    def local_projection(self, entity):
        return self._project(self.local_values(entity))

    def remote_projection(self, remote):
        return self._project(self.remote_values(remote))

    def to_wire(self, entity, writable):
        body = {
            "Name": writable["name"],
            "EmailAddress": _clean(writable.get("email")),
            "TaxNumber": _clean(writable.get("tax_number")),
            "DefaultCurrency": _clean(writable.get("default_currency")),
            "ContactStatus": writable.get("contact_status"),
        }
        if _clean(writable.get("phone")):
            body["Phones"] = [{"PhoneType": "DEFAULT", "PhoneNumber": writable["phone"]}]
        address = _compact({
            "AddressLine1": _clean(writable.get("address_line1")),
            "City": _clean(writable.get("city")),
            "Region": _clean(writable.get("region")),
            "PostalCode": _clean(writable.get("postal_code")),
            "Country": _clean(writable.get("country")),
        })
        if address:
            body["Addresses"] = [{"AddressType": "STREET", **address}]
        return _compact(body)

    def label(self, entity):
        return entity.name


class InvoiceAdapter(EntityAdapter):
    entity_type = EntityType.INVOICE
    model = Invoice
    header_fields = ("invoice_number", "invoice_type", "status", "currency", "issue_date", "due_date", "reference")
    total_fields = ("subtotal", "tax_amount", "total", "amount_due", "amount_paid")
    line_fields = ("description", "quantity", "unit_price", "tax_type", "account_code", "tax_amount", "line_amount")
    local_fields = ("notes", "project_ref", "quotation_ref")
    ownership = FieldOwnership(
        remote_owned=frozenset(header_fields + total_fields + ("contact_id", "line_items")),
        local_owned=frozenset(local_fields),
        remote_computed=frozenset(total_fields),
        nested_computed={"line_items": frozenset({"tax_amount", "line_amount"})},
    )
    required_fields = ("invoice_number", "invoice_type", "status", "currency", "line_items")

    @staticmethod
    def remote_invoice_number(remote: RemoteInvoice) -> str:
        # Bills entered directly in the ledger often carry no number
        return remote.invoice_number or f"{remote.invoice_type}-{remote.invoice_id[:8]}"

    def local_values(self, entity: Invoice):
        values = {f: getattr(entity, f) for f in self.header_fields + self.total_fields + self.local_fields}
        values["contact_id"] = entity.contact_id
        values["line_items"] = [
            {f: getattr(line, f) for f in self.line_fields}
            for line in sorted(entity.line_items, key=lambda li: li.position)
        ]
        return values

    def remote_values(self, remote: RemoteInvoice):
        status = STATUS_FROM_LEDGER.get(remote.status)
        if status is None:
            log.warning(f"Unknown ledger status '{remote.status}' on invoice {remote.label}, keeping as-is")
            status = remote.status
        return {
            "invoice_number": self.remote_invoice_number(remote),
            "invoice_type": remote.invoice_type,
            "status": status,
            "currency": remote.currency or DEFAULT_CURRENCY,
            "issue_date": remote.issue_date,
            "due_date": remote.due_date,
            "reference": _clean(remote.reference),
            "subtotal": remote.subtotal,
            "tax_amount": remote.total_tax,
            "total": remote.total,
            "amount_due": remote.amount_due,
            "amount_paid": remote.amount_paid,
            "line_items": [
                {
                    "description": line.description,
                    "quantity": line.quantity,
                    "unit_price": line.unit_amount,
                    "tax_type": line.tax_type or DEFAULT_TAX_TYPE,
                    "account_code": line.account_code or DEFAULT_ACCOUNT_CODE,
                    "tax_amount": line.tax_amount,
                    "line_amount": line.line_amount,
                }
                for line in remote.line_items
            ],
        }

    def _project(self, values, contact_ref):
        projection = {f: _clean(values.get(f)) for f in self.header_fields}
        projection.update({f: values.get(f) or Decimal("0") for f in self.total_fields})
        projection["contact"] = contact_ref
        projection["line_items"] = [
            {f: _clean(line.get(f)) for f in self.line_fields}
            for line in values.get("line_items") or []
        ]
        return projection

    def local_projection(self, entity):
        contact_ref = entity.contact.remote_id if entity.contact is not None else None
        return self._project(self.local_values(entity), contact_ref)

    def remote_projection(self, remote):
        return self._project(self.remote_values(remote), remote.contact.contact_id)

    def resolve_references(self, db, remote: RemoteInvoice, planned=None):
        contact = db.query(Contact).filter(Contact.remote_id == remote.contact.contact_id).first()
        if contact is None and remote.contact.contact_id in _planned(planned, EntityType.CONTACT):
            return {"contact_id": None}
        if contact is None:
            name = remote.contact.name or remote.contact.contact_id
            raise DependencyMissingError(f"Customer not found for contact '{name}'", "sync contacts first")
        return {"contact_id": contact.id}

    def check_push_dependencies(self, entity: Invoice, planned=None):
        if entity.contact is not None and entity.contact.id in _planned(planned, EntityType.CONTACT):
            return
        if entity.contact is None or not entity.contact.remote_id:
            name = entity.contact.name if entity.contact is not None else entity.contact_id
            raise DependencyMissingError(f"Contact '{name}' has not been synced to the ledger", "sync contacts first")

    def to_wire(self, entity, writable):
        return _compact({
            "Type": writable["invoice_type"],
            "InvoiceNumber": writable["invoice_number"],
            "Contact": {"ContactID": entity.contact.remote_id},
            "Status": STATUS_TO_LEDGER.get(writable["status"], "DRAFT"),
            "CurrencyCode": writable.get("currency") or DEFAULT_CURRENCY,
            "Date": _wire_date(writable.get("issue_date")),
            "DueDate": _wire_date(writable.get("due_date")),
            "Reference": _clean(writable.get("reference")),
            "LineAmountTypes": "Exclusive",
            "LineItems": [
                _compact({
                    "Description": line["description"],
                    "Quantity": _wire_number(line["quantity"]),
                    "UnitAmount": _wire_number(line["unit_price"]),
                    "TaxType": line.get("tax_type") or DEFAULT_TAX_TYPE,
                    "AccountCode": line.get("account_code") or DEFAULT_ACCOUNT_CODE,
                })
                for line in writable.get("line_items") or []
            ],
        })

    def find_by_natural_key(self, db, remote: RemoteInvoice):
        return db.query(Invoice).filter(
            Invoice.invoice_type == remote.invoice_type,
            Invoice.invoice_number == self.remote_invoice_number(remote),
            Invoice.remote_id.is_(None)
        ).first()

    def apply_field(self, entity, key, value):
        if key == "line_items":
            entity.line_items = [InvoiceLineItem(position=i, **line) for i, line in enumerate(value)]
        else:
            setattr(entity, key, value)

    def label(self, entity):
        return entity.invoice_number


class PaymentAdapter(EntityAdapter):
    entity_type = EntityType.PAYMENT
    model = Payment
    sync_fields = ("amount", "payment_date", "reference", "status", "payment_type", "account_code", "currency_rate")
    local_fields = ("notes", "receipt_ref")
    ownership = FieldOwnership(
        remote_owned=frozenset(sync_fields + ("invoice_id",)),
        local_owned=frozenset(local_fields),
        remote_computed=frozenset({"status", "payment_type"}),
    )
    required_fields = ("amount", "payment_date", "invoice")

    def local_values(self, entity: Payment):
        values = {f: getattr(entity, f) for f in self.sync_fields + self.local_fields}
        values["invoice_id"] = entity.invoice_id
        return values

    def remote_values(self, remote: RemotePayment):
        return {
            "amount": remote.amount,
            "payment_date": remote.payment_date,
            "reference": _clean(remote.reference),
            "status": remote.status,
            "payment_type": remote.payment_type,
            "account_code": remote.account.code if remote.account else None,
            "currency_rate": remote.currency_rate,
        }

    def _project(self, values, invoice_ref):
        projection = {f: _clean(values.get(f)) for f in self.sync_fields}
        projection["invoice"] = invoice_ref
        return projection

    def local_projection(self, entity):
        invoice_ref = entity.invoice.remote_id if entity.invoice is not None else None
        return self._project(self.local_values(entity), invoice_ref)

    def remote_projection(self, remote):
        return self._project(self.remote_values(remote), remote.invoice.invoice_id)

    def resolve_references(self, db, remote: RemotePayment, planned=None):
        target = remote.invoice
        invoice = db.query(Invoice).filter(Invoice.remote_id == target.invoice_id).first()
        if invoice is None and target.invoice_number:
            invoice = db.query(Invoice).filter(
                Invoice.invoice_number == target.invoice_number,
                Invoice.invoice_type == remote.target_invoice_type,
            ).first()
        if invoice is None and target.invoice_id in _planned(planned, EntityType.INVOICE):
            return {"invoice_id": None}
        if invoice is None:
            raise DependencyMissingError(
                f"Invoice '{target.invoice_number or target.invoice_id}' not found", "sync invoices first"
            )
        return {"invoice_id": invoice.id}

    def check_push_dependencies(self, entity: Payment, planned=None):
        if entity.invoice is not None and entity.invoice.id in _planned(planned, EntityType.INVOICE):
            return
        if entity.invoice is None or not entity.invoice.remote_id:
            number = entity.invoice.invoice_number if entity.invoice is not None else entity.invoice_id
            raise DependencyMissingError(f"Invoice '{number}' has not been synced to the ledger", "sync invoices first")

    def to_wire(self, entity, writable):
        code = _clean(writable.get("account_code"))
        return _compact({
            "Invoice": {"InvoiceID": entity.invoice.remote_id},
            "Account": {"Code": code} if code else None,
            "Date": _wire_date(writable.get("payment_date")),
            "Amount": _wire_number(writable.get("amount")),
            "Reference": _clean(writable.get("reference")),
            "CurrencyRate": _wire_number(writable.get("currency_rate")),
        })

    def label(self, entity):
        return entity.reference or entity.id


ADAPTERS = {adapter.entity_type: adapter for adapter in (ContactAdapter(), InvoiceAdapter(), PaymentAdapter())}


def get_adapter(entity_type) -> EntityAdapter:
    return ADAPTERS[EntityType(entity_type)]
