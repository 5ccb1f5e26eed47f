"""
Typed views of remote ledger payloads.

Every payload coming back from the ledger is decoded here, at the connector
boundary, into one variant of ``RemoteEntity``. Core sync logic never sees raw
dictionaries.
"""

import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from ledger_sync.exceptions import MalformedPayloadError

# entity type -> (collection name, id field)
LEDGER_COLLECTIONS = {
    "contact": ("Contacts", "ContactID"),
    "invoice": ("Invoices", "InvoiceID"),
    "payment": ("Payments", "PaymentID"),
}

_MS_DATE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")


def parse_ledger_datetime(value: Any) -> Any:
    """
    Parse the ledger's date representations.

    Accepts ISO-8601 strings as well as the legacy ``/Date(1518685950940+0000)/``
    form. Naive values are treated as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        match = _MS_DATE.match(value.strip())
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


def parse_ledger_date(value: Any) -> Any:
    parsed = parse_ledger_datetime(value)
    return parsed.date() if isinstance(parsed, datetime) else parsed


class LedgerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe dump using the ledger's wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude={"entity_type"})


class RemotePhone(LedgerModel):
    phone_type: str = Field("DEFAULT", alias="PhoneType")
    phone_number: Optional[str] = Field(None, alias="PhoneNumber")


class RemoteAddress(LedgerModel):
    address_type: str = Field("STREET", alias="AddressType")
    address_line1: Optional[str] = Field(None, alias="AddressLine1")
    city: Optional[str] = Field(None, alias="City")
    region: Optional[str] = Field(None, alias="Region")
    postal_code: Optional[str] = Field(None, alias="PostalCode")
    country: Optional[str] = Field(None, alias="Country")


class RemoteContact(LedgerModel):
    entity_type: Literal["contact"] = "contact"
    contact_id: str = Field(..., alias="ContactID", min_length=1)
    name: str = Field(..., alias="Name", min_length=1)
    email: Optional[str] = Field(None, alias="EmailAddress")
    contact_status: str = Field("ACTIVE", alias="ContactStatus")
    tax_number: Optional[str] = Field(None, alias="TaxNumber")
    default_currency: Optional[str] = Field(None, alias="DefaultCurrency")
    is_customer: bool = Field(False, alias="IsCustomer")
    is_supplier: bool = Field(False, alias="IsSupplier")
    phones: List[RemotePhone] = Field(default_factory=list, alias="Phones")
    addresses: List[RemoteAddress] = Field(default_factory=list, alias="Addresses")
    updated_at: Optional[datetime] = Field(None, alias="UpdatedDateUTC")

    parse_updated = field_validator("updated_at", mode="before")(parse_ledger_datetime)

    @property
    def remote_id(self) -> str:
        return self.contact_id

    @property
    def label(self) -> str:
        return self.name

    def primary_phone(self) -> Optional[str]:
        numbered = [p for p in self.phones if p.phone_number]
        for phone in numbered:
            if phone.phone_type == "DEFAULT":
                return phone.phone_number
        return numbered[0].phone_number if numbered else None

    def primary_address(self) -> Optional[RemoteAddress]:
        for wanted in ("STREET", "POBOX"):
            for address in self.addresses:
                if address.address_type == wanted and address.address_line1:
                    return address
        return self.addresses[0] if self.addresses else None


class RemoteContactRef(LedgerModel):
    contact_id: str = Field(..., alias="ContactID", min_length=1)
    name: Optional[str] = Field(None, alias="Name")


class RemoteLineItem(LedgerModel):
    description: str = Field("", alias="Description")
    quantity: Decimal = Field(Decimal("1"), alias="Quantity")
    unit_amount: Decimal = Field(Decimal("0"), alias="UnitAmount")
    tax_type: Optional[str] = Field(None, alias="TaxType")
    account_code: Optional[str] = Field(None, alias="AccountCode")
    tax_amount: Decimal = Field(Decimal("0"), alias="TaxAmount")
    line_amount: Decimal = Field(Decimal("0"), alias="LineAmount")


class RemoteInvoice(LedgerModel):
    entity_type: Literal["invoice"] = "invoice"
    invoice_id: str = Field(..., alias="InvoiceID", min_length=1)
    invoice_type: Literal["ACCREC", "ACCPAY"] = Field(..., alias="Type")
    invoice_number: Optional[str] = Field(None, alias="InvoiceNumber")
    contact: RemoteContactRef = Field(..., alias="Contact")
    status: str = Field(..., alias="Status")
    currency: str = Field("SGD", alias="CurrencyCode")
    issue_date: Optional[date] = Field(None, alias="Date")
    due_date: Optional[date] = Field(None, alias="DueDate")
    reference: Optional[str] = Field(None, alias="Reference")
    subtotal: Decimal = Field(Decimal("0"), alias="SubTotal")
    total_tax: Decimal = Field(Decimal("0"), alias="TotalTax")
    total: Decimal = Field(Decimal("0"), alias="Total")
    amount_due: Decimal = Field(Decimal("0"), alias="AmountDue")
    amount_paid: Decimal = Field(Decimal("0"), alias="AmountPaid")
    line_items: List[RemoteLineItem] = Field(default_factory=list, alias="LineItems")
    updated_at: Optional[datetime] = Field(None, alias="UpdatedDateUTC")

    parse_dates = field_validator("issue_date", "due_date", mode="before")(parse_ledger_date)
    parse_updated = field_validator("updated_at", mode="before")(parse_ledger_datetime)

    @property
    def remote_id(self) -> str:
        return self.invoice_id

    @property
    def label(self) -> str:
        return self.invoice_number or self.invoice_id


class RemoteInvoiceRef(LedgerModel):
    invoice_id: str = Field(..., alias="InvoiceID", min_length=1)
    invoice_number: Optional[str] = Field(None, alias="InvoiceNumber")
    invoice_type: Optional[str] = Field(None, alias="Type")


class RemoteAccountRef(LedgerModel):
    account_id: Optional[str] = Field(None, alias="AccountID")
    code: Optional[str] = Field(None, alias="Code")


class RemotePayment(LedgerModel):
    entity_type: Literal["payment"] = "payment"
    payment_id: str = Field(..., alias="PaymentID", min_length=1)
    payment_date: date = Field(..., alias="Date")
    amount: Decimal = Field(..., alias="Amount", gt=0)
    reference: Optional[str] = Field(None, alias="Reference")
    status: str = Field("AUTHORISED", alias="Status")
    payment_type: Optional[str] = Field(None, alias="PaymentType")
    currency_rate: Optional[Decimal] = Field(None, alias="CurrencyRate")
    invoice: Optional[RemoteInvoiceRef] = Field(None, alias="Invoice")
    account: Optional[RemoteAccountRef] = Field(None, alias="Account")
    updated_at: Optional[datetime] = Field(None, alias="UpdatedDateUTC")

    parse_date = field_validator("payment_date", mode="before")(parse_ledger_date)
    parse_updated = field_validator("updated_at", mode="before")(parse_ledger_datetime)

    @model_validator(mode="after")
    def require_target(self):
        if self.invoice is None:
            raise ValueError("Payment has no target invoice")
        return self

    @property
    def remote_id(self) -> str:
        return self.payment_id

    @property
    def label(self) -> str:
        return self.reference or self.payment_id

    @property
    def target_invoice_type(self) -> str:
        """ACCREC for money received against a sales invoice, ACCPAY for a paid bill."""
        if self.invoice.invoice_type in ("ACCREC", "ACCPAY"):
            return self.invoice.invoice_type
        return "ACCPAY" if (self.payment_type or "").startswith(("ACCPAY", "APCREDIT")) else "ACCREC"


RemoteEntity = Annotated[
    Union[RemoteContact, RemoteInvoice, RemotePayment],
    Field(discriminator="entity_type"),
]

_remote_entity_adapter = TypeAdapter(RemoteEntity)


def decode_remote_entity(entity_type: str, payload: Any) -> RemoteEntity:
    """Validate one raw ledger item and tag it with ``entity_type``."""
    if entity_type not in LEDGER_COLLECTIONS:
        raise MalformedPayloadError(f"Unknown entity type '{entity_type}'", entity_type)
    _, id_field = LEDGER_COLLECTIONS[entity_type]
    if not isinstance(payload, dict):
        raise MalformedPayloadError(
            f"Expected an object for {entity_type}, got {type(payload).__name__}", entity_type
        )
    try:
        return _remote_entity_adapter.validate_python({**payload, "entity_type": entity_type})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'payload'}: {err['msg']}" for err in e.errors()
        )
        raise MalformedPayloadError(
            f"Invalid {entity_type} payload: {problems}", entity_type, payload.get(id_field)
        ) from e


def extract_validation_errors(payload: Dict[str, Any]) -> List[str]:
    """Collect ledger validation messages from an item or an error envelope."""
    messages = [
        str(err.get("Message"))
        for err in payload.get("ValidationErrors") or []
        if isinstance(err, dict) and err.get("Message")
    ]
    for element in payload.get("Elements") or []:
        if isinstance(element, dict):
            messages.extend(extract_validation_errors(element))
    return messages
