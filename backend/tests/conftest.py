import uuid
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import ledger_sync.models  # noqa: F401  registers every table on Base
from ledger_sync.connectors.base import BaseLedgerConnector
from ledger_sync.connectors.result import Ok, Page, TerminalError, TerminalKind
from ledger_sync.connectors.token_provider import StaticTokenProvider
from ledger_sync.database import Base, get_db
from ledger_sync.exceptions import MalformedPayloadError
from ledger_sync.schemas.ledger import LEDGER_COLLECTIONS, decode_remote_entity, parse_ledger_datetime
from ledger_sync.services.pipeline_base import SyncContext
from ledger_sync.services.retry import RetryPolicy
from ledger_sync.services.sync_service import SyncOrchestrator

TAX_RATE = Decimal("0.09")
CENT = Decimal("0.01")


def _money(value) -> float:
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


class FakeLedger(BaseLedgerConnector):
    """
    In-memory ledger speaking the connector contract.

    Records are kept as raw wire dictionaries and decoded on the way out, so
    tests can seed malformed items. Invoice totals and line amounts are
    recomputed on every write the way the real ledger does.
    """

    def __init__(self):
        super().__init__({"base_url": "memory://ledger"})
        self.records = {entity_type: {} for entity_type in LEDGER_COLLECTIONS}
        self.calls = []
        self.rules = []
        self.gate = None
        self.idempotency_keys = {}
        self.reachable = True
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return f"/Date({int(self._clock.timestamp() * 1000)}+0000)/"

    def _id_field(self, entity_type):
        return LEDGER_COLLECTIONS[entity_type][1]

    def seed(self, entity_type, payload, compute=True):
        record = dict(payload)
        id_field = self._id_field(entity_type)
        record.setdefault(id_field, str(uuid.uuid4()))
        if compute:
            self._complete(entity_type, record)
        record["UpdatedDateUTC"] = self._tick()
        self.records[entity_type][record[id_field]] = record
        return record

    def edit(self, entity_type, remote_id, **changes):
        record = self.records[entity_type][remote_id]
        record.update(changes)
        record["UpdatedDateUTC"] = self._tick()
        return record

    def fail(self, method, entity_type, result, times=1, when=None):
        """Answer the next matching call(s) with ``result`` instead of serving it."""
        self.rules.append({"method": method, "entity_type": entity_type, "result": result,
                           "times": times, "when": when})

    def _scripted(self, method, entity_type, subject):
        for rule in self.rules:
            if rule["method"] != method or rule["entity_type"] != entity_type or rule["times"] == 0:
                continue
            if rule["when"] is not None and not rule["when"](subject):
                continue
            rule["times"] -= 1
            return rule["result"]
        return None

    def _complete(self, entity_type, record):
        if entity_type == "invoice":
            subtotal = Decimal("0")
            tax = Decimal("0")
            for line in record.get("LineItems", []):
                amount = Decimal(str(line.get("Quantity", 1))) * Decimal(str(line.get("UnitAmount", 0)))
                line_tax = (amount * TAX_RATE).quantize(CENT, rounding=ROUND_HALF_UP)
                line["LineAmount"] = _money(amount)
                line["TaxAmount"] = _money(line_tax)
                subtotal += amount
                tax += line_tax
            paid = Decimal(str(record.get("AmountPaid", 0)))
            record["SubTotal"] = _money(subtotal)
            record["TotalTax"] = _money(tax)
            record["Total"] = _money(subtotal + tax)
            record["AmountPaid"] = _money(paid)
            record["AmountDue"] = _money(subtotal + tax - paid)
            contact_id = (record.get("Contact") or {}).get("ContactID")
            contact = self.records["contact"].get(contact_id)
            if contact is not None:
                record["Contact"] = {"ContactID": contact_id, "Name": contact["Name"]}
        elif entity_type == "payment":
            record.setdefault("Status", "AUTHORISED")
            record.setdefault("PaymentType", "ACCRECPAYMENT")
            invoice_id = (record.get("Invoice") or {}).get("InvoiceID")
            invoice = self.records["invoice"].get(invoice_id)
            if invoice is not None:
                record["Invoice"] = {"InvoiceID": invoice_id, "InvoiceNumber": invoice.get("InvoiceNumber")}
        elif entity_type == "contact":
            record.setdefault("ContactStatus", "ACTIVE")

    def _decode(self, entity_type, record):
        try:
            return Ok(decode_remote_entity(entity_type, record))
        except MalformedPayloadError as e:
            return TerminalError(TerminalKind.MALFORMED, str(e))

    async def list_entities(self, entity_type, page, page_size, modified_since=None):
        self.calls.append(("list", entity_type, page))
        if self.gate is not None:
            await self.gate.wait()
        scripted = self._scripted("list", entity_type, page)
        if scripted is not None:
            return scripted

        records = list(self.records[entity_type].values())
        if modified_since is not None:
            records = [r for r in records if parse_ledger_datetime(r["UpdatedDateUTC"]) >= modified_since]
        start = (page - 1) * page_size
        chunk = records[start:start + page_size]
        items, rejected = [], []
        for record in chunk:
            try:
                items.append(decode_remote_entity(entity_type, record))
            except MalformedPayloadError as e:
                rejected.append(e)
        return Ok(Page(items=items, has_more=start + page_size < len(records), page=page, rejected=rejected))

    async def get_entity(self, entity_type, remote_id):
        self.calls.append(("get", entity_type, remote_id))
        scripted = self._scripted("get", entity_type, remote_id)
        if scripted is not None:
            return scripted
        record = self.records[entity_type].get(remote_id)
        if record is None:
            return TerminalError(TerminalKind.NOT_FOUND, f"{entity_type} {remote_id} not found", 404)
        return self._decode(entity_type, record)

    async def create_entity(self, entity_type, body, idempotency_key=None):
        self.calls.append(("create", entity_type, body))
        scripted = self._scripted("create", entity_type, body)
        if scripted is not None:
            return scripted
        stored_id = self.idempotency_keys.get(idempotency_key)
        if stored_id is not None and stored_id in self.records[entity_type]:
            return self._decode(entity_type, self.records[entity_type][stored_id])
        record = self.seed(entity_type, body)
        if idempotency_key:
            self.idempotency_keys[idempotency_key] = record[self._id_field(entity_type)]
        return self._decode(entity_type, record)

    async def update_entity(self, entity_type, remote_id, body, idempotency_key=None):
        self.calls.append(("update", entity_type, remote_id, body))
        scripted = self._scripted("update", entity_type, body)
        if scripted is not None:
            return scripted
        record = self.records[entity_type].get(remote_id)
        if record is None:
            return TerminalError(TerminalKind.NOT_FOUND, f"{entity_type} {remote_id} not found", 404)
        record.update(body)
        self._complete(entity_type, record)
        record["UpdatedDateUTC"] = self._tick()
        return self._decode(entity_type, record)

    async def validate_connection(self) -> bool:
        self.calls.append(("validate",))
        return self.reachable

    def writes(self):
        return [call for call in self.calls if call[0] in ("create", "update")]


async def no_sleep(seconds):
    return None


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry_policy(sleeps):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    return RetryPolicy(max_retries=3, base_delay=1.0, max_delay=60.0, default_retry_after=5.0, sleep=record_sleep)


@pytest.fixture
def make_context(db, ledger, retry_policy):
    def factory(**overrides):
        values = {
            "db": db,
            "connector": ledger,
            "correlation_id": "run-1",
            "retry_policy": retry_policy,
            "page_size": 100,
            "batch_size": 50,
            "max_workers": 4,
            "sleep": no_sleep,
        }
        values.update(overrides)
        return SyncContext(**values)

    return factory


@pytest.fixture
def orchestrator(session_factory, ledger):
    return SyncOrchestrator(
        session_factory,
        ledger,
        StaticTokenProvider("test-token"),
        tenant_id="tenant-1",
        retry_policy=RetryPolicy(sleep=no_sleep),
        page_size=2,
        batch_size=2,
        max_workers=2,
        sleep=no_sleep,
    )


@pytest.fixture
def client(orchestrator, session_factory):
    from ledger_sync.main import create_app

    app = create_app(orchestrator=orchestrator, schedules=[])

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(client):
    response = client.post("/token", data={"username": "admin", "password": "changeme"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
