from decimal import Decimal

import pytest

from ledger_sync.connectors.result import TerminalError, TerminalKind
from ledger_sync.exceptions import FatalSyncError
from ledger_sync.models import AuditEntry, Checkpoint, ConflictRecord, Contact, Invoice, Payment, SyncState
from ledger_sync.schemas.ledger import decode_remote_entity
from ledger_sync.services.entity_adapters import get_adapter
from ledger_sync.services.pull_pipeline import PullPipeline
from ledger_sync.services.state_store import CheckpointStore, SyncStateStore
from payloads import contact_payload, invoice_payload


async def pull(make_context, entity_type, correlation_id="run-1", **kwargs):
    run_kwargs = {k: kwargs.pop(k) for k in ("modified_since", "specific_ids", "resume_from") if k in kwargs}
    context = make_context(correlation_id=correlation_id, **kwargs)
    return await PullPipeline(context, get_adapter(entity_type)).run(**run_kwargs)


@pytest.mark.asyncio
async def test_pull_creates_local_records_with_baseline(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("contact", contact_payload("C2", "Globex"))

    counts = await pull(make_context, "contact")

    assert counts.to_dict()["created"] == 2
    assert counts.processed == 2
    contact = db.query(Contact).filter(Contact.remote_id == "C1").one()
    assert contact.name == "Acme Pte Ltd"
    assert contact.city == "Singapore"
    assert contact.is_customer is True

    state = SyncStateStore(db).get_by_entity("contact", contact.id)
    assert state.remote_id == "C1"
    assert state.status == "ACTIVE"
    assert state.sync_origin == "remote"
    assert state.correlation_id == "run-1"
    assert state.last_local_fingerprint == state.last_remote_fingerprint

    audits = db.query(AuditEntry).filter(AuditEntry.correlation_id == "run-1").all()
    assert {(a.operation, a.origin, a.status) for a in audits} == {("CREATE", "remote", "SUCCESS")}
    assert len(audits) == 2


@pytest.mark.asyncio
async def test_second_pull_without_changes_is_a_no_op(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    await pull(make_context, "contact")

    counts = await pull(make_context, "contact", correlation_id="run-2")

    assert (counts.created, counts.updated, counts.skipped) == (0, 0, 1)
    assert db.query(AuditEntry).filter(AuditEntry.correlation_id == "run-2").count() == 0


@pytest.mark.asyncio
async def test_remote_total_change_applies_without_touching_local_notes(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("invoice", invoice_payload("I1", "INV-001", "C1"))
    await pull(make_context, "contact")
    await pull(make_context, "invoice")

    invoice = db.query(Invoice).filter(Invoice.invoice_number == "INV-001").one()
    assert invoice.total == Decimal("218.00")
    assert [line.line_amount for line in invoice.line_items] == [Decimal("200.00")]
    baseline_local = SyncStateStore(db).get_by_entity("invoice", invoice.id).last_local_fingerprint

    # local-only field edited, remote total changed independently
    invoice.notes = "Customer asked for split billing"
    db.commit()
    assert get_adapter("invoice").local_fingerprint(invoice) == baseline_local
    ledger.edit("invoice", "I1", Total=500.0)

    counts = await pull(make_context, "invoice", correlation_id="run-2")

    assert counts.updated == 1
    assert counts.conflicts == 0
    db.expire_all()
    invoice = db.query(Invoice).filter(Invoice.invoice_number == "INV-001").one()
    assert invoice.total == Decimal("500.00")
    assert invoice.notes == "Customer asked for split billing"
    assert invoice.contact.remote_id == "C1"


@pytest.mark.asyncio
async def test_invoice_without_synced_contact_is_dependency_missing(db, ledger, make_context):
    ledger.seed("invoice", invoice_payload("I1", "INV-001", "C-unknown"))

    counts = await pull(make_context, "invoice")

    assert counts.errors == 1
    assert counts.error_breakdown == {"dependency_missing": 1}
    assert "sync contacts first" in counts.messages[0]
    assert db.query(Invoice).count() == 0
    entry = db.query(AuditEntry).one()
    assert entry.status == "ERROR"
    assert entry.remote_id == "I1"


@pytest.mark.asyncio
async def test_payment_resolves_invoice_by_number_when_id_is_unknown(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("invoice", invoice_payload("I1", "INV-001", "C1"))
    ledger.seed("payment", {
        "PaymentID": "P1",
        "Date": "/Date(1714608000000+0000)/",
        "Amount": 50,
        "Reference": "Bank transfer",
        "Invoice": {"InvoiceID": "I-archived", "InvoiceNumber": "INV-001"},
        "Account": {"Code": "090"},
    }, compute=False)
    await pull(make_context, "contact")
    await pull(make_context, "invoice")

    counts = await pull(make_context, "payment")

    assert counts.created == 1
    payment = db.query(Payment).one()
    assert payment.invoice.invoice_number == "INV-001"
    assert payment.amount == Decimal("50.00")
    assert payment.account_code == "090"
    assert payment.payment_date.isoformat() == "2024-05-02"


@pytest.mark.asyncio
async def test_payment_number_fallback_respects_invoice_type(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("invoice", invoice_payload("I-bill", "INV-7", "C1", Type="ACCPAY"))
    ledger.seed("invoice", invoice_payload("I-sale", "INV-7", "C1"))
    for payment_id, payment_type in (("P-out", "ACCPAYPAYMENT"), ("P-in", "ACCRECPAYMENT")):
        ledger.seed("payment", {
            "PaymentID": payment_id,
            "Date": "2024-05-02",
            "Amount": 20,
            "PaymentType": payment_type,
            "Invoice": {"InvoiceID": "I-archived", "InvoiceNumber": "INV-7"},
        }, compute=False)
    await pull(make_context, "contact")
    await pull(make_context, "invoice")

    counts = await pull(make_context, "payment")

    assert counts.created == 2
    paid = {p.remote_id: p.invoice.invoice_type for p in db.query(Payment).all()}
    assert paid == {"P-out": "ACCPAY", "P-in": "ACCREC"}


@pytest.mark.asyncio
async def test_both_sides_changed_records_conflict_and_leaves_data_alone(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    await pull(make_context, "contact")
    contact = db.query(Contact).one()
    original_email = contact.email
    contact.name = "Acme (Local Rename)"
    db.commit()
    ledger.edit("contact", "C1", EmailAddress="billing@acme.test")

    counts = await pull(make_context, "contact", correlation_id="run-2")

    assert counts.conflicts == 1
    assert counts.errors == 0
    db.expire_all()
    contact = db.query(Contact).one()
    assert contact.name == "Acme (Local Rename)"
    assert contact.email == original_email
    state = db.query(SyncState).one()
    assert state.status == "CONFLICT"
    conflict = db.query(ConflictRecord).one()
    assert conflict.phase == "pull"
    assert conflict.correlation_id == "run-2"
    assert conflict.remote_snapshot["EmailAddress"] == "billing@acme.test"
    assert conflict.local_snapshot["name"] == "Acme (Local Rename)"
    assert db.query(AuditEntry).filter(AuditEntry.operation == "CONFLICT").one().status == "PENDING_RESOLUTION"

    # an unresolved conflict is counted again but not recorded twice
    counts = await pull(make_context, "contact", correlation_id="run-3")
    assert counts.conflicts == 1
    assert db.query(ConflictRecord).count() == 1


@pytest.mark.asyncio
async def test_malformed_items_are_rejected_one_by_one(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("contact", {"ContactID": "C2"})
    ledger.seed("contact", contact_payload("C3", "Initech"))

    counts = await pull(make_context, "contact")

    assert counts.created == 2
    assert counts.error_breakdown == {"malformed": 1}
    assert db.query(Contact).count() == 2


@pytest.mark.asyncio
async def test_dry_run_classifies_without_writing(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("invoice", invoice_payload("I1", "INV-001", "C-unknown"))

    contacts = await pull(make_context, "contact", dry_run=True)
    invoices = await pull(make_context, "invoice", dry_run=True)

    assert contacts.created == 1
    assert invoices.error_breakdown == {"dependency_missing": 1}
    assert db.query(Contact).count() == 0
    assert db.query(SyncState).count() == 0
    assert db.query(AuditEntry).count() == 0
    assert db.query(Checkpoint).count() == 0


@pytest.mark.asyncio
async def test_interrupted_pull_resumes_after_last_completed_page(db, ledger, make_context):
    for i in range(1, 6):
        ledger.seed("contact", contact_payload(f"C{i}", f"Contact {i}"))
    ledger.fail("list", "contact", TerminalError(TerminalKind.OTHER, "Unexpected ledger response 409", 409),
                when=lambda page: page == 2)

    first = await pull(make_context, "contact", page_size=2, batch_size=2)

    assert first.created == 2
    assert first.errors == 1
    checkpoint = CheckpointStore(db).get("run-1", "contact")
    assert (checkpoint.last_page, checkpoint.last_remote_id, checkpoint.records_committed) == (1, "C2", 2)

    calls_before = len(ledger.calls)
    second = await pull(make_context, "contact", correlation_id="run-2", page_size=2, batch_size=2,
                        resume_from=checkpoint)

    assert second.created == 3
    assert second.skipped == 0
    assert [call[2] for call in ledger.calls[calls_before:]] == [2, 3]
    assert CheckpointStore(db).get("run-2", "contact").last_page == 3

    adapter = get_adapter("contact")
    states = {state.remote_id: state for state in db.query(SyncState).all()}
    assert set(states) == {f"C{i}" for i in range(1, 6)}
    for remote_id, record in ledger.records["contact"].items():
        remote = decode_remote_entity("contact", record)
        assert states[remote_id].last_remote_fingerprint == adapter.remote_fingerprint(remote)


@pytest.mark.asyncio
async def test_resume_within_a_page_skips_committed_records(db, ledger, make_context):
    for i in range(1, 6):
        ledger.seed("contact", contact_payload(f"C{i}", f"Contact {i}"))
    checkpoint = Checkpoint(correlation_id="earlier-run", entity_type="contact", last_page=0, last_remote_id="C2")

    counts = await pull(make_context, "contact", page_size=4, batch_size=2, resume_from=checkpoint)

    assert counts.created == 3
    assert {c.remote_id for c in db.query(Contact).all()} == {"C3", "C4", "C5"}


@pytest.mark.asyncio
async def test_specific_remote_ids_are_fetched_individually(db, ledger, make_context):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("contact", contact_payload("C2", "Globex"))

    counts = await pull(make_context, "contact", specific_ids=["C2", "C-missing"])

    assert counts.created == 1
    assert counts.errors == 1
    assert db.query(Contact).one().remote_id == "C2"
    assert not any(call[0] == "list" for call in ledger.calls)


@pytest.mark.asyncio
async def test_rejected_credentials_abort_the_pull(ledger, make_context):
    ledger.fail("list", "contact", TerminalError(TerminalKind.UNAUTHENTICATED, "Access token rejected by ledger (401)", 401))

    with pytest.raises(FatalSyncError):
        await pull(make_context, "contact")
