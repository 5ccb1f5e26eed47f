import asyncio
from datetime import date
from decimal import Decimal

import pytest

from ledger_sync.connectors.result import TerminalError, TerminalKind
from ledger_sync.connectors.token_provider import StaticTokenProvider
from ledger_sync.exceptions import SyncAlreadyRunningError
from ledger_sync.models import AuditEntry, Checkpoint, Contact, Invoice, InvoiceLineItem, SyncRun, SyncState
from ledger_sync.schemas.sync import SyncOptions
from ledger_sync.services.sync_service import SyncOrchestrator
from payloads import contact_payload, invoice_payload


def add_local_contact(session_factory, name):
    with session_factory() as db:
        contact = Contact(name=name, email=f"{name.lower().replace(' ', '.')}@example.test")
        db.add(contact)
        db.commit()
        return contact.id


def count(session_factory, model):
    with session_factory() as db:
        return db.query(model).count()


@pytest.mark.asyncio
async def test_full_cycle_pulls_then_pushes(orchestrator, ledger, session_factory):
    ledger.seed("contact", contact_payload("C1", "Remote Co"))
    add_local_contact(session_factory, "Local Co")

    summary = await orchestrator.start_sync("both", ["contact"], triggered_by="admin")

    assert summary.status == "SUCCESS"
    assert summary.direction == "both"
    assert summary.records_created == 2
    assert summary.summary["pull"]["contact"]["created"] == 1
    assert summary.summary["push"]["contact"]["created"] == 1
    assert len(ledger.records["contact"]) == 2
    with session_factory() as db:
        run = db.query(SyncRun).one()
        assert run.status == "SUCCESS"
        assert run.triggered_by == "admin"
        assert run.end_time is not None
        assert {a.correlation_id for a in db.query(AuditEntry).all()} == {summary.correlation_id}


@pytest.mark.asyncio
async def test_second_cycle_without_changes_does_nothing(orchestrator, ledger, session_factory):
    ledger.seed("contact", contact_payload("C1", "Remote Co"))
    add_local_contact(session_factory, "Local Co")
    await orchestrator.start_sync("both", ["contact"])
    writes = len(ledger.writes())

    summary = await orchestrator.start_sync("both", ["contact"])

    assert summary.status == "SUCCESS"
    assert (summary.records_created, summary.records_updated) == (0, 0)
    assert summary.summary["pull"]["contact"]["skipped"] == 2
    assert summary.summary["push"]["contact"]["processed"] == 0
    assert len(ledger.writes()) == writes


@pytest.mark.asyncio
async def test_entity_types_run_in_dependency_order(orchestrator, ledger):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("invoice", invoice_payload("I1", "INV-001", "C1"))

    summary = await orchestrator.start_sync("pull", ["invoice", "contact"])

    assert summary.status == "SUCCESS"
    assert summary.entity_types == ["contact", "invoice"]
    assert [call[1] for call in ledger.calls] == ["contact", "invoice"]
    assert summary.summary["pull"]["invoice"]["created"] == 1


@pytest.mark.asyncio
async def test_per_record_errors_make_partial_success(orchestrator, ledger):
    ledger.seed("invoice", invoice_payload("I1", "INV-001", "C-unknown"))

    summary = await orchestrator.start_sync("pull", ["invoice"])

    assert summary.status == "PARTIAL_SUCCESS"
    assert summary.records_failed == 1
    assert summary.summary["totals"]["error_breakdown"] == {"dependency_missing": 1}


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_any_remote_call(session_factory, ledger):
    orchestrator = SyncOrchestrator(session_factory, ledger, StaticTokenProvider(None), tenant_id="tenant-1")

    summary = await orchestrator.start_sync("both", ["contact"])

    assert summary.status == "ERROR"
    assert "access token" in summary.error_message
    assert ledger.calls == []
    assert orchestrator.running() == []

    status = await orchestrator.check_connection()
    assert status.connected is False
    assert status.message == "No valid access token"
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_rejected_credentials_mid_run_abort_with_error(orchestrator, ledger):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.fail("list", "contact", TerminalError(TerminalKind.UNAUTHENTICATED, "Access token rejected by ledger (401)", 401))

    summary = await orchestrator.start_sync("both", ["contact"])

    assert summary.status == "ERROR"
    assert "Ledger refused access" in summary.error_message
    assert summary.summary is not None
    assert not orchestrator.guard.running()


@pytest.mark.asyncio
async def test_dry_run_reports_what_a_live_run_does(orchestrator, ledger, session_factory):
    for i in range(1, 4):
        ledger.seed("contact", contact_payload(f"C{i}", f"Remote {i}"))
    add_local_contact(session_factory, "Local Co")

    dry = await orchestrator.start_sync("both", ["contact"], SyncOptions(dry_run=True))

    assert ledger.writes() == []
    assert count(session_factory, Contact) == 1
    assert count(session_factory, SyncState) == 0
    assert count(session_factory, AuditEntry) == 0
    assert count(session_factory, Checkpoint) == 0
    with session_factory() as db:
        assert db.query(SyncRun).one().dry_run is True

    live = await orchestrator.start_sync("both", ["contact"])

    def outcome(summary):
        return (summary.records_created, summary.records_updated, summary.records_skipped,
                summary.conflicts_detected, summary.records_failed)

    assert outcome(dry) == outcome(live) == (4, 0, 0, 0, 0)
    assert dry.summary["pull"] == live.summary["pull"]
    assert dry.summary["push"] == live.summary["push"]


@pytest.mark.asyncio
async def test_dry_run_matches_live_run_across_dependent_types(orchestrator, ledger, session_factory):
    ledger.seed("contact", contact_payload("C1", "Remote Co"))
    ledger.seed("invoice", invoice_payload("I1", "INV-001", "C1"))
    with session_factory() as db:
        contact = Contact(name="Local Co", email="local.co@example.test")
        invoice = Invoice(invoice_number="INV-900", invoice_type="ACCREC", contact=contact,
                          status="DRAFT", currency="SGD", issue_date=date(2024, 6, 1))
        invoice.line_items = [InvoiceLineItem(position=0, description="Audit", quantity=Decimal("1"),
                                              unit_price=Decimal("300"))]
        db.add_all([contact, invoice])
        db.commit()

    dry = await orchestrator.start_sync("both", ["contact", "invoice"], SyncOptions(dry_run=True))

    assert ledger.writes() == []
    assert count(session_factory, SyncState) == 0
    assert dry.status == "SUCCESS"

    live = await orchestrator.start_sync("both", ["contact", "invoice"])

    assert live.status == "SUCCESS"
    assert dry.summary["pull"] == live.summary["pull"]
    assert dry.summary["push"] == live.summary["push"]
    assert dry.summary["pull"]["invoice"]["created"] == 1
    assert dry.summary["push"]["invoice"]["created"] == 1


@pytest.mark.asyncio
async def test_overlapping_run_for_same_entity_type_is_refused(orchestrator, ledger):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.gate = asyncio.Event()

    first = asyncio.create_task(orchestrator.start_sync("pull", ["contact"]))
    while not ledger.calls:
        await asyncio.sleep(0)

    with pytest.raises(SyncAlreadyRunningError):
        await orchestrator.start_sync("push", ["contact", "invoice"])
    assert len(orchestrator.running()) == 1

    ledger.gate.set()
    summary = await first
    assert summary.status == "SUCCESS"
    assert orchestrator.running() == []

    # released once the first run finished
    assert (await orchestrator.start_sync("pull", ["contact"])).status == "SUCCESS"


@pytest.mark.asyncio
async def test_cancelled_run_stops_at_batch_boundary(orchestrator, ledger):
    for i in range(1, 7):
        ledger.seed("contact", contact_payload(f"C{i}", f"Contact {i}"))
    ledger.gate = asyncio.Event()

    task = asyncio.create_task(orchestrator.start_sync("pull", ["contact"]))
    while not ledger.calls:
        await asyncio.sleep(0)
    [cid] = orchestrator.running()

    live = orchestrator.get_run_status(cid)
    assert live["status"] == "RUNNING"
    assert live["phase"] == "pull"
    assert live["entity_type"] == "contact"

    assert orchestrator.cancel_run(cid) is True
    ledger.gate.set()
    summary = await task

    assert summary.status == "PARTIAL_SUCCESS"
    assert summary.cancelled is True
    assert summary.records_created == 0
    assert summary.summary["cancelled"] is True
    assert orchestrator.cancel_run(cid) is False


@pytest.mark.asyncio
async def test_run_status_after_completion_comes_from_the_run_record(orchestrator, ledger):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))

    summary = await orchestrator.start_sync("pull", ["contact"])
    status = orchestrator.get_run_status(summary.correlation_id)

    assert status["status"] == "SUCCESS"
    assert status["processed"] == 1
    assert status["succeeded"] == 1
    assert orchestrator.get_run_status("no-such-run") is None


@pytest.mark.asyncio
async def test_pull_resumes_from_an_earlier_runs_checkpoint(orchestrator, ledger):
    for i in range(1, 6):
        ledger.seed("contact", contact_payload(f"C{i}", f"Contact {i}"))
    ledger.fail("list", "contact", TerminalError(TerminalKind.OTHER, "Unexpected ledger response 409", 409),
                when=lambda page: page == 2)

    first = await orchestrator.start_sync("pull", ["contact"])
    assert first.status == "PARTIAL_SUCCESS"
    assert first.records_created == 2
    calls_before = len(ledger.calls)

    second = await orchestrator.start_sync("pull", ["contact"], SyncOptions(resume_from=first.correlation_id))

    assert second.status == "SUCCESS"
    assert second.records_created == 3
    assert [call[2] for call in ledger.calls[calls_before:]] == [2, 3]


@pytest.mark.asyncio
async def test_specific_ids_limit_the_pull(orchestrator, ledger, session_factory):
    ledger.seed("contact", contact_payload("C1", "Acme Pte Ltd"))
    ledger.seed("contact", contact_payload("C2", "Globex"))

    summary = await orchestrator.start_sync("pull", ["contact"], SyncOptions(specific_ids=["C2"]))

    assert summary.records_created == 1
    with session_factory() as db:
        assert [c.remote_id for c in db.query(Contact).all()] == ["C2"]


@pytest.mark.asyncio
@pytest.mark.parametrize("direction,entity_types,options", [
    ("sideways", ["contact"], None),
    ("pull", ["contact", "project"], None),
    ("pull", ["contact", "invoice"], SyncOptions(specific_ids=["C1"])),
])
async def test_invalid_requests_are_rejected(orchestrator, ledger, direction, entity_types, options):
    with pytest.raises(ValueError):
        await orchestrator.start_sync(direction, entity_types, options)
    assert ledger.calls == []
