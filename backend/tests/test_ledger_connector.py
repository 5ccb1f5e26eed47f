import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from email.utils import format_datetime

import httpx
import pytest

from ledger_sync.connectors.ledger_connector import LedgerConnector, parse_retry_after
from ledger_sync.connectors.result import Ok, RetryableError, TerminalError, TerminalKind
from ledger_sync.connectors.token_provider import StaticTokenProvider
from ledger_sync.schemas.ledger import RemoteContact, RemoteInvoice

CONFIG = {"base_url": "https://ledger.test/api.xro/2.0/", "tenant_id": "tenant-1"}

CONTACT = {
    "ContactID": "c-1",
    "Name": "Acme Pte Ltd",
    "EmailAddress": "ap@acme.test",
    "IsCustomer": True,
    "Phones": [{"PhoneType": "MOBILE", "PhoneNumber": ""}, {"PhoneType": "DEFAULT", "PhoneNumber": "+65 6000 0000"}],
    "UpdatedDateUTC": "/Date(1518685950940+0000)/",
}


def make_connector(handler, token="token-123"):
    return LedgerConnector(CONFIG, StaticTokenProvider(token), transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_list_entities_decodes_items_and_rejects_malformed():
    seen = {}

    def handler(request: httpx.Request):
        seen["request"] = request
        return httpx.Response(200, json={
            "Contacts": [CONTACT, {"ContactID": "c-2"}],
            "pagination": {"page": 1, "pageSize": 2, "pageCount": 3},
        })

    connector = make_connector(handler)
    result = await connector.list_entities("contact", 1, 2)
    await connector.close()

    request = seen["request"]
    assert request.url.path == "/api.xro/2.0/Contacts"
    assert request.url.params["page"] == "1"
    assert request.url.params["pageSize"] == "2"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert request.headers["Xero-tenant-id"] == "tenant-1"

    assert isinstance(result, Ok)
    page = result.value
    assert page.has_more is True
    assert len(page.items) == 1
    contact = page.items[0]
    assert isinstance(contact, RemoteContact)
    assert contact.primary_phone() == "+65 6000 0000"
    assert contact.updated_at == datetime(2018, 2, 15, 9, 12, 30, 940000, tzinfo=timezone.utc)
    assert len(page.rejected) == 1
    assert page.rejected[0].remote_id == "c-2"


@pytest.mark.asyncio
async def test_short_page_without_pagination_has_no_more():
    def handler(request):
        assert request.headers["If-Modified-Since"] == "2024-05-01T08:00:00"
        return httpx.Response(200, json={"Contacts": [CONTACT]})

    connector = make_connector(handler)
    result = await connector.list_entities(
        "contact", 1, 100, modified_since=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
    )
    await connector.close()
    assert result.value.has_more is False


@pytest.mark.asyncio
async def test_rate_limit_is_retryable_with_retry_after():
    connector = make_connector(lambda request: httpx.Response(429, headers={"Retry-After": "7"}))
    result = await connector.get_entity("contact", "c-1")
    await connector.close()
    assert isinstance(result, RetryableError)
    assert result.status_code == 429
    assert result.retry_after == 7.0


@pytest.mark.asyncio
async def test_server_error_and_timeout_are_retryable():
    connector = make_connector(lambda request: httpx.Response(503))
    assert isinstance(await connector.get_entity("contact", "c-1"), RetryableError)
    await connector.close()

    def timeout(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    connector = make_connector(timeout)
    result = await connector.get_entity("contact", "c-1")
    await connector.close()
    assert isinstance(result, RetryableError)
    assert "Timeout" in result.message


@pytest.mark.asyncio
async def test_validation_errors_are_terminal_with_details():
    def handler(request):
        assert request.method == "PUT"
        assert request.url.params["summarizeErrors"] == "false"
        assert json.loads(request.content) == {"Contacts": [{"Name": "Acme"}]}
        return httpx.Response(400, json={
            "Message": "A validation exception occurred",
            "Elements": [{"ValidationErrors": [{"Message": "Email address must be valid."}]}],
        })

    connector = make_connector(handler)
    result = await connector.create_entity("contact", {"Name": "Acme"})
    await connector.close()
    assert isinstance(result, TerminalError)
    assert result.kind == TerminalKind.VALIDATION
    assert result.message == "A validation exception occurred"
    assert result.details == ("Email address must be valid.",)


@pytest.mark.asyncio
async def test_writes_carry_idempotency_key():
    seen = []

    def handler(request):
        seen.append((request.method, request.headers.get("Idempotency-Key")))
        return httpx.Response(200, json={"Contacts": [CONTACT]})

    connector = make_connector(handler)
    await connector.create_entity("contact", {"Name": "Acme"}, idempotency_key="key-1")
    await connector.update_entity("contact", "c-1", {"Name": "Acme"}, idempotency_key="key-2")
    await connector.create_entity("contact", {"Name": "Acme"})
    await connector.close()
    assert seen == [("PUT", "key-1"), ("POST", "key-2"), ("PUT", None)]


@pytest.mark.asyncio
async def test_item_level_errors_in_success_response():
    def handler(request):
        return httpx.Response(200, json={"Invoices": [{
            "HasErrors": True,
            "ValidationErrors": [{"Message": "Account code '999' is not a valid code."}],
        }]})

    connector = make_connector(handler)
    result = await connector.update_entity("invoice", "inv-1", {"Type": "ACCREC"})
    await connector.close()
    assert result.kind == TerminalKind.VALIDATION
    assert result.details == ("Account code '999' is not a valid code.",)


@pytest.mark.asyncio
async def test_update_posts_to_item_and_decodes_invoice():
    def handler(request):
        assert request.method == "POST"
        assert request.url.path.endswith("/Invoices/inv-1")
        return httpx.Response(200, json={"Invoices": [{
            "InvoiceID": "inv-1",
            "Type": "ACCREC",
            "InvoiceNumber": "INV-001",
            "Contact": {"ContactID": "c-1"},
            "Status": "AUTHORISED",
            "Date": "/Date(1714521600000+0000)/",
            "Total": 109.0,
            "LineItems": [{"Description": "Consulting", "Quantity": 1, "UnitAmount": 100}],
        }]})

    connector = make_connector(handler)
    result = await connector.update_entity("invoice", "inv-1", {})
    await connector.close()
    invoice = result.value
    assert isinstance(invoice, RemoteInvoice)
    assert invoice.issue_date.isoformat() == "2024-05-01"
    assert invoice.total == Decimal("109")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, kind",
    [(401, TerminalKind.UNAUTHENTICATED), (403, TerminalKind.FORBIDDEN), (404, TerminalKind.NOT_FOUND)],
)
async def test_client_errors_map_to_terminal_kinds(status_code, kind):
    connector = make_connector(lambda request: httpx.Response(status_code))
    result = await connector.get_entity("payment", "p-1")
    await connector.close()
    assert result.kind == kind


@pytest.mark.asyncio
async def test_missing_token_fails_without_calling_ledger():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    connector = make_connector(handler, token=None)
    result = await connector.list_entities("contact", 1, 10)
    await connector.close()
    assert result.kind == TerminalKind.UNAUTHENTICATED
    assert calls == []


@pytest.mark.asyncio
async def test_validate_connection():
    connector = make_connector(lambda request: httpx.Response(200, json={"Organisations": []}))
    assert await connector.validate_connection() is True
    await connector.close()


def test_parse_retry_after_accepts_seconds_and_http_dates():
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None
    later = datetime.now(timezone.utc) + timedelta(seconds=30)
    assert 20 <= parse_retry_after(format_datetime(later, usegmt=True)) <= 31
