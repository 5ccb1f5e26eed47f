from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger_sync.exceptions import FingerprintError
from ledger_sync.services.fingerprint import canonicalize, fingerprint, normalize_number


def test_key_order_does_not_matter():
    a = {"name": "Acme", "total": Decimal("10.5"), "lines": [{"qty": 1, "price": 2}]}
    b = {"lines": [{"price": 2, "qty": 1}], "total": Decimal("10.5"), "name": "Acme"}
    assert fingerprint(a) == fingerprint(b)


def test_numeric_formatting_is_normalized():
    assert fingerprint({"total": 10.5}) == fingerprint({"total": Decimal("10.50")})
    assert fingerprint({"total": 0.1 + 0.2}) == fingerprint({"total": Decimal("0.3")})
    assert normalize_number(Decimal("1.23456")) == "1.2346"
    assert normalize_number(2) == "2.0000"


def test_different_values_differ():
    assert fingerprint({"total": Decimal("500")}) != fingerprint({"total": Decimal("400")})


def test_line_order_is_significant():
    first = {"line_items": [{"description": "A"}, {"description": "B"}]}
    second = {"line_items": [{"description": "B"}, {"description": "A"}]}
    assert fingerprint(first) != fingerprint(second)


def test_datetimes_are_compared_in_utc():
    utc = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    plus_two = utc.astimezone(timezone(timedelta(hours=2)))
    assert canonicalize(utc) == canonicalize(plus_two)
    assert canonicalize(date(2024, 3, 1)) == "2024-03-01"


def test_missing_required_key_is_structural_error():
    with pytest.raises(FingerprintError, match="invoice_number"):
        fingerprint({"status": "DRAFT"}, required=("invoice_number", "status"))


def test_non_mapping_and_unsupported_values_are_rejected():
    with pytest.raises(FingerprintError):
        fingerprint(["not", "a", "mapping"])
    with pytest.raises(FingerprintError):
        fingerprint({"value": object()})
    with pytest.raises(FingerprintError):
        fingerprint({"value": float("nan")})


def test_fingerprint_error_is_a_value_error():
    with pytest.raises(ValueError):
        fingerprint({}, required=("name",))
