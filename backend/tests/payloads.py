"""Ledger wire payloads shared by the test modules."""


def contact_payload(contact_id, name, **extra):
    return {
        "ContactID": contact_id,
        "Name": name,
        "EmailAddress": f"{contact_id.lower()}@example.test",
        "IsCustomer": True,
        "Addresses": [{"AddressType": "STREET", "AddressLine1": "1 Raffles Place", "City": "Singapore"}],
        **extra,
    }


def invoice_payload(invoice_id, number, contact_id, lines=None, **extra):
    return {
        "InvoiceID": invoice_id,
        "Type": "ACCREC",
        "InvoiceNumber": number,
        "Contact": {"ContactID": contact_id},
        "Status": "AUTHORISED",
        "CurrencyCode": "SGD",
        "Date": "2024-05-01",
        "DueDate": "2024-05-31",
        "LineItems": lines or [{"Description": "Consulting", "Quantity": 2, "UnitAmount": 100,
                                "TaxType": "OUTPUT2", "AccountCode": "200"}],
        **extra,
    }
