"""
Tests for the document normalizers and the source-kind registry.
"""

from dataclasses import fields
from datetime import date

import pytest

from rental_rag.documents import (
    SOURCE_KINDS,
    customer_to_document,
    fine_to_document,
    get_source_kind,
    indexed_source_kinds,
    payment_to_document,
    plate_to_document,
    rental_to_document,
    vehicle_to_document,
)
from rental_rag.documents.base import SourceKind, format_date, format_money
from rental_rag.errors import ValidationError


def test_customer_document(sample_customers):
    doc = customer_to_document(sample_customers[0])

    assert doc.page_content == "Customer: Alice Smith. Email: alice@example.com. Status: active"
    assert doc.metadata["entity_type"] == "customer"
    assert doc.metadata["customer_id"] == "c1"
    assert doc.metadata["email"] == "alice@example.com"


def test_blocked_customer_without_reason():
    doc = customer_to_document({"id": "c3", "name": "Carol", "is_blocked": True})
    assert "Blocked: Yes, Reason: Not specified" in doc.page_content


def test_customer_missing_name_is_invalid():
    with pytest.raises(ValidationError, match="customers"):
        customer_to_document({"id": "c1", "email": "x@example.com"})


def test_non_mapping_record_is_invalid():
    with pytest.raises(ValidationError):
        vehicle_to_document(["not", "a", "record"])


def test_vehicle_document(sample_vehicles):
    doc = vehicle_to_document(sample_vehicles[0])

    assert doc.page_content.startswith("Vehicle: AB12 CDE. 2022 Toyota Corolla. Color: Silver")
    assert "Rental rates: £45/day, £250/week" in doc.page_content
    assert "MOT due: 15 Mar 2026" in doc.page_content
    assert doc.metadata["registration"] == "AB12 CDE"
    assert doc.metadata["year"] == 2022


def test_rental_without_number_uses_short_id():
    doc = rental_to_document({
        "id": "3f2a9c1e-0000-4000-8000-000000000000",
        "start_date": "2026-02-01",
        "monthly_amount": 650,
        "customer": {"name": "Alice Smith"},
        "vehicle": {"reg": "AB12 CDE", "make": "Toyota", "model": None},
    })

    assert doc.page_content.startswith("Rental 3f2a9c1e. Customer: Alice Smith. Vehicle: AB12 CDE Toyota")
    assert "Start: 01 Feb 2026" in doc.page_content
    assert "Monthly amount: £650" in doc.page_content
    assert doc.metadata["rental_number"] is None


def test_rental_with_number_and_no_joins():
    doc = rental_to_document({
        "id": "r1",
        "rental_number": "R-1001",
        "start_date": date(2026, 2, 1),
        "monthly_amount": 650.0,
        "customer": None,
        "vehicle": None,
    })
    assert doc.page_content.startswith("Rental #R-1001. Start: 01 Feb 2026")
    assert "Customer:" not in doc.page_content


def test_payment_refund_amount_only_with_refund_status():
    base = {"id": "p1", "amount": 120.5, "payment_type": "rental", "payment_date": "2026-02-03"}

    without_status = payment_to_document({**base, "refund_amount": 20})
    with_status = payment_to_document({**base, "refund_status": "partial", "refund_amount": 20})

    assert without_status.page_content.startswith("Payment of £120.5. Type: rental. Date: 03 Feb 2026")
    assert "Refund amount" not in without_status.page_content
    assert "Refund status: partial. Refund amount: £20" in with_status.page_content


def test_fine_document():
    doc = fine_to_document({
        "id": "f1",
        "type": "PCN",
        "amount": 65,
        "issue_date": "2026-01-10",
        "due_date": "2026-02-10",
        "status": "open",
        "customer": {"name": "Bob Jones"},
        "vehicle": {"reg": "XY34 ZZZ"},
    })
    assert doc.page_content == (
        "Fine: PCN. Amount: £65. Issue date: 10 Jan 2026. Due date: 10 Feb 2026. "
        "Status: open. Customer: Bob Jones. Vehicle: XY34 ZZZ"
    )
    assert doc.metadata["fine_id"] == "f1"


def test_plate_falls_back_to_assigned_vehicle():
    doc = plate_to_document({"id": "pl1", "plate_number": "AB12 CDE", "assigned_vehicle_id": "v9"})
    assert doc.metadata["vehicle_id"] == "v9"


def test_normalizers_are_deterministic(sample_vehicles):
    first = vehicle_to_document(sample_vehicles[1])
    second = vehicle_to_document(dict(sample_vehicles[1]))
    assert first.page_content == second.page_content
    assert first.metadata == second.metadata


def test_numeric_ids_are_strings():
    doc = customer_to_document({"id": 42, "name": "Numbered"})
    assert doc.metadata["customer_id"] == "42"


@pytest.mark.parametrize("value,expected", [
    (250, "£250"),
    (250.0, "£250"),
    (12.5, "£12.5"),
    (12.25, "£12.25"),
])
def test_format_money(value, expected):
    assert format_money(value) == expected


def test_format_date_keeps_unparseable_strings():
    assert format_date("next week") == "next week"
    assert format_date(None) == ""
    assert format_date("2026-03-01T10:00:00Z") == "01 Mar 2026"


def test_registry():
    assert indexed_source_kinds() == ["customers", "vehicles", "rentals", "payments", "fines", "plates"]
    assert get_source_kind("invoices") is None
    assert SOURCE_KINDS["rentals"].selection.table == "rentals"
    assert [j.name for j in SOURCE_KINDS["payments"].selection.joins] == ["customer", "rental", "vehicle"]


def test_registry_entries_build_their_documents(sample_customers, sample_vehicles):
    customer = SOURCE_KINDS["customers"].to_document(sample_customers[0])
    vehicle = SOURCE_KINDS["vehicles"].to_document(sample_vehicles[0])

    assert customer.metadata["entity_type"] == "customer"
    assert vehicle.metadata["entity_type"] == "vehicle"
    assert {f.name for f in fields(SourceKind)} == {"name", "normalizer", "selection"}
