"""
Document loaders converting rental business records to searchable text.
Each loader maps one record to a Document with page_content and metadata.
"""

from typing import Any, Dict, List, Optional

from langchain_core.documents import Document

from rental_rag.documents.base import (
    Join,
    RecordSelection,
    SourceKind,
    format_date,
    format_money,
    join_sentences,
    parse_record,
)
from rental_rag.documents.records import (
    CustomerRecord,
    FineRecord,
    PaymentRecord,
    PlateRecord,
    RentalRecord,
    VehicleRecord,
)


def customer_to_document(record: Any) -> Document:
    """Convert a customer record to searchable text."""
    customer = parse_record(CustomerRecord, record, "customers")

    parts = [f"Customer: {customer.name}"]
    if customer.email:
        parts.append(f"Email: {customer.email}")
    if customer.phone:
        parts.append(f"Phone: {customer.phone}")
    if customer.customer_type:
        parts.append(f"Type: {customer.customer_type}")
    if customer.type:
        parts.append(f"Category: {customer.type}")
    if customer.status:
        parts.append(f"Status: {customer.status}")
    if customer.is_blocked:
        parts.append(f"Blocked: Yes, Reason: {customer.blocked_reason or 'Not specified'}")
    if customer.license_number:
        parts.append(f"License: {customer.license_number}")
    if customer.id_number:
        parts.append(f"ID Number: {customer.id_number}")
    if customer.identity_verification_status:
        parts.append(f"Identity Verification: {customer.identity_verification_status}")

    return Document(
        page_content=join_sentences(parts),
        metadata={
            "entity_type": "customer",
            "customer_id": customer.id,
            "name": customer.name,
            "email": customer.email,
            "status": customer.status,
            "is_blocked": customer.is_blocked,
        },
    )


def vehicle_to_document(record: Any) -> Document:
    """Convert a vehicle record to searchable text."""
    vehicle = parse_record(VehicleRecord, record, "vehicles")
    color = vehicle.colour or vehicle.color
    vehicle_name = " ".join(str(p) for p in (vehicle.year, vehicle.make, vehicle.model) if p)

    parts = [f"Vehicle: {vehicle.reg}", vehicle_name]
    if color:
        parts.append(f"Color: {color}")
    if vehicle.fuel_type:
        parts.append(f"Fuel: {vehicle.fuel_type}")
    if vehicle.status:
        parts.append(f"Status: {vehicle.status}")
    if vehicle.vin:
        parts.append(f"VIN: {vehicle.vin}")

    pricing: List[str] = []
    if vehicle.daily_rent:
        pricing.append(f"{format_money(vehicle.daily_rent)}/day")
    if vehicle.weekly_rent:
        pricing.append(f"{format_money(vehicle.weekly_rent)}/week")
    if vehicle.monthly_rent:
        pricing.append(f"{format_money(vehicle.monthly_rent)}/month")
    if pricing:
        parts.append(f"Rental rates: {', '.join(pricing)}")

    if vehicle.acquisition_type:
        parts.append(f"Acquisition: {vehicle.acquisition_type}")
    if vehicle.mot_due_date:
        parts.append(f"MOT due: {format_date(vehicle.mot_due_date)}")
    if vehicle.tax_due_date:
        parts.append(f"Tax due: {format_date(vehicle.tax_due_date)}")
    if vehicle.is_disposed:
        parts.append("Disposed: Yes")
    if vehicle.description:
        parts.append(f"Description: {vehicle.description}")

    return Document(
        page_content=join_sentences(parts),
        metadata={
            "entity_type": "vehicle",
            "vehicle_id": vehicle.id,
            "registration": vehicle.reg,
            "make": vehicle.make,
            "model": vehicle.model,
            "year": vehicle.year,
            "status": vehicle.status,
        },
    )


def rental_to_document(record: Any) -> Document:
    """Convert a rental record, with its customer and vehicle, to searchable text."""
    rental = parse_record(RentalRecord, record, "rentals")

    if rental.rental_number:
        parts = [f"Rental #{rental.rental_number}"]
    else:
        parts = [f"Rental {rental.id[:8]}"]

    if rental.customer and rental.customer.name:
        parts.append(f"Customer: {rental.customer.name}")
    if rental.vehicle and rental.vehicle.reg:
        vehicle_info = " ".join(p for p in (rental.vehicle.reg, rental.vehicle.make, rental.vehicle.model) if p)
        parts.append(f"Vehicle: {vehicle_info}")

    parts.append(f"Start: {format_date(rental.start_date)}")
    if rental.end_date:
        parts.append(f"End: {format_date(rental.end_date)}")
    if rental.status:
        parts.append(f"Status: {rental.status}")
    parts.append(f"Monthly amount: {format_money(rental.monthly_amount)}")

    if rental.payment_mode:
        parts.append(f"Payment mode: {rental.payment_mode}")
    if rental.approval_status:
        parts.append(f"Approval: {rental.approval_status}")
    if rental.payment_status:
        parts.append(f"Payment status: {rental.payment_status}")
    if rental.insurance_status:
        parts.append(f"Insurance: {rental.insurance_status}")
    if rental.document_status:
        parts.append(f"Documents: {rental.document_status}")
    if rental.pickup_location:
        parts.append(f"Pickup: {rental.pickup_location}")
    if rental.return_location:
        parts.append(f"Return: {rental.return_location}")
    if rental.promo_code:
        parts.append(f"Promo code: {rental.promo_code}")
    if rental.discount_applied:
        parts.append(f"Discount: {format_money(rental.discount_applied)}")

    return Document(
        page_content=join_sentences(parts),
        metadata={
            "entity_type": "rental",
            "rental_id": rental.id,
            "rental_number": rental.rental_number,
            "customer_id": rental.customer_id,
            "vehicle_id": rental.vehicle_id,
            "status": rental.status,
            "monthly_amount": rental.monthly_amount,
        },
    )


def payment_to_document(record: Any) -> Document:
    """Convert a payment record to searchable text."""
    payment = parse_record(PaymentRecord, record, "payments")

    parts = [
        f"Payment of {format_money(payment.amount)}",
        f"Type: {payment.payment_type}",
        f"Date: {format_date(payment.payment_date)}",
    ]
    if payment.status:
        parts.append(f"Status: {payment.status}")
    if payment.method:
        parts.append(f"Method: {payment.method}")
    if payment.customer and payment.customer.name:
        parts.append(f"Customer: {payment.customer.name}")
    if payment.rental and payment.rental.rental_number:
        parts.append(f"Rental: #{payment.rental.rental_number}")
    if payment.vehicle and payment.vehicle.reg:
        parts.append(f"Vehicle: {payment.vehicle.reg}")
    if payment.verification_status:
        parts.append(f"Verification: {payment.verification_status}")
    if payment.is_early:
        parts.append("Early payment: Yes")
    if payment.capture_status:
        parts.append(f"Capture: {payment.capture_status}")
    if payment.refund_status:
        parts.append(f"Refund status: {payment.refund_status}")
        if payment.refund_amount:
            parts.append(f"Refund amount: {format_money(payment.refund_amount)}")

    return Document(
        page_content=join_sentences(parts),
        metadata={
            "entity_type": "payment",
            "payment_id": payment.id,
            "amount": payment.amount,
            "payment_type": payment.payment_type,
            "customer_id": payment.customer_id,
            "rental_id": payment.rental_id,
            "status": payment.status,
        },
    )


def fine_to_document(record: Any) -> Document:
    """Convert a fine record to searchable text."""
    fine = parse_record(FineRecord, record, "fines")

    parts = [
        f"Fine: {fine.type}",
        f"Amount: {format_money(fine.amount)}",
        f"Issue date: {format_date(fine.issue_date)}",
        f"Due date: {format_date(fine.due_date)}",
    ]
    if fine.status:
        parts.append(f"Status: {fine.status}")
    if fine.liability:
        parts.append(f"Liability: {fine.liability}")
    if fine.reference_no:
        parts.append(f"Reference: {fine.reference_no}")
    if fine.customer and fine.customer.name:
        parts.append(f"Customer: {fine.customer.name}")
    if fine.vehicle and fine.vehicle.reg:
        parts.append(f"Vehicle: {fine.vehicle.reg}")
    if fine.notes:
        parts.append(f"Notes: {fine.notes}")

    return Document(
        page_content=join_sentences(parts),
        metadata={
            "entity_type": "fine",
            "fine_id": fine.id,
            "type": fine.type,
            "amount": fine.amount,
            "vehicle_id": fine.vehicle_id,
            "customer_id": fine.customer_id,
            "status": fine.status,
        },
    )


def plate_to_document(record: Any) -> Document:
    """Convert a licence plate record to searchable text."""
    plate = parse_record(PlateRecord, record, "plates")

    parts = [f"Plate: {plate.plate_number}"]
    if plate.status:
        parts.append(f"Status: {plate.status}")
    if plate.cost:
        parts.append(f"Cost: {format_money(plate.cost)}")
    if plate.supplier:
        parts.append(f"Supplier: {plate.supplier}")
    if plate.order_date:
        parts.append(f"Order date: {format_date(plate.order_date)}")
    if plate.vehicle and plate.vehicle.reg:
        parts.append(f"Assigned to vehicle: {plate.vehicle.reg}")
    if plate.notes:
        parts.append(f"Notes: {plate.notes}")

    return Document(
        page_content=join_sentences(parts),
        metadata={
            "entity_type": "plate",
            "plate_id": plate.id,
            "plate_number": plate.plate_number,
            "vehicle_id": plate.vehicle_id or plate.assigned_vehicle_id,
            "status": plate.status,
        },
    )


_CUSTOMER_NAME = Join("customer", "customers", "customer_id", ("name",))
_VEHICLE_REG = Join("vehicle", "vehicles", "vehicle_id", ("reg",))

SOURCE_KINDS: Dict[str, SourceKind] = {
    kind.name: kind
    for kind in (
        SourceKind(
            name="customers",
            normalizer=customer_to_document,
            selection=RecordSelection("customers"),
        ),
        SourceKind(
            name="vehicles",
            normalizer=vehicle_to_document,
            selection=RecordSelection("vehicles"),
        ),
        SourceKind(
            name="rentals",
            normalizer=rental_to_document,
            selection=RecordSelection(
                "rentals",
                joins=(
                    Join("customer", "customers", "customer_id", ("name", "email")),
                    Join("vehicle", "vehicles", "vehicle_id", ("reg", "make", "model")),
                ),
            ),
        ),
        SourceKind(
            name="payments",
            normalizer=payment_to_document,
            selection=RecordSelection(
                "payments",
                joins=(
                    _CUSTOMER_NAME,
                    Join("rental", "rentals", "rental_id", ("rental_number",)),
                    _VEHICLE_REG,
                ),
            ),
        ),
        SourceKind(
            name="fines",
            normalizer=fine_to_document,
            selection=RecordSelection("fines", joins=(_CUSTOMER_NAME, _VEHICLE_REG)),
        ),
        SourceKind(
            name="plates",
            normalizer=plate_to_document,
            selection=RecordSelection("plates", joins=(_VEHICLE_REG,)),
        ),
    )
}


def get_source_kind(name: str) -> Optional[SourceKind]:
    """Look up a registered source kind; unknown names return None."""
    return SOURCE_KINDS.get(name)


def indexed_source_kinds() -> List[str]:
    """Source kinds in the order a full reindex visits them."""
    return list(SOURCE_KINDS)
