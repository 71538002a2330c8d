"""
Record variants for the indexed source tables.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from rental_rag.documents.base import DateLike, SourceRecord


class _Related(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class CustomerRef(_Related):
    name: Optional[str] = None
    email: Optional[str] = None


class VehicleRef(_Related):
    reg: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None


class RentalRef(_Related):
    rental_number: Optional[str] = None


class CustomerRecord(SourceRecord):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    customer_type: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    is_blocked: Optional[bool] = None
    blocked_reason: Optional[str] = None
    license_number: Optional[str] = None
    id_number: Optional[str] = None
    identity_verification_status: Optional[str] = None
    created_at: Optional[DateLike] = None


class VehicleRecord(SourceRecord):
    reg: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    colour: Optional[str] = None
    fuel_type: Optional[str] = None
    status: Optional[str] = None
    daily_rent: Optional[float] = None
    weekly_rent: Optional[float] = None
    monthly_rent: Optional[float] = None
    acquisition_type: Optional[str] = None
    acquisition_date: Optional[DateLike] = None
    mot_due_date: Optional[DateLike] = None
    tax_due_date: Optional[DateLike] = None
    is_disposed: Optional[bool] = None
    vin: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[DateLike] = None


class RentalRecord(SourceRecord):
    rental_number: Optional[str] = None
    status: Optional[str] = None
    start_date: DateLike
    end_date: Optional[DateLike] = None
    monthly_amount: float
    payment_mode: Optional[str] = None
    approval_status: Optional[str] = None
    payment_status: Optional[str] = None
    insurance_status: Optional[str] = None
    document_status: Optional[str] = None
    pickup_location: Optional[str] = None
    return_location: Optional[str] = None
    promo_code: Optional[str] = None
    discount_applied: Optional[float] = None
    customer_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    created_at: Optional[DateLike] = None
    customer: Optional[CustomerRef] = None
    vehicle: Optional[VehicleRef] = None


class PaymentRecord(SourceRecord):
    amount: float
    payment_type: str
    payment_date: DateLike
    status: Optional[str] = None
    method: Optional[str] = None
    verification_status: Optional[str] = None
    is_early: Optional[bool] = None
    capture_status: Optional[str] = None
    refund_status: Optional[str] = None
    refund_amount: Optional[float] = None
    customer_id: Optional[str] = None
    rental_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    created_at: Optional[DateLike] = None
    customer: Optional[CustomerRef] = None
    rental: Optional[RentalRef] = None
    vehicle: Optional[VehicleRef] = None


class FineRecord(SourceRecord):
    type: str
    amount: float
    issue_date: DateLike
    due_date: DateLike
    status: Optional[str] = None
    liability: Optional[str] = None
    reference_no: Optional[str] = None
    notes: Optional[str] = None
    vehicle_id: Optional[str] = None
    customer_id: Optional[str] = None
    created_at: Optional[DateLike] = None
    customer: Optional[CustomerRef] = None
    vehicle: Optional[VehicleRef] = None


class PlateRecord(SourceRecord):
    plate_number: str
    status: Optional[str] = None
    cost: Optional[float] = None
    order_date: Optional[DateLike] = None
    supplier: Optional[str] = None
    notes: Optional[str] = None
    vehicle_id: Optional[str] = None
    assigned_vehicle_id: Optional[str] = None
    created_at: Optional[DateLike] = None
    vehicle: Optional[VehicleRef] = None
