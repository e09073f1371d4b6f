from datetime import date, time
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AppointmentCreate(BaseModel):
    business_id: UUID
    professional_id: UUID
    customer_id: UUID
    service_id: UUID
    appointment_date: date
    appointment_time: time
    total_price: Optional[Decimal] = None  # defaults to the service price


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_id: UUID
    professional_id: UUID
    customer_id: UUID
    service_id: UUID
    appointment_date: date
    appointment_time: time
    status: str
    total_price: Optional[Decimal] = None


class SlotResponse(BaseModel):
    date: date
    time: str
    professional_id: UUID
    professional_name: str


class AvailableSlotsResponse(BaseModel):
    count: int
    slots: list[SlotResponse]
