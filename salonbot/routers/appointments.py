from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from salonbot.dependencies import Services, get_services
from salonbot.schemas.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    AvailableSlotsResponse,
    SlotResponse,
)
from salonbot.services.availability_service import format_time_for_display
from salonbot.services.result import ErrorCode, Result

router = APIRouter(prefix="/appointments", tags=["appointments"])

_ERROR_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_STATE: status.HTTP_409_CONFLICT,
}


def _unwrap(result: Result):
    if not result.ok:
        code = _ERROR_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=code, detail=result.error)
    return result.value


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: AppointmentCreate, services: Services = Depends(get_services)):
    return _unwrap(services.appointments.create_appointment(data))


@router.get("/available-slots", response_model=AvailableSlotsResponse)
def available_slots(
    business_id: UUID,
    day: Optional[date] = None,
    professional_id: Optional[UUID] = None,
    services: Services = Depends(get_services),
):
    slots = services.availability.compute_available_slots(business_id, day, professional_id)
    return AvailableSlotsResponse(
        count=len(slots),
        slots=[
            SlotResponse(
                date=slot.date,
                time=format_time_for_display(slot.time),
                professional_id=slot.professional_id,
                professional_name=slot.professional_name,
            )
            for slot in slots
        ],
    )


@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
def confirm_appointment(appointment_id: UUID, services: Services = Depends(get_services)):
    return _unwrap(services.appointments.confirm_appointment(appointment_id, notify=True))


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(appointment_id: UUID, services: Services = Depends(get_services)):
    return _unwrap(services.appointments.cancel_appointment(appointment_id))
