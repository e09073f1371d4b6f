from typing import TYPE_CHECKING, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from salonbot.logging_config import get_logger
from salonbot.models import Appointment, AppointmentStatus, Customer, Professional, Service
from salonbot.models.appointment import BLOCKING_STATUSES
from salonbot.schemas.appointment import AppointmentCreate
from salonbot.services.availability_service import AvailabilityService
from salonbot.services.clock import utcnow
from salonbot.services.result import ErrorCode, Result

if TYPE_CHECKING:
    from salonbot.services.scheduler_service import AppointmentLifecycle

logger = get_logger("appointment_service")


class AppointmentService:
    def __init__(self, db: Session, lifecycle: Optional["AppointmentLifecycle"] = None):
        self.db = db
        self.lifecycle = lifecycle
        self.availability = AvailabilityService(db)

    def _get(self, appointment_id: UUID) -> Optional[Appointment]:
        return self.db.get(Appointment, appointment_id)

    def create_appointment(self, data: AppointmentCreate) -> Result[Appointment]:
        try:
            professional = self.db.get(Professional, data.professional_id)
            customer = self.db.get(Customer, data.customer_id)
            service = self.db.get(Service, data.service_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load booking references: {e}")
            return Result.failure(str(e), ErrorCode.DB_ERROR)

        for name, entity in (("professional", professional), ("customer", customer), ("service", service)):
            if entity is None or entity.business_id != data.business_id:
                return Result.failure(f"Unknown {name} for business", ErrorCode.NOT_FOUND)
        if not professional.active:
            return Result.failure("Professional is not active", ErrorCode.INVALID_STATE)

        if not self.availability.check_conflict(data.professional_id, data.appointment_date, data.appointment_time):
            logger.info(
                "Requested slot is taken",
                extra={
                    "context": {
                        "professional_id": str(data.professional_id),
                        "date": str(data.appointment_date),
                        "time": str(data.appointment_time),
                    }
                },
            )
            return Result.failure("Slot already taken", ErrorCode.CONFLICT)

        now = utcnow()
        appointment = Appointment(
            business_id=data.business_id,
            professional_id=data.professional_id,
            customer_id=data.customer_id,
            service_id=data.service_id,
            appointment_date=data.appointment_date,
            appointment_time=data.appointment_time,
            status=AppointmentStatus.SCHEDULED.value,
            total_price=data.total_price if data.total_price is not None else service.price,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(appointment)
            self.db.commit()
            self.db.refresh(appointment)
        except IntegrityError:
            # Lost a race for the slot between check_conflict and the insert
            self.db.rollback()
            logger.info(
                "Requested slot taken concurrently",
                extra={"context": {"professional_id": str(data.professional_id), "date": str(data.appointment_date)}},
            )
            return Result.failure("Slot already taken", ErrorCode.CONFLICT)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create appointment: {e}")
            return Result.failure(str(e), ErrorCode.DB_ERROR)

        logger.info("Appointment created", extra={"context": {"appointment_id": str(appointment.id)}})
        if self.lifecycle is not None:
            self.lifecycle.on_created(appointment)
        return Result.success(appointment)

    def get_client_appointments(self, business_id: UUID, phone: str) -> list[Appointment]:
        """The client's appointments, oldest first; unknown phone gives []."""
        try:
            return (
                self.db.query(Appointment)
                .join(Customer, Appointment.customer_id == Customer.id)
                .filter(Appointment.business_id == business_id, Customer.phone == phone)
                .order_by(Appointment.appointment_date, Appointment.appointment_time)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load client appointments: {e}", extra={"context": {"phone": phone}})
            return []

    def get_cancellable(self, business_id: UUID, phone: str) -> list[Appointment]:
        return [a for a in self.get_client_appointments(business_id, phone) if a.status in BLOCKING_STATUSES]

    def update_status(self, appointment_id: UUID, status: AppointmentStatus) -> Result[Appointment]:
        try:
            appointment = self._get(appointment_id)
            if appointment is None:
                return Result.failure("Appointment not found", ErrorCode.NOT_FOUND)
            appointment.status = AppointmentStatus(status).value
            appointment.updated_at = utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update appointment status: {e}")
            return Result.failure(str(e), ErrorCode.DB_ERROR)

        logger.info(
            "Appointment status updated",
            extra={"context": {"appointment_id": str(appointment_id), "status": appointment.status}},
        )
        return Result.success(appointment)

    def cancel_appointment(self, appointment_id: UUID) -> Result[Appointment]:
        appointment = self._get(appointment_id)
        if appointment is None:
            return Result.failure("Appointment not found", ErrorCode.NOT_FOUND)
        if appointment.status not in BLOCKING_STATUSES:
            return Result.failure(f"Cannot cancel a {appointment.status} appointment", ErrorCode.INVALID_STATE)
        return self.update_status(appointment_id, AppointmentStatus.CANCELLED)

    def confirm_appointment(self, appointment_id: UUID, notify: bool = False) -> Result[Appointment]:
        appointment = self._get(appointment_id)
        if appointment is None:
            return Result.failure("Appointment not found", ErrorCode.NOT_FOUND)
        if appointment.status != AppointmentStatus.SCHEDULED.value:
            return Result.failure(f"Cannot confirm a {appointment.status} appointment", ErrorCode.INVALID_STATE)

        result = self.update_status(appointment_id, AppointmentStatus.CONFIRMED)
        if result.ok and self.lifecycle is not None:
            self.lifecycle.on_confirmed(result.value, notify=notify)
        return result
