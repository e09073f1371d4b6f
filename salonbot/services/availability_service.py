from dataclasses import dataclass
from datetime import date as date_type
from datetime import datetime, time, timedelta
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salonbot.config import settings
from salonbot.logging_config import get_logger
from salonbot.models import Appointment, Business, Professional
from salonbot.models.appointment import BLOCKING_STATUSES
from salonbot.services.clock import utcnow

logger = get_logger("availability_service")

MONTHS_PT_BR = (
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
)


@dataclass(frozen=True)
class AvailableSlot:
    date: date_type
    time: time
    professional_id: UUID
    professional_name: str


def parse_clock(value: str) -> time:
    """'08:00' or '08:00:00' -> time."""
    parts = [int(p) for p in value.strip().split(":")]
    while len(parts) < 3:
        parts.append(0)
    return time(parts[0], parts[1], parts[2])


def build_time_grid(open_time: time, close_time: time, step_minutes: int) -> list[time]:
    """Slot start times from open_time up to, not including, close_time."""
    if step_minutes <= 0:
        raise ValueError("step_minutes must be positive")
    anchor = date_type(2000, 1, 1)
    current = datetime.combine(anchor, open_time)
    end = datetime.combine(anchor, close_time)
    grid = []
    while current < end:
        grid.append(current.time())
        current += timedelta(minutes=step_minutes)
    return grid


def format_date_for_display(value: date_type) -> str:
    return f"{value.day:02d} de {MONTHS_PT_BR[value.month - 1]} de {value.year}"


def format_time_for_display(value: time) -> str:
    return value.strftime("%H:%M")


class AvailabilityService:
    def __init__(self, db: Session, timezone_name: str = "America/Sao_Paulo"):
        self.db = db
        self.tz = ZoneInfo(timezone_name)

    def business_today(self) -> date_type:
        """Calendar date at the salon, whatever the host clock says."""
        return utcnow().astimezone(self.tz).date()

    def business_grid(self, business_id: UUID) -> list[time]:
        """Grid for a business; its config may override open/close/step."""
        business = self.db.get(Business, business_id)
        config = (business.config if business else None) or {}
        return build_time_grid(
            parse_clock(config.get("open_time", settings.business_open_time)),
            parse_clock(config.get("close_time", settings.business_close_time)),
            int(config.get("slot_minutes", settings.slot_minutes)),
        )

    def compute_available_slots(
        self,
        business_id: UUID,
        date: Optional[date_type] = None,
        professional_id: Optional[UUID] = None,
    ) -> list[AvailableSlot]:
        """Free (professional, time) pairs for one day.

        Ordered by professional (name order) and then by time. Only scheduled
        and confirmed appointments block a slot.
        """
        target_date = date or self.business_today()
        try:
            grid = self.business_grid(business_id)

            query = self.db.query(Professional).filter(
                Professional.business_id == business_id,
                Professional.active.is_(True),
            )
            if professional_id is not None:
                query = query.filter(Professional.id == professional_id)
            professionals = query.order_by(Professional.name, Professional.id).all()
            if not professionals:
                return []

            booked_rows = (
                self.db.query(Appointment.professional_id, Appointment.appointment_time)
                .filter(
                    Appointment.business_id == business_id,
                    Appointment.appointment_date == target_date,
                    Appointment.professional_id.in_([p.id for p in professionals]),
                    Appointment.status.in_(BLOCKING_STATUSES),
                )
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to compute available slots: {e}",
                extra={"context": {"business_id": str(business_id), "date": str(target_date)}},
            )
            return []

        booked = {(row.professional_id, row.appointment_time.replace(microsecond=0)) for row in booked_rows}

        slots = []
        for professional in professionals:
            for slot_time in grid:
                if (professional.id, slot_time) in booked:
                    continue
                slots.append(
                    AvailableSlot(
                        date=target_date,
                        time=slot_time,
                        professional_id=professional.id,
                        professional_name=professional.name,
                    )
                )
        return slots

    def check_conflict(self, professional_id: UUID, date: date_type, time: time) -> bool:
        """True when the exact (professional, date, time) is free.

        Only an exact start-time match counts; lookup errors report the slot
        as taken.
        """
        try:
            existing = (
                self.db.query(Appointment.id)
                .filter(
                    Appointment.professional_id == professional_id,
                    Appointment.appointment_date == date,
                    Appointment.appointment_time == time,
                    Appointment.status.in_(BLOCKING_STATUSES),
                )
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Conflict check failed: {e}",
                extra={"context": {"professional_id": str(professional_id), "date": str(date)}},
            )
            return False
        return existing is None
