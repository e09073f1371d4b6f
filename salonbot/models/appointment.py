import uuid
from enum import Enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Numeric, Text, Time, Uuid, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from salonbot.database import Base


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Statuses that occupy a slot
BLOCKING_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)

_OCCUPIES_SLOT = text("status IN ('scheduled', 'confirmed')")


class Appointment(Base):
    __tablename__ = "appointments"
    # One active booking per professional and start time
    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "professional_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            postgresql_where=_OCCUPIES_SLOT,
            sqlite_where=_OCCUPIES_SLOT,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    professional_id = Column(Uuid, ForeignKey("professionals.id"), nullable=False)
    customer_id = Column(Uuid, ForeignKey("customers.id"), nullable=False)
    service_id = Column(Uuid, ForeignKey("services.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    status = Column(Text, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    total_price = Column(Numeric(10, 2))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    professional = relationship("Professional", lazy="joined")
    customer = relationship("Customer", lazy="joined")
    service = relationship("Service", lazy="joined")
