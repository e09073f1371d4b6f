import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.sql import func

from salonbot.database import Base


class ScheduledMessage(Base):
    __tablename__ = "scheduled_messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    client_phone = Column(Text, nullable=False)
    template_id = Column(Text)
    message_content = Column(Text, nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(Text, nullable=False, default="pending")  # pending, sending, sent, failed
    appointment_id = Column(Uuid, ForeignKey("appointments.id"), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    claimed_at = Column(DateTime(timezone=True))
    sent_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
