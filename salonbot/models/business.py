import uuid

from sqlalchemy import Boolean, Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from salonbot.database import Base
from salonbot.models.types import JSONType


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    instance_name = Column(Text, unique=True)  # WhatsApp gateway instance
    ai_enabled = Column(Boolean, nullable=False, default=True)
    config = Column(JSONType, nullable=False, default=dict)  # open_time, close_time, slot_minutes
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    professionals = relationship("Professional", back_populates="business", order_by="Professional.name")
