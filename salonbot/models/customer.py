import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from salonbot.database import Base


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("business_id", "phone", name="uq_customers_business_phone"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=False)  # normalized, e.g. 5511999990000
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
