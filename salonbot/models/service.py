import uuid

from sqlalchemy import Column, ForeignKey, Integer, Numeric, Text, Uuid

from salonbot.database import Base


class Service(Base):
    __tablename__ = "services"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    duration_minutes = Column(Integer, nullable=False, default=30)
