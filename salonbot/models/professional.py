import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from salonbot.database import Base


class Professional(Base):
    __tablename__ = "professionals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    business = relationship("Business", back_populates="professionals")
