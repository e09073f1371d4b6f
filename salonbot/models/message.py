import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid

from salonbot.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("business_id", "direction", "external_id", name="uq_messages_external_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    phone = Column(Text, nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    message_type = Column(Text, nullable=False, default="text")
    content = Column(Text, nullable=False)
    external_id = Column(Text)  # gateway message id
    intent = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
