import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from salonbot.database import Base
from salonbot.models.types import JSONType


class ConversationContext(Base):
    __tablename__ = "conversation_contexts"
    __table_args__ = (UniqueConstraint("business_id", "client_phone", name="uq_contexts_business_phone"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    client_phone = Column(Text, nullable=False)
    client_name = Column(Text)
    context_data = Column(JSONType, nullable=False, default=dict)  # see schemas.context.ContextMemory
    last_interaction = Column(DateTime(timezone=True), nullable=False)
    conversation_state = Column(Text, nullable=False, default="active")  # active, waiting, closed
    intent = Column(Text)
    sentiment = Column(Text)  # positive, neutral, negative
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
