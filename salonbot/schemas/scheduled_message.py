from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ScheduledMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_id: UUID
    client_phone: str
    template_id: Optional[str] = None
    message_content: str
    scheduled_for: datetime
    status: str
    appointment_id: Optional[UUID] = None
    attempts: int = 0
    sent_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SweepResponse(BaseModel):
    processed: int
    sent: int
    failed: int
    skipped: int
