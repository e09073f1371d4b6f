from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from salonbot.config import settings
from salonbot.dependencies import Services, get_services
from salonbot.schemas.scheduled_message import ScheduledMessageResponse, SweepResponse

router = APIRouter(prefix="/scheduled-messages", tags=["scheduled-messages"])


@router.get("", response_model=list[ScheduledMessageResponse])
def list_scheduled_messages(
    business_id: UUID,
    status: Optional[str] = None,
    limit: int = 100,
    services: Services = Depends(get_services),
):
    return services.scheduler.list_messages(business_id, status=status, limit=limit)


@router.post("/process", response_model=SweepResponse)
def process_scheduled_messages(services: Services = Depends(get_services)):
    """Run one delivery sweep now instead of waiting for the background loop."""
    services.scheduler.release_stale_claims(settings.scheduler_stale_claim_minutes)
    summary = services.scheduler.process_due(limit=settings.scheduler_batch_limit)
    return SweepResponse(**summary.__dict__)
