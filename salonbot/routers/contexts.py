from uuid import UUID

from fastapi import APIRouter, Depends

from salonbot.config import settings
from salonbot.dependencies import Services, get_services
from salonbot.schemas.context import ContextStats, ContextSummary

router = APIRouter(prefix="/contexts", tags=["contexts"])


@router.get("/active", response_model=list[ContextSummary])
def active_contexts(business_id: UUID, limit: int = 50, services: Services = Depends(get_services)):
    summaries = []
    for context in services.contexts.list_active(business_id, limit=limit):
        memory = services.contexts.memory(context)
        summaries.append(
            ContextSummary(
                client_phone=context.client_phone,
                client_name=context.client_name,
                conversation_state=context.conversation_state,
                intent=context.intent,
                sentiment=context.sentiment,
                message_count=memory.message_count,
                last_interaction=context.last_interaction,
            )
        )
    return summaries


@router.post("/close-inactive")
def close_inactive(business_id: UUID, idle_hours: int | None = None, services: Services = Depends(get_services)):
    hours = idle_hours if idle_hours is not None else settings.context_idle_hours
    closed = services.contexts.close_inactive(business_id, idle_hours=hours)
    return {"closed": closed, "idle_hours": hours}


@router.get("/stats", response_model=ContextStats)
def context_stats(business_id: UUID, services: Services = Depends(get_services)):
    return services.contexts.get_stats(business_id)
