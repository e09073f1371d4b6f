"""Builds the service graph for one database session."""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from salonbot.config import settings
from salonbot.database import get_db
from salonbot.services.ai_service import ReplyGenerator
from salonbot.services.appointment_service import AppointmentService
from salonbot.services.availability_service import AvailabilityService
from salonbot.services.context_service import ContextStore
from salonbot.services.conversation_lock import ConversationLocks, conversation_locks
from salonbot.services.gateway_service import MessageSender, get_message_sender
from salonbot.services.intent_service import IntentClassifier
from salonbot.services.llm import LLMProvider, get_llm_provider
from salonbot.services.orchestrator import ConversationOrchestrator
from salonbot.services.scheduler_service import AppointmentLifecycle, ScheduledMessageService
from salonbot.services.template_service import TemplateCatalog, default_catalog


@dataclass
class Services:
    contexts: ContextStore
    availability: AvailabilityService
    appointments: AppointmentService
    scheduler: ScheduledMessageService
    lifecycle: AppointmentLifecycle
    orchestrator: ConversationOrchestrator


def build_services(
    db: Session,
    sender: Optional[MessageSender] = None,
    llm: Optional[LLMProvider] = None,
    catalog: Optional[TemplateCatalog] = None,
    locks: Optional[ConversationLocks] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Services:
    sender = sender or get_message_sender()
    catalog = catalog or default_catalog

    scheduler_kwargs = {}
    if sleep is not None:
        scheduler_kwargs["sleep"] = sleep
    scheduler = ScheduledMessageService(
        db,
        sender,
        catalog,
        send_delay_seconds=settings.scheduler_send_delay_seconds,
        max_attempts=settings.scheduler_max_attempts,
        retry_backoff_seconds=settings.scheduler_retry_backoff_seconds,
        **scheduler_kwargs,
    )
    lifecycle = AppointmentLifecycle(
        db,
        scheduler,
        sender,
        catalog,
        reminder_offset_hours=settings.reminder_offset_hours,
        follow_up_offset_hours=settings.follow_up_offset_hours,
        timezone_name=settings.business_timezone,
    )
    contexts = ContextStore(db, history_limit=settings.context_history_limit)
    availability = AvailabilityService(db, timezone_name=settings.business_timezone)
    appointments = AppointmentService(db, lifecycle)
    orchestrator = ConversationOrchestrator(
        db,
        contexts=contexts,
        classifier=IntentClassifier(
            llm,
            model=settings.intent_model,
            timeout_seconds=settings.intent_timeout_seconds,
            threshold=settings.intent_llm_threshold,
        ),
        replies=ReplyGenerator(
            llm,
            model=settings.openai_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        ),
        appointments=appointments,
        availability=availability,
        lifecycle=lifecycle,
        sender=sender,
        locks=locks or conversation_locks,
        choice_ttl_minutes=settings.cancellation_choice_ttl_minutes,
        max_cancellation_candidates=settings.max_cancellation_candidates,
    )
    return Services(
        contexts=contexts,
        availability=availability,
        appointments=appointments,
        scheduler=scheduler,
        lifecycle=lifecycle,
        orchestrator=orchestrator,
    )


def get_services(db: Session = Depends(get_db)) -> Services:
    return build_services(db, llm=get_llm_provider())
