"""One inbound WhatsApp message in, at most one reply out.

Turns for the same (business, phone) are serialized by ConversationLocks.
Multi-step flows (cancellation choice) live in the typed context memory so
they survive between webhook deliveries.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from salonbot.logging_config import ContextLoggerAdapter, bind_logger
from salonbot.models import Appointment, AppointmentStatus, ConversationContext
from salonbot.schemas.context import (
    AwaitingCancellationChoice,
    CancellationCandidate,
    ContextMemory,
    ContextUpdate,
    IdleFlow,
)
from salonbot.services.ai_service import ReplyGenerator
from salonbot.services.appointment_service import AppointmentService
from salonbot.services.availability_service import (
    AvailabilityService,
    format_date_for_display,
    format_time_for_display,
)
from salonbot.services.clock import ensure_timezone, utcnow
from salonbot.services.context_service import ContextStore
from salonbot.services.conversation_lock import ConversationLocks
from salonbot.services.gateway_service import MessageSender
from salonbot.services.intent_service import (
    Intent,
    IntentClassifier,
    IntentResult,
    normalize_for_matching,
    should_flag_human,
)
from salonbot.services.message_service import (
    INBOUND,
    OUTBOUND,
    delete_message,
    is_duplicate_inbound,
    save_message,
)
from salonbot.services.scheduler_service import AppointmentLifecycle

TEXT_ONLY_REPLY = "Mensagem recebida. No momento, só posso responder mensagens de texto."
GENERIC_APOLOGY = "Desculpe, ocorreu um erro ao processar sua mensagem. Tente novamente em instantes."
LLM_FALLBACK_REPLY = "Desculpe, não consegui gerar uma resposta."

NO_SLOTS_REPLY = "Não há horários disponíveis para hoje. Gostaria de verificar outro dia?"
NO_APPOINTMENTS_REPLY = "Você não possui agendamentos. Gostaria de fazer um novo agendamento?"
NOTHING_TO_CANCEL_REPLY = "Você não possui agendamentos que possam ser cancelados."
NOTHING_TO_CONFIRM_REPLY = "Não há agendamentos pendentes de confirmação."
CONFIRM_ERROR_REPLY = "Erro ao confirmar agendamento. Tente novamente ou entre em contato conosco."
CANCEL_ERROR_REPLY = "Erro ao cancelar agendamento. Tente novamente ou entre em contato conosco."
CANCEL_REPROMPT = "Por favor, responda com o número do agendamento que deseja cancelar."
SCHEDULING_ERROR_REPLY = (
    "Desculpe, ocorreu um erro ao processar sua solicitação de agendamento. Tente novamente."
)
CANCELLATION_ERROR_REPLY = "Desculpe, ocorreu um erro ao processar seu cancelamento. Tente novamente."
SCHEDULING_MENU = (
    "📅 *Agendamentos*\n\n"
    "Eu posso ajudar você com:\n\n"
    "• 🔍 Consultar horários disponíveis\n"
    "• 📋 Ver seus agendamentos\n"
    "• ✅ Confirmar agendamentos\n"
    "• ❌ Cancelar agendamentos\n\n"
    "O que você gostaria de fazer?"
)

# Raw-text sub-routing of the scheduling flow, matched on accent-free text
SLOTS_TRIGGERS = ("horario", "disponivel", "vago")
MY_BOOKINGS_TRIGGERS = ("meus agendamentos", "consultar", "ver agendamento")
CANCEL_TRIGGERS = ("cancelar", "desmarcar")
CONFIRM_TRIGGERS = ("confirmar", "confirmo")

MAX_SLOTS_PER_PROFESSIONAL = 6
MAX_LISTED_APPOINTMENTS = 5

STATUS_EMOJI = {
    AppointmentStatus.SCHEDULED.value: "📅",
    AppointmentStatus.CONFIRMED.value: "✅",
    AppointmentStatus.COMPLETED.value: "✅",
    AppointmentStatus.CANCELLED.value: "❌",
    AppointmentStatus.NO_SHOW.value: "❌",
}

_CHOICE_PATTERN = re.compile(r"^\s*(\d{1,3})(?!\d)")


class TurnStatus(str, Enum):
    PROCESSED = "processed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class InboundMessage:
    business_id: UUID
    message_id: str
    phone: str
    content: str
    message_type: str = "text"
    client_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    from_me: bool = False


@dataclass
class TurnResult:
    success: bool
    status: TurnStatus
    response: Optional[str] = None
    intent: Optional[str] = None
    error: Optional[str] = None


def parse_choice(text: str) -> Optional[int]:
    match = _CHOICE_PATTERN.match(text or "")
    return int(match.group(1)) if match else None


def _contains_any(text: str, triggers: tuple[str, ...]) -> bool:
    return any(trigger in text for trigger in triggers)


def _format_price(value) -> str:
    return f"{float(value or 0):.2f}"


class ConversationOrchestrator:
    def __init__(
        self,
        db: Session,
        contexts: ContextStore,
        classifier: IntentClassifier,
        replies: ReplyGenerator,
        appointments: AppointmentService,
        availability: AvailabilityService,
        lifecycle: AppointmentLifecycle,
        sender: MessageSender,
        locks: ConversationLocks,
        choice_ttl_minutes: int = 30,
        max_cancellation_candidates: int = 3,
    ):
        self.db = db
        self.contexts = contexts
        self.classifier = classifier
        self.replies = replies
        self.appointments = appointments
        self.availability = availability
        self.lifecycle = lifecycle
        self.sender = sender
        self.locks = locks
        self.choice_ttl = timedelta(minutes=choice_ttl_minutes)
        self.max_cancellation_candidates = max_cancellation_candidates

    def handle(self, message: InboundMessage) -> TurnResult:
        log = bind_logger(
            "orchestrator",
            business_id=str(message.business_id),
            phone=message.phone,
            message_id=message.message_id,
        )
        if message.from_me:
            return TurnResult(success=True, status=TurnStatus.IGNORED)

        with self.locks.hold((message.business_id, message.phone)):
            if is_duplicate_inbound(self.db, message.business_id, message.message_id):
                log.info("Duplicate inbound message ignored")
                return TurnResult(success=True, status=TurnStatus.DUPLICATE)
            logged = save_message(
                self.db,
                message.business_id,
                message.phone,
                INBOUND,
                message.content,
                message_type=message.message_type,
                external_id=message.message_id,
                created_at=message.timestamp,
            )
            if logged.ok and logged.value is None:
                return TurnResult(success=True, status=TurnStatus.DUPLICATE)

            result = self._handle_locked(message, log)
            if result.status == TurnStatus.FAILED and logged.ok:
                # Unanswered: a redelivery of this message id must be processed again
                delete_message(self.db, logged.value)
            return result

    def _handle_locked(self, message: InboundMessage, log: ContextLoggerAdapter) -> TurnResult:
        log.info("Processing inbound message", context={"message_type": message.message_type})

        if message.message_type != "text" or not (message.content or "").strip():
            return self._reply(message, TEXT_ONLY_REPLY, log, persist=False)

        context_result = self.contexts.get_or_create(message.business_id, message.phone, message.client_name)
        if not context_result.ok:
            log.error("Context unavailable", context={"error": context_result.error})
            return self._reply(message, GENERIC_APOLOGY, log, persist=False)
        context = context_result.value
        memory = self.contexts.memory(context)

        if memory.message_count == 0 and memory.welcome_sent_at is None:
            self._send_welcome(message, log)

        now = utcnow()
        flow = memory.pending_flow
        if isinstance(flow, AwaitingCancellationChoice):
            if self._is_choice_active(flow, now):
                response = self._handle_cancellation(message, memory, log)
                return self._reply(message, response, log, intent=Intent.CANCEL.value)
            log.info("Cancellation choice expired")
            self.contexts.update(message.business_id, message.phone, ContextUpdate(pending_flow=IdleFlow()))
            memory.pending_flow = IdleFlow()

        try:
            result = self.classifier.classify(message.content, context, memory)
        except Exception as e:
            log.exception(f"Intent classification failed: {e}")
            return self._reply(message, GENERIC_APOLOGY, log, persist=False)

        self._record_intent(message, context, result, log)
        response = self._dispatch(message, context, memory, result, log)
        return self._reply(
            message,
            response,
            log,
            intent=result.intent.value,
            sentiment=result.sentiment.value,
        )

    def _send_welcome(self, message: InboundMessage, log: ContextLoggerAdapter) -> None:
        welcome = self.lifecycle.send_welcome(message.phone)
        if not welcome.ok:
            log.warning("Welcome message not sent", context={"error": welcome.error})
            return
        self.contexts.update(message.business_id, message.phone, ContextUpdate(welcome_sent_at=utcnow()))
        log.info("Welcome message sent")

    def _is_choice_active(self, flow: AwaitingCancellationChoice, now: datetime) -> bool:
        started = ensure_timezone(flow.started_at)
        return started is not None and now - started <= self.choice_ttl

    def _record_intent(
        self,
        message: InboundMessage,
        context: ConversationContext,
        result: IntentResult,
        log: ContextLoggerAdapter,
    ) -> None:
        patch = ContextUpdate()
        if result.intent.value != context.intent:
            patch.intent = result.intent.value
            patch.sentiment = result.sentiment.value
        if should_flag_human(result):
            log.warning("Conversation flagged for human attention", context={"intent": result.intent.value})
            patch.extensions = {"requires_human": True, "flagged_at": utcnow().isoformat()}
        if patch.model_fields_set:
            updated = self.contexts.update(message.business_id, message.phone, patch)
            if not updated.ok:
                log.error("Failed to persist intent", context={"error": updated.error})

    def _dispatch(
        self,
        message: InboundMessage,
        context: ConversationContext,
        memory: ContextMemory,
        result: IntentResult,
        log: ContextLoggerAdapter,
    ) -> str:
        if result.intent == Intent.SCHEDULING:
            return self._handle_scheduling(message, memory, log)
        if result.intent == Intent.CANCEL:
            return self._handle_cancellation(message, memory, log)

        # The flag was just stored; let the prompt see it this turn
        memory = self.contexts.memory(context)
        reply = self.replies.generate_reply(message.content, context, memory, result.intent)
        if not reply.ok:
            log.warning("Reply generation failed", context={"error": reply.error})
            return LLM_FALLBACK_REPLY
        return reply.value

    def _reply(
        self,
        message: InboundMessage,
        response: str,
        log: ContextLoggerAdapter,
        intent: Optional[str] = None,
        sentiment: Optional[str] = None,
        persist: bool = True,
    ) -> TurnResult:
        sent = self.sender.send_text(message.phone, response, idempotency_key=f"reply:{message.message_id}")
        if not sent.ok:
            log.error("Failed to send reply", context={"error": sent.error})
            return TurnResult(
                success=False,
                status=TurnStatus.FAILED,
                response=response,
                intent=intent,
                error=sent.error,
            )

        save_message(
            self.db,
            message.business_id,
            message.phone,
            OUTBOUND,
            response,
            external_id=sent.value or None,
            intent=intent,
        )
        if persist:
            patch = ContextUpdate(last_message=message.content, last_response=response)
            if intent:
                patch.intent = intent
            if sentiment:
                patch.sentiment = sentiment
            if message.client_name:
                patch.client_name = message.client_name
            stored = self.contexts.update(message.business_id, message.phone, patch)
            if not stored.ok:
                log.error("Failed to persist exchange", context={"error": stored.error})

        log.info("Reply sent", context={"intent": intent, "provider_message_id": sent.value})
        return TurnResult(success=True, status=TurnStatus.PROCESSED, response=response, intent=intent)

    # Scheduling flow

    def _handle_scheduling(self, message: InboundMessage, memory: ContextMemory, log: ContextLoggerAdapter) -> str:
        text = normalize_for_matching(message.content)
        try:
            if _contains_any(text, SLOTS_TRIGGERS):
                return self._list_slots(message.business_id)
            if _contains_any(text, MY_BOOKINGS_TRIGGERS):
                return self._list_bookings(message.business_id, message.phone)
            if _contains_any(text, CANCEL_TRIGGERS):
                return self._start_cancellation(message, log)
            if _contains_any(text, CONFIRM_TRIGGERS):
                return self._confirm_oldest(message, log)
            return SCHEDULING_MENU
        except Exception as e:
            log.exception(f"Scheduling flow failed: {e}")
            return SCHEDULING_ERROR_REPLY

    def _list_slots(self, business_id: UUID) -> str:
        slots = self.availability.compute_available_slots(business_id)
        if not slots:
            return NO_SLOTS_REPLY

        by_professional: dict[str, list[str]] = {}
        for slot in slots:
            by_professional.setdefault(slot.professional_name, []).append(format_time_for_display(slot.time))

        response = "📅 *Horários disponíveis para hoje:*\n\n"
        for professional, times in by_professional.items():
            shown = ", ".join(times[:MAX_SLOTS_PER_PROFESSIONAL])
            more = "..." if len(times) > MAX_SLOTS_PER_PROFESSIONAL else ""
            response += f"👨‍💼 *{professional}*\n⏰ {shown}{more}\n\n"
        response += "Para agendar, me informe:\n• Profissional desejado\n• Horário preferido\n• Serviço desejado"
        return response

    def _list_bookings(self, business_id: UUID, phone: str) -> str:
        appointments = self.appointments.get_client_appointments(business_id, phone)
        if not appointments:
            return NO_APPOINTMENTS_REPLY

        response = "📋 *Seus agendamentos:*\n\n"
        for appointment in appointments[:MAX_LISTED_APPOINTMENTS]:
            emoji = STATUS_EMOJI.get(appointment.status, "📅")
            response += (
                f"{emoji} *{appointment.service.name}*\n"
                f"📅 {format_date_for_display(appointment.appointment_date)} "
                f"às {format_time_for_display(appointment.appointment_time)}\n"
                f"👨‍💼 {appointment.professional.name}\n"
                f"💰 R$ {_format_price(appointment.service.price)}\n\n"
            )
        if len(appointments) > MAX_LISTED_APPOINTMENTS:
            response += f"... e mais {len(appointments) - MAX_LISTED_APPOINTMENTS} agendamento(s)"
        return response

    def _confirm_oldest(self, message: InboundMessage, log: ContextLoggerAdapter) -> str:
        pending = [
            a
            for a in self.appointments.get_client_appointments(message.business_id, message.phone)
            if a.status == AppointmentStatus.SCHEDULED.value
        ]
        if not pending:
            return NOTHING_TO_CONFIRM_REPLY

        appointment = pending[0]
        result = self.appointments.confirm_appointment(appointment.id)
        if not result.ok:
            log.error("Appointment confirmation failed", context={"error": result.error})
            return CONFIRM_ERROR_REPLY
        return (
            "✅ *Agendamento confirmado!*\n\n"
            f"📅 {format_date_for_display(appointment.appointment_date)} "
            f"às {format_time_for_display(appointment.appointment_time)}\n"
            f"👨‍💼 {appointment.professional.name}\n"
            f"💼 {appointment.service.name}\n\n"
            "Obrigado! Nos vemos em breve! 😊"
        )

    # Cancellation flow

    def _handle_cancellation(self, message: InboundMessage, memory: ContextMemory, log: ContextLoggerAdapter) -> str:
        try:
            flow = memory.pending_flow
            if isinstance(flow, AwaitingCancellationChoice):
                return self._resolve_cancellation_choice(message, flow, log)
            return self._start_cancellation(message, log)
        except Exception as e:
            log.exception(f"Cancellation flow failed: {e}")
            return CANCELLATION_ERROR_REPLY

    def _start_cancellation(self, message: InboundMessage, log: ContextLoggerAdapter) -> str:
        cancellable = self.appointments.get_cancellable(message.business_id, message.phone)
        if not cancellable:
            return NOTHING_TO_CANCEL_REPLY

        listed = cancellable[: self.max_cancellation_candidates]
        candidates = [self._candidate(appointment) for appointment in listed]
        stored = self.contexts.update(
            message.business_id,
            message.phone,
            ContextUpdate(pending_flow=AwaitingCancellationChoice(candidates=candidates, started_at=utcnow())),
        )
        if not stored.ok:
            log.error("Failed to store cancellation candidates", context={"error": stored.error})
            return CANCELLATION_ERROR_REPLY

        response = "❌ *Cancelar agendamento*\n\nQual agendamento você gostaria de cancelar?\n\n"
        for index, candidate in enumerate(candidates, start=1):
            response += (
                f"{index}. *{candidate.service_name}*\n"
                f"📅 {format_date_for_display(candidate.appointment_date)} "
                f"às {format_time_for_display(candidate.appointment_time)}\n"
                f"👨‍💼 {candidate.professional_name}\n\n"
            )
        response += "Responda com o número do agendamento que deseja cancelar."
        log.info("Cancellation choice offered", context={"candidates": len(candidates)})
        return response

    def _resolve_cancellation_choice(
        self,
        message: InboundMessage,
        flow: AwaitingCancellationChoice,
        log: ContextLoggerAdapter,
    ) -> str:
        choice = parse_choice(message.content)
        if choice is None or not 1 <= choice <= len(flow.candidates):
            log.info("Invalid cancellation choice", context={"choice": message.content[:20]})
            return CANCEL_REPROMPT

        candidate = flow.candidates[choice - 1]
        result = self.appointments.cancel_appointment(candidate.appointment_id)
        self.contexts.update(message.business_id, message.phone, ContextUpdate(pending_flow=IdleFlow()))
        if not result.ok:
            log.error("Appointment cancellation failed", context={"error": result.error})
            return CANCEL_ERROR_REPLY

        log.info("Appointment cancelled by client", context={"appointment_id": str(candidate.appointment_id)})
        return (
            "❌ *Agendamento cancelado*\n\n"
            f"📅 {format_date_for_display(candidate.appointment_date)} "
            f"às {format_time_for_display(candidate.appointment_time)}\n"
            f"👨‍💼 {candidate.professional_name}\n"
            f"💼 {candidate.service_name}\n\n"
            "Seu agendamento foi cancelado com sucesso."
        )

    @staticmethod
    def _candidate(appointment: Appointment) -> CancellationCandidate:
        return CancellationCandidate(
            appointment_id=appointment.id,
            service_name=appointment.service.name,
            professional_name=appointment.professional.name,
            appointment_date=appointment.appointment_date,
            appointment_time=appointment.appointment_time,
        )
