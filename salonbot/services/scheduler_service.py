"""Delayed template delivery: scheduling, the due-message sweep and appointment hooks."""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salonbot.logging_config import get_logger
from salonbot.models import Appointment, AppointmentStatus, ScheduledMessage
from salonbot.services.availability_service import format_date_for_display, format_time_for_display
from salonbot.services.clock import ensure_timezone, utcnow
from salonbot.services.gateway_service import MessageSender
from salonbot.services.result import ErrorCode, Result
from salonbot.services.template_service import TemplateCatalog

logger = get_logger("scheduler_service")

STATUS_PENDING = "pending"
STATUS_SENDING = "sending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"

REMINDER_TEMPLATE = "reminder_24h"
FOLLOW_UP_TEMPLATE = "follow_up"
CONFIRMATION_TEMPLATE = "confirmation"
WELCOME_TEMPLATE = "welcome"


@dataclass
class SweepSummary:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class ScheduledMessageService:
    def __init__(
        self,
        db: Session,
        sender: MessageSender,
        catalog: TemplateCatalog,
        send_delay_seconds: float = 1.0,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.sender = sender
        self.catalog = catalog
        self.send_delay_seconds = send_delay_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.sleep = sleep

    def schedule_message(
        self,
        phone: str,
        template_id: str,
        fire_at: datetime,
        variables: dict,
        business_id: UUID,
        appointment_id: Optional[UUID] = None,
    ) -> Result[ScheduledMessage]:
        """Render now and store a pending row; later variable changes are not picked up."""
        rendered = self.catalog.render(template_id, variables)
        if not rendered.ok:
            return Result.failure(rendered.error, rendered.error_code)

        message = ScheduledMessage(
            business_id=business_id,
            client_phone=phone,
            template_id=template_id,
            message_content=rendered.value,
            scheduled_for=fire_at.astimezone(timezone.utc) if fire_at.tzinfo else fire_at,
            status=STATUS_PENDING,
            appointment_id=appointment_id,
            attempts=0,
            created_at=utcnow(),
        )
        try:
            self.db.add(message)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to schedule message: {e}", extra={"context": {"template_id": template_id}})
            return Result.failure(str(e), ErrorCode.DB_ERROR)

        logger.info(
            "Message scheduled",
            extra={
                "context": {
                    "scheduled_message_id": str(message.id),
                    "template_id": template_id,
                    "scheduled_for": fire_at.isoformat(),
                    "appointment_id": str(appointment_id) if appointment_id else None,
                }
            },
        )
        return Result.success(message)

    def claim(self, message_id: UUID) -> bool:
        """pending -> sending; exactly one concurrent caller gets True."""
        try:
            claimed = (
                self.db.query(ScheduledMessage)
                .filter(ScheduledMessage.id == message_id, ScheduledMessage.status == STATUS_PENDING)
                .update(
                    {
                        "status": STATUS_SENDING,
                        "claimed_at": utcnow(),
                        "attempts": ScheduledMessage.attempts + 1,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to claim scheduled message: {e}", extra={"context": {"id": str(message_id)}})
            return False
        return claimed == 1

    def _finish(self, message_id: UUID, status: str, last_error: Optional[str] = None, attempts: Optional[int] = None):
        values = {"status": status, "last_error": last_error}
        if status == STATUS_SENT:
            values["sent_at"] = utcnow()
        if attempts is not None:
            values["attempts"] = attempts
        try:
            self.db.query(ScheduledMessage).filter(
                ScheduledMessage.id == message_id,
                ScheduledMessage.status == STATUS_SENDING,
            ).update(values, synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to mark scheduled message {status}: {e}", extra={"context": {"id": str(message_id)}})

    def _send_with_retry(self, message: ScheduledMessage) -> tuple[bool, Optional[str], int]:
        attempts = message.attempts or 1
        last_error = None
        while True:
            try:
                result = self.sender.send_text(
                    message.client_phone,
                    message.message_content,
                    idempotency_key=str(message.id),
                )
            except Exception as e:
                logger.exception(f"Scheduled send raised: {e}")
                result = Result.failure(str(e), ErrorCode.SEND_ERROR)

            if result.ok:
                return True, None, attempts
            last_error = result.error
            if attempts >= self.max_attempts:
                return False, last_error, attempts
            logger.warning(
                "Scheduled send failed, retrying",
                extra={"context": {"id": str(message.id), "attempt": attempts, "error": last_error}},
            )
            self.sleep(self.retry_backoff_seconds * attempts)
            attempts += 1

    def _appointment_cancelled(self, appointment_id: Optional[UUID]) -> bool:
        if appointment_id is None:
            return False
        appointment = self.db.get(Appointment, appointment_id)
        return appointment is not None and appointment.status == AppointmentStatus.CANCELLED.value

    def process_due(self, now: Optional[datetime] = None, limit: int = 100) -> SweepSummary:
        """Deliver every pending message whose fire time has passed, oldest first."""
        now = now or utcnow()
        summary = SweepSummary()
        try:
            due_ids = [
                row.id
                for row in self.db.query(ScheduledMessage.id)
                .filter(ScheduledMessage.status == STATUS_PENDING, ScheduledMessage.scheduled_for <= now)
                .order_by(ScheduledMessage.scheduled_for, ScheduledMessage.created_at)
                .limit(limit)
                .all()
            ]
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load due messages: {e}")
            return summary

        first_send = True
        for message_id in due_ids:
            if not self.claim(message_id):
                summary.skipped += 1
                continue
            summary.processed += 1

            message = (
                self.db.query(ScheduledMessage)
                .populate_existing()
                .filter(ScheduledMessage.id == message_id)
                .one()
            )

            if self._appointment_cancelled(message.appointment_id):
                self._finish(message_id, STATUS_FAILED, "appointment_cancelled")
                summary.failed += 1
                continue

            if not first_send and self.send_delay_seconds > 0:
                self.sleep(self.send_delay_seconds)
            first_send = False

            ok, error, attempts = self._send_with_retry(message)
            if ok:
                self._finish(message_id, STATUS_SENT, attempts=attempts)
                summary.sent += 1
            else:
                self._finish(message_id, STATUS_FAILED, error, attempts=attempts)
                summary.failed += 1
            logger.info(
                "Scheduled message processed",
                extra={
                    "context": {
                        "id": str(message_id),
                        "status": STATUS_SENT if ok else STATUS_FAILED,
                        "attempts": attempts,
                        "error": error,
                    }
                },
            )

        if summary.processed or summary.skipped:
            logger.info("Scheduled message sweep finished", extra={"context": summary.__dict__})
        return summary

    def release_stale_claims(self, older_than_minutes: int = 15) -> int:
        """Return rows stuck in sending (crashed worker) to pending."""
        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        try:
            released = (
                self.db.query(ScheduledMessage)
                .filter(ScheduledMessage.status == STATUS_SENDING, ScheduledMessage.claimed_at < cutoff)
                .update({"status": STATUS_PENDING, "claimed_at": None}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to release stale claims: {e}")
            return 0
        if released:
            logger.warning("Released stale scheduled message claims", extra={"context": {"count": released}})
        return released

    def list_messages(
        self,
        business_id: UUID,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[ScheduledMessage]:
        query = self.db.query(ScheduledMessage).filter(ScheduledMessage.business_id == business_id)
        if status:
            query = query.filter(ScheduledMessage.status == status)
        try:
            return query.order_by(ScheduledMessage.scheduled_for.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to list scheduled messages: {e}")
            return []


class AppointmentLifecycle:
    """Messages triggered by appointment creation and confirmation."""

    def __init__(
        self,
        db: Session,
        scheduler: ScheduledMessageService,
        sender: MessageSender,
        catalog: TemplateCatalog,
        reminder_offset_hours: int = 24,
        follow_up_offset_hours: int = 24,
        timezone_name: str = "America/Sao_Paulo",
    ):
        self.db = db
        self.scheduler = scheduler
        self.sender = sender
        self.catalog = catalog
        self.reminder_offset = timedelta(hours=reminder_offset_hours)
        self.follow_up_offset = timedelta(hours=follow_up_offset_hours)
        self.tz = ZoneInfo(timezone_name)

    def appointment_start(self, appointment: Appointment) -> datetime:
        local = datetime.combine(appointment.appointment_date, appointment.appointment_time)
        return local.replace(tzinfo=self.tz)

    @staticmethod
    def template_variables(appointment: Appointment) -> dict[str, str]:
        price = appointment.total_price
        if price is None and appointment.service is not None:
            price = appointment.service.price
        return {
            "client_name": appointment.customer.name if appointment.customer else "",
            "date": format_date_for_display(appointment.appointment_date),
            "time": format_time_for_display(appointment.appointment_time),
            "professional_name": appointment.professional.name if appointment.professional else "",
            "service_name": appointment.service.name if appointment.service else "",
            "price": f"{float(price or 0):.2f}",
        }

    def _send_now(
        self, phone: str, template_id: str, variables: dict, idempotency_key: Optional[str]
    ) -> Result[str]:
        rendered = self.catalog.render(template_id, variables)
        if not rendered.ok:
            return rendered
        result = self.sender.send_text(phone, rendered.value, idempotency_key=idempotency_key)
        if not result.ok:
            logger.warning(
                "Immediate template send failed",
                extra={"context": {"template_id": template_id, "phone": phone, "error": result.error}},
            )
        return result

    def _has_reminder(self, appointment_id: UUID) -> bool:
        return (
            self.db.query(ScheduledMessage.id)
            .filter(
                ScheduledMessage.appointment_id == appointment_id,
                ScheduledMessage.template_id == REMINDER_TEMPLATE,
                ScheduledMessage.status.in_([STATUS_PENDING, STATUS_SENDING, STATUS_SENT]),
            )
            .first()
            is not None
        )

    def _schedule_reminder(self, appointment: Appointment, variables: dict, now: datetime):
        remind_at = self.appointment_start(appointment) - self.reminder_offset
        if remind_at <= now:
            logger.info(
                "Reminder time already passed, not scheduling",
                extra={"context": {"appointment_id": str(appointment.id)}},
            )
            return None
        return self.scheduler.schedule_message(
            appointment.customer.phone,
            REMINDER_TEMPLATE,
            remind_at,
            variables,
            business_id=appointment.business_id,
            appointment_id=appointment.id,
        ).unwrap_or(None)

    def on_created(self, appointment: Appointment, now: Optional[datetime] = None) -> list[ScheduledMessage]:
        """Immediate confirmation, a reminder before and a follow-up after the visit."""
        now = ensure_timezone(now) or utcnow()
        variables = self.template_variables(appointment)
        phone = appointment.customer.phone

        self._send_now(phone, CONFIRMATION_TEMPLATE, variables, f"confirmation:{appointment.id}")

        scheduled = []
        reminder = self._schedule_reminder(appointment, variables, now)
        if reminder is not None:
            scheduled.append(reminder)

        follow_up = self.scheduler.schedule_message(
            phone,
            FOLLOW_UP_TEMPLATE,
            self.appointment_start(appointment) + self.follow_up_offset,
            variables,
            business_id=appointment.business_id,
            appointment_id=appointment.id,
        )
        if follow_up.ok:
            scheduled.append(follow_up.value)
        return scheduled

    def on_confirmed(
        self,
        appointment: Appointment,
        notify: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[ScheduledMessage]:
        """Make sure a reminder exists; never issue a second one.

        With notify the confirmation template is sent right away; the chat
        flow passes notify=False because its reply already confirms.
        """
        now = ensure_timezone(now) or utcnow()
        variables = self.template_variables(appointment)
        if notify:
            self._send_now(
                appointment.customer.phone,
                CONFIRMATION_TEMPLATE,
                variables,
                f"confirmed:{appointment.id}",
            )
        try:
            if self._has_reminder(appointment.id):
                return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to look up reminders: {e}")
            return None
        return self._schedule_reminder(appointment, variables, now)

    def send_welcome(self, phone: str) -> Result[str]:
        return self._send_now(phone, WELCOME_TEMPLATE, {}, None)
