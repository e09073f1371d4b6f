"""Per-client conversation memory keyed by (business, phone)."""

from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from salonbot.logging_config import get_logger
from salonbot.models import Business, ConversationContext
from salonbot.schemas.context import ContextMemory, ContextStats, ContextUpdate, HistoryEntry
from salonbot.services.clock import utcnow
from salonbot.services.result import ErrorCode, Result

logger = get_logger("context_service")

DEFAULT_INTENT = "greeting"
DEFAULT_SENTIMENT = "neutral"


class ContextStore:
    def __init__(self, db: Session, history_limit: int = 10):
        self.db = db
        self.history_limit = history_limit

    def _find(self, business_id: UUID, phone: str) -> Optional[ConversationContext]:
        return (
            self.db.query(ConversationContext)
            .filter(
                ConversationContext.business_id == business_id,
                ConversationContext.client_phone == phone,
            )
            .first()
        )

    def get(self, business_id: UUID, phone: str) -> Result[Optional[ConversationContext]]:
        try:
            return Result.success(self._find(business_id, phone))
        except SQLAlchemyError as e:
            logger.error(f"Failed to load context: {e}", extra={"context": {"phone": phone}})
            return Result.failure(str(e), ErrorCode.DB_ERROR)

    def get_or_create(
        self,
        business_id: UUID,
        phone: str,
        client_name: Optional[str] = None,
    ) -> Result[ConversationContext]:
        """Existing context, or a fresh one with message_count 0."""
        try:
            context = self._find(business_id, phone)
            if context is not None:
                return Result.success(context)

            now = utcnow()
            memory = ContextMemory(message_count=0, first_interaction=now, last_interaction=now)
            context = ConversationContext(
                business_id=business_id,
                client_phone=phone,
                client_name=client_name,
                context_data=memory.to_stored(),
                last_interaction=now,
                conversation_state="active",
                intent=DEFAULT_INTENT,
                sentiment=DEFAULT_SENTIMENT,
                created_at=now,
                updated_at=now,
            )
            self.db.add(context)
            self.db.commit()
            logger.info(
                "Conversation context created",
                extra={"context": {"business_id": str(business_id), "phone": phone}},
            )
            return Result.success(context)
        except IntegrityError:
            # Concurrent first message from the same phone: keep the winner's row
            self.db.rollback()
            try:
                context = self._find(business_id, phone)
            except SQLAlchemyError as e:
                self.db.rollback()
                return Result.failure(str(e), ErrorCode.DB_ERROR)
            if context is None:
                return Result.failure("Context vanished after unique violation", ErrorCode.DB_ERROR)
            return Result.success(context)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to get or create context: {e}", extra={"context": {"phone": phone}})
            return Result.failure(str(e), ErrorCode.DB_ERROR)

    def memory(self, context: ConversationContext) -> ContextMemory:
        return ContextMemory.from_stored(context.context_data)

    def update(self, business_id: UUID, phone: str, patch: ContextUpdate) -> Result[ConversationContext]:
        """Merge a partial update into the stored context.

        message_count grows by one only when an exchange (last_message) is
        recorded; the exchange is appended to the bounded history. A closed
        context that receives an exchange becomes active again.
        """
        fields = patch.model_fields_set
        try:
            context = self._find(business_id, phone)
            if context is None:
                return Result.failure(f"No context for {phone}", ErrorCode.NOT_FOUND)

            now = utcnow()
            memory = self.memory(context)

            if "last_message" in fields and patch.last_message:
                memory.message_count += 1
                memory.append_history(
                    HistoryEntry(
                        message=patch.last_message,
                        response=patch.last_response,
                        intent=patch.intent if patch.intent is not None else context.intent,
                        timestamp=now,
                    ),
                    limit=self.history_limit,
                )
                if context.conversation_state == "closed" and "conversation_state" not in fields:
                    context.conversation_state = "active"

            if "pending_flow" in fields and patch.pending_flow is not None:
                memory.pending_flow = patch.pending_flow
            if "welcome_sent_at" in fields and patch.welcome_sent_at is not None:
                memory.welcome_sent_at = patch.welcome_sent_at
            if "extensions" in fields and patch.extensions:
                memory.extensions.update(patch.extensions)

            if memory.first_interaction is None:
                memory.first_interaction = now
            memory.last_interaction = now

            if "client_name" in fields and patch.client_name:
                context.client_name = patch.client_name
            if "intent" in fields and patch.intent:
                context.intent = patch.intent
            if "sentiment" in fields and patch.sentiment:
                context.sentiment = patch.sentiment
            if "conversation_state" in fields and patch.conversation_state:
                context.conversation_state = patch.conversation_state

            context.context_data = memory.to_stored()
            context.last_interaction = now
            context.updated_at = now
            self.db.commit()

            logger.debug(
                "Conversation context updated",
                extra={
                    "context": {
                        "phone": phone,
                        "intent": context.intent,
                        "message_count": memory.message_count,
                    }
                },
            )
            return Result.success(context)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update context: {e}", extra={"context": {"phone": phone}})
            return Result.failure(str(e), ErrorCode.DB_ERROR)

    def list_active(self, business_id: UUID, limit: int = 50) -> list[ConversationContext]:
        try:
            return (
                self.db.query(ConversationContext)
                .filter(
                    ConversationContext.business_id == business_id,
                    ConversationContext.conversation_state == "active",
                )
                .order_by(ConversationContext.last_interaction.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to list active contexts: {e}")
            return []

    def close_inactive(self, business_id: UUID, idle_hours: int = 24) -> int:
        """Mark contexts idle for longer than idle_hours as closed."""
        cutoff = utcnow() - timedelta(hours=idle_hours)
        try:
            closed = (
                self.db.query(ConversationContext)
                .filter(
                    ConversationContext.business_id == business_id,
                    ConversationContext.conversation_state == "active",
                    ConversationContext.last_interaction < cutoff,
                )
                .update(
                    {"conversation_state": "closed", "updated_at": utcnow()},
                    synchronize_session=False,
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to close inactive contexts: {e}")
            return 0

        if closed:
            logger.info(
                "Inactive contexts closed",
                extra={"context": {"business_id": str(business_id), "count": closed}},
            )
        return closed

    def close_inactive_all(self, idle_hours: int = 24) -> int:
        try:
            business_ids = [row.id for row in self.db.query(Business.id).all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to list businesses: {e}")
            return 0
        return sum(self.close_inactive(business_id, idle_hours) for business_id in business_ids)

    def get_stats(self, business_id: UUID) -> ContextStats:
        try:
            rows = (
                self.db.query(ConversationContext.conversation_state, func.count())
                .filter(ConversationContext.business_id == business_id)
                .group_by(ConversationContext.conversation_state)
                .all()
            )
            contexts = (
                self.db.query(ConversationContext.context_data)
                .filter(ConversationContext.business_id == business_id)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to compute context stats: {e}")
            return ContextStats()

        stats = ContextStats()
        for state, count in rows:
            if state in ("active", "waiting", "closed"):
                setattr(stats, state, count)
            stats.total += count

        if contexts:
            total_messages = sum(ContextMemory.from_stored(row.context_data).message_count for row in contexts)
            stats.average_message_count = total_messages / len(contexts)
        return stats
