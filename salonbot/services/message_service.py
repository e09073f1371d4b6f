from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from salonbot.logging_config import get_logger
from salonbot.models import Message
from salonbot.services.clock import utcnow
from salonbot.services.result import ErrorCode, Result

logger = get_logger("message_service")

INBOUND = "inbound"
OUTBOUND = "outbound"


def is_duplicate_inbound(db: Session, business_id: UUID, external_id: Optional[str]) -> bool:
    if not external_id:
        return False
    try:
        existing = (
            db.query(Message.id)
            .filter(
                Message.business_id == business_id,
                Message.direction == INBOUND,
                Message.external_id == external_id,
            )
            .first()
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Duplicate check failed: {e}", extra={"context": {"external_id": external_id}})
        return False
    return existing is not None


def save_message(
    db: Session,
    business_id: UUID,
    phone: str,
    direction: str,
    content: str,
    message_type: str = "text",
    external_id: Optional[str] = None,
    intent: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Result[Optional[Message]]:
    """Append to the message log.

    An inbound message whose external id was already logged yields
    success(None), which callers treat as a redelivery.
    """
    message = Message(
        business_id=business_id,
        phone=phone,
        direction=direction,
        message_type=message_type,
        content=content,
        external_id=external_id or None,
        intent=intent,
        created_at=created_at or utcnow(),
    )
    try:
        db.add(message)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Duplicate message ignored",
            extra={"context": {"external_id": external_id, "direction": direction}},
        )
        return Result.success(None)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save {direction} message: {e}", extra={"context": {"phone": phone}})
        return Result.failure(str(e), ErrorCode.DB_ERROR)
    return Result.success(message)


def delete_message(db: Session, message: Message) -> bool:
    try:
        db.delete(message)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to drop message: {e}", extra={"context": {"external_id": message.external_id}})
        return False
    return True
