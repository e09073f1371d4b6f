from salonbot.models.appointment import Appointment, AppointmentStatus
from salonbot.models.business import Business
from salonbot.models.conversation_context import ConversationContext
from salonbot.models.customer import Customer
from salonbot.models.message import Message
from salonbot.models.professional import Professional
from salonbot.models.scheduled_message import ScheduledMessage
from salonbot.models.service import Service

__all__ = [
    "Business",
    "Professional",
    "Service",
    "Customer",
    "Appointment",
    "AppointmentStatus",
    "ConversationContext",
    "ScheduledMessage",
    "Message",
]
