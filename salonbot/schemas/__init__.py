from salonbot.schemas.appointment import AppointmentCreate, AppointmentResponse
from salonbot.schemas.context import ContextMemory, ContextUpdate
from salonbot.schemas.webhook import UazapiWebhook, WebhookResponse

__all__ = [
    "AppointmentCreate",
    "AppointmentResponse",
    "ContextMemory",
    "ContextUpdate",
    "UazapiWebhook",
    "WebhookResponse",
]
