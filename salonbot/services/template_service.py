"""Message templates and placeholder rendering."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Union

from salonbot.logging_config import get_logger
from salonbot.services.result import ErrorCode, Result

logger = get_logger("template_service")


class TemplateType(str, Enum):
    REMINDER = "reminder"
    CONFIRMATION = "confirmation"
    WELCOME = "welcome"
    FOLLOW_UP = "follow_up"


@dataclass(frozen=True)
class MessageTemplate:
    id: str
    name: str
    type: TemplateType
    content: str
    variables: tuple[str, ...] = field(default_factory=tuple)


APPOINTMENT_VARIABLES = ("client_name", "date", "time", "professional_name", "service_name", "price")

DEFAULT_TEMPLATES = (
    MessageTemplate(
        id="reminder_24h",
        name="Lembrete 24h",
        type=TemplateType.REMINDER,
        content=(
            "Olá {client_name}! 👋\n\n"
            "Lembramos que você tem um agendamento marcado para amanhã ({date}) às {time} "
            "com {professional_name}.\n\n"
            "Serviço: {service_name}\n"
            "Valor: R$ {price}\n\n"
            'Para confirmar, responda "CONFIRMAR".\n'
            'Para cancelar, responda "CANCELAR".\n\n'
            "Obrigado! 😊"
        ),
        variables=APPOINTMENT_VARIABLES,
    ),
    MessageTemplate(
        id="confirmation",
        name="Confirmação de Agendamento",
        type=TemplateType.CONFIRMATION,
        content=(
            "✅ Agendamento confirmado!\n\n"
            "Cliente: {client_name}\n"
            "Data: {date}\n"
            "Horário: {time}\n"
            "Profissional: {professional_name}\n"
            "Serviço: {service_name}\n"
            "Valor: R$ {price}\n\n"
            "Nos vemos em breve! 😊"
        ),
        variables=APPOINTMENT_VARIABLES,
    ),
    MessageTemplate(
        id="welcome",
        name="Boas-vindas",
        type=TemplateType.WELCOME,
        content=(
            "Olá! 👋 Bem-vindo(a) ao nosso atendimento via WhatsApp!\n\n"
            "Eu sou seu assistente virtual e estou aqui para ajudar você com:\n\n"
            "📅 Agendamentos\n"
            "🔍 Consulta de horários\n"
            "❌ Cancelamentos\n"
            "💬 Dúvidas gerais\n\n"
            "Como posso ajudar você hoje?"
        ),
    ),
    MessageTemplate(
        id="follow_up",
        name="Pós-atendimento",
        type=TemplateType.FOLLOW_UP,
        content=(
            "Olá {client_name}! 😊\n\n"
            "Esperamos que tenha gostado do seu atendimento de {service_name} com {professional_name}.\n\n"
            "Sua opinião é muito importante para nós! Como foi sua experiência?\n\n"
            "⭐⭐⭐⭐⭐\n\n"
            "Obrigado pela preferência! 💙"
        ),
        variables=("client_name", "service_name", "professional_name"),
    ),
)


PLACEHOLDER_PATTERN = re.compile(r"\{([^{}]+)\}")


def render(template: Union[MessageTemplate, str], variables: Mapping[str, object]) -> str:
    """Replace every {key} placeholder whose key is in variables.

    Placeholders without a value stay verbatim; values are inserted as plain
    text with no escaping and are not themselves scanned for placeholders.
    """
    content = template.content if isinstance(template, MessageTemplate) else template

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_substitute, content)


class TemplateCatalog:
    """Read-only set of templates keyed by id."""

    def __init__(self, templates: Iterable[MessageTemplate] = DEFAULT_TEMPLATES):
        self._templates = {template.id: template for template in templates}

    def get(self, template_id: str) -> Optional[MessageTemplate]:
        return self._templates.get(template_id)

    def all(self) -> list[MessageTemplate]:
        return list(self._templates.values())

    def render(self, template_id: str, variables: Mapping[str, object]) -> Result[str]:
        template = self.get(template_id)
        if template is None:
            logger.warning("Unknown template", extra={"context": {"template_id": template_id}})
            return Result.failure(f"Template {template_id} not found", ErrorCode.TEMPLATE_NOT_FOUND)
        return Result.success(render(template, variables))


default_catalog = TemplateCatalog()
