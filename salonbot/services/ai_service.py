from typing import Optional

import httpx

from salonbot.logging_config import get_logger
from salonbot.models import ConversationContext
from salonbot.schemas.context import ContextMemory
from salonbot.services.clock import ensure_timezone
from salonbot.services.intent_service import Intent
from salonbot.services.llm import LLMError, LLMProvider
from salonbot.services.result import ErrorCode, Result

logger = get_logger("ai_service")

HISTORY_TURNS = 10

BASE_SYSTEM_PROMPT = """Você é um assistente virtual inteligente para WhatsApp de um salão de beleza. Suas características:

- Seja sempre educado, prestativo e profissional
- Responda de forma clara e objetiva
- Use linguagem natural e amigável
- Mantenha respostas concisas (máximo 300 caracteres quando possível)
- Se não souber algo, seja honesto sobre isso
- Evite usar emojis em excesso
- Foque em resolver o problema do cliente"""

INTENT_GUIDANCE = {
    Intent.SCHEDULING: "- Ajude com agendamentos e consultas de horários\n"
    "- Pergunte detalhes necessários (data, horário, tipo de serviço)",
    Intent.RESCHEDULE: "- Ajude a encontrar um novo horário\n"
    "- Confirme qual agendamento o cliente quer remarcar",
    Intent.SERVICES_INFO: "- Forneça informações precisas sobre os serviços\n"
    "- Se não tiver a informação, sugira como obtê-la",
    Intent.PRICES_INFO: "- Informe valores apenas quando tiver certeza\n"
    "- Sugira falar com o salão para orçamentos específicos",
    Intent.AVAILABILITY: "- Informe o horário de funcionamento\n"
    "- Ofereça verificar horários livres para agendamento",
    Intent.COMPLAINT: "- Seja empático e compreensivo\n"
    "- Foque em resolver o problema apresentado",
    Intent.COMPLIMENT: "- Agradeça o elogio de forma calorosa e breve",
    Intent.HELP: "- Foque em resolver problemas e dúvidas\n"
    "- Seja paciente e detalhado nas explicações",
    Intent.FAREWELL: "- Despeça-se de forma cordial e breve",
}

HUMAN_FLAG_HINT = (
    "\n\nEste cliente foi sinalizado para atendimento humano. "
    "Informe que a equipe do salão vai entrar em contato em breve."
)


class ReplyGenerator:
    """Free-form replies for intents that have no scripted flow."""

    def __init__(
        self,
        llm: Optional[LLMProvider],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 20.0,
    ):
        self.llm = llm
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

    def build_system_prompt(
        self,
        context: Optional[ConversationContext],
        memory: Optional[ContextMemory],
        intent: Optional[Intent],
    ) -> str:
        prompt = BASE_SYSTEM_PROMPT
        if context is not None and context.client_name:
            prompt += f"\n\nVocê está conversando com: {context.client_name}"

        if intent is not None:
            prompt += f"\n\nIntenção detectada: {intent.value}"
            guidance = INTENT_GUIDANCE.get(intent)
            if guidance:
                prompt += f"\n{guidance}"

        if memory is not None:
            last = ensure_timezone(memory.last_interaction)
            if last is not None:
                prompt += f"\n\nÚltima interação: {last.strftime('%d/%m/%Y')}"
            if memory.extensions.get("requires_human"):
                prompt += HUMAN_FLAG_HINT
        return prompt

    @staticmethod
    def history_messages(memory: Optional[ContextMemory]) -> list[dict]:
        if memory is None:
            return []
        messages = []
        for entry in memory.history[-HISTORY_TURNS:]:
            messages.append({"role": "user", "content": entry.message})
            if entry.response:
                messages.append({"role": "assistant", "content": entry.response})
        return messages

    def generate_reply(
        self,
        message: str,
        context: Optional[ConversationContext],
        memory: Optional[ContextMemory],
        intent: Optional[Intent],
    ) -> Result[str]:
        if self.llm is None:
            return Result.failure("LLM provider not configured", ErrorCode.LLM_ERROR)

        messages = [{"role": "system", "content": self.build_system_prompt(context, memory, intent)}]
        messages.extend(self.history_messages(memory))
        messages.append({"role": "user", "content": message})

        try:
            response = self.llm.generate(
                messages,
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout_seconds=self.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Reply generation timed out after {self.timeout_seconds}s: {e}")
            return Result.failure("LLM timeout", ErrorCode.LLM_ERROR)
        except (httpx.HTTPError, LLMError, ValueError) as e:
            logger.error(f"Reply generation failed: {e}")
            return Result.failure(str(e), ErrorCode.LLM_ERROR)

        content = (response.content or "").strip()
        if not content:
            logger.warning("LLM returned empty reply")
            return Result.failure("Empty LLM response", ErrorCode.LLM_ERROR)

        logger.info(
            "Reply generated",
            extra={"context": {"model": response.model, "length": len(content), "usage": response.usage}},
        )
        return Result.success(content)
