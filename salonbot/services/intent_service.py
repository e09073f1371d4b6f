"""Two-stage intent classification: keyword scoring, then an LLM for low-confidence messages."""

import json
import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from salonbot.logging_config import get_logger
from salonbot.models import ConversationContext
from salonbot.schemas.context import ContextMemory
from salonbot.services.llm import LLMError, LLMProvider

logger = get_logger("intent_service")


class Intent(str, Enum):
    GREETING = "greeting"
    SCHEDULING = "scheduling"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    SERVICES_INFO = "services_info"
    PRICES_INFO = "prices_info"
    AVAILABILITY = "availability"
    CONFIRMATION = "confirmation"
    COMPLAINT = "complaint"
    COMPLIMENT = "compliment"
    FAREWELL = "farewell"
    HELP = "help"
    OTHER = "other"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# Declaration order doubles as the tie-break order
INTENT_KEYWORDS: dict[Intent, tuple[str, ...]] = {
    Intent.GREETING: (
        "oi", "olá", "bom dia", "boa tarde", "boa noite", "hey", "e aí",
        "tudo bem", "como vai", "alo", "alô",
    ),
    Intent.SCHEDULING: (
        "agendar", "marcar", "horário", "consulta", "agendamento", "disponível",
        "livre", "vaga", "quando", "que horas", "que dia", "próximo",
        "semana", "mês", "amanhã", "hoje",
    ),
    Intent.RESCHEDULE: (
        "remarcar", "mudar", "alterar", "trocar", "transferir", "adiar",
        "outro dia", "outro horário", "reagendar",
    ),
    Intent.CANCEL: (
        "cancelar", "desmarcar", "não vou", "não posso", "não conseguir",
        "imprevisto", "emergência",
    ),
    Intent.SERVICES_INFO: (
        "serviços", "procedimentos", "tratamentos", "o que fazem",
        "que tipo", "especialidades", "corte", "escova", "manicure",
        "pedicure", "sobrancelha", "depilação", "massagem",
    ),
    Intent.PRICES_INFO: (
        "preço", "valor", "quanto custa", "tabela", "valores",
        "orçamento", "barato", "caro", "promoção", "desconto",
    ),
    Intent.AVAILABILITY: (
        "aberto", "funcionando", "horário de funcionamento", "que horas abre",
        "que horas fecha", "domingo", "feriado", "disponibilidade",
    ),
    Intent.CONFIRMATION: (
        "confirmar", "confirmação", "ok", "certo", "sim", "perfeito",
        "combinado", "fechado", "beleza",
    ),
    Intent.COMPLAINT: (
        "reclamação", "problema", "ruim", "péssimo", "horrível",
        "insatisfeito", "decepcionado", "erro", "demora", "atraso",
    ),
    Intent.COMPLIMENT: (
        "parabéns", "excelente", "ótimo", "maravilhoso", "perfeito",
        "adorei", "amei", "muito bom", "recomendo", "satisfeito",
    ),
    Intent.FAREWELL: (
        "tchau", "até logo", "até mais", "obrigado", "obrigada",
        "valeu", "falou", "bye", "até",
    ),
    Intent.HELP: (
        "ajuda", "socorro", "não entendi", "como", "dúvida",
        "informação", "explicar", "esclarecer",
    ),
}

HIT_WEIGHT = 0.3
MAX_KEYWORD_CONFIDENCE = 0.8
NO_MATCH_CONFIDENCE = 0.1
UNPARSABLE_CONFIDENCE = 0.5
LLM_ERROR_CONFIDENCE = 0.3

ESCALATION_INTENTS = {Intent.COMPLAINT}

INTENT_ANALYSIS_PROMPT = """Você é um especialista em análise de intenções para um sistema de atendimento de salão de beleza.

Analise a mensagem do cliente e retorne APENAS um JSON válido com a seguinte estrutura:
{
  "intent": "tipo_da_intencao",
  "confidence": 0.95,
  "entities": {"service": "nome_do_servico", "date": "data_mencionada", "time": "horario_mencionado"},
  "sentiment": "positive|neutral|negative",
  "requiresHuman": false,
  "suggestedActions": ["acao1", "acao2"],
  "contextUpdates": {"preferredService": "servico"}
}

Tipos de intenção disponíveis:
- greeting: saudações e cumprimentos
- scheduling: agendar novo horário
- reschedule: remarcar horário existente
- cancel: cancelar agendamento
- services_info: informações sobre serviços
- prices_info: informações sobre preços
- availability: horários de funcionamento
- confirmation: confirmar agendamento
- complaint: reclamação ou problema
- compliment: elogio ou satisfação
- farewell: despedida
- help: pedido de ajuda
- other: outras intenções

Sentimento:
- positive: mensagem positiva, satisfação
- neutral: mensagem neutra, informativa
- negative: mensagem negativa, insatisfação

requiresHuman deve ser true apenas para reclamações sérias, problemas complexos
ou solicitações específicas que fogem do escopo.

Retorne APENAS o JSON, sem explicações adicionais."""


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_for_matching(text: str) -> str:
    """Casefold, drop accents and collapse whitespace."""
    if not text:
        return ""
    normalized = strip_accents(text.strip().casefold())
    return re.sub(r"\s+", " ", normalized)


def _compile_keywords() -> dict[Intent, tuple[re.Pattern, ...]]:
    compiled = {}
    for intent, keywords in INTENT_KEYWORDS.items():
        compiled[intent] = tuple(re.compile(r"(?<!\w)" + re.escape(normalize_for_matching(kw))) for kw in keywords)
    return compiled


_KEYWORD_PATTERNS = _compile_keywords()


@dataclass(frozen=True)
class KeywordMatch:
    intent: Intent
    confidence: float
    hits: int


def detect_intent_by_keywords(message: str) -> KeywordMatch:
    """Score each intent by keyword hits; the first-declared intent wins ties.

    Matching ignores case and accents, and a keyword only counts where a word
    starts. This is stricter than counting plain substring hits: "desmarcar"
    does not score scheduling through "marcar", and "oi" does not fire inside
    "biscoito".
    """
    normalized = normalize_for_matching(message)
    best_intent = Intent.OTHER
    best_hits = 0
    for intent, patterns in _KEYWORD_PATTERNS.items():
        hits = sum(1 for pattern in patterns if pattern.search(normalized))
        if hits > best_hits:
            best_intent = intent
            best_hits = hits

    if best_hits == 0:
        return KeywordMatch(Intent.OTHER, NO_MATCH_CONFIDENCE, 0)
    confidence = min(MAX_KEYWORD_CONFIDENCE, round(best_hits * HIT_WEIGHT, 4))
    return KeywordMatch(best_intent, confidence, best_hits)


class IntentResult(BaseModel):
    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    sentiment: Sentiment = Sentiment.NEUTRAL
    requires_human: bool = False
    entities: dict[str, Any] = Field(default_factory=dict)
    suggested_actions: list[str] = Field(default_factory=list)
    context_updates: dict[str, Any] = Field(default_factory=dict)
    source: str = "keywords"


def should_flag_human(result: IntentResult) -> bool:
    if result.requires_human:
        return True
    return result.intent in ESCALATION_INTENTS and result.sentiment == Sentiment.NEGATIVE


def _extract_json(content: str) -> Optional[dict]:
    text = (content or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text)
    try:
        payload = json.loads(text)
    except ValueError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            return None
        try:
            payload = json.loads(match.group(0))
        except ValueError:
            return None
    return payload if isinstance(payload, dict) else None


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return UNPARSABLE_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return UNPARSABLE_CONFIDENCE
    if confidence != confidence:  # NaN
        return UNPARSABLE_CONFIDENCE
    return max(0.0, min(1.0, confidence))


def parse_llm_analysis(content: str, suggested: Intent) -> IntentResult:
    """Validate a raw LLM answer; unparsable output falls back to the suggestion."""
    payload = _extract_json(content)
    if payload is None:
        logger.warning("Unparsable intent analysis, using keyword suggestion")
        return IntentResult(intent=suggested, confidence=UNPARSABLE_CONFIDENCE, source="fallback")

    try:
        intent = Intent(payload.get("intent"))
    except ValueError:
        intent = Intent.OTHER
    try:
        sentiment = Sentiment(payload.get("sentiment"))
    except ValueError:
        sentiment = Sentiment.NEUTRAL

    entities = payload.get("entities")
    actions = payload.get("suggestedActions", payload.get("suggested_actions"))
    updates = payload.get("contextUpdates", payload.get("context_updates"))
    requires_human = payload.get("requiresHuman", payload.get("requires_human"))

    return IntentResult(
        intent=intent,
        confidence=_coerce_confidence(payload.get("confidence")),
        sentiment=sentiment,
        requires_human=requires_human is True,
        entities=entities if isinstance(entities, dict) else {},
        suggested_actions=[str(a) for a in actions] if isinstance(actions, list) else [],
        context_updates=updates if isinstance(updates, dict) else {},
        source="llm",
    )


def build_context_digest(context: Optional[ConversationContext], memory: Optional[ContextMemory]) -> str:
    if context is None:
        return ""
    recent = []
    if memory is not None:
        recent = [
            {"message": entry.message, "response": entry.response, "intent": entry.intent}
            for entry in memory.history[-3:]
        ]
    return (
        "Contexto da conversa:\n"
        f"- Cliente: {context.client_name or 'Não informado'}\n"
        f"- Última intenção: {context.intent or 'Não definida'}\n"
        f"- Estado da conversa: {context.conversation_state}\n"
        f"- Histórico: {json.dumps(recent, ensure_ascii=False)}\n"
    )


class IntentClassifier:
    def __init__(
        self,
        llm: Optional[LLMProvider],
        model: Optional[str] = None,
        timeout_seconds: float = 8.0,
        threshold: float = 0.6,
    ):
        self.llm = llm
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.threshold = threshold

    def classify(
        self,
        message: str,
        context: Optional[ConversationContext] = None,
        memory: Optional[ContextMemory] = None,
    ) -> IntentResult:
        keyword = detect_intent_by_keywords(message)
        if keyword.confidence > self.threshold or self.llm is None:
            logger.debug(
                "Intent resolved by keywords",
                extra={"context": {"intent": keyword.intent.value, "confidence": keyword.confidence}},
            )
            return IntentResult(intent=keyword.intent, confidence=keyword.confidence, source="keywords")

        result = self._analyze(message, keyword.intent, context, memory)
        logger.info(
            "Intent analysis finished",
            extra={
                "context": {
                    "intent": result.intent.value,
                    "confidence": result.confidence,
                    "sentiment": result.sentiment.value,
                    "requires_human": result.requires_human,
                    "source": result.source,
                }
            },
        )
        return result

    def _analyze(
        self,
        message: str,
        suggested: Intent,
        context: Optional[ConversationContext],
        memory: Optional[ContextMemory],
    ) -> IntentResult:
        prompt = (
            f"{INTENT_ANALYSIS_PROMPT}\n\n"
            f"{build_context_digest(context, memory)}"
            f"Intenção sugerida por palavras-chave: {suggested.value}\n\n"
            f'Mensagem do cliente: "{message}"'
        )
        try:
            response = self.llm.generate(
                [{"role": "user", "content": prompt}],
                model=self.model,
                temperature=0.1,
                max_tokens=300,
                timeout_seconds=self.timeout_seconds,
                json_mode=True,
            )
        except (httpx.HTTPError, LLMError, ValueError) as e:
            logger.warning(f"Intent LLM failed, using keyword suggestion: {e}")
            return IntentResult(intent=suggested, confidence=LLM_ERROR_CONFIDENCE, source="fallback")

        return parse_llm_analysis(response.content, suggested)
