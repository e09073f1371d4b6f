from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from salonbot.schemas.context import ContextMemory, HistoryEntry
from salonbot.services.ai_service import HUMAN_FLAG_HINT, ReplyGenerator
from salonbot.services.intent_service import Intent
from salonbot.services.llm import LLMError, OpenAIProvider
from tests.conftest import FakeLLM


def _memory(turns=0, **extensions):
    memory = ContextMemory(last_interaction=datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc), extensions=extensions)
    for i in range(turns):
        memory.history.append(
            HistoryEntry(message=f"pergunta {i}", response=f"resposta {i}", timestamp=datetime.now(timezone.utc))
        )
    return memory


class TestBuildSystemPrompt:
    def test_includes_name_intent_and_guidance(self):
        context = Mock(client_name="Maria")
        prompt = ReplyGenerator(None).build_system_prompt(context, _memory(), Intent.PRICES_INFO)
        assert "Você está conversando com: Maria" in prompt
        assert "Intenção detectada: prices_info" in prompt
        assert "Informe valores apenas quando tiver certeza" in prompt
        assert "Última interação: 15/01/2026" in prompt

    def test_human_flag_hint(self):
        prompt = ReplyGenerator(None).build_system_prompt(None, _memory(requires_human=True), Intent.COMPLAINT)
        assert HUMAN_FLAG_HINT.strip() in prompt

    def test_minimal_prompt(self):
        prompt = ReplyGenerator(None).build_system_prompt(None, None, None)
        assert "Intenção detectada" not in prompt


class TestHistoryMessages:
    def test_alternating_roles(self):
        messages = ReplyGenerator.history_messages(_memory(turns=2))
        assert [m["role"] for m in messages] == ["user", "assistant", "user", "assistant"]

    def test_capped_at_ten_turns(self):
        messages = ReplyGenerator.history_messages(_memory(turns=14))
        assert len(messages) == 20
        assert messages[0]["content"] == "pergunta 4"


class TestGenerateReply:
    def test_success(self):
        llm = FakeLLM(reply="  Temos horários amanhã.  ")
        result = ReplyGenerator(llm, model="gpt-test").generate_reply("tem vaga?", None, _memory(turns=1), Intent.OTHER)
        assert result.ok is True
        assert result.value == "Temos horários amanhã."
        messages = llm.calls[0]["messages"]
        assert messages[0]["role"] == "system"
        assert messages[-1] == {"role": "user", "content": "tem vaga?"}
        assert llm.calls[0]["model"] == "gpt-test"

    def test_no_provider(self):
        result = ReplyGenerator(None).generate_reply("oi", None, None, None)
        assert result.ok is False
        assert result.error_code == "llm_error"

    @pytest.mark.parametrize(
        "error", [httpx.ReadTimeout("slow"), httpx.ConnectError("down"), LLMError("OpenAI API error: 500")]
    )
    def test_provider_errors(self, error):
        result = ReplyGenerator(FakeLLM(error=error)).generate_reply("oi", None, None, None)
        assert result.ok is False
        assert result.error_code == "llm_error"

    def test_empty_reply(self):
        result = ReplyGenerator(FakeLLM(reply="   ")).generate_reply("oi", None, None, None)
        assert result.ok is False


def _openai_client(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = str(body)
    response.json.return_value = body
    client = MagicMock()
    client.__enter__.return_value = client
    client.post.return_value = response
    return client


class TestOpenAIProvider:
    def test_generate(self):
        client = _openai_client(
            body={"model": "gpt-4o-mini", "choices": [{"message": {"content": "Olá!"}}], "usage": {"total_tokens": 12}}
        )
        with patch("salonbot.services.llm.openai_provider.httpx.Client", return_value=client) as client_cls:
            response = OpenAIProvider("sk-test", base_url="https://llm.example.test/v1/").generate(
                [{"role": "user", "content": "oi"}], timeout_seconds=5.0
            )

        assert response.content == "Olá!"
        assert response.usage == {"total_tokens": 12}
        client_cls.assert_called_once_with(timeout=5.0)
        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "https://llm.example.test/v1/chat/completions"
        assert payload["model"] == "gpt-4o-mini"
        assert "response_format" not in payload

    def test_json_mode(self):
        client = _openai_client(body={"choices": [{"message": {"content": "{}"}}]})
        with patch("salonbot.services.llm.openai_provider.httpx.Client", return_value=client):
            OpenAIProvider("sk-test").generate([{"role": "user", "content": "oi"}], json_mode=True)
        assert client.post.call_args.kwargs["json"]["response_format"] == {"type": "json_object"}

    def test_error_status_raises(self):
        client = _openai_client(status_code=429, body={"error": "rate limited"})
        with patch("salonbot.services.llm.openai_provider.httpx.Client", return_value=client):
            with pytest.raises(LLMError):
                OpenAIProvider("sk-test").generate([{"role": "user", "content": "oi"}])

    def test_missing_choices(self):
        client = _openai_client(body={"choices": []})
        with patch("salonbot.services.llm.openai_provider.httpx.Client", return_value=client):
            response = OpenAIProvider("sk-test").generate([{"role": "user", "content": "oi"}])
        assert response.content == ""
