from unittest.mock import MagicMock, patch

import httpx
import pytest

from salonbot.services.gateway_service import UazapiGateway, normalize_phone


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("5511999990000@s.whatsapp.net", "5511999990000"),
            ("5511999990000:12@s.whatsapp.net", "5511999990000"),
            ("5511999990000@c.us", "5511999990000"),
            ("(11) 99999-0000", "5511999990000"),
            ("11 3333-4444", "551133334444"),
            ("+55 11 99999-0000", "5511999990000"),
            ("0055 11 99999-0000", "5511999990000"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_no_country_code(self):
        assert normalize_phone("(11) 99999-0000", default_country_code="") == "11999990000"


def _gateway(**kwargs):
    params = {"base_url": "https://api.example.test/", "token": "tok", "instance_id": "inst-1"}
    params.update(kwargs)
    return UazapiGateway(**params)


def _mock_client(response=None, error=None):
    client = MagicMock()
    client.__enter__.return_value = client
    if error is not None:
        client.post.side_effect = error
    else:
        client.post.return_value = response
    return client


def _response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.text = str(body)
    response.json.return_value = body
    return response


class TestUazapiGateway:
    def test_send_text_success(self):
        client = _mock_client(_response(200, {"success": True, "messageId": "wamid-1"}))
        with patch("salonbot.services.gateway_service.httpx.Client", return_value=client):
            result = _gateway().send_text("5511999990000@s.whatsapp.net", "Olá", idempotency_key="abc")

        assert result.ok is True
        assert result.value == "wamid-1"
        args, kwargs = client.post.call_args
        assert args[0] == "https://api.example.test/instances/inst-1/messages/text"
        assert kwargs["json"] == {"phone": "5511999990000", "message": "Olá"}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["Idempotency-Key"] == "abc"

    def test_no_idempotency_header_without_key(self):
        client = _mock_client(_response(200, {"success": True, "messageId": "m"}))
        with patch("salonbot.services.gateway_service.httpx.Client", return_value=client):
            _gateway().send_text("5511999990000", "Olá")
        assert "Idempotency-Key" not in client.post.call_args.kwargs["headers"]

    def test_http_error_status(self):
        client = _mock_client(_response(502, {"error": "bad gateway"}))
        with patch("salonbot.services.gateway_service.httpx.Client", return_value=client):
            result = _gateway().send_text("5511999990000", "Olá")
        assert result.ok is False
        assert result.error_code == "send_error"

    def test_provider_rejects(self):
        client = _mock_client(_response(200, {"success": False, "error": "not on whatsapp"}))
        with patch("salonbot.services.gateway_service.httpx.Client", return_value=client):
            result = _gateway().send_text("5511999990000", "Olá")
        assert result.error == "not on whatsapp"

    def test_network_error(self):
        client = _mock_client(error=httpx.ConnectTimeout("timed out"))
        with patch("salonbot.services.gateway_service.httpx.Client", return_value=client):
            result = _gateway().send_text("5511999990000", "Olá")
        assert result.ok is False
        assert "timed out" in result.error

    def test_missing_credentials(self):
        with patch("salonbot.services.gateway_service.httpx.Client") as client_cls:
            result = _gateway(token=None).send_text("5511999990000", "Olá")
        assert result.ok is False
        client_cls.assert_not_called()

    def test_empty_text(self):
        with patch("salonbot.services.gateway_service.httpx.Client") as client_cls:
            result = _gateway().send_text("5511999990000", "")
        assert result.ok is False
        client_cls.assert_not_called()
