"""Outbound WhatsApp text delivery through UazAPI."""

import re
from typing import Optional, Protocol

import httpx

from salonbot.config import settings
from salonbot.logging_config import get_logger
from salonbot.services.result import ErrorCode, Result

logger = get_logger("gateway_service")

JID_SUFFIXES = ("@s.whatsapp.net", "@c.us", "@g.us")


def normalize_phone(raw: Optional[str], default_country_code: str = "55") -> str:
    """Digits-only international number from a JID or a loosely formatted phone.

    "5511999990000@s.whatsapp.net" -> "5511999990000"
    "(11) 99999-0000"              -> "5511999990000"
    """
    if not raw:
        return ""
    s = str(raw).strip()
    if "@" in s:
        s = s.split("@", 1)[0]
    # Multi-device JIDs carry a ":<device>" suffix
    if ":" in s:
        s = s.split(":", 1)[0]

    digits = re.sub(r"\D", "", s)
    if digits.startswith("00"):
        digits = digits[2:]
    if len(digits) in (10, 11) and default_country_code:
        digits = default_country_code + digits
    return digits


class MessageSender(Protocol):
    def send_text(self, phone: str, text: str, idempotency_key: Optional[str] = None) -> Result[str]:
        ...


class UazapiGateway:
    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        instance_id: Optional[str],
        timeout: float = 30.0,
        default_country_code: str = "55",
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.instance_id = instance_id
        self.timeout = timeout
        self.default_country_code = default_country_code

    def send_text(self, phone: str, text: str, idempotency_key: Optional[str] = None) -> Result[str]:
        """POST a text message; the result carries the provider message id."""
        if not self.token or not self.instance_id:
            logger.error("UazAPI token or instance id is missing")
            return Result.failure("Gateway not configured", ErrorCode.SEND_ERROR)

        number = normalize_phone(phone, self.default_country_code)
        if not number or not text:
            logger.warning(f"send_text: missing phone={phone!r} or empty text")
            return Result.failure("Missing phone or text", ErrorCode.SEND_ERROR)

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        url = f"{self.base_url}/instances/{self.instance_id}/messages/text"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, headers=headers, json={"phone": number, "message": text})
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}", extra={"context": {"phone": number}})
            return Result.failure(str(e), ErrorCode.SEND_ERROR)

        logger.info(
            f"UazAPI response: status={response.status_code}",
            extra={"context": {"phone": number, "body": response.text[:200]}},
        )
        if not response.is_success:
            return Result.failure(f"Gateway HTTP {response.status_code}", ErrorCode.SEND_ERROR)

        try:
            data = response.json()
        except ValueError:
            return Result.failure("Gateway returned a non-JSON body", ErrorCode.SEND_ERROR)

        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            return Result.failure(error or "Gateway rejected the message", ErrorCode.SEND_ERROR)
        return Result.success(str(data.get("messageId") or ""))


def get_message_sender() -> UazapiGateway:
    return UazapiGateway(
        base_url=settings.uazapi_base_url,
        token=settings.uazapi_token,
        instance_id=settings.uazapi_instance_id,
        timeout=settings.gateway_timeout_seconds,
        default_country_code=settings.default_country_code,
    )
