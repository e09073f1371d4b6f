from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageKey(BaseModel):
    remoteJid: str
    fromMe: bool = False
    id: str


class ExtendedTextMessage(BaseModel):
    text: str


class MediaMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    caption: Optional[str] = None
    url: Optional[str] = None
    mimetype: Optional[str] = None


class DocumentMessage(MediaMessage):
    fileName: Optional[str] = None


class MessagePayload(BaseModel):
    """One of the WhatsApp message kinds; the first populated field wins."""

    model_config = ConfigDict(extra="ignore")

    conversation: Optional[str] = None
    extendedTextMessage: Optional[ExtendedTextMessage] = None
    imageMessage: Optional[MediaMessage] = None
    audioMessage: Optional[MediaMessage] = None
    videoMessage: Optional[MediaMessage] = None
    documentMessage: Optional[DocumentMessage] = None

    def extract(self) -> tuple[str, str]:
        """(message_type, content) for the populated variant."""
        if self.conversation:
            return "text", self.conversation
        if self.extendedTextMessage and self.extendedTextMessage.text:
            return "text", self.extendedTextMessage.text
        if self.imageMessage:
            return "image", self.imageMessage.caption or "[Imagem]"
        if self.audioMessage:
            return "audio", "[Áudio]"
        if self.videoMessage:
            return "video", self.videoMessage.caption or "[Vídeo]"
        if self.documentMessage:
            name = self.documentMessage.fileName or "arquivo"
            return "document", self.documentMessage.caption or f"[Documento: {name}]"
        return "text", ""


class WebhookData(BaseModel):
    key: MessageKey
    messageTimestamp: int
    pushName: Optional[str] = None
    message: MessagePayload = Field(default_factory=MessagePayload)


class UazapiWebhook(BaseModel):
    instanceName: str
    data: WebhookData


class WebhookResponse(BaseModel):
    success: bool
    status: str
    message: Optional[str] = None
    intent: Optional[str] = None
    bot_response: Optional[str] = None
