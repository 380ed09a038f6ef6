import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

import httpx

from outreach.core.config import settings
from outreach.core.errors import DomainValidationError, SendError
from outreach.models.bot_settings import BotSettings

logger = logging.getLogger("outreach.channels")


class ChannelKind(str, Enum):
    WHATSAPP_CLOUD = "whatsapp_cloud"
    TELEGRAM = "telegram"
    SMS = "sms"


_CHANNEL_ALIASES = {
    "whatsapp": ChannelKind.WHATSAPP_CLOUD,
}


def parse_channel(value: str | None) -> ChannelKind:
    normalized = (value or "").strip().lower()
    if normalized in _CHANNEL_ALIASES:
        return _CHANNEL_ALIASES[normalized]
    try:
        return ChannelKind(normalized)
    except ValueError as exc:
        available = ", ".join(kind.value for kind in ChannelKind)
        raise DomainValidationError(f"Unsupported channel '{value}'. Available: {available}") from exc


@dataclass(frozen=True)
class MessageSendRequest:
    business_id: str
    recipient: str
    content: str
    # Channel specific address when the contact is not directly routable (Telegram chat id).
    address: str | None = None


@dataclass(frozen=True)
class MessageSendResult:
    provider: str
    ok: bool
    message_id: str | None = None
    error: str | None = None


class ChannelProvider(Protocol):
    name: str

    def send_message(self, request: MessageSendRequest) -> MessageSendResult:
        ...

    def close(self) -> None:
        ...


class _HttpChannelProvider:
    name = "http"
    error_prefix = "http"

    def __init__(self, *, timeout: float | None = None, client: httpx.Client | None = None):
        self._client = client or httpx.Client(timeout=timeout or settings.channel_send_timeout_seconds)

    def send_message(self, request: MessageSendRequest) -> MessageSendResult:
        try:
            message_id = self._deliver(request)
        except SendError as exc:
            return MessageSendResult(provider=self.name, ok=False, error=exc.reason)
        except httpx.HTTPError as exc:
            reason = self._extract_error(exc)
            logger.warning(
                "channel send failed provider=%s business_id=%s reason=%s",
                self.name,
                request.business_id,
                reason,
            )
            return MessageSendResult(provider=self.name, ok=False, error=reason)
        return MessageSendResult(provider=self.name, ok=True, message_id=message_id)

    def close(self) -> None:
        self._client.close()

    def _deliver(self, request: MessageSendRequest) -> str | None:
        raise NotImplementedError

    def _extract_error(self, exc: httpx.HTTPError) -> str:
        if isinstance(exc, httpx.TimeoutException):
            return f"{self.error_prefix}_timeout"
        if isinstance(exc, httpx.ConnectError):
            return f"{self.error_prefix}_connect_error"
        return str(exc) or exc.__class__.__name__


class WhatsAppCloudProvider(_HttpChannelProvider):
    name = ChannelKind.WHATSAPP_CLOUD.value
    error_prefix = "whatsapp"

    def __init__(self, phone_number_id: str | None, access_token: str | None, **kwargs):
        super().__init__(**kwargs)
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.base_url = f"{settings.whatsapp_graph_api_base_url.rstrip('/')}/{settings.whatsapp_graph_api_version}"

    def _deliver(self, request: MessageSendRequest) -> str | None:
        if not self.phone_number_id or not self.access_token:
            raise SendError("WhatsApp Cloud credentials missing in bot settings")
        response = self._client.post(
            f"{self.base_url}/{self.phone_number_id}/messages",
            headers={"Authorization": f"Bearer {self.access_token}"},
            json={
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": _digits(request.recipient),
                "type": "text",
                "text": {"preview_url": False, "body": request.content},
            },
        )
        if response.status_code >= 400:
            raise SendError(_graph_error(response))
        messages = response.json().get("messages") or []
        return messages[0].get("id") if messages else None


class TelegramProvider(_HttpChannelProvider):
    name = ChannelKind.TELEGRAM.value
    error_prefix = "telegram"

    def __init__(self, bot_token: str | None, **kwargs):
        super().__init__(**kwargs)
        self.bot_token = bot_token

    def _deliver(self, request: MessageSendRequest) -> str | None:
        if not self.bot_token:
            raise SendError("Telegram bot token missing in bot settings")
        if not request.address:
            raise SendError("Customer not connected on Telegram")
        response = self._client.post(
            f"{settings.telegram_api_base_url.rstrip('/')}/bot{self.bot_token}/sendMessage",
            json={"chat_id": request.address, "text": request.content},
        )
        data = response.json() if response.content else {}
        if response.status_code >= 400 or not data.get("ok"):
            description = data.get("description") or f"HTTP {response.status_code}"
            raise SendError(f"Telegram send failed: {description}")
        message_id = (data.get("result") or {}).get("message_id")
        return str(message_id) if message_id is not None else None


class SmsProvider(_HttpChannelProvider):
    name = ChannelKind.SMS.value
    error_prefix = "sms"

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def _deliver(self, request: MessageSendRequest) -> str | None:
        if not self.account_sid or not self.auth_token or not self.from_number:
            raise SendError("SMS credentials missing in bot settings")
        response = self._client.post(
            f"{settings.sms_api_base_url.rstrip('/')}/Accounts/{self.account_sid}/Messages.json",
            auth=(self.account_sid, self.auth_token),
            data={"To": request.recipient, "From": self.from_number, "Body": request.content},
        )
        data = response.json() if response.content else {}
        if response.status_code >= 400:
            raise SendError(f"SMS send failed: {data.get('message') or f'HTTP {response.status_code}'}")
        return data.get("sid")


def _digits(value: str) -> str:
    return "".join(ch for ch in value if ch.isdigit())


def _graph_error(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    return f"whatsapp_error_{error.get('code', 'unknown')}: {error.get('message', response.reason_phrase)}"


ProviderFactory = Callable[[BotSettings | None], ChannelProvider]


def _whatsapp_from_settings(bot_settings: BotSettings | None) -> ChannelProvider:
    return WhatsAppCloudProvider(
        bot_settings.whatsapp_phone_id if bot_settings else None,
        bot_settings.whatsapp_token if bot_settings else None,
    )


def _telegram_from_settings(bot_settings: BotSettings | None) -> ChannelProvider:
    return TelegramProvider(bot_settings.telegram_bot_token if bot_settings else None)


def _sms_from_settings(bot_settings: BotSettings | None) -> ChannelProvider:
    return SmsProvider(
        bot_settings.sms_account_sid if bot_settings else None,
        bot_settings.sms_auth_token if bot_settings else None,
        bot_settings.sms_from_number if bot_settings else None,
    )


_PROVIDER_FACTORIES: dict[ChannelKind, ProviderFactory] = {
    ChannelKind.WHATSAPP_CLOUD: _whatsapp_from_settings,
    ChannelKind.TELEGRAM: _telegram_from_settings,
    ChannelKind.SMS: _sms_from_settings,
}

# Same contract as FastAPI's dependency_overrides; tests install fake providers here.
provider_overrides: dict[ChannelKind, ProviderFactory] = {}


def build_channel_provider(kind: ChannelKind, bot_settings: BotSettings | None) -> ChannelProvider:
    factory = provider_overrides.get(kind) or _PROVIDER_FACTORIES[kind]
    return factory(bot_settings)
