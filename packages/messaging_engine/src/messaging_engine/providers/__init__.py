"""
Messaging Providers

Provider implementations and the factory that picks one for a channel binding.

Usage:
    provider = get_provider("meta", Platform.WHATSAPP)
    response = await provider.send_text(credentials, to="+15551234567", text="Hi")
"""

from messaging_engine.persistence.models import Platform
from messaging_engine.providers.base import (
    ChannelCredentials,
    ContentType,
    InboundMessageEvent,
    MessagingProvider,
    ProviderError,
    ProviderResponse,
    StatusUpdateEvent,
    WebhookEvent,
)
from messaging_engine.providers.messenger import MessengerProvider
from messaging_engine.providers.meta_cloud import MetaCloudWhatsAppProvider
from messaging_engine.providers.stub import StubProvider

_META_PROVIDERS = {
    Platform.WHATSAPP: MetaCloudWhatsAppProvider,
    Platform.MESSENGER: MessengerProvider,
}


def get_provider(provider: str, platform: Platform | str) -> MessagingProvider:
    """
    Build a provider instance.

    Args:
        provider: "meta" or "stub" (ChannelBinding.provider)
        platform: Platform the binding sends on

    Raises:
        ValueError: unknown provider name
    """
    platform = Platform(platform)
    if provider == "stub":
        return StubProvider(platform=platform)
    if provider == "meta":
        return _META_PROVIDERS[platform]()
    raise ValueError(f"Unknown messaging provider: {provider}")


def get_webhook_parser(platform: Platform | str) -> MessagingProvider:
    """Provider used to parse webhook bodies of a platform."""
    return _META_PROVIDERS[Platform(platform)]()


__all__ = [
    "ChannelCredentials",
    "ContentType",
    "InboundMessageEvent",
    "MessagingProvider",
    "MessengerProvider",
    "MetaCloudWhatsAppProvider",
    "ProviderError",
    "ProviderResponse",
    "StatusUpdateEvent",
    "StubProvider",
    "WebhookEvent",
    "get_provider",
    "get_webhook_parser",
]
