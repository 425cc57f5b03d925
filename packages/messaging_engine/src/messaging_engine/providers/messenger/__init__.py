"""Facebook Messenger provider."""

from messaging_engine.providers.messenger.client import MessengerProvider

__all__ = ["MessengerProvider"]
