"""
Meta WhatsApp Cloud API Provider

Official Graph API integration for WhatsApp Business.
"""

from messaging_engine.providers.meta_cloud.client import MetaCloudWhatsAppProvider
from messaging_engine.providers.meta_cloud.webhook import detect_platform

__all__ = [
    "MetaCloudWhatsAppProvider",
    "detect_platform",
]
