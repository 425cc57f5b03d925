"""
Tenant Resolver

Resolves the owning tenant of a webhook event from its channel id
(WhatsApp phone_number_id or Messenger page id), and the credentials a
tenant sends with.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from messaging_engine.errors import ChannelNotConfigured
from messaging_engine.persistence.models import ChannelBinding, Platform
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.providers.base import ChannelCredentials
from relaycore.security import decrypt_secret

logger = logging.getLogger(__name__)


class TenantResolver:
    """Maps channel ids to tenant bindings and bindings to credentials."""

    def __init__(self, db: Session, encryption_key: str | None = None):
        self.db = db
        self.repo = MessagingRepository(db)
        self.encryption_key = encryption_key

    def resolve(self, platform: Platform | str, channel_id: str) -> ChannelBinding | None:
        """
        Resolve the active binding for a channel id.

        Returns:
            Tenant binding if found and active, None otherwise
        """
        binding = self.repo.get_binding_by_external_id(Platform(platform), channel_id)

        if binding:
            logger.debug(
                "Resolved tenant from channel id",
                extra={"channel_id": channel_id, "tenant_id": str(binding.tenant_id)},
            )
        else:
            logger.warning(f"No tenant binding found for {Platform(platform).value} channel: {channel_id}")

        return binding

    def resolve_tenant_id(self, platform: Platform | str, channel_id: str) -> UUID | None:
        binding = self.resolve(platform, channel_id)
        return binding.tenant_id if binding else None

    def get_binding_for_tenant(self, tenant_id: UUID, platform: Platform | str) -> ChannelBinding:
        """
        Active binding a tenant sends through on a platform.

        Raises:
            ChannelNotConfigured: tenant has no active binding for the platform
        """
        binding = self.repo.get_active_binding_for_tenant(tenant_id, Platform(platform))
        if binding is None:
            raise ChannelNotConfigured(
                f"No active {Platform(platform).value} channel for tenant",
                {"tenant_id": str(tenant_id), "platform": Platform(platform).value},
            )
        return binding

    def get_credentials(self, binding: ChannelBinding) -> ChannelCredentials:
        """
        Decrypted credentials for a binding.

        Stub bindings may have no token. Meta bindings must have one that
        decrypts with the configured key.

        Raises:
            ChannelNotConfigured: token missing or undecryptable
        """
        token = decrypt_secret(binding.access_token_encrypted, self.encryption_key)
        if token is None and binding.provider != "stub":
            raise ChannelNotConfigured(
                "Channel access token is missing or cannot be decrypted",
                {"binding_id": str(binding.id)},
            )
        return ChannelCredentials(external_id=binding.external_id, access_token=token or "")
