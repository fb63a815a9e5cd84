"""
Tenant Resolver

Resolves the tenant behind a provider callback using the phone_number_id
(Cloud) or instance_name (QR) mapping, and decrypts stored credentials.
"""

import logging

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.errors import ConfigurationError
from whatsapp_bridge.persistence.models import TenantBinding
from whatsapp_bridge.persistence.repo import BridgeRepository

logger = logging.getLogger(__name__)


def encrypt_secret(value: str | None, encryption_key: str | None) -> str | None:
    """Encrypt a credential for storage. Stored as-is when no key is configured."""
    if not value or not encryption_key:
        return value
    return Fernet(encryption_key.encode()).encrypt(value.encode()).decode()


def decrypt_secret(value: str | None, encryption_key: str | None) -> str | None:
    """
    Decrypt a stored credential.

    Raises:
        ConfigurationError: value was not encrypted with this key
    """
    if not value or not encryption_key:
        return value
    try:
        return Fernet(encryption_key.encode()).decrypt(value.encode()).decode()
    except (InvalidToken, ValueError) as e:
        raise ConfigurationError(
            message="Stored credential cannot be decrypted with BRIDGE_ENCRYPTION_KEY",
            code="DECRYPT_FAILED",
        ) from e


class TenantResolver:
    """
    Resolves tenant from provider callback data.

    Uses phone_number_id or instance_name to look up the active tenant binding.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = BridgeRepository(db)

    def resolve_from_phone_number_id(self, phone_number_id: str) -> TenantBinding | None:
        """
        Resolve tenant binding from Cloud API phone number ID.

        Args:
            phone_number_id: WhatsApp Business phone number ID from webhook

        Returns:
            Tenant binding if found and active, None otherwise
        """
        binding = self.repo.get_binding_by_phone_number_id(phone_number_id)

        if binding:
            logger.debug(
                "Resolved tenant from phone_number_id",
                extra={"phone_number_id": phone_number_id, "tenant_id": binding.tenant_id},
            )
        else:
            logger.warning(f"No tenant binding found for phone_number_id: {phone_number_id}")

        return binding

    def resolve_from_instance_name(self, instance_name: str) -> TenantBinding | None:
        """
        Resolve tenant binding from Evolution API instance name.

        Args:
            instance_name: Evolution API instance name from webhook

        Returns:
            Tenant binding if found and active, None otherwise
        """
        binding = self.repo.get_binding_by_instance_name(instance_name)

        if binding:
            logger.debug(
                "Resolved tenant from instance_name",
                extra={"instance_name": instance_name, "tenant_id": binding.tenant_id},
            )
        else:
            logger.warning(f"No tenant binding found for instance_name: {instance_name}")

        return binding

    def resolve(self, backend_kind: BackendKind, route_key: str) -> TenantBinding | None:
        """Resolve by the routing key of the given backend."""
        if backend_kind == BackendKind.CLOUD:
            return self.resolve_from_phone_number_id(route_key)
        return self.resolve_from_instance_name(route_key)
