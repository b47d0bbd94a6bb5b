"""
Provider resolver - builds a configured payment adapter for a platform slug.

Credentials are read from integration_credentials for the configured
environment, decrypted, and passed to the adapter constructor. Missing or
empty credentials are a permanent configuration error, never retried.
"""
import logging
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.integrations.cartpanda_provider import CartpandaProvider
from src.integrations.hotmart_provider import HotmartProvider
from src.integrations.provider_base import PaymentProviderBase
from src.integrations.stripe_provider import StripeProvider
from src.models.integration_credential import IntegrationCredential
from src.models.platform import Platform
from src.utils.encryption import decrypt_value, encrypt_value
from src.utils.errors import (
    PlatformNotFoundError,
    ProviderNotConfiguredError,
    UnsupportedPlatformError,
)

logger = logging.getLogger(__name__)

# slug -> (adapter class, [(credential_type, constructor kwarg)])
PROVIDER_REGISTRY: dict[str, tuple[type[PaymentProviderBase], list[tuple[str, str]]]] = {
    "stripe": (StripeProvider, [("api_secret_key", "api_key")]),
    "hotmart": (
        HotmartProvider,
        [
            ("client_id", "client_id"),
            ("client_secret", "client_secret"),
            ("basic_token", "basic_token"),
        ],
    ),
    "cartpanda": (CartpandaProvider, [("api_key", "api_key")]),
}


async def get_platform_by_slug(db: AsyncSession, slug: str) -> Platform:
    result = await db.execute(select(Platform).where(Platform.slug == slug))
    platform = result.scalar_one_or_none()
    if not platform:
        raise PlatformNotFoundError(f"Platform not found: {slug}")
    return platform


async def _get_credential(
    db: AsyncSession,
    platform_id,
    credential_type: str,
    environment: str,
) -> Optional[str]:
    result = await db.execute(
        select(IntegrationCredential)
        .where(
            and_(
                IntegrationCredential.platform_id == platform_id,
                IntegrationCredential.credential_type == credential_type,
                IntegrationCredential.environment == environment,
                IntegrationCredential.is_active.is_(True),
            )
        )
        .order_by(IntegrationCredential.created_at.desc())
        .limit(1)
    )
    credential = result.scalar_one_or_none()
    if not credential:
        return None
    return decrypt_value(credential.encrypted_value)


async def get_provider(db: AsyncSession, platform_slug: str) -> PaymentProviderBase:
    """
    Resolve a ready-to-use adapter for the platform.

    Raises:
        PlatformNotFoundError: no platform row for the slug
        UnsupportedPlatformError: no adapter exists for the slug
        ProviderNotConfiguredError: a required credential is missing or empty
    """
    platform = await get_platform_by_slug(db, platform_slug)

    entry = PROVIDER_REGISTRY.get(platform.slug)
    if not entry:
        raise UnsupportedPlatformError(f"No provider adapter for platform: {platform.slug}")
    provider_cls, required = entry

    environment = get_settings().credential_environment
    kwargs = {}
    missing = []
    for credential_type, kwarg in required:
        value = await _get_credential(db, platform.id, credential_type, environment)
        if not value:
            missing.append(credential_type)
        kwargs[kwarg] = value

    if missing:
        raise ProviderNotConfiguredError(
            f"{platform.slug} credentials not configured ({environment}): {', '.join(missing)}"
        )

    return provider_cls(**kwargs)


async def check_provider_connection(db: AsyncSession, platform_slug: str) -> bool:
    """Resolve the adapter and ask it to authenticate."""
    provider = await get_provider(db, platform_slug)
    return await provider.test_connection()


async def store_credential(
    db: AsyncSession,
    platform_id,
    credential_type: str,
    value: str,
    environment: Optional[str] = None,
) -> IntegrationCredential:
    """Encrypt and store a credential, deactivating any previous value of the same type."""
    environment = environment or get_settings().credential_environment

    result = await db.execute(
        select(IntegrationCredential).where(
            and_(
                IntegrationCredential.platform_id == platform_id,
                IntegrationCredential.credential_type == credential_type,
                IntegrationCredential.environment == environment,
                IntegrationCredential.is_active.is_(True),
            )
        )
    )
    for previous in result.scalars().all():
        previous.is_active = False

    credential = IntegrationCredential(
        platform_id=platform_id,
        credential_type=credential_type,
        environment=environment,
        encrypted_value=encrypt_value(value),
        is_active=True,
    )
    db.add(credential)
    await db.flush()
    logger.info("Stored %s credential for platform %s (%s)", credential_type, str(platform_id)[:8], environment)
    return credential
