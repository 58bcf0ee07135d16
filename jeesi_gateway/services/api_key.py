"""
API Key Service - Issuance, validation and revocation of agent API keys.

Keys are looked up by digest on every runtime call, so they are stored as a
SHA-256 hex digest (fixed length, indexable) rather than a salted hash.

NO DICTIONARIES - All data uses typed models/dataclasses.
"""

import hashlib
import secrets
import string
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from jeesi_gateway.db.models import APIKey, utc_now
from jeesi_gateway.db.session import get_write_session
from jeesi_gateway.exceptions import APIKeyNotFoundError, AuthenticationError
from jeesi_gateway.models.domain import APIKeyData, GeneratedAPIKey
from jeesi_gateway.services.side_channel import SideChannel

logger = get_logger(__name__)

KEY_PREFIX = "jeesi_"
KEY_RANDOM_LENGTH = 32
DISPLAY_PREFIX_LENGTH = 12
_KEY_ALPHABET = string.ascii_letters + string.digits

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def hash_api_key(plaintext_key: str) -> str:
    """
    Hash an API key for storage and lookup.

    Uses SHA-256 for a fixed-length, indexable hash.
    """
    return hashlib.sha256(plaintext_key.encode()).hexdigest()


def _to_key_data(api_key: APIKey) -> APIKeyData:
    return APIKeyData(
        key_id=api_key.id,
        user_id=api_key.user_id,
        key_name=api_key.key_name,
        key_prefix=api_key.key_prefix,
        is_active=api_key.is_active,
        created_at=api_key.created_at,
        last_used_at=api_key.last_used_at,
    )


class APIKeyService:
    """Service for API key management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def generate_api_key(self) -> tuple[str, str, str]:
        """
        Generate a new API key.

        Returns:
            tuple: (plaintext_key, key_hash, key_prefix)
        """
        # Format: jeesi_{32 alphanumeric characters}
        suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(KEY_RANDOM_LENGTH))
        plaintext_key = f"{KEY_PREFIX}{suffix}"

        key_prefix = plaintext_key[:DISPLAY_PREFIX_LENGTH]
        key_hash = hash_api_key(plaintext_key)

        return plaintext_key, key_hash, key_prefix

    async def create_api_key(self, user_id: UUID, key_name: str) -> GeneratedAPIKey:
        """
        Create a new API key and store its digest.

        Args:
            user_id: Owner of the key
            key_name: Human-readable label (already validated non-blank)

        Returns:
            GeneratedAPIKey with plaintext key (shown once!)
        """
        plaintext_key, key_hash, key_prefix = self.generate_api_key()

        api_key = APIKey(
            id=uuid4(),
            user_id=user_id,
            key_name=key_name,
            key_prefix=key_prefix,
            key_hash=key_hash,
            is_active=True,
            created_at=utc_now(),
        )

        self.db.add(api_key)
        await self.db.commit()
        await self.db.refresh(api_key)

        logger.info(
            "api_key_created",
            key_id=str(api_key.id),
            user_id=str(user_id),
            key_prefix=key_prefix,
        )

        return GeneratedAPIKey(plaintext_key=plaintext_key, key=_to_key_data(api_key))

    async def validate_api_key(self, provided_key: str) -> APIKeyData:
        """
        Resolve an API key to its stored metadata.

        Inactive keys never match, whether or not the digest is correct.

        Raises:
            AuthenticationError if missing, unknown or revoked
        """
        if not provided_key:
            raise AuthenticationError("Missing API key")

        key_hash = hash_api_key(provided_key)
        stmt = select(APIKey).where(APIKey.key_hash == key_hash, APIKey.is_active.is_(True))
        result = await self.db.execute(stmt)
        api_key = result.scalar_one_or_none()

        if api_key is None:
            logger.warning("api_key_invalid", prefix=provided_key[:DISPLAY_PREFIX_LENGTH])
            raise AuthenticationError("Invalid API key")

        logger.debug("api_key_validated", key_id=str(api_key.id), user_id=str(api_key.user_id))
        return _to_key_data(api_key)

    async def list_api_keys(self, user_id: UUID) -> list[APIKeyData]:
        """List a user's active keys, newest first."""
        stmt = (
            select(APIKey)
            .where(APIKey.user_id == user_id, APIKey.is_active.is_(True))
            .order_by(APIKey.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return [_to_key_data(api_key) for api_key in result.scalars().all()]

    async def revoke_api_key(self, user_id: UUID, key_id: UUID) -> APIKeyData:
        """
        Revoke a key owned by the user.

        Raises:
            APIKeyNotFoundError if the key does not exist or belongs to someone else
        """
        stmt = select(APIKey).where(APIKey.id == key_id, APIKey.user_id == user_id)
        result = await self.db.execute(stmt)
        api_key = result.scalar_one_or_none()

        if api_key is None:
            raise APIKeyNotFoundError(key_id)

        api_key.is_active = False
        await self.db.commit()

        logger.info("api_key_revoked", key_id=str(key_id), user_id=str(user_id))
        return _to_key_data(api_key)


async def touch_last_used(
    key_id: UUID, session_factory: SessionFactory = get_write_session
) -> None:
    """Set last_used_at on a key. Runs on the side channel with its own session."""
    async with session_factory() as session:
        await session.execute(
            update(APIKey).where(APIKey.id == key_id).values(last_used_at=utc_now())
        )
        await session.commit()


def schedule_key_touch(
    side_channel: SideChannel,
    key_id: UUID,
    session_factory: SessionFactory = get_write_session,
) -> bool:
    """Submit a fire-and-forget last_used_at update."""
    return side_channel.submit(
        "api_key_touch", lambda: touch_last_used(key_id, session_factory)
    )
