"""Provider credential storage and resolution.

OAuth-issued tokens (linked accounts) take precedence over personal access
tokens the user registered by hand. Both are Fernet-encrypted at rest.
"""
import logging
from datetime import datetime
from typing import Literal
from uuid import UUID

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_database.models.identity import AccessToken, LinkedAccount
from tq_shared.constants import ProviderKind

from tq_backend.core.audit import AuditEvent, log_audit_event
from tq_backend.core.config import get_settings
from tq_backend.core.errors import TokenValidationError
from tq_backend.providers.base import ProviderAuthError
from tq_backend.providers.registry import get_provider

logger = logging.getLogger(__name__)


class TokenEncryptionError(Exception):
    """Raised when token encryption or decryption fails"""
    pass


class ConnectedAccount(BaseModel):
    """Credential summary; never carries token material"""
    id: UUID
    provider: str
    kind: Literal["oauth", "token"]
    label: str | None
    created_at: datetime


def _get_fernet() -> Fernet:
    settings = get_settings()
    if not settings.fernet_key:
        raise TokenEncryptionError("FERNET_KEY not configured")
    return Fernet(settings.fernet_key.encode())


def encrypt_token(token: str) -> str:
    try:
        return _get_fernet().encrypt(token.encode()).decode()
    except TokenEncryptionError:
        raise
    except Exception as e:
        raise TokenEncryptionError(f"Failed to encrypt token: {e}") from e


def decrypt_token(encrypted_token: str) -> str:
    try:
        return _get_fernet().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise TokenEncryptionError("Token decryption failed; key may have rotated") from e
    except TokenEncryptionError:
        raise
    except Exception as e:
        raise TokenEncryptionError(f"Failed to decrypt token: {e}") from e


async def resolve_provider_token(
    db: AsyncSession,
    user_id: UUID,
    provider: ProviderKind | str,
) -> str | None:
    """
    Active OAuth account first, then the newest personal token.
    Returns None when the user has neither.
    """
    provider = ProviderKind(provider).value

    result = await db.exec(
        select(LinkedAccount).where(
            LinkedAccount.user_id == user_id,
            LinkedAccount.provider == provider,
            LinkedAccount.revoked_at.is_(None),
        )
    )
    account = result.first()
    if account is not None:
        return decrypt_token(account.access_token)

    result = await db.exec(
        select(AccessToken)
        .where(AccessToken.user_id == user_id, AccessToken.provider == provider)
        .order_by(AccessToken.created_at.desc())
    )
    access_token = result.first()
    if access_token is not None:
        return decrypt_token(access_token.token)

    return None


async def register_access_token(
    db: AsyncSession,
    user_id: UUID,
    provider: ProviderKind | str,
    token: str,
    label: str | None = None,
) -> AccessToken:
    """Validates the token against the provider before storing it"""
    kind = ProviderKind(provider)

    try:
        provider_user = await get_provider(kind).validate_token(token)
    except ProviderAuthError as e:
        log_audit_event(AuditEvent.TOKEN_REJECTED, user_id=user_id, provider=kind.value)
        raise TokenValidationError(f"{kind.value} rejected the token") from e

    access_token = AccessToken(
        user_id=user_id,
        provider=kind.value,
        token=encrypt_token(token),
        label=label or provider_user.username,
    )
    db.add(access_token)
    await db.commit()
    await db.refresh(access_token)

    log_audit_event(
        AuditEvent.TOKEN_REGISTERED,
        user_id=user_id,
        provider=kind.value,
        metadata={"provider_username": provider_user.username},
    )
    return access_token


async def list_connected_accounts(db: AsyncSession, user_id: UUID) -> list[ConnectedAccount]:
    accounts: list[ConnectedAccount] = []

    result = await db.exec(
        select(LinkedAccount).where(
            LinkedAccount.user_id == user_id,
            LinkedAccount.revoked_at.is_(None),
        )
    )
    for account in result.all():
        accounts.append(
            ConnectedAccount(
                id=account.id,
                provider=account.provider,
                kind="oauth",
                label=account.provider_user_id,
                created_at=account.created_at,
            )
        )

    result = await db.exec(
        select(AccessToken)
        .where(AccessToken.user_id == user_id)
        .order_by(AccessToken.created_at.desc())
    )
    for access_token in result.all():
        accounts.append(
            ConnectedAccount(
                id=access_token.id,
                provider=access_token.provider,
                kind="token",
                label=access_token.label,
                created_at=access_token.created_at,
            )
        )

    return accounts


__all__ = [
    "TokenEncryptionError",
    "ConnectedAccount",
    "encrypt_token",
    "decrypt_token",
    "resolve_provider_token",
    "register_access_token",
    "list_connected_accounts",
]
