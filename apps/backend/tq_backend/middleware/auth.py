"""
Identity comes from the upstream auth proxy, which sets a trusted header with
the authenticated user's id. This layer only checks that the user exists.
"""
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_database.models.identity import User

from tq_backend.api.dependencies import get_db
from tq_backend.core.config import get_settings
from tq_backend.core.errors import UnknownUserError


async def require_user_id(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> UUID:
    header_value = request.headers.get(get_settings().auth_user_header)
    if not header_value:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        user_id = UUID(header_value)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user identity")

    user = await db.get(User, user_id)
    if user is None:
        raise UnknownUserError(f"No user {user_id}")

    return user_id
