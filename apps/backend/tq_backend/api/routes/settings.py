"""API routes for provider credentials."""
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_shared.constants import ProviderKind

from tq_backend.api.dependencies import get_db
from tq_backend.middleware.auth import require_user_id
from tq_backend.services.token_service import (
    ConnectedAccount,
    list_connected_accounts,
    register_access_token,
)

router = APIRouter()


class RegisterTokenRequest(BaseModel):
    provider: ProviderKind
    token: str = Field(min_length=1)
    label: str | None = Field(default=None, max_length=100)


class RegisteredTokenResponse(BaseModel):
    id: UUID
    provider: str
    label: str | None
    created_at: datetime


@router.get("/tokens", response_model=list[ConnectedAccount])
async def list_tokens_endpoint(
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> list[ConnectedAccount]:
    """Linked OAuth accounts and personal tokens; secrets are never returned."""
    return await list_connected_accounts(db, user_id)


@router.post("/tokens", response_model=RegisteredTokenResponse, status_code=status.HTTP_201_CREATED)
async def register_token_endpoint(
    body: RegisterTokenRequest,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> RegisteredTokenResponse:
    access_token = await register_access_token(
        db, user_id, body.provider, body.token, label=body.label
    )
    return RegisteredTokenResponse(
        id=access_token.id,
        provider=access_token.provider,
        label=access_token.label,
        created_at=access_token.created_at,
    )
