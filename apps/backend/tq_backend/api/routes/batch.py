"""API routes for staged (batch mode) changes."""
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel.ext.asyncio.session import AsyncSession

from tq_backend.api.dependencies import get_db
from tq_backend.middleware.auth import require_user_id
from tq_backend.services.sync_engine import push_batch_changes
from tq_backend.services.triage_service import count_pending

router = APIRouter()


class BatchPushResponse(BaseModel):
    pushed: int
    failed: int


class PendingCountResponse(BaseModel):
    count: int


@router.post("/push", response_model=BatchPushResponse)
async def push_batch_endpoint(
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> BatchPushResponse:
    result = await push_batch_changes(db, user_id)
    return BatchPushResponse(pushed=result.pushed, failed=result.failed)


@router.get("/pending-count", response_model=PendingCountResponse)
async def pending_count_endpoint(
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> PendingCountResponse:
    return PendingCountResponse(count=await count_pending(db, user_id))
