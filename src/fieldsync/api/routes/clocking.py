"""Derived clocking state routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from fieldsync.api.deps import get_queue
from fieldsync.outbox.queue import OutboxQueue
from fieldsync.outbox.replay import currently_in

router = APIRouter()


class CurrentlyInResponse(BaseModel):
    org_id: Optional[str]
    user_ids: List[str]


@router.get("/currently-in", response_model=CurrentlyInResponse)
def get_currently_in(
    org_id: Optional[str] = None,
    queue: OutboxQueue = Depends(get_queue),
):
    """Who is clocked in right now, replayed from this device's outbox."""
    return CurrentlyInResponse(org_id=org_id, user_ids=currently_in(queue, org_id=org_id))
