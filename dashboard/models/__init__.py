"""
Pydantic models for dashboard API requests.
"""
from pydantic import BaseModel, Field
from typing import Optional

from models.result import ReceivingLine


class ActorAction(BaseModel):
    actor: str = "system"


class CancelRequest(BaseModel):
    actor: str = "system"
    reason: Optional[str] = None


class ReceiveRequest(BaseModel):
    store_id: str
    items: list[ReceivingLine] = Field(default_factory=list)
    notes: Optional[str] = None
    actor: str = "system"
    reference: Optional[str] = None   # resend with the same value to retry safely
