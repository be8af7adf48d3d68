"""
Teaching demand response schema. state is derived: pending | accepted | cancelled.
"""
from datetime import datetime

from pydantic import BaseModel

from app.schemas.user import UserSummary


class TeachingDemandResponse(BaseModel):
    id: str
    sender: UserSummary
    receiver: UserSummary
    sent: datetime
    accepted: bool
    cancelled: bool
    state: str
    created_at: datetime


class TeachingDemandLookupResponse(BaseModel):
    """GET /teaching-demands/user/{id}: null when the two users never exchanged a demand."""
    teaching_demand: TeachingDemandResponse | None = None
