from typing import Optional

from pydantic import BaseModel, Field


class ActivityLogResponse(BaseModel):
    id: str
    type: str
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    action: str
    details: dict = Field(default_factory=dict)
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: str


class PurgeLogsRequest(BaseModel):
    confirm: str
    reason: str = Field(..., min_length=1, max_length=1000)
