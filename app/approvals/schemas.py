from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from app.models import ApprovalStatus

class RejectRequest(BaseModel):
    # trimmed and length-checked by the approval workflow
    reason: str = Field(..., max_length=10000)

class ApprovalResponse(BaseModel):
    id: str
    case_id: str
    firm_id: str
    submitted_by: str
    submitted_at: datetime
    status: ApprovalStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    revision_count: int

    class Config:
        from_attributes = True
