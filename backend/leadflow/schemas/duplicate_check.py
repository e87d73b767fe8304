from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leadflow.models.lead import LeadTestType
from leadflow.services.column_aliases import validate_mbi


class DuplicateCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mbi: str
    test_type: LeadTestType = Field(alias="testType")
    exclude_lead_id: Optional[int] = Field(default=None, alias="excludeLeadId")

    @field_validator("mbi")
    @classmethod
    def _valid_mbi(cls, value: str) -> str:
        return validate_mbi(value)


class ExistingLeadOut(BaseModel):
    id: int
    testType: LeadTestType
    submittedAt: datetime
    daysSince: int
    vendor: Optional[str] = None
    status: str
    wasConsulted: bool
    consultationDate: Optional[datetime] = None


class DuplicateCheckResponse(BaseModel):
    status: str
    reason: Optional[str] = None
    message: str
    daysSince: Optional[int] = None
    requiredWaitDays: Optional[int] = None
    existingLeads: list[ExistingLeadOut] = []
