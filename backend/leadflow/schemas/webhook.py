from typing import Optional

from pydantic import BaseModel


class CarrierWebhookOut(BaseModel):
    message: str
    lead_id: Optional[int] = None
    direction: Optional[str] = None
    previous_status: Optional[str] = None
    status: Optional[str] = None
