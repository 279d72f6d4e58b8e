from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class OrderStatusHistoryResponse(BaseModel):
    id: int
    old_status: Optional[str]
    new_status: str
    changed_by: Optional[str]
    notes: Optional[str]
    description: str
    created_at: datetime


class OrderTrackingResponse(BaseModel):
    order_id: int
    order_number: str
    current_status: str
    payment_status: str
    tracking_number: Optional[str]
    carrier_name: Optional[str]
    order_date: datetime
    estimated_delivery_date: Optional[datetime]
    status_history: List[OrderStatusHistoryResponse]
