"""Chat e-mail notification throttle record, one per (order, recipient) pair."""

from datetime import datetime

from pydantic import BaseModel, Field


class ChatNotificationDocument(BaseModel):
    order_id: str = Field(..., description="Conversation's order id")
    recipient_id: str = Field(..., description="User who receives the e-mail")
    last_email_sent_at: datetime = Field(..., description="When the last notification e-mail went out")
