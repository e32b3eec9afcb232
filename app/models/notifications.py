from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from app.models.base import timestamp_field


# ---------- ENUMS ----------

class RecipientRole(str, Enum):
    admin = "admin"
    customer = "customer"


class NotificationChannel(str, Enum):
    email = "email"
    system = "system"


class NotificationStatus(str, Enum):
    sent = "sent"
    failed = "failed"


# ---------- MODEL ----------

class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: Optional[int] = Field(default=None, primary_key=True)

    recipient_role: RecipientRole
    user_id: Optional[int] = None

    trigger_source: str  # order_placed / payment_success / ...
    related_id: Optional[int] = None  # order_id

    title: str
    content: str

    channel: NotificationChannel = NotificationChannel.system
    status: NotificationStatus = NotificationStatus.sent

    created_at: datetime = timestamp_field()
