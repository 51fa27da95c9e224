import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from app.core.database import Base


class GenerationStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {GenerationStatus.COMPLETED.value, GenerationStatus.FAILED.value}


class Generation(Base):
    __tablename__ = "generations"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid4()))
    user_id = Column(String, index=True, nullable=False)
    prompt = Column(Text, nullable=False)
    aspect_ratio = Column(String, default="9:16")
    image_size = Column(String, default="2K")
    status = Column(String, index=True, default=GenerationStatus.PENDING.value)
    credits_used = Column(Integer, nullable=False, default=1)
    image_url = Column(String, nullable=True)
    # Base64 payload, only kept when the storage upload failed.
    image_data = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    generation_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return (self.status or "") in TERMINAL_STATUSES
