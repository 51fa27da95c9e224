from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class GenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AspectRatio(str, Enum):
    PORTRAIT = "9:16"
    THREE_FOUR = "3:4"
    SQUARE = "1:1"
    LANDSCAPE = "16:9"


class ImageSize(str, Enum):
    ONE_K = "1K"
    TWO_K = "2K"


class GenerationCreate(BaseModel):
    prompt: str = Field(..., max_length=4000)
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    image_size: ImageSize = ImageSize.TWO_K


class GenerationResult(BaseModel):
    generation_id: str
    image_url: Optional[str] = None
    image_data: Optional[str] = None
    mime_type: Optional[str] = None
    text_response: Optional[str] = None
    balance: int


class GenerationHistoryItem(BaseModel):
    id: str
    prompt: str
    image_url: Optional[str] = None
    status: GenerationStatus
    created_at: datetime

    class Config:
        from_attributes = True


class GenerationResponse(BaseModel):
    id: str
    prompt: str
    aspect_ratio: str
    image_size: str
    status: GenerationStatus
    credits_used: int
    image_url: Optional[str] = None
    image_data: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="generation_metadata")
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GenerationListResponse(BaseModel):
    items: List[GenerationHistoryItem]
    limit: int
