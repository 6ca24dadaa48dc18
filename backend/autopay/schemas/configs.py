"""Pydantic schemas for Razorpay configs"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CreateConfigRequest(BaseModel):
    app_name: str = Field(..., min_length=1, max_length=100)
    environment: Literal["test", "live"]
    razorpay_key_id: str = Field(..., min_length=1)
    razorpay_key_secret: str = Field(..., min_length=1)
    razorpay_webhook_secret: str = Field(..., min_length=1)
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class UpdateConfigRequest(BaseModel):
    """Partial update. App name and environment cannot change."""
    razorpay_key_id: Optional[str] = Field(None, min_length=1)
    razorpay_key_secret: Optional[str] = Field(None, min_length=1)
    razorpay_webhook_secret: Optional[str] = Field(None, min_length=1)
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class ConfigResponse(BaseModel):
    """Config as returned to clients. Credentials are never included."""
    id: UUID
    app_name: str
    environment: str
    is_active: bool
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


class PaginatedConfigsResponse(BaseModel):
    data: List[ConfigResponse]
    page: int
    page_size: int
    total: int
    total_pages: int
    next_page: Optional[int] = None
    prev_page: Optional[int] = None
