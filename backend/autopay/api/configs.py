"""Razorpay config API routes"""
import logging
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from autopay.core.errors import AutopayError
from autopay.db.session import get_db
from autopay.schemas.configs import (
    ConfigResponse, CreateConfigRequest, PaginatedConfigsResponse, UpdateConfigRequest
)
from autopay.services import config_service

router = APIRouter(prefix="/configs", tags=["configs"])
logger = logging.getLogger(__name__)


@router.post("", response_model=ConfigResponse, status_code=status.HTTP_201_CREATED)
def create(request: CreateConfigRequest, db: Session = Depends(get_db)):
    """Register Razorpay credentials for an app and environment"""
    try:
        return config_service.to_response(config_service.create_config(request, db))
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("", response_model=PaginatedConfigsResponse)
def list_all(
    page: int = 1,
    page_size: int = 10,
    active_only: bool = False,
    db: Session = Depends(get_db)
):
    try:
        return config_service.list_configs(page, page_size, db, active_only=active_only)
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("/by-app", response_model=ConfigResponse)
def get_by_app(
    app_name: str = Query(..., min_length=1),
    environment: Literal["test", "live"] = "test",
    db: Session = Depends(get_db)
):
    """Active config for an app in the given environment"""
    try:
        return config_service.to_response(config_service.get_by_app_env(app_name, environment, db))
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("/{config_id}", response_model=ConfigResponse)
def get_one(config_id: UUID, db: Session = Depends(get_db)):
    try:
        return config_service.to_response(config_service.get_config(config_id, db))
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.put("/{config_id}", response_model=ConfigResponse)
def update(config_id: UUID, request: UpdateConfigRequest, db: Session = Depends(get_db)):
    """Partial update; omitted fields keep their stored values"""
    try:
        return config_service.to_response(config_service.update_config(config_id, request, db))
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.delete("/{config_id}")
def delete(config_id: UUID, db: Session = Depends(get_db)):
    try:
        config_service.delete_config(config_id, db)
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)
    return {"message": "razorpay config deleted successfully"}
