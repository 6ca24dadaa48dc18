"""Config service - Razorpay credential storage per (app, environment) tenant"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from autopay.core.errors import ConfigNotFound, ConflictError
from autopay.models.gateway_config import GatewayConfig
from autopay.schemas.configs import ConfigResponse, CreateConfigRequest, UpdateConfigRequest
from autopay.services.pagination import normalize_page, page_envelope, paginate
from autopay.utils.encryption import decrypt, encrypt

logger = logging.getLogger(__name__)


@dataclass
class GatewayCredentials:
    """Decrypted view of a stored config. Secrets are kept out of repr()."""
    id: UUID
    app_name: str
    environment: str
    key_id: str = field(repr=False)
    key_secret: str = field(repr=False)
    webhook_secret: str = field(repr=False)
    is_active: bool
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @property
    def tenant_key(self) -> Tuple[str, str]:
        return (self.app_name, self.environment)


def _to_credentials(config: GatewayConfig) -> GatewayCredentials:
    return GatewayCredentials(
        id=config.id,
        app_name=config.app_name,
        environment=config.environment,
        key_id=decrypt(config.key_id),
        key_secret=decrypt(config.key_secret),
        webhook_secret=decrypt(config.webhook_secret),
        is_active=config.is_active,
        metadata=dict(config.metadata_ or {}),
        created_at=config.created_at,
        updated_at=config.updated_at,
    )


def to_response(credentials: GatewayCredentials) -> ConfigResponse:
    """Public view of a config without any credential material"""
    return ConfigResponse(
        id=credentials.id,
        app_name=credentials.app_name,
        environment=credentials.environment,
        is_active=credentials.is_active,
        metadata=credentials.metadata,
        created_at=credentials.created_at,
        updated_at=credentials.updated_at,
    )


def _live_configs(db: Session):
    return db.query(GatewayConfig).filter(GatewayConfig.deleted_at.is_(None))


def _get_row(config_id: UUID, db: Session) -> GatewayConfig:
    config = _live_configs(db).filter(GatewayConfig.id == config_id).first()
    if not config:
        raise ConfigNotFound()
    return config


def create_config(request: CreateConfigRequest, db: Session) -> GatewayCredentials:
    """Store a new tenant config with encrypted credentials

    Raises:
        ConflictError: If a config for (app_name, environment) already exists
    """
    existing = _live_configs(db).filter(
        GatewayConfig.app_name == request.app_name,
        GatewayConfig.environment == request.environment
    ).first()
    if existing:
        raise ConflictError(
            f"razorpay config already exists for app '{request.app_name}' in '{request.environment}'"
        )

    config = GatewayConfig(
        app_name=request.app_name,
        environment=request.environment,
        key_id=encrypt(request.razorpay_key_id),
        key_secret=encrypt(request.razorpay_key_secret),
        webhook_secret=encrypt(request.razorpay_webhook_secret),
        is_active=True if request.is_active is None else request.is_active,
        metadata_=request.metadata or {},
    )
    db.add(config)
    try:
        db.commit()
    except IntegrityError:
        # Unique (app_name, environment) also covers soft-deleted rows and concurrent inserts
        db.rollback()
        raise ConflictError(
            f"razorpay config already exists for app '{request.app_name}' in '{request.environment}'"
        )
    db.refresh(config)

    logger.info(f"Created razorpay config {config.id} for {config.app_name}/{config.environment}")
    return _to_credentials(config)


def get_config(config_id: UUID, db: Session) -> GatewayCredentials:
    """Fetch a config by id, active or not"""
    return _to_credentials(_get_row(config_id, db))


def find_by_app_env(
    app_name: str,
    environment: str,
    db: Session,
    active_only: bool = True
) -> Optional[GatewayCredentials]:
    """Look up the config for a tenant. Only active configs unless active_only is False."""
    query = _live_configs(db).filter(
        GatewayConfig.app_name == app_name,
        GatewayConfig.environment == environment
    )
    if active_only:
        query = query.filter(GatewayConfig.is_active.is_(True))
    config = query.first()
    return _to_credentials(config) if config else None


def get_by_app_env(app_name: str, environment: str, db: Session) -> GatewayCredentials:
    """Like find_by_app_env but raises ConfigNotFound when there is no active config"""
    credentials = find_by_app_env(app_name, environment, db)
    if credentials is None:
        raise ConfigNotFound()
    return credentials


def list_configs(page: int, page_size: int, db: Session, active_only: bool = False) -> Dict[str, Any]:
    """Paginated config listing, newest first"""
    page, page_size = normalize_page(page, page_size)
    query = _live_configs(db)
    if active_only:
        query = query.filter(GatewayConfig.is_active.is_(True))
    query = query.order_by(GatewayConfig.created_at.desc(), GatewayConfig.id.desc())

    rows, total = paginate(query, page, page_size)
    data = [to_response(_to_credentials(row)) for row in rows]
    return page_envelope(data, page, page_size, total)


def update_config(config_id: UUID, request: UpdateConfigRequest, db: Session) -> GatewayCredentials:
    """Apply only the fields present in the request. Changed secrets are re-encrypted."""
    config = _get_row(config_id, db)

    if request.razorpay_key_id is not None:
        config.key_id = encrypt(request.razorpay_key_id)
    if request.razorpay_key_secret is not None:
        config.key_secret = encrypt(request.razorpay_key_secret)
    if request.razorpay_webhook_secret is not None:
        config.webhook_secret = encrypt(request.razorpay_webhook_secret)
    if request.is_active is not None:
        config.is_active = request.is_active
    if request.metadata is not None:
        config.metadata_ = dict(request.metadata)

    db.commit()
    db.refresh(config)

    logger.info(f"Updated razorpay config {config.id} for {config.app_name}/{config.environment}")
    return _to_credentials(config)


def delete_config(config_id: UUID, db: Session) -> None:
    """Soft delete: the row stays but is hidden from every read"""
    config = _get_row(config_id, db)
    config.deleted_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"Deleted razorpay config {config.id} for {config.app_name}/{config.environment}")
