import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from careguard.config import settings
from careguard.database import get_db
from careguard.models.directory_models import User
from careguard.services.alert_engine import EscalationEngine

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> EscalationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable"
        )
    return engine


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the caller from the X-User-Id header set by the authenticating gateway.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
    )
    if not x_user_id:
        raise credentials_exception
    
    user = db.query(User).filter(User.id == x_user_id).first()
    if user is None:
        raise credentials_exception
    
    return user


def verify_internal_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> str:
    """
    Verify the shared key for internal sweep endpoints.
    Key must be set via the INTERNAL_API_KEY environment variable.
    """
    expected_key = settings.INTERNAL_API_KEY
    
    if not expected_key:
        logger.error("INTERNAL_API_KEY not configured, internal endpoints disabled")
        raise HTTPException(status_code=503, detail="Service temporarily unavailable")
    
    if not x_api_key or not hmac.compare_digest(x_api_key, expected_key):
        logger.warning("Invalid or missing API key attempt on internal endpoint")
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    
    return x_api_key
