import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session

from .config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .models import AdminUser

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ALGORITHM = "HS256"
WRITE_ROLES = {"super_admin", "admin"}


def verify_access_token(token: str) -> dict:
    """
    Verify an auth-platform access token (HS256, project JWT secret).
    Signature, expiry and audience are all checked by python-jose.
    """
    try:
        return jose_jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {type(e).__name__}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> AdminUser:
    """Resolve the bearer token to an admin who has accepted their invitation"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if len(token.split(".")) != 3:
        raise HTTPException(
            status_code=401, detail="Invalid token format. Expected a valid JWT token."
        )

    claims = verify_access_token(token)
    user_id = claims.get("sub")
    if not user_id:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    admin = db.query(AdminUser).filter(AdminUser.user_id == user_id).first()
    if not admin or admin.accepted_at is None:
        logger.warning(f"🚫 Non-admin user {user_id} attempted admin access")
        raise HTTPException(status_code=403, detail="Admin access required")

    return admin


async def require_admin_writer(admin: AdminUser = Depends(get_current_admin)) -> AdminUser:
    """Admins with write access (viewers are read-only)"""
    if admin.role not in WRITE_ROLES:
        logger.warning(f"🚫 Admin {admin.email} with role {admin.role} attempted a write")
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return admin
