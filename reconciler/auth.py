import structlog
from fastapi import Header, HTTPException
from jose import JWTError, jwt

from reconciler.config import env

logger = structlog.get_logger(__name__)


def verify_token(authorization: str = Header(...)):
    """Admin endpoints take an HS256 bearer token signed with JWT_SECRET."""
    secret = env("JWT_SECRET")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not secret:
            raise ValueError("unsupported scheme or no secret configured")
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError) as e:
        logger.info("admin_token_rejected", reason=str(e))
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return claims
