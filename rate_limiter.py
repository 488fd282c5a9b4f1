# rate_limiter.py
import logging
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from jose import jwt, JWTError
from config import SECRET_KEY, ALGORITHM, RATE_LIMIT_ENABLED

logger = logging.getLogger(__name__)

AUTH_USER_RATE_LIMIT = "100/minute"
ANON_USER_RATE_LIMIT = "20/minute"

def get_request_identifier(request: Request) -> str:
    """
    Identifies the requester. If a valid JWT is present, it uses the user_id.
    Otherwise, it falls back to the client's IP address.
    The key is also stored on request.state for RateLimitHeaderMiddleware.
    """
    auth_header = request.headers.get("authorization")
    if auth_header:
        try:
            scheme, token = auth_header.split()
            if scheme.lower() == "bearer" and token:
                payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
                user_id = payload.get("user_id") or payload.get("sub")
                if user_id:
                    request.state.rate_limit_key = f"user:{user_id}"
                    return f"user:{user_id}"
        except (JWTError, ValueError):
            logger.debug("Ignoring invalid bearer token for rate limiting, falling back to IP.")

    ip_address = get_remote_address(request)
    request.state.rate_limit_key = f"ip:{ip_address}"
    return f"ip:{ip_address}"

limiter = Limiter(key_func=get_request_identifier, strategy="moving-window", enabled=RATE_LIMIT_ENABLED)

def get_dynamic_rate_limit(key: str) -> str:
    """
    Returns the appropriate rate limit string based on the identifier.
    'key' will be something like "user:some_uuid" or "ip:127.0.0.1".
    """
    if key.startswith("user:"):
        return AUTH_USER_RATE_LIMIT
    return ANON_USER_RATE_LIMIT
