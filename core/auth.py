from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header

from core.config import cfg
from core.errors import AuthenticationError
from core.events import log_event, E
from core.log import get_logger

logger = get_logger(__name__)

SECRET_KEY = str(cfg.get("auth.secret_key", "change-me"))
ALGORITHM = str(cfg.get("auth.algorithm", "HS256"))
ACCESS_TOKEN_EXPIRE_MINUTES = int(cfg.get("auth.token_expire_minutes", 1440) or 1440)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_identity_token(token: str) -> str:
    """校验身份令牌，返回用户 id。"""
    text = str(token or "").strip()
    if not text:
        raise AuthenticationError("Missing token")
    try:
        payload = jwt.decode(text, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        log_event(logger, E.AUTH_TOKEN_INVALID, level="warning", reason="expired")
        raise AuthenticationError("Token expired")
    except jwt.PyJWTError as e:
        log_event(logger, E.AUTH_TOKEN_INVALID, level="warning", reason=str(e))
        raise AuthenticationError("Invalid token")
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise AuthenticationError("Invalid token")
    log_event(logger, E.AUTH_TOKEN_VERIFY, user_id=user_id)
    return user_id


def parse_bearer(authorization: str) -> str:
    text = str(authorization or "").strip()
    if not text.lower().startswith("bearer "):
        return ""
    return text[7:].strip()


async def get_current_user(authorization: str = Header(default="")) -> dict:
    user_id = verify_identity_token(parse_bearer(authorization))
    return {"user_id": user_id}
