import math
from datetime import datetime
from typing import Dict, Optional

from core.errors import NotFoundError, PlanAccessError
from core.events import log_event, E
from core.log import get_logger
from core.models.user import User as DBUser

logger = get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
PLAN_DURATION_DAYS = 30
DEFAULT_PLAN_ID = "default"

PLAN_DEFINITIONS: Dict[str, Dict] = {
    "basic": {
        "plan_id": "basic",
        "label": "Basic",
        "price_hint": "₹499/month",
        "description": "Chat with AI",
        "chat_retention_days": 60,
        "voice_minutes": 0,
        "token_limit": 230000,
        "appointments": 0,
        "can_use_chat": True,
        "can_use_voice": False,
        "can_book_appointments": False,
    },
    "premium": {
        "plan_id": "premium",
        "label": "Premium",
        "price_hint": "₹999/month",
        "description": "Chat with AI, voice calls and 2 appointments per month",
        "chat_retention_days": 90,
        "voice_minutes": 5,
        "token_limit": 230000,
        "appointments": 2,
        "can_use_chat": True,
        "can_use_voice": True,
        "can_book_appointments": True,
    },
    "pay-per-call": {
        "plan_id": "pay-per-call",
        "label": "Pay Per Call",
        "price_hint": "₹299/call",
        "description": "1 appointment only",
        "chat_retention_days": 10,
        "voice_minutes": 0,
        "token_limit": 0,
        "appointments": 1,
        "can_use_chat": True,
        "can_use_voice": False,
        "can_book_appointments": True,
    },
    DEFAULT_PLAN_ID: {
        "plan_id": DEFAULT_PLAN_ID,
        "label": "No plan",
        "price_hint": "",
        "description": "No subscription",
        "chat_retention_days": 10,
        "voice_minutes": 0,
        "token_limit": 0,
        "appointments": 0,
        "can_use_chat": True,
        "can_use_voice": False,
        "can_book_appointments": False,
    },
}

CATALOG_PLAN_IDS = ["basic", "premium", "pay-per-call"]


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


def normalize_plan_id(plan_id: str) -> str:
    value = str(plan_id or "").strip().lower()
    return value if value in PLAN_DEFINITIONS else DEFAULT_PLAN_ID


def get_plan_definition(plan_id: str) -> Dict:
    return PLAN_DEFINITIONS[normalize_plan_id(plan_id)]


def get_plan_catalog():
    return [PLAN_DEFINITIONS[key] for key in CATALOG_PLAN_IDS]


def _int_value(value, default=0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def create_user_profile(session, user_id: str, email: str = "", display_name: str = "") -> DBUser:
    """注册时创建无套餐的用户档案。"""
    now = datetime.now()
    user = DBUser(
        id=str(user_id or "").strip(),
        email=str(email or "").strip(),
        display_name=str(display_name or "").strip()[:120],
        role="user",
        plan=None,
        plan_name=None,
        had_subscription_before=False,
        token_limit=0,
        tokens_used=0,
        chat_retention_days=PLAN_DEFINITIONS[DEFAULT_PLAN_ID]["chat_retention_days"],
        voice_minutes_remaining=0,
        appointments_total=0,
        appointments_used=0,
        additional_appointments=0,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    session.commit()
    return user


def get_user(session, user_id: str) -> Optional[DBUser]:
    uid = str(user_id or "").strip()
    if not uid:
        return None
    return session.query(DBUser).filter(DBUser.id == uid).first()


def is_subscription_expired(user, now: int = None) -> bool:
    now = now if now is not None else now_ms()
    if not getattr(user, "plan", None):
        # 从未订阅不算过期，订阅过但已被清除视为过期
        return bool(getattr(user, "had_subscription_before", False))
    expiry = getattr(user, "plan_expiry_date", None)
    if not expiry:
        return True
    return now > int(expiry)


def user_to_dict(user: DBUser) -> Dict:
    return {
        "uid": user.id,
        "email": user.email or "",
        "displayName": user.display_name or "",
        "role": user.role or "user",
        "plan": user.plan,
        "planName": user.plan_name,
        "planPurchasedAt": user.plan_purchased_at,
        "planUpdatedAt": user.plan_updated_at,
        "planExpiryDate": user.plan_expiry_date,
        "hadSubscriptionBefore": bool(user.had_subscription_before),
        "tokenLimit": _int_value(user.token_limit, 0),
        "tokensUsed": _int_value(user.tokens_used, 0),
        "chatRetentionDays": _int_value(user.chat_retention_days, 10),
        "voiceMinutesRemaining": float(user.voice_minutes_remaining or 0),
        "appointmentsTotal": _int_value(user.appointments_total, 0),
        "appointmentsUsed": _int_value(user.appointments_used, 0),
        "appointmentsResetDate": user.appointments_reset_date,
    }


def get_user_plan_summary(user: DBUser, now: int = None) -> Dict:
    now = now if now is not None else now_ms()
    expired = is_subscription_expired(user, now=now)
    active = bool(user.plan) and not expired
    plan = get_plan_definition(user.plan if active else DEFAULT_PLAN_ID)

    token_limit = _int_value(user.token_limit, 0)
    tokens_used = max(0, _int_value(user.tokens_used, 0))
    appointments_total = _int_value(user.appointments_total, 0) if active else 0
    appointments_used = max(0, _int_value(user.appointments_used, 0))

    return {
        "plan": user.plan if active else None,
        "planName": user.plan_name if active else None,
        "label": plan["label"],
        "description": plan["description"],
        "active": active,
        "expired": expired,
        "planExpiryDate": user.plan_expiry_date,
        "canUseChat": bool(plan["can_use_chat"]),
        "canUseVoice": bool(plan["can_use_voice"]),
        "canBookAppointments": bool(plan["can_book_appointments"]),
        "tokenLimit": token_limit,
        "tokensUsed": tokens_used,
        "tokensRemaining": max(0, token_limit - tokens_used),
        "voiceMinutesRemaining": float(user.voice_minutes_remaining or 0) if active else 0.0,
        "appointmentsRemaining": max(0, appointments_total - appointments_used),
        "chatRetentionDays": _int_value(user.chat_retention_days, 10),
    }


def estimate_tokens(text: str) -> int:
    # 约 4 个字符 1 个 token
    return int(math.ceil(len(text or "") / 4))


def consume_tokens(session, user_id: str, text: str, now: int = None) -> Dict:
    """
    按输入文本预估并预扣 token：
    输入 token + min(输入 × 2, 1000) 的输出预估。
    已过期返回 PLAN_EXPIRED，超出额度返回 TOKEN_LIMIT_EXCEEDED。
    """
    now = now if now is not None else now_ms()
    user = session.query(DBUser).filter(DBUser.id == user_id).with_for_update().first()
    if not user:
        raise NotFoundError("User not found")

    input_tokens = estimate_tokens(text)
    total = input_tokens + min(input_tokens * 2, 1000)
    used = _int_value(user.tokens_used, 0)
    limit = _int_value(user.token_limit, 0)

    if _int_value(user.plan_expiry_date, 0) < now:
        session.rollback()
        raise PlanAccessError(
            "Your subscription has expired. Please renew to continue.",
            code="PLAN_EXPIRED",
        )
    if used + total > limit:
        remaining = max(0, limit - used)
        session.rollback()
        log_event(logger, E.USAGE_TOKENS_EXCEED, level="warning", user_id=user_id, need=total, remaining=remaining)
        raise PlanAccessError(
            f"Token limit reached! You have {remaining} tokens remaining.",
            code="TOKEN_LIMIT_EXCEEDED",
            details={"remaining": remaining},
            status_code=429,
        )

    user.tokens_used = used + total
    user.last_token_update = now
    user.updated_at = datetime.now()
    session.commit()
    log_event(logger, E.USAGE_TOKENS_CONSUME, user_id=user_id, tokens=total, used=user.tokens_used, limit=limit)
    return {"estimatedTokens": total, "newUsage": user.tokens_used, "limit": limit}


def deduct_voice_minutes(session, user_id: str, minutes: float) -> float:
    """扣减语音分钟数，最低为 0。返回剩余分钟。"""
    user = session.query(DBUser).filter(DBUser.id == user_id).with_for_update().first()
    if not user:
        raise NotFoundError("User not found")
    current = float(user.voice_minutes_remaining or 0)
    remaining = max(0.0, current - float(minutes))
    user.voice_minutes_remaining = remaining
    user.updated_at = datetime.now()
    session.commit()
    log_event(logger, E.USAGE_VOICE_DEDUCT, user_id=user_id, minutes=minutes, before=current, after=remaining)
    return remaining
