from datetime import datetime
from typing import Dict

from sqlalchemy import or_

from core.config import cfg
from core.errors import BadRequestError, UserNotFoundError
from core.events import log_event, E
from core.log import get_logger
from core.models.user import User as DBUser
from core.notice_service import create_notice
from core.plan_service import DAY_MS, PLAN_DURATION_DAYS, get_plan_definition, now_ms

logger = get_logger(__name__)

PLAN_DURATION_MS = PLAN_DURATION_DAYS * DAY_MS


def compute_plan_expiry(user: DBUser, plan_id: str, now: int) -> int:
    base_expiry = now + PLAN_DURATION_MS
    is_renewal = user.plan == plan_id
    current_expiry = int(user.plan_expiry_date or 0)
    # 同套餐提前续费从当前到期时间顺延，换套餐或已过期从现在起算
    if is_renewal and current_expiry > now:
        return current_expiry + PLAN_DURATION_MS
    return base_expiry


def apply_subscription(session, user_id: str, plan_id: str, plan_name: str, now: int = None) -> DBUser:
    """
    将套餐写入用户档案，不提交事务。

    调用方（支付核验）把支付状态迁移与本次写入放在同一事务里提交，
    任一步失败整体回滚。
    """
    if not user_id or not plan_id:
        raise BadRequestError("Missing userId or planId")
    now = now if now is not None else now_ms()
    user = session.query(DBUser).filter(DBUser.id == user_id).first()
    if not user:
        raise UserNotFoundError("User not found")

    plan = get_plan_definition(plan_id)
    is_renewal = user.plan == plan_id
    expiry = compute_plan_expiry(user, plan_id, now)

    user.plan = plan_id
    user.plan_name = plan_name or plan["label"]
    user.plan_updated_at = now
    user.plan_purchased_at = (user.plan_purchased_at or now) if is_renewal else now
    user.plan_expiry_date = expiry
    user.token_limit = int(plan["token_limit"])
    user.tokens_used = 0
    user.had_subscription_before = True
    user.chat_retention_days = int(plan["chat_retention_days"])
    user.voice_minutes_remaining = float(plan["voice_minutes"])
    user.appointments_total = int(plan["appointments"]) + int(user.additional_appointments or 0)
    user.appointments_used = 0
    user.appointments_reset_date = now + PLAN_DURATION_MS
    user.updated_at = datetime.now()

    log_event(
        logger,
        E.BILLING_SUBSCRIPTION_RENEW if is_renewal else E.BILLING_SUBSCRIPTION_APPLY,
        user_id=user_id,
        plan_id=plan_id,
        expiry=datetime.fromtimestamp(expiry / 1000).isoformat(timespec="seconds"),
    )
    return user


def _lease_free(now: int):
    return or_(DBUser.payment_lease_until == None, DBUser.payment_lease_until < now)  # noqa: E711


def acquire_payment_lease(session, user_id: str, now: int = None, ttl_seconds: int = None) -> bool:
    """
    为用户加支付处理租约并立即提交。租约到期自动失效，不依赖单进程内存状态。
    """
    now = now if now is not None else now_ms()
    ttl = int(ttl_seconds or cfg.get("billing.payment_lease_seconds", 120) or 120)
    rows = (
        session.query(DBUser)
        .filter(
            DBUser.id == user_id,
            _lease_free(now),
        )
        .update({"payment_lease_until": now + ttl * 1000}, synchronize_session=False)
    )
    session.commit()
    acquired = rows == 1
    log_event(logger, E.PAYMENT_LEASE_ACQUIRE if acquired else E.PAYMENT_LEASE_BUSY, user_id=user_id, ttl=ttl)
    return acquired


def release_payment_lease(session, user_id: str) -> None:
    """随调用方事务一起提交。"""
    session.query(DBUser).filter(DBUser.id == user_id).update(
        {"payment_lease_until": None}, synchronize_session=False
    )


def _expire_user(session, user_id: str, now: int) -> bool:
    """到期与租约在 UPDATE 中重新判断，读取之后被续费或加租约的用户不会被清空。"""
    rows = (
        session.query(DBUser)
        .filter(
            DBUser.id == user_id,
            DBUser.plan != None,  # noqa: E711
            DBUser.plan_expiry_date < now,
            _lease_free(now),
        )
        .update(
            {"plan": None, "plan_name": None, "plan_updated_at": None, "updated_at": datetime.now()},
            synchronize_session=False,
        )
    )
    return rows == 1


def sweep_expired_subscriptions(session, now: int = None, limit: int = 500) -> Dict:
    now = now if now is not None else now_ms()
    candidates = (
        session.query(DBUser.id, DBUser.plan, DBUser.plan_name)
        .filter(
            DBUser.plan != None,  # noqa: E711
            DBUser.plan_expiry_date != None,  # noqa: E711
            DBUser.plan_expiry_date < now,
            _lease_free(now),
        )
        .limit(max(1, min(int(limit or 500), 1000)))
        .all()
    )
    changed = []
    for user_id, plan_id, plan_name in candidates:
        if not _expire_user(session, user_id, now):
            continue
        expired_plan = plan_name or plan_id
        create_notice(
            session,
            owner_id=user_id,
            title="Subscription Expired",
            content=f"Your {expired_plan} plan has expired. Renew to keep using premium features.",
            notice_type="subscription",
        )
        log_event(logger, E.BILLING_SUBSCRIPTION_EXPIRE, user_id=user_id, plan=expired_plan)
        changed.append(user_id)
    if changed:
        session.commit()
    return {"total": len(changed), "users": changed}
