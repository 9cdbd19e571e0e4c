"""
core/events.py — 结构化事件日志

格式：event=xxx | key=val | key=val

    log_event(logger, E.PAYMENT_VERIFY_COMPLETE, session_id="TXN_x", status="completed")
    # → event=payment.verify.complete | session_id=TXN_x | status=completed
"""

import logging
from typing import Any


class E:
    """事件类型常量，按功能模块分组。"""

    # ── 认证 Auth ──────────────────────────────────────────────────────────────
    AUTH_TOKEN_VERIFY = "auth.token.verify"
    AUTH_TOKEN_INVALID = "auth.token.invalid"

    # ── 支付网关 Gateway ───────────────────────────────────────────────────────
    GATEWAY_TOKEN_FETCH = "gateway.token.fetch"
    GATEWAY_TOKEN_FAIL = "gateway.token.fail"
    GATEWAY_CHECKOUT_CREATE = "gateway.checkout.create"
    GATEWAY_CHECKOUT_FAIL = "gateway.checkout.fail"
    GATEWAY_STATUS_FETCH = "gateway.status.fetch"
    GATEWAY_STATUS_FAIL = "gateway.status.fail"

    # ── 支付 Payment ───────────────────────────────────────────────────────────
    PAYMENT_INITIATE = "payment.initiate"
    PAYMENT_RECORD_CREATE = "payment.record.create"
    PAYMENT_VERIFY_START = "payment.verify.start"
    PAYMENT_VERIFY_COMPLETE = "payment.verify.complete"
    PAYMENT_MARK_COMPLETED = "payment.mark.completed"
    PAYMENT_MARK_FAILED = "payment.mark.failed"
    PAYMENT_TRANSITION_LOST = "payment.transition.lost"
    PAYMENT_LEASE_ACQUIRE = "payment.lease.acquire"
    PAYMENT_LEASE_BUSY = "payment.lease.busy"

    # ── 订阅 Billing ───────────────────────────────────────────────────────────
    BILLING_SUBSCRIPTION_APPLY = "billing.subscription.apply"
    BILLING_SUBSCRIPTION_RENEW = "billing.subscription.renew"
    BILLING_SUBSCRIPTION_EXPIRE = "billing.subscription.expire"
    BILLING_SWEEP_START = "billing.sweep.start"
    BILLING_SWEEP_COMPLETE = "billing.sweep.complete"

    # ── 用量 Usage ─────────────────────────────────────────────────────────────
    USAGE_TOKENS_CONSUME = "usage.tokens.consume"
    USAGE_TOKENS_EXCEED = "usage.tokens.exceed"
    USAGE_VOICE_DEDUCT = "usage.voice.deduct"

    # ── 聊天保留 Retention ─────────────────────────────────────────────────────
    RETENTION_SWEEP_START = "retention.sweep.start"
    RETENTION_SESSION_PRUNE = "retention.session.prune"
    RETENTION_USER_FAIL = "retention.user.fail"
    RETENTION_SWEEP_COMPLETE = "retention.sweep.complete"

    # ── 站内信 Notice ──────────────────────────────────────────────────────────
    NOTICE_CREATE = "notice.create"
    NOTICE_READ_ALL = "notice.read_all"

    # ── 系统 System ────────────────────────────────────────────────────────────
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_DB_INIT = "system.db_init"
    SYSTEM_JOB_START = "system.job.start"


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "info",
    **fields: Any,
) -> None:
    """
    记录结构化事件日志。

        log_event(logger, E.GATEWAY_STATUS_FAIL, level="error", session_id=sid, http=502)
        # → event=gateway.status.fail | session_id=... | http=502
    """
    parts = [f"event={event}"]
    for k, v in fields.items():
        sv = v if isinstance(v, str) else str(v)
        # 截断超长字段，避免单行日志过大
        if len(sv) > 300:
            sv = sv[:297] + "..."
        parts.append(f"{k}={sv}")
    getattr(logger, level)(" | ".join(parts), stacklevel=2)
