"""
支付发起与支付结果核验。

核验流程：查询网关订单状态 → 按 (网关状态, 本地记录状态) 分支 →
首次观察到 COMPLETED 时，在同一事务中完成「记录 pending→completed」与「套餐写入」。
本地记录已是终态时只回报终态，不会重复开通。
"""

import uuid
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Dict
from urllib.parse import quote

from core.config import cfg
from core.errors import BadRequestError, NotFoundError, UserNotFoundError
from core.events import log_event, E
from core.log import get_logger
from core.notice_service import create_notice
from core.payment_store import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    TERMINAL_STATUSES,
    create_payment,
    get_payment,
    mark_completed,
    mark_failed,
    serialize_payment,
)
from core.phonepe_client import OrderStatus, PhonePeClient
from core.plan_service import get_user, user_to_dict
from core.subscription_service import acquire_payment_lease, apply_subscription, release_payment_lease

logger = get_logger(__name__)


class OutcomeKind(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    OTHER = "other"


_STATE_KINDS = {
    "PENDING": OutcomeKind.PENDING,
    "COMPLETED": OutcomeKind.COMPLETED,
    "FAILED": OutcomeKind.FAILED,
    "EXPIRED": OutcomeKind.FAILED,
}


class GatewayOutcome:
    """网关状态的归类；未识别的状态保留原值，以小写原样回传给前端。"""

    def __init__(self, kind: OutcomeKind, raw: str):
        self.kind = kind
        self.raw = raw

    @classmethod
    def from_state(cls, state: str) -> "GatewayOutcome":
        raw = str(state or "").strip()
        return cls(_STATE_KINDS.get(raw.upper(), OutcomeKind.OTHER), raw)

    @property
    def payment_status(self) -> str:
        if self.kind == OutcomeKind.OTHER:
            return self.raw.lower()
        return self.kind.value

    def __repr__(self):
        return f"GatewayOutcome({self.kind.name}, {self.raw!r})"


def _to_minor_units(price) -> int:
    try:
        value = Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise BadRequestError("Invalid price")
    if not value.is_finite() or value <= 0:
        raise BadRequestError("Price must be a positive number")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _new_session_id() -> str:
    return f"TXN_{uuid.uuid4()}"


def build_redirect_url(origin: str, plan_id: str, session_id: str) -> str:
    base = str(origin or cfg.get("app.frontend_url", "http://localhost:5173")).rstrip("/")
    return f"{base}/payment/success?plan_id={quote(plan_id, safe='')}&session_id={session_id}"


def initiate_payment(session, user_id: str, plan_id: str, plan_name: str, price, origin: str = None,
                     client: PhonePeClient = None) -> Dict:
    user_id = str(user_id or "").strip()
    plan_id = str(plan_id or "").strip()
    if not plan_id or price in (None, ""):
        raise BadRequestError("Missing price or planId")
    if not user_id:
        raise BadRequestError("Missing userId")
    amount = _to_minor_units(price)
    if not get_user(session, user_id):
        raise NotFoundError("User not found")

    plan_name = str(plan_name or plan_id).strip()
    session_id = _new_session_id()
    redirect_url = build_redirect_url(origin, plan_id, session_id)
    log_event(logger, E.PAYMENT_INITIATE, session_id=session_id, user_id=user_id, plan_id=plan_id, amount=amount)

    client = client or PhonePeClient()
    token = client.get_access_token()
    checkout_url = client.initiate_checkout(
        session_id,
        amount,
        f"Payment for plan: {plan_name}",
        redirect_url,
        token=token,
    )

    # 网关下单成功后才落库 pending 记录
    create_payment(
        session,
        session_id,
        {
            "user_id": user_id,
            "plan_id": plan_id,
            "plan_name": plan_name,
            "amount_cents": amount,
            "currency": "INR",
        },
    )
    return {"redirectUrl": checkout_url, "sessionId": session_id}


def _release_lease_after_failure(session, user_id: str) -> None:
    try:
        release_payment_lease(session, user_id)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("释放支付租约失败，等待租约自然过期: user_id=%s", user_id)


def _complete_payment(session, record, order: OrderStatus, now: int = None) -> str:
    session_id = record.session_id
    user_id = record.user_id
    if not get_user(session, user_id):
        raise UserNotFoundError("User not found")

    if not acquire_payment_lease(session, user_id, now=now):
        # 另一个请求正在为该用户开通
        session.refresh(record)
        return record.status

    # 持有租约后重新读取用户与记录
    session.expire_all()
    try:
        if not mark_completed(
            session,
            session_id,
            transaction_id=order.transaction_id,
            payment_mode=order.payment_mode,
            paid_amount=order.paid_amount,
            gateway_state=order.state,
        ):
            session.rollback()
            release_payment_lease(session, user_id)
            session.commit()
            session.refresh(record)
            log_event(logger, E.PAYMENT_TRANSITION_LOST, session_id=session_id, status=record.status)
            return record.status

        apply_subscription(session, user_id, record.plan_id, record.plan_name, now=now)
        create_notice(
            session,
            owner_id=user_id,
            title="Payment Successful",
            content=f"Your payment for {record.plan_name} plan was successful.",
            notice_type="payment",
            ref_id=session_id,
        )
        release_payment_lease(session, user_id)
        session.commit()
    except Exception:
        session.rollback()
        _release_lease_after_failure(session, user_id)
        raise
    return STATUS_COMPLETED


def _fail_payment(session, record, order: OrderStatus) -> str:
    if mark_failed(session, record.session_id, gateway_state=order.state):
        session.commit()
        return STATUS_FAILED
    session.rollback()
    session.refresh(record)
    return record.status


def reconcile_payment(session, session_id: str, client: PhonePeClient = None, now: int = None) -> Dict:
    sid = str(session_id or "").strip()
    if not sid:
        raise BadRequestError("Missing session_id")
    log_event(logger, E.PAYMENT_VERIFY_START, session_id=sid)

    client = client or PhonePeClient()
    token = client.get_access_token()
    order = client.get_order_status(sid, token=token)
    outcome = GatewayOutcome.from_state(order.state)

    record = get_payment(session, sid)
    session.refresh(record)

    if record.status in TERMINAL_STATUSES:
        # 终态不可逆，只回报
        payment_status = record.status
    elif outcome.kind == OutcomeKind.COMPLETED:
        payment_status = _complete_payment(session, record, order, now=now)
    elif outcome.kind == OutcomeKind.FAILED:
        payment_status = _fail_payment(session, record, order)
    elif outcome.kind == OutcomeKind.PENDING:
        payment_status = STATUS_PENDING
    else:
        payment_status = outcome.payment_status

    session.expire_all()
    record = get_payment(session, sid)
    user = get_user(session, record.user_id)
    if not user:
        raise UserNotFoundError("User not found after update")

    log_event(logger, E.PAYMENT_VERIFY_COMPLETE, session_id=sid, gateway_state=order.state, status=payment_status)
    return {
        "gatewayState": order.state,
        "paymentStatus": payment_status,
        "user": user_to_dict(user),
        "payment": serialize_payment(record),
    }
