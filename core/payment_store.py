from datetime import datetime
from typing import Dict, List

from core.errors import DuplicateSessionError, NotFoundError
from core.events import log_event, E
from core.log import get_logger
from core.models.payment_record import PaymentRecord

logger = get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_FAILED}


def serialize_payment(record: PaymentRecord) -> Dict:
    return {
        "sessionId": record.session_id,
        "userId": record.user_id,
        "planId": record.plan_id,
        "planName": record.plan_name,
        "amount": int(record.amount_cents or 0) / 100,
        "currency": record.currency,
        "status": record.status,
        "gatewayState": record.gateway_state,
        "transactionId": record.transaction_id,
        "paymentMode": record.payment_mode,
        "paidAmount": (int(record.paid_amount_cents) / 100) if record.paid_amount_cents is not None else None,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
    }


def find_payment(session, session_id: str) -> PaymentRecord:
    sid = str(session_id or "").strip()
    if not sid:
        return None
    return session.query(PaymentRecord).filter(PaymentRecord.session_id == sid).first()


def get_payment(session, session_id: str) -> PaymentRecord:
    record = find_payment(session, session_id)
    if not record:
        raise NotFoundError("Payment session not found")
    return record


def create_payment(session, session_id: str, fields: Dict) -> PaymentRecord:
    if find_payment(session, session_id):
        raise DuplicateSessionError(f"Payment session {session_id} already exists")
    now = datetime.now()
    record = PaymentRecord(
        session_id=session_id,
        user_id=str(fields.get("user_id") or "").strip(),
        plan_id=str(fields.get("plan_id") or "").strip(),
        plan_name=str(fields.get("plan_name") or "").strip()[:120],
        amount_cents=int(fields.get("amount_cents") or 0),
        currency=str(fields.get("currency") or "INR"),
        status=STATUS_PENDING,
        created_at=now,
        updated_at=now,
    )
    session.add(record)
    session.commit()
    log_event(logger, E.PAYMENT_RECORD_CREATE, session_id=session_id, user_id=record.user_id,
              plan_id=record.plan_id, amount_cents=record.amount_cents)
    return record


def _transition(session, session_id: str, values: Dict) -> bool:
    # 只允许从 pending 迁移，rowcount 为 0 说明已被其他请求抢先
    values["updated_at"] = datetime.now()
    rows = (
        session.query(PaymentRecord)
        .filter(PaymentRecord.session_id == session_id, PaymentRecord.status == STATUS_PENDING)
        .update(values, synchronize_session=False)
    )
    return rows == 1


def mark_completed(session, session_id: str, transaction_id: str = None, payment_mode: str = None,
                   paid_amount: int = None, gateway_state: str = "COMPLETED") -> bool:
    """不提交事务，调用方负责与订阅写入一起提交。"""
    won = _transition(
        session,
        session_id,
        {
            "status": STATUS_COMPLETED,
            "gateway_state": gateway_state,
            "transaction_id": (str(transaction_id)[:128] if transaction_id else None),
            "payment_mode": (str(payment_mode)[:64] if payment_mode else None),
            "paid_amount_cents": (int(paid_amount) if paid_amount is not None else None),
        },
    )
    if won:
        log_event(logger, E.PAYMENT_MARK_COMPLETED, session_id=session_id, transaction_id=transaction_id or "")
    return won


def mark_failed(session, session_id: str, gateway_state: str = "FAILED") -> bool:
    won = _transition(session, session_id, {"status": STATUS_FAILED, "gateway_state": gateway_state})
    if won:
        log_event(logger, E.PAYMENT_MARK_FAILED, session_id=session_id, gateway_state=gateway_state)
    return won


def list_user_payments(session, user_id: str, limit: int = 50) -> List[Dict]:
    rows = (
        session.query(PaymentRecord)
        .filter(PaymentRecord.user_id == user_id)
        .order_by(PaymentRecord.created_at.desc())
        .limit(max(1, min(int(limit or 50), 200)))
        .all()
    )
    return [serialize_payment(x) for x in rows]
