from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.db import DB
from core.payment_service import initiate_payment, reconcile_payment
from core.payment_store import list_user_payments
from .base import success_response


router = APIRouter(tags=["支付"])


class InitiatePaymentRequest(BaseModel):
    userId: str = Field(default="", max_length=128)
    planId: str = Field(default="", max_length=32)
    planName: str = Field(default="", max_length=120)
    price: Optional[Union[float, str]] = None


@router.post("/initiatePayment", summary="发起支付，返回网关收银台地址")
async def initiate_payment_api(payload: InitiatePaymentRequest, origin: str = Header(default="")):
    session = DB.get_session()
    try:
        result = initiate_payment(
            session,
            user_id=payload.userId,
            plan_id=payload.planId,
            plan_name=payload.planName,
            price=payload.price,
            origin=origin or None,
        )
        return success_response(**result)
    finally:
        session.close()


@router.get("/verifyPaymentStatus", summary="核验支付结果并返回最新用户信息")
async def verify_payment_status_api(session_id: str = Query("")):
    session = DB.get_session()
    try:
        result = reconcile_payment(session, session_id)
        return success_response(**result)
    finally:
        session.close()


@router.get("/payments", summary="当前用户支付记录")
async def list_payments_api(
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
):
    session = DB.get_session()
    try:
        return success_response(payments=list_user_payments(session, current_user["user_id"], limit=limit))
    finally:
        session.close()
