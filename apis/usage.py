from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from core.auth import get_current_user, verify_identity_token
from core.db import DB
from core.errors import BadRequestError, NotFoundError
from core.plan_service import (
    consume_tokens,
    deduct_voice_minutes,
    get_plan_catalog,
    get_user,
    get_user_plan_summary,
)
from .base import success_response


router = APIRouter(tags=["套餐用量"])


class ConsumeTokensRequest(BaseModel):
    text: str = Field(default="", max_length=100000)


def _parse_minutes(minutes: str) -> float:
    try:
        value = float(str(minutes or "").strip())
    except ValueError:
        raise BadRequestError("Invalid minutes")
    if value != value or value <= 0 or value == float("inf"):
        raise BadRequestError("Invalid minutes")
    return value


@router.get("/deductVoiceMinutes", summary="扣减语音通话分钟数")
async def deduct_voice_minutes_api(token: str = Query(""), minutes: str = Query("")):
    user_id = verify_identity_token(token)
    value = _parse_minutes(minutes)
    session = DB.get_session()
    try:
        remaining = deduct_voice_minutes(session, user_id, value)
        return success_response(remainingMinutes=remaining)
    finally:
        session.close()


@router.post("/consumeTokens", summary="预估并预扣聊天 token")
async def consume_tokens_api(payload: ConsumeTokensRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(**consume_tokens(session, current_user["user_id"], payload.text))
    finally:
        session.close()


@router.get("/plans", summary="套餐目录")
async def plan_catalog_api():
    return success_response(plans=get_plan_catalog())


@router.get("/me/plan", summary="当前用户套餐概览")
async def my_plan_api(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        user = get_user(session, current_user["user_id"])
        if not user:
            raise NotFoundError("User not found")
        return success_response(plan=get_user_plan_summary(user))
    finally:
        session.close()
