from fastapi import APIRouter, Depends, Query

from core.auth import get_current_user
from core.db import DB
from core.notice_service import list_notices, mark_all_read
from .base import success_response

router = APIRouter(prefix="/notices", tags=["站内信"])


@router.get("", summary="获取站内信列表")
async def list_notices_api(
    unread: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
):
    session = DB.get_session()
    try:
        return success_response(notices=list_notices(session, current_user["user_id"], unread_only=unread, limit=limit))
    finally:
        session.close()


@router.put("/read-all", summary="全部标记已读")
async def mark_all_read_api(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(count=mark_all_read(session, current_user["user_id"]))
    finally:
        session.close()
